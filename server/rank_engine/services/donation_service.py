import logging
import time
from decimal import Decimal
from typing import Optional

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from rank_engine.core.settings import get_settings
from rank_engine.models.donation import Donation, DonationStatus, PaymentType

logger = logging.getLogger(__name__)

RECEIPT_CODES = {"stripe": "ST", "square": "SQ", "kofi": "KO"}


class DonationService:
    """Append-only donation ledger.

    ``payment_id`` carries a unique constraint; ``record`` relies on it to detect
    concurrent replays of the same webhook, ``exists`` is only a fast path.
    """

    def __init__(self, db: Session):
        self.db = db
        self.settings = get_settings()

    def exists(self, payment_id: str) -> bool:
        stmt = select(Donation.id).where(Donation.payment_id == payment_id).limit(1)
        return self.db.execute(stmt).scalar_one_or_none() is not None

    def get_by_payment_id(self, payment_id: str) -> Optional[Donation]:
        return self.db.execute(select(Donation).where(Donation.payment_id == payment_id)).scalar_one_or_none()

    def _receipt_number(self, method: str, payment_id: str) -> str:
        code = RECEIPT_CODES.get(method, method[:2].upper())
        return f"{self.settings.receipt_prefix}-{code}-{int(time.time() * 1000)}-{payment_id[-6:]}"

    def record(
        self,
        *,
        payment_id: str,
        method: str,
        amount: Decimal,
        currency: str,
        payment_type: PaymentType,
        user_id: Optional[int] = None,
        rank_id: Optional[str] = None,
        days: Optional[int] = None,
        subscription_id: Optional[str] = None,
        message: Optional[str] = None,
        is_public: bool = True,
    ) -> Optional[Donation]:
        """Insert a donation inside the caller's transaction.

        Returns None when a row with the same ``payment_id`` already exists; the
        session has been rolled back in that case. The caller commits otherwise.
        """
        donation = Donation(
            user_id=user_id,
            amount=amount,
            currency=(currency or "USD").upper(),
            method=method,
            payment_id=payment_id,
            subscription_id=subscription_id,
            rank_id=rank_id,
            days=days if days and days > 0 else None,
            payment_type=payment_type,
            status=DonationStatus.completed,
            message=message,
            is_public=is_public,
            receipt_number=self._receipt_number(method, payment_id),
        )
        self.db.add(donation)
        try:
            self.db.flush()
        except IntegrityError:
            self.db.rollback()
            if not self.exists(payment_id):
                raise
            logger.info("Donation already recorded", extra={"payment_id": payment_id, "provider": method})
            return None
        return donation

    def list_donations(
        self,
        limit: int = 100,
        user_id: Optional[int] = None,
        method: Optional[str] = None,
    ) -> list[Donation]:
        stmt = select(Donation).order_by(Donation.created_at.desc(), Donation.id.desc())
        if user_id is not None:
            stmt = stmt.where(Donation.user_id == user_id)
        if method:
            stmt = stmt.where(Donation.method == method)
        return list(self.db.execute(stmt.limit(limit)).scalars().all())
