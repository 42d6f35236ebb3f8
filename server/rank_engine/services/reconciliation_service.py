import logging
from dataclasses import dataclass
from typing import Optional

from sqlalchemy import func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from rank_engine.core.errors import PersistenceFailure
from rank_engine.models.donation import PaymentType
from rank_engine.models.rank import Rank
from rank_engine.models.user import SubscriptionStatus, User
from rank_engine.services.catalog_service import CatalogService
from rank_engine.services.donation_service import DonationService
from rank_engine.services.providers.base import IgnoredEvent, PaymentEvent, ProviderEvent, SubscriptionEvent
from rank_engine.services.rank_service import RankService

logger = logging.getLogger(__name__)

SUBSCRIPTION_COLUMNS = {
    "stripe": (User.stripe_subscription_id, User.stripe_customer_id),
    "square": (User.square_subscription_id, User.square_customer_id),
}


@dataclass
class ReconciliationResult:
    processed: bool = False
    duplicate: bool = False
    user_id: Optional[int] = None
    rank_id: Optional[str] = None
    days: int = 0
    rank_missing: bool = False
    donation_id: Optional[int] = None


class ReconciliationService:
    """Applies a normalized provider event to the ledger and the user's rank.

    Every adapter ends up here, so the idempotency gate, user resolution and the
    grant live in one place regardless of which provider delivered the event.
    """

    def __init__(self, db: Session):
        self.db = db
        self.catalog = CatalogService(db)
        self.donations = DonationService(db)
        self.ranks = RankService(db)

    def apply(self, event: ProviderEvent) -> ReconciliationResult:
        if isinstance(event, IgnoredEvent):
            logger.info(
                "Webhook event ignored",
                extra={"provider": event.provider, "event_type": event.event_type, "reason": event.reason},
            )
            return ReconciliationResult()
        if isinstance(event, SubscriptionEvent):
            return self._apply_subscription(event)
        return self._apply_payment(event)

    # user resolution

    def _user_by_id(self, user_id: Optional[int]) -> Optional[User]:
        if user_id is None:
            return None
        return self.db.get(User, user_id)

    def _user_by_username(self, username: str) -> Optional[User]:
        name = username.lower()
        for column in (User.minecraft_username, User.username):
            user = self.db.execute(select(User).where(func.lower(column) == name)).scalars().first()
            if user is not None:
                return user
        return None

    def _user_by_email(self, email: Optional[str]) -> Optional[User]:
        if not email:
            return None
        stmt = select(User).where(func.lower(User.email) == email.strip().lower())
        return self.db.execute(stmt).scalars().first()

    def resolve_payment_user(self, event: PaymentEvent) -> Optional[User]:
        user = self._user_by_id(event.user_id)
        if user is None and event.user_id is not None:
            logger.warning("Payment metadata names an unknown user", extra={"user_id": event.user_id})
        if user is None:
            for hint in event.username_hints:
                user = self._user_by_username(hint)
                if user is not None:
                    break
        if user is None:
            user = self._user_by_provider_ids(event.provider, event.subscription_id, event.customer_id)
        if user is None:
            user = self._user_by_email(event.email)
        return user

    def _user_by_provider_ids(
        self, provider: str, subscription_id: Optional[str], customer_id: Optional[str]
    ) -> Optional[User]:
        if provider not in SUBSCRIPTION_COLUMNS:
            return None
        subscription_column, customer_column = SUBSCRIPTION_COLUMNS[provider]
        user = None
        if subscription_id:
            user = self.db.execute(select(User).where(subscription_column == subscription_id)).scalars().first()
        if user is None and customer_id:
            user = self.db.execute(select(User).where(customer_column == customer_id)).scalars().first()
        return user

    def resolve_subscription_user(self, event: SubscriptionEvent) -> Optional[User]:
        user = self._user_by_id(event.user_id)
        if user is None:
            user = self._user_by_provider_ids(event.provider, event.subscription_id, event.customer_id)
        return user

    # rank resolution

    def resolve_rank(self, event: PaymentEvent) -> tuple[Optional[Rank], int, bool]:
        """Return ``(rank, days, rank_missing)`` for a payment."""
        if event.rank_id:
            rank = self.catalog.get_rank(event.rank_id)
            if rank is None:
                logger.warning(
                    "Payment names a rank missing from the catalog",
                    extra={"rank_id": event.rank_id, "payment_id": event.payment_id},
                )
                return None, 0, True
            days = event.days if event.days > 0 else self.catalog.compute_days(event.amount, rank)
            return rank, days, False

        rank = None
        if event.tier_name:
            rank = self.catalog.get_rank(event.tier_name.strip().lower())
        if rank is None and event.plan_id:
            rank = self.catalog.find_rank_by_provider_plan(event.provider, event.plan_id)
        if rank is None and event.match_rank_by_amount:
            rank = self.catalog.find_rank_for_amount(event.amount)
        if rank is None:
            return None, 0, False
        return rank, self.catalog.compute_days(event.amount, rank), False

    # event handlers

    def _apply_payment(self, event: PaymentEvent) -> ReconciliationResult:
        if self.donations.exists(event.payment_id):
            logger.info("Duplicate payment skipped", extra={"payment_id": event.payment_id, "provider": event.provider})
            return ReconciliationResult(duplicate=True)

        user = self.resolve_payment_user(event)
        rank, days, rank_missing = self.resolve_rank(event)
        rank_id = rank.id if rank is not None else None
        result = ReconciliationResult(
            processed=True,
            user_id=user.id if user is not None else None,
            rank_id=rank_id,
            days=days,
            rank_missing=rank_missing,
        )

        try:
            donation = self.donations.record(
                payment_id=event.payment_id,
                method=event.provider,
                amount=event.amount,
                currency=event.currency,
                payment_type=event.payment_type,
                user_id=result.user_id,
                rank_id=rank_id,
                days=days,
                subscription_id=event.subscription_id,
                message=event.message,
                is_public=event.is_public,
            )
            if donation is None:
                return ReconciliationResult(duplicate=True)

            if user is not None:
                self.ranks.grant(user.id, rank_id, days, event.amount, commit=False)
                if event.payment_type in (PaymentType.subscription, PaymentType.subscription_renewal):
                    self.ranks.link_subscription(user, event.provider, event.subscription_id, event.customer_id)
                    self.ranks.set_subscription_status(user, SubscriptionStatus.active, commit=False)
            self.db.commit()
        except SQLAlchemyError as exc:
            self.db.rollback()
            logger.exception("Failed to persist payment", extra={"payment_id": event.payment_id})
            raise PersistenceFailure(f"Could not persist payment {event.payment_id}.") from exc

        result.donation_id = donation.id
        if user is None:
            logger.warning(
                "Payment recorded without a matching user",
                extra={"payment_id": event.payment_id, "provider": event.provider, "amount": str(event.amount)},
            )
        logger.info(
            "Payment reconciled",
            extra={
                "payment_id": event.payment_id,
                "provider": event.provider,
                "user_id": result.user_id,
                "rank_id": rank_id,
                "days": days,
            },
        )
        return result

    def _apply_subscription(self, event: SubscriptionEvent) -> ReconciliationResult:
        user = self.resolve_subscription_user(event)
        if user is None:
            logger.warning(
                "Subscription event for unknown user",
                extra={"provider": event.provider, "subscription_id": event.subscription_id},
            )
            return ReconciliationResult()

        try:
            if event.unlink:
                self.ranks.unlink_subscription(user, event.provider)
            else:
                self.ranks.link_subscription(user, event.provider, event.subscription_id, event.customer_id)
            if event.status is not None:
                self.ranks.set_subscription_status(user, event.status, commit=False)
            self.db.commit()
        except SQLAlchemyError as exc:
            self.db.rollback()
            logger.exception("Failed to persist subscription change", extra={"user_id": user.id})
            raise PersistenceFailure(f"Could not update subscription for user {user.id}.") from exc

        return ReconciliationResult(processed=True, user_id=user.id)
