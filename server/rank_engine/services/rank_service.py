import logging
import math
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Optional

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from rank_engine.core.clock import utcnow
from rank_engine.core.errors import UserNotFound
from rank_engine.models.user import SubscriptionStatus, User

logger = logging.getLogger(__name__)


@dataclass
class SweepResult:
    removed: int = 0
    users: list[str] = field(default_factory=list)
    failed: int = 0


@dataclass
class RankStatus:
    has_rank: bool
    rank_id: Optional[str]
    expires_at: Optional[datetime]
    days_remaining: int
    paused: bool

    @property
    def is_active(self) -> bool:
        return self.has_rank and self.days_remaining > 0 and not self.paused


class RankService:
    """Single write path for the rank fields of a user."""

    def __init__(self, db: Session):
        self.db = db

    def _lock_user(self, user_id: int) -> Optional[User]:
        stmt = select(User).where(User.id == user_id).with_for_update()
        return self.db.execute(stmt).scalar_one_or_none()

    def _finish(self, user: User, commit: bool) -> User:
        if commit:
            self.db.commit()
            self.db.refresh(user)
        else:
            self.db.flush()
        return user

    def grant(
        self,
        user_id: int,
        rank_id: Optional[str],
        days: int,
        amount: Decimal,
        commit: bool = True,
        now: Optional[datetime] = None,
    ) -> User:
        """Grant or extend a rank and add ``amount`` to the user's total.

        Time left on an unexpired rank is kept: the new expiry is counted from the
        current expiry, or from now when there is none or it has passed. Without a
        rank (or with ``days <= 0``) only the donation total changes.
        """
        now = now or utcnow()
        user = self._lock_user(user_id)
        if user is None:
            logger.error("Rank grant for unknown user", extra={"user_id": user_id, "rank_id": rank_id})
            raise UserNotFound(user_id)

        user.total_donated = Decimal(user.total_donated or 0) + Decimal(amount)

        if rank_id and days > 0:
            base = user.rank_expires_at if user.rank_expires_at and user.rank_expires_at > now else now
            user.rank_expires_at = base + timedelta(days=days)
            user.donation_rank_id = rank_id
            logger.info(
                "Rank granted",
                extra={
                    "user_id": user.id,
                    "rank_id": rank_id,
                    "days": days,
                    "expires_at": user.rank_expires_at.isoformat(),
                },
            )
        else:
            logger.info("Tip recorded without rank change", extra={"user_id": user.id, "amount": str(amount)})

        return self._finish(user, commit)

    def expire_ranks(self, now: Optional[datetime] = None) -> SweepResult:
        """Clear every rank whose expiry has passed.

        Each user is cleared in its own transaction so one bad row cannot abort the
        batch. Running it again right away finds nothing to do.
        """
        now = now or utcnow()
        stmt = (
            select(User.id)
            .where(User.rank_expires_at.is_not(None), User.rank_expires_at < now)
            .order_by(User.id)
        )
        user_ids = list(self.db.execute(stmt).scalars().all())
        result = SweepResult()

        for user_id in user_ids:
            try:
                user = self._lock_user(user_id)
                # A renewal may have landed between the select and the lock.
                if user is None or user.rank_expires_at is None or user.rank_expires_at >= now:
                    self.db.rollback()
                    continue
                previous_rank = user.donation_rank_id
                username = user.username
                expired_at = user.rank_expires_at
                user.donation_rank_id = None
                user.rank_expires_at = None
                user.rank_paused = False
                self.db.commit()
            except SQLAlchemyError:
                self.db.rollback()
                result.failed += 1
                logger.exception("Failed to clear expired rank", extra={"user_id": user_id})
                continue

            result.removed += 1
            result.users.append(username)
            logger.info(
                "Expired rank removed",
                extra={"user_id": user_id, "rank_id": previous_rank, "expired_at": expired_at.isoformat()},
            )

        logger.info("Rank expiry sweep finished", extra={"removed": result.removed, "failed": result.failed})
        return result

    def get_rank_status(self, user_id: int, now: Optional[datetime] = None) -> Optional[RankStatus]:
        user = self.db.get(User, user_id)
        if user is None:
            return None
        now = now or utcnow()
        if not user.donation_rank_id or not user.rank_expires_at:
            return RankStatus(False, None, None, 0, bool(user.rank_paused))
        seconds_left = (user.rank_expires_at - now).total_seconds()
        days_remaining = max(0, math.ceil(seconds_left / 86400))
        return RankStatus(True, user.donation_rank_id, user.rank_expires_at, days_remaining, bool(user.rank_paused))

    def remove_rank(self, user_id: int) -> Optional[User]:
        user = self._lock_user(user_id)
        if user is None:
            return None
        user.donation_rank_id = None
        user.rank_expires_at = None
        user.rank_paused = False
        logger.info("Rank removed by admin", extra={"user_id": user_id})
        return self._finish(user, commit=True)

    def set_rank_paused(self, user_id: int, paused: bool) -> Optional[User]:
        user = self._lock_user(user_id)
        if user is None:
            return None
        if paused and not user.donation_rank_id:
            self.db.rollback()
            raise ValueError("User has no rank to pause.")
        user.rank_paused = paused
        logger.info("Rank pause flag changed", extra={"user_id": user_id, "paused": paused})
        return self._finish(user, commit=True)

    def set_subscription_status(
        self,
        user: User,
        status: Optional[SubscriptionStatus],
        commit: bool = True,
    ) -> User:
        if user.subscription_status != status:
            logger.info(
                "Subscription status changed",
                extra={
                    "user_id": user.id,
                    "from": user.subscription_status.value if user.subscription_status else None,
                    "to": status.value if status else None,
                },
            )
        user.subscription_status = status
        return self._finish(user, commit)

    def link_subscription(
        self,
        user: User,
        provider: str,
        subscription_id: Optional[str] = None,
        customer_id: Optional[str] = None,
    ) -> User:
        """Store provider identifiers on the user. Does not commit."""
        if provider == "stripe":
            if subscription_id:
                user.stripe_subscription_id = subscription_id
            if customer_id:
                user.stripe_customer_id = customer_id
        elif provider == "square":
            if subscription_id:
                user.square_subscription_id = subscription_id
            if customer_id:
                user.square_customer_id = customer_id
        return user

    def unlink_subscription(self, user: User, provider: str) -> User:
        if provider == "stripe":
            user.stripe_subscription_id = None
        elif provider == "square":
            user.square_subscription_id = None
        return user
