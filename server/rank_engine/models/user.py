import enum
from datetime import datetime
from decimal import Decimal

from sqlalchemy import Boolean, DateTime, Enum, ForeignKey, Integer, Numeric, String
from sqlalchemy.orm import Mapped, mapped_column

from rank_engine.core.clock import utcnow
from rank_engine.models.rank import Base


class SubscriptionStatus(str, enum.Enum):
    active = "active"
    canceled = "canceled"
    past_due = "past_due"
    paused = "paused"
    trialing = "trialing"


class User(Base):
    __tablename__ = "users"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    username: Mapped[str] = mapped_column(String(64), index=True)
    email: Mapped[str | None] = mapped_column(String(254), unique=True, nullable=True, index=True)
    minecraft_username: Mapped[str | None] = mapped_column(String(16), nullable=True, index=True)
    donation_rank_id: Mapped[str | None] = mapped_column(
        String(64), ForeignKey("donation_ranks.id", ondelete="SET NULL"), nullable=True
    )
    rank_expires_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=False), nullable=True, index=True)
    rank_paused: Mapped[bool] = mapped_column(Boolean, default=False)
    total_donated: Mapped[Decimal] = mapped_column(Numeric(12, 2), default=Decimal("0"))
    subscription_status: Mapped[SubscriptionStatus | None] = mapped_column(
        Enum(SubscriptionStatus), nullable=True
    )
    stripe_customer_id: Mapped[str | None] = mapped_column(String(128), unique=True, nullable=True)
    stripe_subscription_id: Mapped[str | None] = mapped_column(String(128), unique=True, nullable=True)
    square_customer_id: Mapped[str | None] = mapped_column(String(128), unique=True, nullable=True)
    square_subscription_id: Mapped[str | None] = mapped_column(String(128), unique=True, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), default=utcnow, onupdate=utcnow)
