import enum
from datetime import datetime
from decimal import Decimal

from sqlalchemy import Boolean, DateTime, Enum, ForeignKey, Integer, Numeric, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from rank_engine.core.clock import utcnow
from rank_engine.models.rank import Base


class PaymentType(str, enum.Enum):
    one_time = "one_time"
    subscription = "subscription"
    subscription_renewal = "subscription_renewal"


class DonationStatus(str, enum.Enum):
    completed = "completed"
    refunded = "refunded"


class Donation(Base):
    """Append-only ledger row, one per successful payment event."""

    __tablename__ = "donations"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[int | None] = mapped_column(
        Integer, ForeignKey("users.id", ondelete="SET NULL"), nullable=True, index=True
    )
    amount: Mapped[Decimal] = mapped_column(Numeric(12, 2))
    currency: Mapped[str] = mapped_column(String(8), default="USD")
    method: Mapped[str] = mapped_column(String(16), index=True)
    # The unique constraint is the idempotency gate for webhook replays.
    payment_id: Mapped[str] = mapped_column(String(255), unique=True, nullable=False)
    subscription_id: Mapped[str | None] = mapped_column(String(128), nullable=True, index=True)
    rank_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    days: Mapped[int | None] = mapped_column(Integer, nullable=True)
    payment_type: Mapped[PaymentType] = mapped_column(Enum(PaymentType), default=PaymentType.one_time)
    status: Mapped[DonationStatus] = mapped_column(Enum(DonationStatus), default=DonationStatus.completed)
    message: Mapped[str | None] = mapped_column(Text, nullable=True)
    is_public: Mapped[bool] = mapped_column(Boolean, default=True)
    receipt_number: Mapped[str | None] = mapped_column(String(64), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), default=utcnow)
