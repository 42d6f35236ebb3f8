from datetime import datetime
from decimal import Decimal

from sqlalchemy import JSON, DateTime, Integer, Numeric, String, Text
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

from rank_engine.core.clock import utcnow


class Base(DeclarativeBase):
    pass


class Rank(Base):
    __tablename__ = "donation_ranks"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    name: Mapped[str] = mapped_column(String(128))
    min_amount: Mapped[Decimal] = mapped_column(Numeric(12, 2))
    duration_days: Mapped[int] = mapped_column(Integer, default=30, nullable=False)
    color: Mapped[str] = mapped_column(String(32), default="#ffffff")
    text_color: Mapped[str] = mapped_column(String(32), default="#000000")
    icon: Mapped[str | None] = mapped_column(String(128), nullable=True)
    badge: Mapped[str | None] = mapped_column(String(128), nullable=True)
    subtitle: Mapped[str | None] = mapped_column(Text, nullable=True)
    perks: Mapped[list[str]] = mapped_column(JSON, default=list)
    stripe_product_id: Mapped[str | None] = mapped_column(String(128), nullable=True)
    stripe_price_monthly: Mapped[str | None] = mapped_column(String(128), nullable=True, index=True)
    square_subscription_plan_id: Mapped[str | None] = mapped_column(String(128), nullable=True)
    square_subscription_plan_variation_id: Mapped[str | None] = mapped_column(
        String(128), nullable=True, index=True
    )
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), default=utcnow, onupdate=utcnow)
