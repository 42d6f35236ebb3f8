import math
from decimal import ROUND_HALF_UP, Decimal
from typing import Optional

from sqlalchemy import func, or_, select
from sqlalchemy.orm import Session

from rank_engine.core.errors import RankNotFound
from rank_engine.core.settings import get_settings
from rank_engine.models.rank import Rank

# (days, label, discount percent)
DURATION_PACKAGES = (
    (30, "1 Month", 0),
    (90, "3 Months", 5),
    (180, "6 Months", 10),
    (365, "12 Months", 15),
)

RANK_FIELDS = (
    "name",
    "min_amount",
    "duration_days",
    "color",
    "text_color",
    "icon",
    "badge",
    "subtitle",
    "perks",
)

PROVIDER_PLAN_FIELDS = (
    "stripe_product_id",
    "stripe_price_monthly",
    "square_subscription_plan_id",
    "square_subscription_plan_variation_id",
)

CENTS = Decimal("0.01")


class CatalogService:
    """Read side of the donation rank catalog plus the admin edit paths."""

    def __init__(self, db: Session):
        self.db = db
        self.settings = get_settings()

    def list_ranks(self) -> list[Rank]:
        stmt = select(Rank).order_by(Rank.min_amount.asc(), Rank.id.asc())
        return list(self.db.execute(stmt).scalars().all())

    def get_rank(self, rank_id: str) -> Optional[Rank]:
        if not rank_id:
            return None
        rank = self.db.get(Rank, rank_id)
        if rank is not None:
            return rank
        stmt = select(Rank).where(func.lower(Rank.id) == rank_id.strip().lower())
        return self.db.execute(stmt).scalars().first()

    def find_rank_for_amount(self, amount: Decimal) -> Optional[Rank]:
        """Highest rank whose minimum amount is covered by ``amount``."""
        stmt = (
            select(Rank)
            .where(Rank.min_amount <= amount)
            .order_by(Rank.min_amount.desc())
            .limit(1)
        )
        return self.db.execute(stmt).scalars().first()

    def compute_days(self, amount: Decimal, rank: Rank) -> int:
        min_amount = Decimal(rank.min_amount or 0)
        base_days = rank.duration_days or self.settings.rank_default_days
        if min_amount <= 0:
            return base_days
        days = math.floor(Decimal(amount) / min_amount * base_days)
        return max(self.settings.rank_min_days, min(days, self.settings.rank_max_days))

    def find_rank_by_provider_plan(self, provider: str, plan_id: Optional[str]) -> Optional[Rank]:
        if not plan_id:
            return None
        if provider == "stripe":
            condition = or_(Rank.stripe_price_monthly == plan_id, Rank.stripe_product_id == plan_id)
        elif provider == "square":
            condition = or_(
                Rank.square_subscription_plan_variation_id == plan_id,
                Rank.square_subscription_plan_id == plan_id,
            )
        else:
            return None
        return self.db.execute(select(Rank).where(condition)).scalars().first()

    def set_provider_plan_ids(self, rank_id: str, **plan_ids: Optional[str]) -> Rank:
        rank = self.get_rank(rank_id)
        if rank is None:
            raise RankNotFound(rank_id)
        for field, value in plan_ids.items():
            if field not in PROVIDER_PLAN_FIELDS:
                raise ValueError(f"Unknown provider plan field '{field}'.")
            if value is not None:
                setattr(rank, field, value)
        self.db.commit()
        self.db.refresh(rank)
        return rank

    def upsert_rank(self, rank_id: str, **fields) -> Rank:
        rank_id = rank_id.strip().lower()
        if not rank_id:
            raise ValueError("Rank id is required.")
        unknown = set(fields) - set(RANK_FIELDS)
        if unknown:
            raise ValueError(f"Unknown rank fields: {', '.join(sorted(unknown))}.")
        if "min_amount" in fields and Decimal(fields["min_amount"]) < 0:
            raise ValueError("min_amount must be >= 0.")
        if "duration_days" in fields and fields["duration_days"] <= 0:
            raise ValueError("duration_days must be > 0.")

        rank = self.db.get(Rank, rank_id)
        if rank is None:
            if "name" not in fields or "min_amount" not in fields:
                raise ValueError("New ranks need a name and a min_amount.")
            rank = Rank(id=rank_id, perks=[])
            self.db.add(rank)
        for field, value in fields.items():
            setattr(rank, field, value)
        self.db.commit()
        self.db.refresh(rank)
        return rank

    def price_per_day(self, rank: Rank) -> Decimal:
        duration = rank.duration_days or self.settings.rank_default_days
        return Decimal(rank.min_amount) / duration

    def price_for_days(self, rank: Rank, days: int, discount_percent: int = 0) -> Decimal:
        price = self.price_per_day(rank) * days * (Decimal(100 - discount_percent) / 100)
        return price.quantize(CENTS, rounding=ROUND_HALF_UP)

    def duration_packages(self, rank: Rank) -> list[dict]:
        return [
            {
                "days": days,
                "label": label,
                "price": self.price_for_days(rank, days, discount),
                "discount": discount or None,
            }
            for days, label, discount in DURATION_PACKAGES
        ]
