from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from rank_engine.db.session import get_db
from rank_engine.models.rank import Rank
from rank_engine.schemas.rank import DurationPackage, RankPackagesResponse, RankResponse
from rank_engine.services.catalog_service import CatalogService

router = APIRouter(prefix="/ranks", tags=["ranks"])


def to_rank_response(rank: Rank) -> RankResponse:
    return RankResponse(
        id=rank.id,
        name=rank.name,
        min_amount=rank.min_amount,
        duration_days=rank.duration_days,
        color=rank.color,
        text_color=rank.text_color,
        icon=rank.icon,
        badge=rank.badge,
        subtitle=rank.subtitle,
        perks=list(rank.perks or []),
        stripe_price_monthly=rank.stripe_price_monthly,
        square_subscription_plan_variation_id=rank.square_subscription_plan_variation_id,
    )


@router.get("", response_model=list[RankResponse])
def list_ranks(db: Session = Depends(get_db)):
    return [to_rank_response(rank) for rank in CatalogService(db).list_ranks()]


@router.get("/{rank_id}/packages", response_model=RankPackagesResponse)
def rank_packages(rank_id: str, db: Session = Depends(get_db)):
    service = CatalogService(db)
    rank = service.get_rank(rank_id)
    if not rank:
        raise HTTPException(status_code=404, detail="Rank not found.")
    return RankPackagesResponse(
        rank=to_rank_response(rank),
        packages=[DurationPackage(**package) for package in service.duration_packages(rank)],
    )
