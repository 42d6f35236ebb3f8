from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.orm import Session

from rank_engine.api.deps import get_settings_cache, require_admin_token
from rank_engine.api.ranks import to_rank_response
from rank_engine.core.cache import TTLCache
from rank_engine.core.errors import RankNotFound
from rank_engine.db.session import get_db
from rank_engine.models.donation import Donation
from rank_engine.models.user import User
from rank_engine.schemas.payment import DonationResponse
from rank_engine.schemas.rank import (
    AdminActionResponse,
    PauseRequest,
    ProviderPlansRequest,
    RankResponse,
    RankStatusResponse,
    RankUpsertRequest,
    SettingResponse,
    SettingUpdateRequest,
)
from rank_engine.services.catalog_service import CatalogService
from rank_engine.services.donation_service import DonationService
from rank_engine.services.rank_service import RankService
from rank_engine.services.settings_service import SettingsService

router = APIRouter(prefix="/admin", tags=["admin"], dependencies=[Depends(require_admin_token)])

VISIBLE_SETTINGS = {"payment_provider", "square_environment", "square_webhook_url"}


def _to_donation_response(donation: Donation) -> DonationResponse:
    return DonationResponse(
        id=donation.id,
        user_id=donation.user_id,
        amount=donation.amount,
        currency=donation.currency,
        method=donation.method,
        payment_id=donation.payment_id,
        subscription_id=donation.subscription_id,
        rank_id=donation.rank_id,
        days=donation.days,
        payment_type=donation.payment_type.value,
        status=donation.status.value,
        receipt_number=donation.receipt_number,
        created_at=donation.created_at,
    )


def _rank_status(db: Session, user_id: int) -> RankStatusResponse:
    user = db.get(User, user_id)
    status = RankService(db).get_rank_status(user_id)
    if user is None or status is None:
        raise HTTPException(status_code=404, detail="User not found.")
    return RankStatusResponse(
        user_id=user.id,
        has_rank=status.has_rank,
        rank_id=status.rank_id,
        expires_at=status.expires_at,
        days_remaining=status.days_remaining,
        paused=status.paused,
        is_active=status.is_active,
        total_donated=user.total_donated,
        subscription_status=user.subscription_status.value if user.subscription_status else None,
    )


@router.put("/settings/{key}", response_model=SettingResponse)
def update_setting(
    key: str,
    payload: SettingUpdateRequest,
    db: Session = Depends(get_db),
    cache: TTLCache = Depends(get_settings_cache),
):
    try:
        record = SettingsService(db, cache).set_setting(key, payload.value)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return SettingResponse(
        key=record.key,
        value=record.value if record.key in VISIBLE_SETTINGS else "********",
        updated_at=record.updated_at,
    )


@router.put("/ranks/{rank_id}", response_model=RankResponse)
def upsert_rank(rank_id: str, payload: RankUpsertRequest, db: Session = Depends(get_db)):
    try:
        rank = CatalogService(db).upsert_rank(rank_id, **payload.model_dump(exclude_none=True))
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return to_rank_response(rank)


@router.patch("/ranks/{rank_id}/provider-plans", response_model=RankResponse)
def set_provider_plans(rank_id: str, payload: ProviderPlansRequest, db: Session = Depends(get_db)):
    try:
        rank = CatalogService(db).set_provider_plan_ids(rank_id, **payload.model_dump(exclude_none=True))
    except RankNotFound as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    return to_rank_response(rank)


@router.get("/donations", response_model=list[DonationResponse])
def list_donations(
    limit: int = Query(default=100, ge=1, le=1000),
    user_id: Optional[int] = Query(default=None),
    method: Optional[str] = Query(default=None),
    db: Session = Depends(get_db),
):
    records = DonationService(db).list_donations(limit=limit, user_id=user_id, method=method)
    return [_to_donation_response(item) for item in records]


@router.get("/users/{user_id}/rank", response_model=RankStatusResponse)
def user_rank(user_id: int, db: Session = Depends(get_db)):
    return _rank_status(db, user_id)


@router.post("/users/{user_id}/rank/remove", response_model=AdminActionResponse)
def remove_user_rank(user_id: int, db: Session = Depends(get_db)):
    user = RankService(db).remove_rank(user_id)
    if not user:
        raise HTTPException(status_code=404, detail="User not found.")
    return AdminActionResponse(success=True, message="Rank removed.")


@router.post("/users/{user_id}/rank/pause", response_model=RankStatusResponse)
def pause_user_rank(user_id: int, payload: PauseRequest, db: Session = Depends(get_db)):
    try:
        user = RankService(db).set_rank_paused(user_id, payload.paused)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    if not user:
        raise HTTPException(status_code=404, detail="User not found.")
    return _rank_status(db, user_id)
