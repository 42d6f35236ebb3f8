from datetime import datetime
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, Field


class RankResponse(BaseModel):
    id: str
    name: str
    min_amount: Decimal
    duration_days: int
    color: str
    text_color: str
    icon: Optional[str]
    badge: Optional[str]
    subtitle: Optional[str]
    perks: list[str]
    stripe_price_monthly: Optional[str] = None
    square_subscription_plan_variation_id: Optional[str] = None


class DurationPackage(BaseModel):
    days: int
    label: str
    price: Decimal
    discount: Optional[int] = None


class RankPackagesResponse(BaseModel):
    rank: RankResponse
    packages: list[DurationPackage]


class RankUpsertRequest(BaseModel):
    name: Optional[str] = Field(default=None, min_length=1, max_length=128)
    min_amount: Optional[Decimal] = Field(default=None, ge=0)
    duration_days: Optional[int] = Field(default=None, gt=0)
    color: Optional[str] = Field(default=None, max_length=32)
    text_color: Optional[str] = Field(default=None, max_length=32)
    icon: Optional[str] = Field(default=None, max_length=128)
    badge: Optional[str] = Field(default=None, max_length=128)
    subtitle: Optional[str] = None
    perks: Optional[list[str]] = None


class ProviderPlansRequest(BaseModel):
    stripe_product_id: Optional[str] = None
    stripe_price_monthly: Optional[str] = None
    square_subscription_plan_id: Optional[str] = None
    square_subscription_plan_variation_id: Optional[str] = None


class RankStatusResponse(BaseModel):
    user_id: int
    has_rank: bool
    rank_id: Optional[str]
    expires_at: Optional[datetime]
    days_remaining: int
    paused: bool
    is_active: bool
    total_donated: Decimal
    subscription_status: Optional[str]


class PauseRequest(BaseModel):
    paused: bool = True


class SettingUpdateRequest(BaseModel):
    value: str = Field(max_length=512)


class SettingResponse(BaseModel):
    key: str
    value: str
    updated_at: Optional[datetime]


class AdminActionResponse(BaseModel):
    success: bool
    message: str
