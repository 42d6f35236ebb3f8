from datetime import datetime
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel


class WebhookAck(BaseModel):
    received: bool = True
    processed: bool = False
    duplicate: bool = False


class WebhookProbe(BaseModel):
    status: str = "ok"
    provider: str


class SweepResponse(BaseModel):
    success: bool
    removed: int
    users: list[str]
    failed: int = 0
    timestamp: datetime


class DonationResponse(BaseModel):
    id: int
    user_id: Optional[int]
    amount: Decimal
    currency: str
    method: str
    payment_id: str
    subscription_id: Optional[str]
    rank_id: Optional[str]
    days: Optional[int]
    payment_type: str
    status: str
    receipt_number: Optional[str]
    created_at: datetime
