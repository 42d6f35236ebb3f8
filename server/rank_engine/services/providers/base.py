from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation
from typing import Any, Optional, Union

from rank_engine.core.errors import MalformedPayload
from rank_engine.models.donation import PaymentType
from rank_engine.models.user import SubscriptionStatus

CENTS = Decimal("0.01")


@dataclass
class PaymentEvent:
    """A completed payment, normalized across providers."""

    provider: str
    payment_id: str
    amount: Decimal
    currency: str
    payment_type: PaymentType = PaymentType.one_time
    user_id: Optional[int] = None
    email: Optional[str] = None
    username_hints: list[str] = field(default_factory=list)
    rank_id: Optional[str] = None
    tier_name: Optional[str] = None
    plan_id: Optional[str] = None
    days: int = 0
    match_rank_by_amount: bool = True
    subscription_id: Optional[str] = None
    customer_id: Optional[str] = None
    message: Optional[str] = None
    is_public: bool = True


@dataclass
class SubscriptionEvent:
    """A subscription was created or changed status; never moves the rank expiry."""

    provider: str
    subscription_id: Optional[str]
    status: Optional[SubscriptionStatus]
    user_id: Optional[int] = None
    customer_id: Optional[str] = None
    unlink: bool = False


@dataclass
class IgnoredEvent:
    provider: str
    event_type: str
    reason: str = "unhandled event type"


ProviderEvent = Union[PaymentEvent, SubscriptionEvent, IgnoredEvent]


class PaymentProvider(ABC):
    name: str = ""

    @abstractmethod
    def verify_signature(self, raw_body: bytes, signature_header: str, request_url: str) -> bool:
        raise NotImplementedError

    @abstractmethod
    def parse_event(self, raw_body: bytes) -> ProviderEvent:
        raise NotImplementedError


def minor_to_major(value: Any) -> Decimal:
    try:
        return (Decimal(int(value)) / 100).quantize(CENTS)
    except (TypeError, ValueError, InvalidOperation) as exc:
        raise MalformedPayload(f"Invalid amount: {value!r}") from exc


def parse_decimal(value: Any) -> Decimal:
    try:
        amount = Decimal(str(value).strip())
    except (InvalidOperation, AttributeError) as exc:
        raise MalformedPayload(f"Invalid amount: {value!r}") from exc
    if not amount.is_finite():
        raise MalformedPayload(f"Invalid amount: {value!r}")
    return amount.quantize(CENTS)


def parse_int(value: Any) -> Optional[int]:
    if value is None or value == "":
        return None
    try:
        return int(str(value).strip())
    except ValueError:
        return None
