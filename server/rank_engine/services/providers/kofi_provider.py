import hmac
import json
import re
from typing import Optional
from urllib.parse import parse_qs

from rank_engine.core.errors import MalformedPayload
from rank_engine.models.donation import PaymentType
from rank_engine.services.providers.base import (
    IgnoredEvent,
    PaymentEvent,
    PaymentProvider,
    ProviderEvent,
    parse_decimal,
)

MINECRAFT_USERNAME = re.compile(r"^[A-Za-z0-9_]{3,16}$")
PAYMENT_TYPES = ("Donation", "Subscription")


def username_hint(text: Optional[str]) -> Optional[str]:
    """First word of ``text`` when it looks like a Minecraft username."""
    if not text or not text.strip():
        return None
    candidate = text.strip().split()[0]
    return candidate if MINECRAFT_USERNAME.match(candidate) else None


class KofiProvider(PaymentProvider):
    """Ko-fi posts form-encoded ``data=<json>``; the shared token sits inside the JSON."""

    name = "kofi"

    def __init__(self, verification_token: str):
        self.verification_token = verification_token

    def _payload(self, raw_body: bytes) -> dict:
        try:
            form = parse_qs(raw_body.decode("utf-8"))
        except UnicodeDecodeError as exc:
            raise MalformedPayload("Invalid Ko-fi request body.") from exc
        values = form.get("data")
        if not values:
            raise MalformedPayload("Invalid request: missing data field.")
        try:
            payload = json.loads(values[0])
        except ValueError as exc:
            raise MalformedPayload("Invalid JSON in data field.") from exc
        if not isinstance(payload, dict):
            raise MalformedPayload("Invalid JSON in data field.")
        return payload

    def verify_signature(self, raw_body: bytes, signature_header: str, request_url: str) -> bool:
        if not self.verification_token:
            return False
        try:
            payload = self._payload(raw_body)
        except MalformedPayload:
            return False
        token = str(payload.get("verification_token") or "")
        return hmac.compare_digest(token.encode("utf-8"), self.verification_token.encode("utf-8"))

    def parse_event(self, raw_body: bytes) -> ProviderEvent:
        payload = self._payload(raw_body)
        kind = payload.get("type") or ""
        if kind not in PAYMENT_TYPES:
            return IgnoredEvent(provider=self.name, event_type=kind)

        transaction_id = payload.get("kofi_transaction_id")
        if not transaction_id:
            raise MalformedPayload("Ko-fi payload without kofi_transaction_id.")
        amount = parse_decimal(payload.get("amount"))
        if amount <= 0:
            raise MalformedPayload(f"Invalid amount: {payload.get('amount')!r}")

        if payload.get("is_subscription_payment"):
            if payload.get("is_first_subscription_payment"):
                payment_type = PaymentType.subscription
            else:
                payment_type = PaymentType.subscription_renewal
        else:
            payment_type = PaymentType.one_time

        from_name = payload.get("from_name") or "Anonymous"
        hints = [hint for hint in (username_hint(payload.get("message")), username_hint(from_name)) if hint]
        return PaymentEvent(
            provider=self.name,
            payment_id=f"kofi_{transaction_id}",
            amount=amount,
            currency=(payload.get("currency") or "USD").upper(),
            payment_type=payment_type,
            email=payload.get("email") or None,
            username_hints=list(dict.fromkeys(hints)),
            tier_name=payload.get("tier_name") or None,
            match_rank_by_amount=True,
            message=payload.get("message") or f"Ko-fi {kind} from {from_name}",
            is_public=bool(payload.get("is_public", True)),
        )
