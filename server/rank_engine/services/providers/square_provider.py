import base64
import hashlib
import hmac
import json
import logging
from typing import Optional

import httpx

from rank_engine.core.errors import MalformedPayload, ProviderUnavailable
from rank_engine.models.donation import PaymentType
from rank_engine.models.user import SubscriptionStatus
from rank_engine.services.providers.base import (
    IgnoredEvent,
    PaymentEvent,
    PaymentProvider,
    ProviderEvent,
    SubscriptionEvent,
    minor_to_major,
    parse_int,
)

logger = logging.getLogger(__name__)

SQUARE_API_VERSION = "2024-06-04"
SQUARE_BASE_URLS = {
    "production": "https://connect.squareup.com",
    "sandbox": "https://connect.squareupsandbox.com",
}

STATUS_MAP = {
    "ACTIVE": SubscriptionStatus.active,
    "PENDING": SubscriptionStatus.trialing,
    "PAUSED": SubscriptionStatus.paused,
    "CANCELED": SubscriptionStatus.canceled,
    "DEACTIVATED": SubscriptionStatus.canceled,
}


class SquareProvider(PaymentProvider):
    name = "square"

    def __init__(
        self,
        signature_key: str,
        access_token: str = "",
        environment: str = "sandbox",
        notification_url: str = "",
        timeout: float = 5.0,
        http_client: Optional[httpx.Client] = None,
    ):
        self.signature_key = signature_key
        self.access_token = access_token
        self.base_url = SQUARE_BASE_URLS.get(environment, SQUARE_BASE_URLS["sandbox"])
        self.notification_url = notification_url
        self.timeout = timeout
        self.http_client = http_client

    def sign(self, raw_body: bytes, url: str) -> str:
        digest = hmac.new(self.signature_key.encode("utf-8"), url.encode("utf-8") + raw_body, hashlib.sha256).digest()
        return base64.b64encode(digest).decode("ascii")

    def verify_signature(self, raw_body: bytes, signature_header: str, request_url: str) -> bool:
        if not self.signature_key or not signature_header:
            return False
        # Square signs the URL registered for the subscription, which differs from
        # request.url behind a proxy.
        url = self.notification_url or request_url
        return hmac.compare_digest(self.sign(raw_body, url), signature_header.strip())

    def parse_event(self, raw_body: bytes) -> ProviderEvent:
        try:
            event = json.loads(raw_body)
        except ValueError as exc:
            raise MalformedPayload("Invalid Square payload.") from exc
        if not isinstance(event, dict):
            raise MalformedPayload("Invalid Square payload.")

        event_type = event.get("type") or ""
        obj = (event.get("data") or {}).get("object") or {}

        if event_type in ("payment.completed", "payment.updated"):
            return self._payment(obj.get("payment") or {}, event_type)
        if event_type == "invoice.payment_made":
            return self._invoice_payment(obj.get("invoice") or {})
        if event_type in ("subscription.created", "subscription.updated"):
            subscription = obj.get("subscription") or {}
            return SubscriptionEvent(
                provider=self.name,
                subscription_id=subscription.get("id"),
                status=STATUS_MAP.get(subscription.get("status") or ""),
                customer_id=subscription.get("customer_id"),
            )
        return IgnoredEvent(provider=self.name, event_type=event_type)

    def _payment(self, payment: dict, event_type: str) -> ProviderEvent:
        if not payment.get("id"):
            raise MalformedPayload("Square payment event without a payment.")
        if payment.get("status") != "COMPLETED":
            return IgnoredEvent(provider=self.name, event_type=event_type, reason="payment not completed")

        money = payment.get("amount_money") or {}
        order_id = payment.get("order_id")
        metadata = self.order_metadata(order_id) if order_id else {}
        return PaymentEvent(
            provider=self.name,
            payment_id=self._payment_key(order_id, payment["id"]),
            amount=minor_to_major(money.get("amount") or 0),
            currency=(money.get("currency") or "USD").upper(),
            payment_type=PaymentType.one_time,
            user_id=parse_int(metadata.get("userId")),
            email=payment.get("buyer_email_address"),
            rank_id=metadata.get("rankId") or None,
            days=parse_int(metadata.get("days")) or 0,
            match_rank_by_amount=True,
            customer_id=payment.get("customer_id"),
        )

    def _invoice_payment(self, invoice: dict) -> ProviderEvent:
        subscription_id = invoice.get("subscription_id")
        if not subscription_id:
            return IgnoredEvent(provider=self.name, event_type="invoice.payment_made", reason="invoice without subscription")

        requests = invoice.get("payment_requests") or [{}]
        money = requests[0].get("total_completed_amount_money") or requests[0].get("computed_amount_money") or {}
        recipient = invoice.get("primary_recipient") or {}
        return PaymentEvent(
            provider=self.name,
            payment_id=self._payment_key(invoice.get("order_id"), f"invoice_{invoice.get('id')}"),
            amount=minor_to_major(money.get("amount") or 0),
            currency=(money.get("currency") or "USD").upper(),
            payment_type=PaymentType.subscription_renewal,
            email=recipient.get("email_address"),
            match_rank_by_amount=True,
            subscription_id=subscription_id,
            customer_id=recipient.get("customer_id"),
        )

    @staticmethod
    def _payment_key(order_id: Optional[str], fallback: str) -> str:
        # Subscription invoices also emit payment.completed for the same order;
        # keying on the order collapses both deliveries onto one donation.
        return f"square_order_{order_id}" if order_id else f"square_{fallback}"

    def order_metadata(self, order_id: str) -> dict:
        if not self.access_token:
            logger.warning("Square access token missing, skipping order lookup", extra={"order_id": order_id})
            return {}
        client = self.http_client or httpx.Client(timeout=self.timeout)
        try:
            response = client.get(
                f"{self.base_url}/v2/orders/{order_id}",
                headers={
                    "Authorization": f"Bearer {self.access_token}",
                    "Square-Version": SQUARE_API_VERSION,
                },
                timeout=self.timeout,
            )
            if 400 <= response.status_code < 500:
                logger.warning(
                    "Square order lookup rejected",
                    extra={"order_id": order_id, "status_code": response.status_code},
                )
                return {}
            response.raise_for_status()
            payload = response.json()
        except (httpx.HTTPError, ValueError) as exc:
            logger.warning("Square order lookup failed", extra={"order_id": order_id})
            raise ProviderUnavailable(f"Square API error: {exc}") from exc
        finally:
            if self.http_client is None:
                client.close()
        order = payload.get("order") if isinstance(payload, dict) else None
        return (order or {}).get("metadata") or {}
