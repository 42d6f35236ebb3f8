import json
import logging
from typing import Any, Optional

import stripe

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

STATUS_MAP = {
    "active": SubscriptionStatus.active,
    "trialing": SubscriptionStatus.trialing,
    "past_due": SubscriptionStatus.past_due,
    "unpaid": SubscriptionStatus.past_due,
    "incomplete": SubscriptionStatus.past_due,
    "canceled": SubscriptionStatus.canceled,
    "incomplete_expired": SubscriptionStatus.canceled,
    "paused": SubscriptionStatus.paused,
}


def _object_id(value: Any) -> Optional[str]:
    # Expandable fields arrive either as an id string or as the expanded object.
    if isinstance(value, dict):
        return value.get("id")
    return value or None


def map_subscription_status(subscription: dict) -> Optional[SubscriptionStatus]:
    if subscription.get("cancel_at_period_end"):
        return SubscriptionStatus.canceled
    return STATUS_MAP.get(subscription.get("status") or "")


class StripeProvider(PaymentProvider):
    name = "stripe"

    def __init__(
        self,
        webhook_secret: str,
        secret_key: str = "",
        timeout: float = 5.0,
        tolerance: int = 300,
        http_client: Optional[stripe.HTTPClient] = None,
    ):
        self.webhook_secret = webhook_secret
        self.secret_key = secret_key
        self.timeout = timeout
        self.tolerance = tolerance
        self.http_client = http_client

    def verify_signature(self, raw_body: bytes, signature_header: str, request_url: str) -> bool:
        if not self.webhook_secret or not signature_header:
            return False
        try:
            stripe.WebhookSignature.verify_header(
                raw_body.decode("utf-8"), signature_header, self.webhook_secret, self.tolerance
            )
        except (stripe.SignatureVerificationError, UnicodeDecodeError):
            return False
        return True

    def parse_event(self, raw_body: bytes) -> ProviderEvent:
        try:
            event = json.loads(raw_body)
        except ValueError as exc:
            raise MalformedPayload("Invalid Stripe payload.") from exc
        if not isinstance(event, dict):
            raise MalformedPayload("Invalid Stripe payload.")

        event_type = event.get("type") or ""
        obj = (event.get("data") or {}).get("object") or {}

        if event_type == "checkout.session.completed":
            return self._checkout_completed(obj)
        if event_type == "payment_intent.succeeded":
            return self._payment_intent_succeeded(obj)
        if event_type in ("invoice.payment_succeeded", "invoice.paid"):
            return self._invoice_paid(obj)
        if event_type == "invoice.payment_failed":
            return SubscriptionEvent(
                provider=self.name,
                subscription_id=self._invoice_subscription_id(obj),
                status=SubscriptionStatus.past_due,
                user_id=parse_int(self._invoice_subscription_metadata(obj).get("userId")),
                customer_id=_object_id(obj.get("customer")),
            )
        if event_type in ("customer.subscription.created", "customer.subscription.updated"):
            return self._subscription_changed(obj)
        if event_type == "customer.subscription.deleted":
            return self._subscription_changed(obj, deleted=True)
        return IgnoredEvent(provider=self.name, event_type=event_type)

    def _checkout_completed(self, session: dict) -> ProviderEvent:
        metadata = session.get("metadata") or {}
        user_id = parse_int(session.get("client_reference_id")) or parse_int(metadata.get("userId"))

        if session.get("mode") == "subscription":
            # The first invoice carries the money; the session only links the subscription.
            return SubscriptionEvent(
                provider=self.name,
                subscription_id=_object_id(session.get("subscription")),
                status=SubscriptionStatus.active,
                user_id=user_id,
                customer_id=_object_id(session.get("customer")),
            )
        if session.get("mode") != "payment" or session.get("payment_status") != "paid":
            return IgnoredEvent(provider=self.name, event_type="checkout.session.completed", reason="checkout not paid")

        payment_intent = _object_id(session.get("payment_intent"))
        payment_id = f"stripe_{payment_intent}" if payment_intent else f"stripe_checkout_{session.get('id')}"
        rank_id = metadata.get("rankId")
        hints = [metadata["guestMinecraftUsername"]] if metadata.get("guestMinecraftUsername") else []
        return PaymentEvent(
            provider=self.name,
            payment_id=payment_id,
            amount=minor_to_major(session.get("amount_total") or 0),
            currency=(session.get("currency") or "usd").upper(),
            payment_type=PaymentType.one_time,
            user_id=user_id,
            email=(session.get("customer_details") or {}).get("email") or session.get("customer_email"),
            username_hints=hints,
            rank_id=rank_id if rank_id and rank_id != "one-time" else None,
            days=parse_int(metadata.get("days")) or 0,
            match_rank_by_amount=False,
            customer_id=_object_id(session.get("customer")),
        )

    def _payment_intent_succeeded(self, intent: dict) -> ProviderEvent:
        metadata = intent.get("metadata") or {}
        user_id = parse_int(metadata.get("userId"))
        if user_id is None:
            return IgnoredEvent(
                provider=self.name, event_type="payment_intent.succeeded", reason="no userId metadata"
            )
        rank_id = metadata.get("rankId")
        return PaymentEvent(
            provider=self.name,
            payment_id=f"stripe_{intent.get('id')}",
            amount=minor_to_major(intent.get("amount_received") or intent.get("amount") or 0),
            currency=(intent.get("currency") or "usd").upper(),
            payment_type=PaymentType.one_time,
            user_id=user_id,
            email=intent.get("receipt_email"),
            rank_id=rank_id if rank_id and rank_id != "one-time" else None,
            days=parse_int(metadata.get("days")) or 0,
            match_rank_by_amount=False,
            customer_id=_object_id(intent.get("customer")),
        )

    def _invoice_subscription_id(self, invoice: dict) -> Optional[str]:
        subscription_id = _object_id(invoice.get("subscription"))
        if subscription_id:
            return subscription_id
        details = ((invoice.get("parent") or {}).get("subscription_details")) or {}
        return _object_id(details.get("subscription"))

    def _invoice_subscription_metadata(self, invoice: dict) -> dict:
        details = invoice.get("subscription_details") or ((invoice.get("parent") or {}).get("subscription_details")) or {}
        return details.get("metadata") or {}

    def _invoice_price_id(self, invoice: dict) -> Optional[str]:
        lines = (invoice.get("lines") or {}).get("data") or []
        if not lines:
            return None
        line = lines[0]
        price = _object_id(line.get("price"))
        if price:
            return price
        return ((line.get("pricing") or {}).get("price_details") or {}).get("price")

    def _invoice_paid(self, invoice: dict) -> ProviderEvent:
        subscription_id = self._invoice_subscription_id(invoice)
        if not subscription_id:
            return IgnoredEvent(provider=self.name, event_type="invoice.paid", reason="invoice without subscription")

        metadata = self._invoice_subscription_metadata(invoice)
        if not metadata.get("userId"):
            metadata = self.retrieve_subscription(subscription_id).get("metadata") or {}

        payment_intent = _object_id(invoice.get("payment_intent"))
        payment_id = f"stripe_{payment_intent}" if payment_intent else f"stripe_{invoice.get('id')}"
        is_first = invoice.get("billing_reason") == "subscription_create"
        return PaymentEvent(
            provider=self.name,
            payment_id=payment_id,
            amount=minor_to_major(invoice.get("amount_paid") or 0),
            currency=(invoice.get("currency") or "usd").upper(),
            payment_type=PaymentType.subscription if is_first else PaymentType.subscription_renewal,
            user_id=parse_int(metadata.get("userId")),
            email=invoice.get("customer_email"),
            rank_id=metadata.get("rankId") or None,
            plan_id=self._invoice_price_id(invoice),
            days=parse_int(metadata.get("days")) or 0,
            match_rank_by_amount=False,
            subscription_id=subscription_id,
            customer_id=_object_id(invoice.get("customer")),
        )

    def _subscription_changed(self, subscription: dict, deleted: bool = False) -> ProviderEvent:
        metadata = subscription.get("metadata") or {}
        return SubscriptionEvent(
            provider=self.name,
            subscription_id=subscription.get("id"),
            status=SubscriptionStatus.canceled if deleted else map_subscription_status(subscription),
            user_id=parse_int(metadata.get("userId")),
            customer_id=_object_id(subscription.get("customer")),
            unlink=deleted,
        )

    def _client(self) -> stripe.StripeClient:
        http_client = self.http_client or stripe.HTTPXClient(timeout=self.timeout, allow_sync_methods=True)
        return stripe.StripeClient(self.secret_key, http_client=http_client, max_network_retries=0)

    def retrieve_subscription(self, subscription_id: str) -> dict:
        """Fetch a subscription through the Stripe SDK.

        A subscription Stripe does not know about yields ``{}``. Connection problems,
        server-side errors and credential errors raise ``ProviderUnavailable`` so the
        webhook is answered with a 500 and redelivered.
        """
        if not self.secret_key:
            raise ProviderUnavailable("Stripe secret key is not configured.")
        try:
            subscription = self._client().v1.subscriptions.retrieve(subscription_id)
        except stripe.InvalidRequestError as exc:
            logger.warning(
                "Stripe subscription not found",
                extra={"subscription_id": subscription_id, "status": exc.http_status},
            )
            return {}
        except stripe.StripeError as exc:
            logger.warning(
                "Stripe subscription lookup failed",
                extra={"subscription_id": subscription_id, "error": type(exc).__name__},
            )
            raise ProviderUnavailable(f"Stripe API error: {exc.user_message or exc}") from exc
        return subscription.to_dict()
