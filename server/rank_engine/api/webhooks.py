import logging

from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.concurrency import run_in_threadpool
from sqlalchemy.orm import Session

from rank_engine.api.deps import get_settings_cache
from rank_engine.core.cache import TTLCache
from rank_engine.core.errors import (
    MalformedPayload,
    PersistenceFailure,
    ProviderNotActive,
    ProviderUnavailable,
    SignatureInvalid,
    UserNotFound,
)
from rank_engine.db.session import get_db
from rank_engine.schemas.payment import WebhookAck, WebhookProbe
from rank_engine.services.providers.factory import build_provider
from rank_engine.services.reconciliation_service import ReconciliationService
from rank_engine.services.settings_service import SettingsService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/webhooks", tags=["webhooks"])

SIGNATURE_HEADERS = {
    "stripe": "stripe-signature",
    "square": "x-square-hmacsha256-signature",
    # Ko-fi carries its token inside the form body.
    "kofi": "",
}


def process_webhook(
    provider_name: str,
    raw_body: bytes,
    signature_header: str,
    request_url: str,
    db: Session,
    cache: TTLCache,
) -> WebhookAck:
    settings_service = SettingsService(db, cache)
    active = settings_service.get_payment_provider()
    if active != provider_name:
        raise ProviderNotActive(provider_name, active)

    logger.info("Webhook received", extra={"provider": provider_name, "bytes": len(raw_body)})
    provider = build_provider(provider_name, settings_service)
    if not provider.verify_signature(raw_body, signature_header, request_url):
        raise SignatureInvalid(f"Invalid {provider_name} webhook signature.")

    event = provider.parse_event(raw_body)
    result = ReconciliationService(db).apply(event)
    return WebhookAck(received=True, processed=result.processed, duplicate=result.duplicate)


async def _receive(provider_name: str, request: Request, db: Session, cache: TTLCache) -> WebhookAck:
    raw_body = await request.body()
    header_name = SIGNATURE_HEADERS[provider_name]
    signature_header = request.headers.get(header_name, "") if header_name else ""
    try:
        return await run_in_threadpool(
            process_webhook, provider_name, raw_body, signature_header, str(request.url), db, cache
        )
    except ProviderNotActive as exc:
        logger.warning("Webhook for inactive provider", extra={"provider": provider_name, "active": exc.active})
        raise HTTPException(status_code=503, detail=str(exc)) from exc
    except SignatureInvalid as exc:
        logger.warning("Webhook signature rejected", extra={"provider": provider_name})
        raise HTTPException(status_code=401, detail="Invalid signature") from exc
    except MalformedPayload as exc:
        logger.warning("Malformed webhook payload", extra={"provider": provider_name, "error": str(exc)})
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    except (ProviderUnavailable, PersistenceFailure, UserNotFound) as exc:
        logger.error("Webhook processing failed", extra={"provider": provider_name, "error": str(exc)})
        raise HTTPException(status_code=500, detail="Webhook processing failed") from exc


@router.post("/stripe", response_model=WebhookAck)
async def stripe_webhook(
    request: Request,
    db: Session = Depends(get_db),
    cache: TTLCache = Depends(get_settings_cache),
):
    return await _receive("stripe", request, db, cache)


@router.post("/square", response_model=WebhookAck)
async def square_webhook(
    request: Request,
    db: Session = Depends(get_db),
    cache: TTLCache = Depends(get_settings_cache),
):
    return await _receive("square", request, db, cache)


@router.post("/kofi", response_model=WebhookAck)
async def kofi_webhook(
    request: Request,
    db: Session = Depends(get_db),
    cache: TTLCache = Depends(get_settings_cache),
):
    return await _receive("kofi", request, db, cache)


@router.get("/{provider_name}", response_model=WebhookProbe)
def webhook_probe(provider_name: str):
    if provider_name not in SIGNATURE_HEADERS:
        raise HTTPException(status_code=404, detail="Unknown provider.")
    return WebhookProbe(provider=provider_name)
