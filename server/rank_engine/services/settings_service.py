import logging
from typing import Optional

from sqlalchemy import select
from sqlalchemy.orm import Session

from rank_engine.core.cache import TTLCache
from rank_engine.core.settings import get_settings
from rank_engine.models.site_setting import SiteSetting

logger = logging.getLogger(__name__)

PAYMENT_PROVIDERS = ("stripe", "square", "kofi", "disabled")

# Runtime keys an admin may override, mapped to the Settings attribute used as fallback.
EDITABLE_SETTINGS = {
    "payment_provider": "payment_provider",
    "stripe_secret_key": "stripe_secret_key",
    "stripe_webhook_secret": "stripe_webhook_secret",
    "square_access_token": "square_access_token",
    "square_webhook_signature_key": "square_webhook_signature_key",
    "square_webhook_url": "square_webhook_url",
    "square_environment": "square_environment",
    "kofi_verification_token": "kofi_verification_token",
}


class SettingsService:
    def __init__(self, db: Session, cache: TTLCache):
        self.db = db
        self.cache = cache
        self.settings = get_settings()

    def _load(self, key: str) -> Optional[str]:
        record = self.db.execute(select(SiteSetting).where(SiteSetting.key == key)).scalar_one_or_none()
        return record.value if record else None

    def get_setting(self, key: str) -> str:
        if key not in EDITABLE_SETTINGS:
            raise ValueError(f"Unknown setting '{key}'.")
        value = self.cache.get_or_load(key, lambda: self._load(key))
        if value:
            return value
        return str(getattr(self.settings, EDITABLE_SETTINGS[key]) or "")

    def set_setting(self, key: str, value: str) -> SiteSetting:
        if key not in EDITABLE_SETTINGS:
            raise ValueError(f"Unknown setting '{key}'.")
        value = value.strip()
        if key == "payment_provider" and value not in PAYMENT_PROVIDERS:
            raise ValueError(f"Unsupported payment provider. Use one of: {', '.join(PAYMENT_PROVIDERS)}.")

        record = self.db.get(SiteSetting, key)
        if record is None:
            record = SiteSetting(key=key, value=value)
            self.db.add(record)
        else:
            record.value = value
        self.db.commit()
        self.db.refresh(record)
        self.cache.invalidate(key)
        logger.info("Site setting updated", extra={"setting": key})
        return record

    def get_payment_provider(self) -> str:
        provider = self.get_setting("payment_provider").strip().lower()
        if provider in PAYMENT_PROVIDERS:
            return provider
        fallback = self.settings.payment_provider.strip().lower()
        return fallback if fallback in PAYMENT_PROVIDERS else "stripe"
