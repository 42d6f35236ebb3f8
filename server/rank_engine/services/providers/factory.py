from rank_engine.services.providers.base import PaymentProvider
from rank_engine.services.providers.kofi_provider import KofiProvider
from rank_engine.services.providers.square_provider import SquareProvider
from rank_engine.services.providers.stripe_provider import StripeProvider
from rank_engine.services.settings_service import SettingsService


def build_provider(name: str, settings_service: SettingsService) -> PaymentProvider:
    """Adapter for ``name`` configured from the current runtime settings."""
    settings = settings_service.settings
    if name == "stripe":
        return StripeProvider(
            webhook_secret=settings_service.get_setting("stripe_webhook_secret"),
            secret_key=settings_service.get_setting("stripe_secret_key"),
            timeout=settings.provider_timeout_seconds,
            tolerance=settings.stripe_webhook_tolerance_seconds,
        )
    if name == "square":
        return SquareProvider(
            signature_key=settings_service.get_setting("square_webhook_signature_key"),
            access_token=settings_service.get_setting("square_access_token"),
            environment=settings_service.get_setting("square_environment"),
            notification_url=settings_service.get_setting("square_webhook_url"),
            timeout=settings.provider_timeout_seconds,
        )
    if name == "kofi":
        return KofiProvider(verification_token=settings_service.get_setting("kofi_verification_token"))
    raise ValueError(f"Unknown payment provider '{name}'.")
