import hmac
from typing import Optional

from rank_engine.core.settings import Settings


def _matches(provided: Optional[str], expected: str) -> bool:
    if not provided or not expected:
        return False
    return hmac.compare_digest(provided.encode("utf-8"), expected.encode("utf-8"))


def is_admin_token_valid(settings: Settings, x_admin_token: str) -> bool:
    return _matches(x_admin_token, settings.admin_token)


def is_cron_authorized(
    settings: Settings,
    authorization: str = "",
    x_cron_secret: str = "",
    secret_param: str = "",
    platform_header: str = "",
) -> bool:
    """Accept the shared secret from any of its three carriers.

    The platform cron header is only an alternative when the operator opted in and
    no ``CRON_SECRET`` is configured; with a secret set, the header alone is rejected.
    """
    if not settings.cron_secret:
        return bool(settings.trust_platform_cron_header and platform_header)
    bearer = ""
    if authorization.lower().startswith("bearer "):
        bearer = authorization[7:].strip()
    return any(_matches(candidate, settings.cron_secret) for candidate in (bearer, x_cron_secret, secret_param))
