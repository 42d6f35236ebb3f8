from fastapi import Header, HTTPException, Request

from rank_engine.core.cache import TTLCache
from rank_engine.core.settings import get_settings
from rank_engine.services.security import is_admin_token_valid


def get_settings_cache(request: Request) -> TTLCache:
    return request.app.state.settings_cache


def require_admin_token(x_admin_token: str = Header(default="")) -> None:
    if not is_admin_token_valid(get_settings(), x_admin_token):
        raise HTTPException(status_code=401, detail="Invalid admin token")
