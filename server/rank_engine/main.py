from fastapi import FastAPI

from rank_engine.api import admin, cron, ranks, webhooks
from rank_engine.core.cache import TTLCache
from rank_engine.core.logging_config import configure_logging
from rank_engine.core.settings import get_settings
from rank_engine.db.base import Base
from rank_engine.db.session import engine

settings = get_settings()
logger = configure_logging(settings.log_file, settings.log_level)

app = FastAPI(
    title=settings.app_name,
    version="1.0.0",
    description=(
        "Donation rank engine: payment webhooks for Stripe, Square and Ko-fi, "
        "rank grants and the scheduled expiry sweep."
    ),
    openapi_tags=[
        {"name": "webhooks", "description": "Payment provider webhooks, one per provider."},
        {"name": "cron", "description": "Externally scheduled maintenance jobs."},
        {"name": "ranks", "description": "Public rank catalog."},
        {"name": "admin", "description": "Settings, catalog and user rank administration."},
    ],
    swagger_ui_parameters={
        "docExpansion": "none",
        "defaultModelsExpandDepth": -1,
    },
)

Base.metadata.create_all(bind=engine)

app.state.settings_cache = TTLCache(ttl_seconds=settings.settings_cache_ttl_seconds)
app.include_router(webhooks.router)
app.include_router(cron.router)
app.include_router(ranks.router)
app.include_router(admin.router)

logger.info("Rank engine started", extra={"database": engine.url.render_as_string(hide_password=True)})


@app.get("/health")
def health():
    return {"status": "ok", "service": settings.app_name}
