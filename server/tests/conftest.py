import hashlib
import hmac
import os
import tempfile
import time
from datetime import datetime
from decimal import Decimal
from typing import Optional

os.environ["DATABASE_URL"] = "sqlite://"
os.environ["ADMIN_TOKEN"] = "test-admin-token"
os.environ["CRON_SECRET"] = "test-cron-secret"
os.environ["PAYMENT_PROVIDER"] = "stripe"
os.environ["STRIPE_SECRET_KEY"] = "sk_test_123"
os.environ["STRIPE_WEBHOOK_SECRET"] = "whsec_test_secret"
os.environ["SQUARE_ACCESS_TOKEN"] = ""
os.environ["SQUARE_WEBHOOK_SIGNATURE_KEY"] = "square-signature-key"
os.environ["SQUARE_WEBHOOK_URL"] = "https://ranks.example.test/webhooks/square"
os.environ["KOFI_VERIFICATION_TOKEN"] = "kofi-verification-token"
os.environ["LOG_FILE"] = os.path.join(tempfile.gettempdir(), "rank_engine_tests", "rank_engine.log")

import pytest  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402

from rank_engine.core.settings import get_settings  # noqa: E402

get_settings.cache_clear()

from rank_engine.core.cache import TTLCache  # noqa: E402
from rank_engine.db.base import Base, Rank, User  # noqa: E402
from rank_engine.db.session import SessionLocal, engine, get_db  # noqa: E402
from rank_engine.main import app  # noqa: E402


def stripe_signature(payload: str, secret: str = "whsec_test_secret", timestamp: Optional[int] = None) -> str:
    timestamp = timestamp or int(time.time())
    digest = hmac.new(secret.encode("utf-8"), f"{timestamp}.{payload}".encode("utf-8"), hashlib.sha256).hexdigest()
    return f"t={timestamp},v1={digest}"


@pytest.fixture(autouse=True)
def fresh_schema():
    Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)
    app.state.settings_cache = TTLCache(ttl_seconds=60)
    yield


@pytest.fixture
def db():
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def client(db):
    def override_get_db():
        yield db

    app.dependency_overrides[get_db] = override_get_db
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


@pytest.fixture
def settings_cache():
    return app.state.settings_cache


@pytest.fixture
def ranks(db):
    """Catalog with $5 / $10 / $25 tiers, 30 days each."""
    catalog = [
        Rank(id="supporter", name="Supporter", min_amount=Decimal("5.00"), duration_days=30, perks=["Chat color"]),
        Rank(id="vip", name="VIP", min_amount=Decimal("10.00"), duration_days=30, perks=["Kit"]),
        Rank(id="mvp", name="MVP", min_amount=Decimal("25.00"), duration_days=30, perks=["Kit", "Fly"]),
    ]
    db.add_all(catalog)
    db.commit()
    return {rank.id: rank for rank in catalog}


@pytest.fixture
def make_user(db):
    counter = {"next_id": 1}

    def _make_user(
        user_id: Optional[int] = None,
        username: Optional[str] = None,
        email: Optional[str] = None,
        minecraft_username: Optional[str] = None,
        rank_id: Optional[str] = None,
        expires_at: Optional[datetime] = None,
        **fields,
    ) -> User:
        if user_id is None:
            user_id = counter["next_id"]
        counter["next_id"] = max(counter["next_id"], user_id) + 1
        user = User(
            id=user_id,
            username=username or f"player{user_id}",
            email=email,
            minecraft_username=minecraft_username,
            donation_rank_id=rank_id,
            rank_expires_at=expires_at,
            total_donated=Decimal("0"),
            **fields,
        )
        db.add(user)
        db.commit()
        return user

    return _make_user


@pytest.fixture
def sign_stripe():
    return stripe_signature


@pytest.fixture
def admin_headers():
    return {"X-Admin-Token": "test-admin-token"}
