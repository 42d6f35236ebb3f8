from datetime import timedelta

import pytest

from rank_engine.core.clock import utcnow
from rank_engine.core.settings import Settings
from rank_engine.models.user import User
from rank_engine.services.security import is_cron_authorized


@pytest.fixture
def expired_user(ranks, make_user):
    return make_user(user_id=1, username="lapsed", rank_id="vip", expires_at=utcnow() - timedelta(days=1))


@pytest.mark.parametrize(
    "kwargs",
    [
        {"headers": {"Authorization": "Bearer test-cron-secret"}},
        {"headers": {"x-cron-secret": "test-cron-secret"}},
        {"params": {"secret": "test-cron-secret"}},
    ],
)
def test_sweep_accepts_each_credential(client, db, expired_user, kwargs):
    response = client.get("/cron/expire-ranks", **kwargs)

    assert response.status_code == 200
    body = response.json()
    assert body["success"] is True
    assert body["removed"] == 1
    assert body["users"] == ["lapsed"]
    assert "timestamp" in body


def test_sweep_rejects_missing_or_wrong_secret(client, db, expired_user):
    assert client.get("/cron/expire-ranks").status_code == 401
    assert client.post("/cron/expire-ranks", headers={"Authorization": "Bearer nope"}).status_code == 401
    db.expire_all()
    assert db.get(User, 1).donation_rank_id == "vip"


def test_sweep_twice_removes_nothing_new(client, expired_user):
    headers = {"x-cron-secret": "test-cron-secret"}
    assert client.post("/cron/expire-ranks", headers=headers).json()["removed"] == 1
    second = client.post("/cron/expire-ranks", headers=headers).json()
    assert second["removed"] == 0
    assert second["users"] == []


def test_platform_header_alone_is_rejected_when_a_secret_is_set(client, db, expired_user):
    assert client.get("/cron/expire-ranks", headers={"x-vercel-cron": "1"}).status_code == 401
    db.expire_all()
    assert db.get(User, 1).donation_rank_id == "vip"


def test_platform_header_needs_opt_in_and_no_secret():
    assert Settings(CRON_SECRET="").trust_platform_cron_header is False
    assert is_cron_authorized(Settings(CRON_SECRET=""), platform_header="1") is False

    opted_in = Settings(CRON_SECRET="", TRUST_PLATFORM_CRON_HEADER=True)
    assert is_cron_authorized(opted_in, authorization="Bearer ") is False
    assert is_cron_authorized(opted_in, secret_param="") is False
    assert is_cron_authorized(opted_in, platform_header="1") is True

    with_secret = Settings(CRON_SECRET="s3cret", TRUST_PLATFORM_CRON_HEADER=True)
    assert is_cron_authorized(with_secret, platform_header="1") is False
    assert is_cron_authorized(with_secret, authorization="bearer s3cret") is True
    assert is_cron_authorized(with_secret, x_cron_secret="s3cret") is True
