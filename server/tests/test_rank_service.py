from datetime import timedelta
from decimal import Decimal

import pytest
from sqlalchemy.exc import OperationalError

from rank_engine.core.clock import utcnow
from rank_engine.core.errors import UserNotFound
from rank_engine.models.user import User
from rank_engine.services.rank_service import RankService


def test_grant_extends_from_current_expiry(db, ranks, make_user):
    now = utcnow()
    make_user(user_id=1, rank_id="vip", expires_at=now + timedelta(days=10))

    user = RankService(db).grant(1, "vip", 30, Decimal("10.00"), now=now)

    assert user.rank_expires_at == now + timedelta(days=40)
    assert user.donation_rank_id == "vip"
    assert user.total_donated == Decimal("10.00")


def test_grant_after_lapse_starts_from_now(db, ranks, make_user):
    now = utcnow()
    make_user(user_id=1, rank_id="vip", expires_at=now - timedelta(days=1))

    user = RankService(db).grant(1, "vip", 30, Decimal("10.00"), now=now)

    assert user.rank_expires_at == now + timedelta(days=30)


def test_grant_can_change_rank_mid_cycle(db, ranks, make_user):
    now = utcnow()
    make_user(user_id=1, rank_id="vip", expires_at=now + timedelta(days=5))

    user = RankService(db).grant(1, "mvp", 30, Decimal("25.00"), now=now)

    assert user.donation_rank_id == "mvp"
    assert user.rank_expires_at == now + timedelta(days=35)


def test_tip_only_changes_total(db, ranks, make_user):
    now = utcnow()
    expires_at = now + timedelta(days=3)
    make_user(user_id=1, rank_id="supporter", expires_at=expires_at)

    user = RankService(db).grant(1, None, 0, Decimal("2.50"), now=now)

    assert user.donation_rank_id == "supporter"
    assert user.rank_expires_at == expires_at
    assert user.total_donated == Decimal("2.50")


def test_grant_with_zero_days_keeps_user_without_rank(db, ranks, make_user):
    make_user(user_id=1)

    user = RankService(db).grant(1, "vip", 0, Decimal("10.00"))

    assert user.donation_rank_id is None
    assert user.rank_expires_at is None


def test_grant_unknown_user_raises(db, ranks):
    with pytest.raises(UserNotFound):
        RankService(db).grant(999, "vip", 30, Decimal("10.00"))


def test_sweep_clears_only_expired_ranks(db, ranks, make_user):
    now = utcnow()
    make_user(user_id=1, username="lapsed", rank_id="vip", expires_at=now - timedelta(days=1), rank_paused=True)
    make_user(user_id=2, username="current", rank_id="mvp", expires_at=now + timedelta(days=3))
    make_user(user_id=3, username="nobody")

    result = RankService(db).expire_ranks(now=now)

    assert result.removed == 1
    assert result.users == ["lapsed"]
    assert result.failed == 0

    db.expire_all()
    lapsed = db.get(User, 1)
    assert lapsed.donation_rank_id is None
    assert lapsed.rank_expires_at is None
    assert lapsed.rank_paused is False
    assert db.get(User, 2).donation_rank_id == "mvp"

    for user in db.query(User).all():
        assert not (user.donation_rank_id and user.rank_expires_at and user.rank_expires_at < now)


def test_sweep_is_idempotent(db, ranks, make_user):
    now = utcnow()
    make_user(user_id=1, rank_id="vip", expires_at=now - timedelta(hours=1))
    make_user(user_id=2, rank_id="vip", expires_at=now - timedelta(days=40))

    service = RankService(db)
    assert service.expire_ranks(now=now).removed == 2
    second = service.expire_ranks(now=now)
    assert second.removed == 0
    assert second.users == []


def test_sweep_skips_a_failing_row_and_clears_the_rest(db, ranks, make_user, monkeypatch):
    now = utcnow()
    make_user(user_id=1, username="stuck", rank_id="vip", expires_at=now - timedelta(days=2))
    make_user(user_id=2, username="lapsed", rank_id="mvp", expires_at=now - timedelta(days=1))
    real_commit = db.commit
    commits = {"count": 0}

    def flaky_commit():
        commits["count"] += 1
        if commits["count"] == 1:
            raise OperationalError("COMMIT", {}, Exception("database is locked"))
        real_commit()

    monkeypatch.setattr(db, "commit", flaky_commit)
    result = RankService(db).expire_ranks(now=now)
    monkeypatch.undo()

    assert result.failed == 1
    assert result.removed == 1
    assert result.users == ["lapsed"]
    db.expire_all()
    assert db.get(User, 1).donation_rank_id == "vip"
    assert db.get(User, 2).donation_rank_id is None
    assert db.get(User, 2).rank_expires_at is None

    retry = RankService(db).expire_ranks(now=now)
    assert retry.removed == 1
    assert retry.users == ["stuck"]


def test_rank_status_reports_days_remaining(db, ranks, make_user):
    now = utcnow()
    make_user(user_id=1, rank_id="vip", expires_at=now + timedelta(days=2, hours=1))
    make_user(user_id=2)

    service = RankService(db)
    status = service.get_rank_status(1, now=now)
    assert status.has_rank is True
    assert status.days_remaining == 3
    assert status.is_active is True

    empty = service.get_rank_status(2, now=now)
    assert empty.has_rank is False
    assert empty.is_active is False
    assert service.get_rank_status(404) is None


def test_paused_rank_is_not_active_and_still_extends(db, ranks, make_user):
    now = utcnow()
    make_user(user_id=1, rank_id="vip", expires_at=now + timedelta(days=10))
    service = RankService(db)

    service.set_rank_paused(1, True)
    assert service.get_rank_status(1, now=now).is_active is False

    user = service.grant(1, "vip", 30, Decimal("10.00"), now=now)
    assert user.rank_expires_at == now + timedelta(days=40)
    assert user.rank_paused is True


def test_pause_requires_a_rank(db, ranks, make_user):
    make_user(user_id=1)
    with pytest.raises(ValueError):
        RankService(db).set_rank_paused(1, True)
    assert RankService(db).set_rank_paused(404, True) is None


def test_remove_rank(db, ranks, make_user):
    make_user(user_id=1, rank_id="vip", expires_at=utcnow() + timedelta(days=10))

    user = RankService(db).remove_rank(1)

    assert user.donation_rank_id is None
    assert user.rank_expires_at is None
    assert RankService(db).remove_rank(404) is None
