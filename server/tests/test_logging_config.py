import json
import logging
import sys
from datetime import datetime
from decimal import Decimal

from rank_engine.core.logging_config import JsonFormatter
from rank_engine.models.user import SubscriptionStatus


def _record(level=logging.INFO, exc_info=None, **extra) -> logging.LogRecord:
    record = logging.LogRecord(
        name="rank_engine.services.reconciliation_service",
        level=level,
        pathname=__file__,
        lineno=12,
        msg="Payment %s",
        args=("reconciled",),
        exc_info=exc_info,
    )
    record.__dict__.update(extra)
    return record


def test_payment_context_is_promoted():
    line = JsonFormatter().format(
        _record(provider="stripe", payment_id="stripe_pi_1", user_id=42, rank_id="vip", days=30)
    )
    payload = json.loads(line)

    assert payload["message"] == "Payment reconciled"
    assert payload["provider"] == "stripe"
    assert payload["payment_id"] == "stripe_pi_1"
    assert payload["user_id"] == 42
    assert payload["rank_id"] == "vip"
    assert payload["extra"] == {"days": 30}
    assert "source" not in payload


def test_domain_values_are_serialized_exactly():
    expires_at = datetime(2026, 1, 2, 3, 4, 5)
    payload = json.loads(
        JsonFormatter().format(
            _record(amount=Decimal("17.50"), expires_at=expires_at, status=SubscriptionStatus.past_due)
        )
    )

    assert payload["extra"] == {
        "amount": "17.50",
        "expires_at": "2026-01-02T03:04:05",
        "status": "past_due",
    }


def test_warnings_carry_source_and_exception():
    try:
        raise RuntimeError("database unreachable")
    except RuntimeError:
        record = _record(level=logging.ERROR, exc_info=sys.exc_info(), user_id=7)

    payload = json.loads(JsonFormatter().format(record))

    assert payload["level"] == "ERROR"
    assert payload["source"].endswith(":12")
    assert "database unreachable" in payload["exception"]
    assert "extra" not in payload
