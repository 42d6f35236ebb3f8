import json
import logging
from datetime import date, datetime, timezone
from decimal import Decimal
from enum import Enum
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Any

# Attributes every LogRecord carries; anything else arrived through ``extra=``.
RECORD_ATTRIBUTES = frozenset(vars(logging.makeLogRecord({}))) | {"message", "asctime"}

# Correlation keys promoted to the top level so a payment can be followed across lines.
CONTEXT_FIELDS = ("provider", "payment_id", "user_id", "rank_id", "subscription_id")


def to_json_value(value: Any) -> Any:
    if isinstance(value, Enum):
        return to_json_value(value.value)
    if value is None or isinstance(value, (bool, int, float, str)):
        return value
    if isinstance(value, Decimal):
        # Money keeps its exact digits.
        return str(value)
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, dict):
        return {str(key): to_json_value(item) for key, item in value.items()}
    if isinstance(value, (list, tuple, set, frozenset)):
        return [to_json_value(item) for item in value]
    return repr(value)


class JsonFormatter(logging.Formatter):
    """One JSON object per line.

    ``provider``, ``payment_id``, ``user_id``, ``rank_id`` and ``subscription_id``
    are written next to the message; any other ``extra=`` keys go under ``extra``.
    """

    def format(self, record: logging.LogRecord) -> str:
        payload = {
            "timestamp": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        extras = {}
        for key, value in record.__dict__.items():
            if key in RECORD_ATTRIBUTES or key.startswith("_"):
                continue
            if key in CONTEXT_FIELDS:
                payload[key] = to_json_value(value)
            else:
                extras[key] = to_json_value(value)
        if extras:
            payload["extra"] = extras
        if record.levelno >= logging.WARNING:
            payload["source"] = f"{record.module}:{record.lineno}"
        if record.exc_info:
            payload["exception"] = self.formatException(record.exc_info)
        return json.dumps(payload, ensure_ascii=True)


def configure_logging(log_file: str, level: str = "INFO") -> logging.Logger:
    Path(log_file).parent.mkdir(parents=True, exist_ok=True)

    root = logging.getLogger()
    root.handlers.clear()
    root.setLevel(getattr(logging, level.upper(), logging.INFO))

    formatter = JsonFormatter()
    handlers = [
        RotatingFileHandler(filename=log_file, maxBytes=5_000_000, backupCount=5, encoding="utf-8"),
        logging.StreamHandler(),
    ]
    for handler in handlers:
        handler.setFormatter(formatter)
        root.addHandler(handler)

    # Request lines from uvicorn would drown out webhook context at INFO.
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
    return logging.getLogger("rank_engine")
