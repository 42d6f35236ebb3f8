from datetime import datetime, timezone


def utcnow() -> datetime:
    # Timestamps are stored naive, in UTC.
    return datetime.now(timezone.utc).replace(tzinfo=None)
