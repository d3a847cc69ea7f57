from datetime import datetime, timezone


def utcnow() -> datetime:
    """Naive UTC now, truncated to milliseconds so it survives a DB round trip unchanged."""
    now = datetime.now(timezone.utc).replace(tzinfo=None)
    return now.replace(microsecond=(now.microsecond // 1000) * 1000)


def isoformat_ms(value: datetime) -> str:
    """Render a naive UTC datetime as e.g. 2026-01-01T00:00:00.000Z."""
    return value.strftime("%Y-%m-%dT%H:%M:%S.") + f"{value.microsecond // 1000:03d}Z"


def to_naive_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)
