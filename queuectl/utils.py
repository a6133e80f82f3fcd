"""Timestamp helpers shared by the store, the worker and the CLI."""

from datetime import UTC, datetime, timedelta


def utc_now() -> datetime:
    """Current UTC time as a naive datetime (the store's storage convention)."""
    return datetime.now(UTC).replace(tzinfo=None)


def to_naive_utc(value: datetime) -> datetime:
    """Normalize an aware datetime to naive UTC; naive values are assumed UTC."""
    if value.tzinfo is None:
        return value
    return value.astimezone(UTC).replace(tzinfo=None)


def seconds_from_now(seconds: float, now: datetime | None = None) -> datetime:
    """Return the naive UTC time ``seconds`` after ``now``."""
    return (now or utc_now()) + timedelta(seconds=seconds)


def iso(value: datetime | None) -> str | None:
    """ISO-8601 rendering with a ``Z`` suffix, ``None`` passes through."""
    if value is None:
        return None
    return to_naive_utc(value).isoformat() + "Z"
