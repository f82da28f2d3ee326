"""UTC-focused helpers for run metadata and audit timestamps."""

from __future__ import annotations

from datetime import datetime, timezone


def utc_now() -> datetime:
    return datetime.now(tz=timezone.utc)


def utc_timestamp_iso() -> str:
    return utc_now().isoformat(timespec="milliseconds")


def as_utc(value: datetime) -> datetime:
    """Aware UTC datetime; naive input is taken to be UTC already."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def parse_utc_datetime(text: str) -> datetime:
    """ISO-8601 date or datetime as aware UTC. Raises ``ValueError`` on bad input."""
    return as_utc(datetime.fromisoformat(text.strip().replace("Z", "+00:00")))
