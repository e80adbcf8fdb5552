"""Date helpers shared by the source adapters and the search orchestrator."""

from __future__ import annotations

from datetime import date, datetime, timedelta, timezone

_EPOCH = datetime.min.replace(tzinfo=timezone.utc)


def parse_iso_datetime(value: str | None) -> datetime:
    """Parse an ISO date or datetime into an aware UTC datetime.

    Accepts ``2024-01-31``, ``2024-01-31T12:00:00Z`` and offset forms.
    Unparseable or empty values sort as the oldest possible instant.
    """
    if not value:
        return _EPOCH
    text = value.strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    try:
        parsed = datetime.fromisoformat(text)
    except ValueError:
        return _EPOCH
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def format_date(day: date) -> str:
    return day.strftime("%Y-%m-%d")


def trailing_window(today: date, days: int) -> tuple[str, str]:
    """Return (start, end) ISO dates for a window of *days* ending on *today*."""
    return format_date(today - timedelta(days=days)), format_date(today)
