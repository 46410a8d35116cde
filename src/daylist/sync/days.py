from __future__ import annotations

from datetime import date, timedelta


def visible_days(today: date, *, past: int = 1, future: int = 4) -> list[date]:
    """Days shown around ``today``, oldest first."""

    return [today + timedelta(days=offset) for offset in range(-past, future + 1)]


def is_past(day: date, today: date) -> bool:
    return day < today


def offset_day(today: date, offset: int) -> date:
    return today + timedelta(days=offset)


__all__ = ["is_past", "offset_day", "visible_days"]
