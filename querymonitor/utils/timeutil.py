"""Wall-clock helpers shared by the collector, the store and the scheduler."""

from __future__ import annotations

from datetime import date, datetime, timezone, tzinfo
from typing import Optional


def utc_now() -> datetime:
    """Current time as an aware UTC datetime truncated to milliseconds."""
    now = datetime.now(timezone.utc)
    return now.replace(microsecond=(now.microsecond // 1000) * 1000)


def to_epoch_ms(moment: datetime) -> int:
    if moment.tzinfo is None:
        raise ValueError("naive datetimes are ambiguous; pass an aware datetime")
    return int(round(moment.timestamp() * 1000))


def from_epoch_ms(value: int) -> datetime:
    return datetime.fromtimestamp(value / 1000, tz=timezone.utc)


def day_key(moment: datetime, tz: Optional[tzinfo] = None) -> date:
    """
    Calendar day of `moment` in `tz`.

    With tz=None the host's local timezone is used.
    """
    return moment.astimezone(tz).date()


__all__ = ["day_key", "from_epoch_ms", "to_epoch_ms", "utc_now"]
