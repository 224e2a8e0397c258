"""Helpers for epoch-second ranges, calendar weeks and calendar event ids."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

from timetable.domain.models import TimeRange

_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)
# 1970-01-01 was a Thursday; week numbers roll over on Monday.
_MONDAY_ALIGNMENT_DAYS = 4

SECONDS_PER_WEEK = int(timedelta(weeks=1).total_seconds())

LESSON_PREFIX = "lesson_"
INVIGILATE_PREFIX = "invigilate_"


def to_seconds(moment: datetime) -> int:
    """Floor an aware datetime to epoch seconds."""
    return int(moment.timestamp() // 1)


def from_seconds(seconds: int) -> datetime:
    return datetime.fromtimestamp(seconds, tz=timezone.utc)


def week_num(moment: datetime | int) -> int:
    """Return the Monday-aligned week number since the epoch used by the backend."""
    if isinstance(moment, int):
        moment = from_seconds(moment)
    days = (moment - _EPOCH).days - _MONDAY_ALIGNMENT_DAYS
    return 0 if days < 0 else days // 7


def week_window(number: int) -> TimeRange:
    """Return the ``[Monday 00:00, next Monday 00:00)`` range of week *number*."""
    start = _EPOCH + timedelta(days=_MONDAY_ALIGNMENT_DAYS + number * 7)
    return TimeRange(start=to_seconds(start), end=to_seconds(start) + SECONDS_PER_WEEK)


def merge_ranges(ranges: list[TimeRange]) -> list[TimeRange]:
    """Merge overlapping or touching ranges into a sorted, disjoint list."""
    if len(ranges) <= 1:
        return list(ranges)
    ordered = sorted(ranges, key=lambda r: r.start)
    merged: list[TimeRange] = []
    current = ordered[0]
    for nxt in ordered[1:]:
        if current.end >= nxt.start:
            current = TimeRange(start=current.start, end=max(current.end, nxt.end))
        else:
            merged.append(current)
            current = nxt
    merged.append(current)
    return merged


def parse_record_id(event_id: str | int, prefix: str) -> str:
    """Strip a calendar id prefix: ``parse_record_id("lesson_12", "lesson_") -> "12"``."""
    text = str(event_id)
    return text[len(prefix):] if text.startswith(prefix) else text


def event_id(prefix: str, record_id: int | str) -> str:
    return f"{prefix}{record_id}"
