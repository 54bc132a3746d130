"""
Listening streak state machine.

A streak counts consecutive UTC calendar days with at least one play (any
duration). The transition runs at most once per request and is idempotent
within a day:

    listened today, last day == yesterday      -> current + 1
    listened today, last day == today          -> unchanged (already counted)
    listened today, any other last day         -> current = 1
    not listened, last day is today/yesterday  -> unchanged (grace)
    not listened, any other last day           -> current = 0 (broken)
"""
from dataclasses import dataclass, asdict, replace
from datetime import date, timedelta
from typing import Iterable

from history import ListeningEvent


@dataclass(frozen=True)
class StreakRecord:
    """Persisted streak state. last_listen_date is YYYY-MM-DD or ''."""
    current_streak: int = 0
    longest_streak: int = 0
    last_listen_date: str = ""

    def to_dict(self) -> dict:
        return asdict(self)


def listened_on(events: Iterable[ListeningEvent], day: date) -> bool:
    """True if any event (regardless of duration) falls on the given UTC day."""
    key = day.isoformat()
    return any(e.day == key for e in events)


def advance_streak(record: StreakRecord, listened_today: bool, today: date) -> StreakRecord:
    """Apply one day-boundary transition and return the new record."""
    today_key = today.isoformat()
    yesterday_key = (today - timedelta(days=1)).isoformat()
    last = record.last_listen_date

    if listened_today:
        if last == today_key:
            current = record.current_streak
        elif last == yesterday_key:
            current = record.current_streak + 1
        else:
            current = 1
        return StreakRecord(
            current_streak=current,
            longest_streak=max(record.longest_streak, current),
            last_listen_date=today_key,
        )

    if last in (today_key, yesterday_key):
        return record

    return replace(record, current_streak=0)


def best_streak(record: StreakRecord) -> int:
    return max(record.current_streak, record.longest_streak)
