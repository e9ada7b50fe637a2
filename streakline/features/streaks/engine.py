from __future__ import annotations

from dataclasses import replace
from datetime import date, datetime
from typing import Iterable, Literal, Optional, Tuple

from streakline.core.errors import MalformedHistoryError, OutOfOrderEventError
from streakline.features.streaks.days import day_key, days_between, is_consecutive
from streakline.models.streak import StreakRecord, utc_now

EventOutcome = Literal["counted", "duplicate"]


def next_streak_length(current: int, last_day: Optional[date], day: date) -> int:
    """Transition rule shared by live updates and reconciliation."""
    if last_day is None:
        return 1
    if is_consecutive(last_day, day):
        return current + 1
    return 1


def apply_event(
    record: StreakRecord,
    day: date,
    *,
    now: Optional[datetime] = None,
) -> Tuple[StreakRecord, EventOutcome]:
    """Count a qualifying day against a record without touching the store.

    Returns the original record untouched when the day was already counted.
    """
    if day == record.last_event_day or day in record.qualifying_days:
        return record, "duplicate"

    if record.last_event_day is not None and day < record.last_event_day:
        raise OutOfOrderEventError(
            f"Event day {day_key(day)} precedes last counted day "
            f"{day_key(record.last_event_day)}; rebuild from history instead"
        )

    current = next_streak_length(record.current_streak, record.last_event_day, day)
    updated = replace(
        record,
        current_streak=current,
        longest_streak=max(record.longest_streak, current),
        last_event_day=day,
        total_events_completed=record.total_events_completed + 1,
        qualifying_days=[*record.qualifying_days, day],
        updated_at=now or utc_now(),
    )
    return updated, "counted"


def is_broken(record: StreakRecord, today: date) -> bool:
    """True when at least one full day has passed with no qualifying event."""
    if record.last_event_day is None or record.current_streak == 0:
        return False
    return days_between(record.last_event_day, today) > 1


def expire(record: StreakRecord, today: date, *, now: Optional[datetime] = None) -> StreakRecord:
    # One-way: only a new qualifying event lifts current_streak off zero.
    if not is_broken(record, today):
        return record
    return replace(record, current_streak=0, updated_at=now or utc_now())


def fold_history(
    user_id: str,
    days: Iterable[date],
    *,
    now: Optional[datetime] = None,
) -> StreakRecord:
    """Recompute a record from scratch over chronologically ordered days.

    Repeated days are skipped. No expiry is applied: current_streak reflects
    the run as of the last day in the history.
    """
    moment = now or utc_now()
    seen: set[date] = set()
    ordered: list[date] = []
    current = 0
    longest = 0
    last_day: Optional[date] = None

    for day in days:
        if day in seen:
            continue
        if last_day is not None and day < last_day:
            raise MalformedHistoryError(
                f"History is not chronological: {day_key(day)} follows {day_key(last_day)}"
            )
        seen.add(day)
        ordered.append(day)
        current = next_streak_length(current, last_day, day)
        longest = max(longest, current)
        last_day = day

    return StreakRecord(
        user_id=user_id,
        current_streak=current,
        longest_streak=longest,
        last_event_day=last_day,
        total_events_completed=len(ordered),
        qualifying_days=ordered,
        created_at=moment,
        updated_at=moment,
    )
