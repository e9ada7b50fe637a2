from __future__ import annotations

from datetime import datetime, timezone, tzinfo
from typing import Callable, List, Optional, Sequence, Union

from streakline.core.errors import MalformedHistoryError, OutOfOrderEventError
from streakline.core.logging import log_event
from streakline.core.metrics import streak_events_total, streak_expirations_total, streak_rebuilds_total
from streakline.features.streaks import engine
from streakline.features.streaks.days import day_key, normalize_day, resolve_timezone
from streakline.features.streaks.events import EventSource
from streakline.features.streaks.store import StreakStore
from streakline.models.streak import StreakRecord, utc_now

Clock = Callable[[], datetime]
HistoryItem = Union[datetime, str]


class StreakService:
    """Streak accounting over an injected store: live updates, lazy expiry, rebuilds."""

    def __init__(
        self,
        store: StreakStore,
        *,
        clock: Optional[Clock] = None,
        reference_tz: Union[str, tzinfo] = "UTC",
    ):
        self._store = store
        self._clock = clock or utc_now
        self._tz = resolve_timezone(reference_tz) if isinstance(reference_tz, str) else reference_tz

    @property
    def store(self) -> StreakStore:
        return self._store

    def today(self):
        return normalize_day(self._clock(), self._tz)

    def record_event(self, *, user_id: str, occurred_at: Optional[datetime] = None) -> StreakRecord:
        """Count a qualifying event; repeats on an already-counted day are no-ops."""
        now = self._clock()
        day = normalize_day(occurred_at or now, self._tz)

        with self._store.transaction(user_id) as unit:
            record = unit.record or StreakRecord.empty(user_id, now=now)
            try:
                updated, outcome = engine.apply_event(record, day, now=now)
            except OutOfOrderEventError:
                streak_events_total.inc(labels={"outcome": "rejected"})
                log_event(
                    "warning",
                    "streak.out_of_order",
                    user_id=user_id,
                    event_type="streak.out_of_order",
                    error_code=OutOfOrderEventError.code,
                    extra={"day": day_key(day), "last_event_day": day_key(record.last_event_day)},
                )
                raise

            if outcome == "duplicate":
                streak_events_total.inc(labels={"outcome": "duplicate"})
                log_event("info", "streak.duplicate_day", user_id=user_id, event_type="streak.duplicate_day",
                          extra={"day": day_key(day)})
                return updated

            unit.save(updated)

        streak_events_total.inc(labels={"outcome": "counted"})
        log_event(
            "info",
            "streak.counted",
            user_id=user_id,
            event_type="streak.counted",
            extra={
                "day": day_key(day),
                "current_streak": updated.current_streak,
                "longest_streak": updated.longest_streak,
            },
        )
        return updated

    def get_streak(self, user_id: str) -> Optional[StreakRecord]:
        """Read a record, zeroing current_streak first if a full day was missed.

        Returns None when the user has no record.
        """
        record = self._store.get(user_id)
        if record is None:
            return None

        today = self.today()
        if not engine.is_broken(record, today):
            return record

        with self._store.transaction(user_id) as unit:
            # Re-check under the lock; a concurrent event may have landed
            current = unit.record
            if current is None or not engine.is_broken(current, today):
                return current
            expired = engine.expire(current, today, now=self._clock())
            unit.save(expired)

        streak_expirations_total.inc()
        log_event(
            "info",
            "streak.expired",
            user_id=user_id,
            event_type="streak.expired",
            extra={"last_event_day": day_key(expired.last_event_day), "today": day_key(today)},
        )
        return expired

    def rebuild_from_history(
        self,
        *,
        user_id: str,
        events: Sequence[HistoryItem],
        source: str = "history",
    ) -> StreakRecord:
        """Replace the user's record with one recomputed from complete ordered history.

        Raises MalformedHistoryError, writing nothing, when any timestamp fails to
        parse or precedes the one before it.
        """
        rebuilt = self.compute_from_history(user_id=user_id, events=events)

        with self._store.transaction(user_id) as unit:
            if unit.record is not None:
                unit.delete()
            unit.save(rebuilt)

        streak_rebuilds_total.inc(labels={"source": source})
        log_event(
            "info",
            "streak.rebuilt",
            user_id=user_id,
            event_type="streak.rebuilt",
            extra={
                "events": len(events),
                "days": rebuilt.total_events_completed,
                "current_streak": rebuilt.current_streak,
                "longest_streak": rebuilt.longest_streak,
            },
        )
        return rebuilt

    def compute_from_history(self, *, user_id: str, events: Sequence[HistoryItem]) -> StreakRecord:
        """Fold a history into a fresh record without touching the store."""
        moments = self._parse_history(events)
        days = [normalize_day(moment, self._tz) for moment in moments]
        return engine.fold_history(user_id, days, now=self._clock())

    def backfill(self, *, user_id: str, source: EventSource) -> StreakRecord:
        """Rebuild from the user's completed-chat history."""
        return self.rebuild_from_history(
            user_id=user_id,
            events=source.completed_events(user_id),
            source="chats",
        )

    @staticmethod
    def _parse_history(events: Sequence[HistoryItem]) -> List[datetime]:
        moments: List[datetime] = []
        for position, item in enumerate(events):
            moment = _coerce_timestamp(item, position)
            if moments and moment < moments[-1]:
                raise MalformedHistoryError(
                    f"History is not chronological at position {position}: "
                    f"{moment.isoformat()} precedes {moments[-1].isoformat()}"
                )
            moments.append(moment)
        return moments


def _coerce_timestamp(item: HistoryItem, position: int) -> datetime:
    if isinstance(item, datetime):
        moment = item
    elif isinstance(item, str):
        try:
            moment = datetime.fromisoformat(item.strip().replace("Z", "+00:00"))
        except ValueError as exc:
            raise MalformedHistoryError(f"Unparseable timestamp at position {position}: {item!r}") from exc
    else:
        raise MalformedHistoryError(f"Unsupported timestamp at position {position}: {item!r}")
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    return moment


_service: Optional[StreakService] = None
_event_source: Optional[EventSource] = None


def get_streak_service() -> StreakService:
    """Process-wide service wired from settings (SQL store when DATABASE_URL is set)."""
    global _service
    if _service is None:
        from streakline.core.config import settings
        from streakline.core.database import get_database_url
        from streakline.features.streaks.store import InMemoryStreakStore, SqlStreakStore

        store = SqlStreakStore() if get_database_url() else InMemoryStreakStore()
        _service = StreakService(store, reference_tz=settings.STREAK_TIMEZONE)
    return _service


def get_event_source() -> EventSource:
    global _event_source
    if _event_source is None:
        from streakline.core.database import get_database_url
        from streakline.features.streaks.events import ChatHistorySource, InMemoryEventSource

        _event_source = ChatHistorySource() if get_database_url() else InMemoryEventSource()
    return _event_source
