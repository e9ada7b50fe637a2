"""
Durable storage for streak records.

Two implementations share one contract:
- SqlStreakStore: PostgreSQL (or SQLite in tests) via SQLAlchemy Core.
- InMemoryStreakStore: process-local fallback when DATABASE_URL is unset.

Every read-modify-write goes through `transaction(user_id)`, which serializes
callers for the same user and writes the whole record in one step.
"""
from __future__ import annotations

import json
import threading
from contextlib import contextmanager
from dataclasses import replace
from datetime import date, datetime, timezone
from typing import Dict, Iterator, List, Optional

from sqlalchemy import delete, insert, select, update
from sqlalchemy.exc import IntegrityError, InterfaceError, OperationalError
from sqlalchemy.exc import TimeoutError as PoolTimeoutError

from streakline.core.database import get_db_session, get_session_factory, streaks
from streakline.core.errors import ConflictError, StoreUnavailableError
from streakline.core.logging import log_event
from streakline.features.streaks.days import day_key, parse_day_key
from streakline.models.streak import StreakRecord


class UserLocks:
    """Process-local mutual exclusion keyed by user id."""

    def __init__(self):
        self._guard = threading.Lock()
        self._locks: Dict[str, list] = {}  # user_id -> [lock, holders + waiters]

    @contextmanager
    def hold(self, user_id: str) -> Iterator[None]:
        with self._guard:
            entry = self._locks.setdefault(user_id, [threading.Lock(), 0])
            entry[1] += 1
        entry[0].acquire()
        try:
            yield
        finally:
            entry[0].release()
            with self._guard:
                entry[1] -= 1
                if entry[1] == 0:
                    self._locks.pop(user_id, None)

    def __len__(self) -> int:
        with self._guard:
            return len(self._locks)


class StreakUnit:
    """Read-modify-write scope for one user's record, valid inside a transaction."""

    def __init__(self, user_id: str, record: Optional[StreakRecord]):
        self.user_id = user_id
        self.record = record

    def save(self, record: StreakRecord) -> None:
        raise NotImplementedError

    def delete(self) -> None:
        raise NotImplementedError


class StreakStore:
    def get(self, user_id: str) -> Optional[StreakRecord]:
        raise NotImplementedError

    def transaction(self, user_id: str):
        raise NotImplementedError


def encode_days(days: List[date]) -> str:
    return json.dumps([day_key(day) for day in days])


def decode_days(raw: Optional[str], *, user_id: str) -> List[date]:
    """Parse the stored day list; anything malformed degrades to an empty list."""
    if not raw:
        return []
    try:
        values = json.loads(raw)
        if not isinstance(values, list):
            raise ValueError(f"expected a JSON array, got {type(values).__name__}")
        return [parse_day_key(value) for value in values]
    except (TypeError, ValueError) as exc:
        log_event(
            "warning",
            "streak.days_decode_failed",
            user_id=user_id,
            event_type="streak.days_decode_failed",
            extra={"error": exc},
        )
        return []


def _aware(moment: Optional[datetime]) -> Optional[datetime]:
    if moment is None or moment.tzinfo is not None:
        return moment
    return moment.replace(tzinfo=timezone.utc)


def _copy(record: StreakRecord) -> StreakRecord:
    return replace(record, qualifying_days=list(record.qualifying_days))


# In-memory ---------------------------------------------------------------
class _MemoryUnit(StreakUnit):
    def __init__(self, user_id: str, record: Optional[StreakRecord]):
        super().__init__(user_id, record)
        self.deleted = False
        self.pending: Optional[StreakRecord] = None

    def save(self, record: StreakRecord) -> None:
        self.pending = _copy(record)
        self.record = record

    def delete(self) -> None:
        self.deleted = True
        self.pending = None
        self.record = None


class InMemoryStreakStore(StreakStore):
    def __init__(self):
        self._records: Dict[str, StreakRecord] = {}
        self._locks = UserLocks()

    def get(self, user_id: str) -> Optional[StreakRecord]:
        record = self._records.get(user_id)
        return _copy(record) if record else None

    @contextmanager
    def transaction(self, user_id: str) -> Iterator[StreakUnit]:
        with self._locks.hold(user_id):
            unit = _MemoryUnit(user_id, self.get(user_id))
            yield unit
            # Staged writes land only when the block exits cleanly
            if unit.deleted:
                self._records.pop(user_id, None)
            if unit.pending is not None:
                self._records[user_id] = unit.pending


# SQL ---------------------------------------------------------------------
class _SqlUnit(StreakUnit):
    def __init__(self, user_id: str, record: Optional[StreakRecord], session):
        super().__init__(user_id, record)
        self._session = session
        self._row_exists = record is not None

    def save(self, record: StreakRecord) -> None:
        values = {
            'current_streak': record.current_streak,
            'longest_streak': record.longest_streak,
            'last_event_day': record.last_event_day,
            'total_events_completed': record.total_events_completed,
            'qualifying_days': encode_days(record.qualifying_days),
            'updated_at': record.updated_at,
        }
        if self._row_exists:
            self._session.execute(
                update(streaks).where(streaks.c.id == record.id).values(**values)
            )
        else:
            self._session.execute(
                insert(streaks).values(
                    id=record.id,
                    user_id=record.user_id,
                    created_at=record.created_at,
                    **values,
                )
            )
            self._row_exists = True
        self.record = record

    def delete(self) -> None:
        self._session.execute(delete(streaks).where(streaks.c.user_id == self.user_id))
        self._row_exists = False
        self.record = None


class SqlStreakStore(StreakStore):
    """
    SQLAlchemy-backed streak persistence.

    Args:
        session_factory: sessionmaker to use; defaults to the global one from
            streakline.core.database.
    """

    def __init__(self, session_factory=None):
        self._session_factory = session_factory
        self._locks = UserLocks()

    @property
    def session_factory(self):
        return self._session_factory or get_session_factory()

    def get(self, user_id: str) -> Optional[StreakRecord]:
        with self._guard():
            with get_db_session(self.session_factory) as session:
                row = session.execute(
                    select(streaks).where(streaks.c.user_id == user_id)
                ).first()
                return self._to_record(row) if row else None

    @contextmanager
    def transaction(self, user_id: str) -> Iterator[StreakUnit]:
        with self._locks.hold(user_id), self._guard():
            with get_db_session(self.session_factory) as session:
                # Row lock so other processes serialize on this user too
                row = session.execute(
                    select(streaks).where(streaks.c.user_id == user_id).with_for_update()
                ).first()
                yield _SqlUnit(user_id, self._to_record(row) if row else None, session)

    @contextmanager
    def _guard(self) -> Iterator[None]:
        try:
            yield
        except IntegrityError as exc:
            raise ConflictError("Concurrent streak update detected; retry the request") from exc
        except (OperationalError, InterfaceError, PoolTimeoutError) as exc:
            raise StoreUnavailableError("Streak store is temporarily unavailable") from exc

    @staticmethod
    def _to_record(row) -> StreakRecord:
        return StreakRecord(
            id=row.id,
            user_id=row.user_id,
            current_streak=row.current_streak,
            longest_streak=row.longest_streak,
            last_event_day=row.last_event_day,
            total_events_completed=row.total_events_completed,
            qualifying_days=decode_days(row.qualifying_days, user_id=row.user_id),
            created_at=_aware(row.created_at),
            updated_at=_aware(row.updated_at),
        )
