"""
Qualifying-event history, read from the chat service's records.

A chat counts once its analysis has completed (analyzed = true).
"""
from __future__ import annotations

from collections import defaultdict
from datetime import datetime, timezone
from typing import Dict, List

from sqlalchemy import select
from sqlalchemy.exc import InterfaceError, OperationalError
from sqlalchemy.exc import TimeoutError as PoolTimeoutError

from streakline.core.database import chats, get_db_session, get_session_factory
from streakline.core.errors import StoreUnavailableError


class EventSource:
    def completed_events(self, user_id: str) -> List[datetime]:
        """Completion timestamps for a user, ascending."""
        raise NotImplementedError

    def user_ids_with_history(self) -> List[str]:
        raise NotImplementedError


class ChatHistorySource(EventSource):
    def __init__(self, session_factory=None):
        self._session_factory = session_factory

    def completed_events(self, user_id: str) -> List[datetime]:
        query = (
            select(chats.c.created_at)
            .where(chats.c.user_id == user_id, chats.c.analyzed.is_(True))
            .order_by(chats.c.created_at, chats.c.id)
        )
        try:
            with get_db_session(self._session_factory or get_session_factory()) as session:
                rows = session.execute(query).all()
        except (OperationalError, InterfaceError, PoolTimeoutError) as exc:
            raise StoreUnavailableError("Chat history is temporarily unavailable") from exc
        return [_as_utc(row.created_at) for row in rows]

    def user_ids_with_history(self) -> List[str]:
        query = (
            select(chats.c.user_id)
            .where(chats.c.analyzed.is_(True))
            .distinct()
            .order_by(chats.c.user_id)
        )
        try:
            with get_db_session(self._session_factory or get_session_factory()) as session:
                return [row.user_id for row in session.execute(query).all()]
        except (OperationalError, InterfaceError, PoolTimeoutError) as exc:
            raise StoreUnavailableError("Chat history is temporarily unavailable") from exc


class InMemoryEventSource(EventSource):
    """In-memory fallback used when no database is configured, and in tests."""

    def __init__(self):
        self._events: Dict[str, List[datetime]] = defaultdict(list)

    def add(self, user_id: str, completed_at: datetime) -> None:
        self._events[user_id].append(completed_at)

    def completed_events(self, user_id: str) -> List[datetime]:
        return sorted(self._events.get(user_id, []), key=_as_utc)

    def user_ids_with_history(self) -> List[str]:
        return sorted(user_id for user_id, events in self._events.items() if events)


def _as_utc(moment: datetime) -> datetime:
    if moment.tzinfo is None:
        return moment.replace(tzinfo=timezone.utc)
    return moment.astimezone(timezone.utc)
