from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from typing import List, Optional
from uuid import uuid4

from streakline.features.streaks.days import day_key


def utc_now() -> datetime:
    """Timezone-aware UTC now, the default clock."""
    return datetime.now(timezone.utc)


@dataclass
class StreakRecord:
    """
    Domain model for a user's activity streak. Day-level, no direct DB concerns.

    qualifying_days holds distinct days in the order they were counted, which
    is chronological for every record built by the engine.
    """

    user_id: str
    id: str = field(default_factory=lambda: str(uuid4()))
    current_streak: int = 0
    longest_streak: int = 0
    last_event_day: Optional[date] = None
    total_events_completed: int = 0
    qualifying_days: List[date] = field(default_factory=list)
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @classmethod
    def empty(cls, user_id: str, *, now: Optional[datetime] = None) -> "StreakRecord":
        moment = now or utc_now()
        return cls(user_id=user_id, created_at=moment, updated_at=moment)

    def to_payload(self) -> dict:
        return {
            "id": self.id,
            "userId": self.user_id,
            "currentStreak": self.current_streak,
            "longestStreak": self.longest_streak,
            "lastEventDay": day_key(self.last_event_day) if self.last_event_day else None,
            "totalEventsCompleted": self.total_events_completed,
            "qualifyingDays": [day_key(day) for day in self.qualifying_days],
            "createdAt": self.created_at.isoformat() if self.created_at else None,
            "updatedAt": self.updated_at.isoformat() if self.updated_at else None,
        }


def no_streak_payload(user_id: str) -> dict:
    """Sentinel shape returned when a user has never had a qualifying event."""
    return {
        "userId": user_id,
        "currentStreak": 0,
        "longestStreak": 0,
        "lastEventDay": None,
        "totalEventsCompleted": 0,
        "qualifyingDays": [],
    }
