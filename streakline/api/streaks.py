from __future__ import annotations

import json
from datetime import datetime
from typing import List, Optional, Union

from fastapi import APIRouter, Depends, Request
from pydantic import BaseModel, ConfigDict, Field
from pydantic import ValidationError as PydanticValidationError

from streakline.core.auth import get_current_user_id
from streakline.core.errors import ValidationError
from streakline.features.streaks.events import EventSource
from streakline.features.streaks.service import StreakService, get_event_source, get_streak_service
from streakline.models.streak import no_streak_payload

router = APIRouter(prefix="/api/streaks")


class CompletionEvent(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    completion_date: Optional[datetime] = Field(None, alias="completionDate")


async def completion_date(request: Request) -> Optional[datetime]:
    """Read the optional completion time; an absent or unreadable body means "now"."""
    raw = await request.body()
    if not raw:
        return None
    try:
        body = json.loads(raw)
    except ValueError:
        return None
    if not isinstance(body, dict):
        return None
    try:
        return CompletionEvent.model_validate(body).completion_date
    except PydanticValidationError as exc:
        raise ValidationError("completionDate must be an ISO 8601 datetime") from exc


class RebuildRequest(BaseModel):
    # Raw values; the service rejects anything unparseable as malformed history
    events: List[Union[datetime, str]] = Field(default_factory=list)


@router.get("")
def get_streak(
    user_id: str = Depends(get_current_user_id),
    service: StreakService = Depends(get_streak_service),
):
    """Return the caller's streak, expiring it first if a day was missed."""
    record = service.get_streak(user_id)
    if record is None:
        return no_streak_payload(user_id)
    return record.to_payload()


@router.post("/update")
def update_streak(
    user_id: str = Depends(get_current_user_id),
    occurred_at: Optional[datetime] = Depends(completion_date),
    service: StreakService = Depends(get_streak_service),
):
    """Count a completed chat. Called after a chat analysis finishes."""
    record = service.record_event(user_id=user_id, occurred_at=occurred_at)
    return record.to_payload()


@router.post("/backfill")
def backfill_streak(
    user_id: str = Depends(get_current_user_id),
    service: StreakService = Depends(get_streak_service),
    source: EventSource = Depends(get_event_source),
):
    record = service.backfill(user_id=user_id, source=source)
    return {
        "message": "Streak data backfilled successfully",
        "streak": record.to_payload(),
    }


@router.post("/rebuild")
def rebuild_streak(
    payload: RebuildRequest,
    user_id: str = Depends(get_current_user_id),
    service: StreakService = Depends(get_streak_service),
):
    """Replace the caller's streak with one recomputed from the supplied history."""
    record = service.rebuild_from_history(user_id=user_id, events=payload.events)
    return {
        "message": "Streak data rebuilt successfully",
        "streak": record.to_payload(),
    }
