"""
Rebuild streak records from completed-chat history.

Dry-run by default. Use --live to apply updates.
"""
from __future__ import annotations

import argparse
import os
from typing import Dict, Optional, Tuple

from sqlalchemy.exc import SQLAlchemyError

from streakline.core.errors import AppError
from streakline.core.logging import log_event
from streakline.features.streaks.events import EventSource
from streakline.features.streaks.service import StreakService, get_event_source, get_streak_service
from streakline.models.streak import StreakRecord


def _parse_bool(value: Optional[str], default: bool = False) -> bool:
    if value is None:
        return default
    return str(value).strip().lower() in {"1", "true", "yes", "on"}


def backfill_streaks(
    *,
    dry_run: bool,
    service: StreakService,
    source: EventSource,
    user_id: Optional[str] = None,
) -> Dict:
    report = {
        "users": 0,
        "rebuilt": 0,
        "changed": 0,
        "failed": 0,
        "dry_run": dry_run,
    }

    user_ids = [user_id] if user_id else source.user_ids_with_history()

    for uid in user_ids:
        report["users"] += 1
        try:
            events = source.completed_events(uid)
            if dry_run:
                # Compute only; compare against what is stored
                expected = service.compute_from_history(user_id=uid, events=events)
                existing = service.store.get(uid)
                if existing is None or _counters(existing) != _counters(expected):
                    report["changed"] += 1
                continue

            service.rebuild_from_history(user_id=uid, events=events, source="worker")
            report["rebuilt"] += 1
        except AppError as exc:
            _record_failure(report, uid, exc.code, exc.message)
        except SQLAlchemyError as exc:
            _record_failure(report, uid, "store_error", str(exc))

    return report


def _counters(record: StreakRecord) -> Tuple:
    return (
        record.current_streak,
        record.longest_streak,
        record.last_event_day,
        record.total_events_completed,
        list(record.qualifying_days),
    )


def _record_failure(report: Dict, user_id: str, code: str, message: str) -> None:
    report["failed"] += 1
    log_event(
        "error",
        "streak.backfill_failed",
        user_id=user_id,
        event_type="streak.backfill_failed",
        error_code=code,
        extra={"error": message},
    )


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(description="Rebuild streak records from completed chat history.")
    parser.add_argument("--live", dest="dry_run", action="store_false", help="Write rebuilt records.")
    parser.add_argument("--dry-run", dest="dry_run", action="store_true", help="Run without writes.")
    parser.add_argument("--user", dest="user_id", default=None, help="Only rebuild this user.")
    parser.set_defaults(dry_run=_parse_bool(os.getenv("STREAK_BACKFILL_DRY_RUN", "1"), True))
    args = parser.parse_args(argv)

    report = backfill_streaks(
        dry_run=args.dry_run,
        service=get_streak_service(),
        source=get_event_source(),
        user_id=args.user_id,
    )
    print(report)
    return 1 if report["failed"] else 0


if __name__ == "__main__":
    raise SystemExit(main())
