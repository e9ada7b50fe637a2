from datetime import date, timedelta

import pytest

from streakline.core.errors import MalformedHistoryError, OutOfOrderEventError
from streakline.features.streaks import engine
from streakline.models.streak import StreakRecord

D = date(2024, 1, 1)


def _apply_all(days):
    record = StreakRecord.empty("u1")
    for day in days:
        record, _ = engine.apply_event(record, day)
    return record


def test_first_event_starts_streak_at_one():
    record, outcome = engine.apply_event(StreakRecord.empty("u1"), D)
    assert outcome == "counted"
    assert record.current_streak == 1
    assert record.longest_streak == 1
    assert record.last_event_day == D
    assert record.total_events_completed == 1
    assert record.qualifying_days == [D]


def test_consecutive_days_extend_streak():
    record = _apply_all([D, D + timedelta(days=1), D + timedelta(days=2)])
    assert record.current_streak == 3
    assert record.longest_streak == 3


def test_gap_resets_current_but_keeps_longest():
    record = _apply_all([D, D + timedelta(days=1), D + timedelta(days=3)])
    assert record.current_streak == 1
    assert record.longest_streak == 2
    assert record.total_events_completed == 3


def test_same_day_is_a_noop():
    first, _ = engine.apply_event(StreakRecord.empty("u1"), D)
    second, outcome = engine.apply_event(first, D)
    assert outcome == "duplicate"
    assert second is first


def test_apply_event_does_not_mutate_input():
    original = StreakRecord.empty("u1")
    engine.apply_event(original, D)
    assert original.qualifying_days == []
    assert original.current_streak == 0


def test_earlier_day_is_rejected():
    record = _apply_all([D, D + timedelta(days=5)])
    with pytest.raises(OutOfOrderEventError):
        engine.apply_event(record, D + timedelta(days=2))


def test_already_counted_earlier_day_is_duplicate_not_error():
    record = _apply_all([D, D + timedelta(days=1)])
    same, outcome = engine.apply_event(record, D)
    assert outcome == "duplicate"
    assert same is record


def test_is_broken_after_a_missed_day():
    record = _apply_all([D])
    assert not engine.is_broken(record, D)
    assert not engine.is_broken(record, D + timedelta(days=1))
    assert engine.is_broken(record, D + timedelta(days=2))


def test_is_broken_false_for_empty_or_already_zero():
    assert not engine.is_broken(StreakRecord.empty("u1"), D)
    record = _apply_all([D])
    expired = engine.expire(record, D + timedelta(days=3))
    assert not engine.is_broken(expired, D + timedelta(days=10))


def test_expire_zeroes_current_only():
    record = _apply_all([D, D + timedelta(days=1)])
    expired = engine.expire(record, D + timedelta(days=4))
    assert expired.current_streak == 0
    assert expired.longest_streak == 2
    assert expired.qualifying_days == record.qualifying_days
    assert expired.last_event_day == record.last_event_day


def test_expire_leaves_live_streak_alone():
    record = _apply_all([D])
    assert engine.expire(record, D + timedelta(days=1)) is record


def test_event_after_expiry_restarts_at_one():
    record = _apply_all([D, D + timedelta(days=1)])
    expired = engine.expire(record, D + timedelta(days=5))
    restarted, _ = engine.apply_event(expired, D + timedelta(days=5))
    assert restarted.current_streak == 1
    assert restarted.longest_streak == 2


def test_fold_concrete_scenario():
    days = [date(2024, 1, 1), date(2024, 1, 2), date(2024, 1, 2), date(2024, 1, 4)]
    record = engine.fold_history("u1", days)
    assert record.total_events_completed == 3
    assert record.current_streak == 1
    assert record.longest_streak == 2
    assert record.last_event_day == date(2024, 1, 4)
    assert record.qualifying_days == [date(2024, 1, 1), date(2024, 1, 2), date(2024, 1, 4)]


def test_fold_empty_history_is_empty_state():
    record = engine.fold_history("u1", [])
    assert record.current_streak == 0
    assert record.longest_streak == 0
    assert record.last_event_day is None
    assert record.total_events_completed == 0
    assert record.qualifying_days == []


def test_fold_rejects_unordered_days():
    with pytest.raises(MalformedHistoryError):
        engine.fold_history("u1", [D + timedelta(days=2), D])


@pytest.mark.parametrize(
    "offsets",
    [
        [0, 1, 2, 5, 6, 10],
        [0, 0, 0, 1],
        [3, 4, 5, 6, 7, 20, 21],
        [0, 2, 4, 6],
    ],
)
def test_fold_matches_live_replay(offsets):
    days = [D + timedelta(days=n) for n in offsets]
    folded = engine.fold_history("u1", days)
    replayed = _apply_all(days)
    assert folded.current_streak == replayed.current_streak
    assert folded.longest_streak == replayed.longest_streak
    assert folded.total_events_completed == replayed.total_events_completed
    assert folded.qualifying_days == replayed.qualifying_days


def test_longest_never_decreases():
    record = StreakRecord.empty("u1")
    previous = 0
    for offset in [0, 1, 2, 4, 5, 9, 10, 11, 12]:
        record, _ = engine.apply_event(record, D + timedelta(days=offset))
        assert record.longest_streak >= previous
        assert record.longest_streak >= record.current_streak
        previous = record.longest_streak
    assert record.longest_streak == 4
