from __future__ import annotations

import asyncio
import sys
from datetime import date, datetime, timezone
from pathlib import Path

import pytest


ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from config import Settings  # noqa: E402
from services.document_store import InMemoryDocumentStore, UserDocumentNotFound  # noqa: E402
from services.event_log_store import EventLogStore  # noqa: E402
from services.reference_plan import load_reference_table  # noqa: E402
from services.routine_engine import RoutineEngine  # noqa: E402
from services.task_queue import BackgroundTaskQueue  # noqa: E402

REFERENCE = load_reference_table(ROOT / "reference" / "reference_steps.json")
DAY = date(2024, 3, 6)


class RecordingNotifier:
    def __init__(self, fail: bool = False) -> None:
        self.calls = []
        self.fail = fail

    async def routine_completed(self, user_id: str, day: date) -> None:
        if self.fail:
            raise RuntimeError("push service unavailable")
        self.calls.append((user_id, day))


def _engine(notifier=None, documents=None) -> RoutineEngine:
    documents = documents if documents is not None else {
        "u1": {
            "signupDate": "2024-03-01",
            "timezone": "UTC",
            "ingredientSelections": [
                {"ingredient_id": "vitamin_c", "state": "added"},
                {"ingredient_id": "retinol", "state": "added"},
            ],
            "exerciseSelections": [
                {"exercise_id": "jaw_exercise", "state": "added"},
                {"exercise_id": "mewing", "state": "added"},
            ],
        }
    }
    store = EventLogStore(InMemoryDocumentStore(documents))
    return RoutineEngine(store, REFERENCE, Settings(ENVIRONMENT="test"), notifier=notifier or RecordingNotifier())


def test_completions_update_scores_and_fan_out_once():
    notifier = RecordingNotifier()
    engine = _engine(notifier)

    async def _run():
        first = await engine.complete_step("u1", "vitamin_c", DAY)
        await engine.complete_step("u1", "retinol", DAY)
        last = await engine.complete_exercise("u1", "jaw_exercise", DAY)
        again = await engine.complete_step("u1", "vitamin_c", DAY)
        await engine.queue.drain()
        return first, last, again, await engine.score("u1", DAY), await engine.load("u1")

    first, last, again, score, (snapshot, _) = asyncio.run(_run())

    assert first.all_completed is False
    assert last.all_completed is True
    assert last.newly_all_completed is True
    assert again.newly_all_completed is False
    assert notifier.calls == [("u1", DAY)]
    assert score.daily_score == 10.0
    assert snapshot.stats.current_streak == 1
    assert snapshot.stats.best_streak == 1


def test_uncomplete_step_clears_all_completed():
    engine = _engine()

    async def _run():
        await engine.complete_step("u1", "vitamin_c", DAY)
        await engine.complete_step("u1", "retinol", DAY)
        await engine.complete_exercise("u1", "jaw_exercise", DAY)
        return await engine.uncomplete_step("u1", "retinol", DAY)

    result = asyncio.run(_run())

    assert result.completed_steps == ["vitamin_c"]
    assert result.all_completed is False


def test_uncomplete_on_an_untouched_day_leaves_no_record():
    engine = _engine()

    async def _run():
        result = await engine.uncomplete_step("u1", "vitamin_c", DAY)
        snapshot, _ = await engine.load("u1")
        return result, snapshot

    result, snapshot = asyncio.run(_run())

    assert result.completed_steps == []
    assert result.all_completed is False
    assert DAY not in snapshot.daily_records
    assert "dailyCompletions" not in snapshot.document


def test_skip_is_ignored_once_step_is_done():
    engine = _engine()

    async def _run():
        await engine.complete_step("u1", "vitamin_c", DAY)
        done_skip = await engine.skip_step("u1", "vitamin_c", DAY)
        open_skip = await engine.skip_step("u1", "retinol", DAY)
        timer_skip = await engine.skip_timer("u1", "retinol", 45, DAY)
        early_end = await engine.end_exercise_early("u1", "jaw_exercise", DAY)
        return done_skip, open_skip, timer_skip, early_end, await engine.skip_analytics("u1", DAY, DAY)

    done_skip, open_skip, timer_skip, early_end, analytics = asyncio.run(_run())

    assert done_skip is False
    assert open_skip is True
    assert timer_skip is True
    assert early_end is True
    assert analytics.product_skip_count == 1
    assert analytics.most_skipped_step.step_id == "retinol"
    assert analytics.timer_skip_count == 1
    assert analytics.exercise_early_end_count == 1


def test_skipped_step_leaves_the_evening_denominator():
    engine = _engine()

    async def _run():
        await engine.complete_step("u1", "vitamin_c", DAY)
        await engine.skip_step("u1", "retinol", DAY)
        return await engine.score("u1", DAY)

    score = asyncio.run(_run())

    assert score.morning_score == 10.0
    assert score.evening_score == 0.0  # nothing left to expect


def test_only_first_session_start_is_kept():
    engine = _engine()
    early = datetime(2024, 3, 6, 7, 0, tzinfo=timezone.utc)
    late = datetime(2024, 3, 6, 9, 0, tzinfo=timezone.utc)

    async def _run():
        first = await engine.start_session("u1", "morning", early, DAY)
        second = await engine.start_session("u1", "morning", late, DAY)
        snapshot, _ = await engine.load("u1")
        return first, second, snapshot

    first, second, snapshot = asyncio.run(_run())

    assert first is True
    assert second is False
    assert snapshot.session_starts[DAY].morning_start == early

    with pytest.raises(ValueError):
        asyncio.run(engine.start_session("u1", "exercises", early, DAY))


def test_session_completion_marks_session_and_steps():
    engine = _engine()

    async def _run():
        result = await engine.complete_session("u1", "evening", ["retinol"], DAY)
        return result, await engine.score("u1", DAY)

    result, score = asyncio.run(_run())

    assert result.completed_steps == ["retinol"]
    assert score.evening_score == 10.0

    with pytest.raises(ValueError):
        asyncio.run(engine.complete_session("u1", "afternoon", [], DAY))


def test_outcome_rating_validation():
    engine = _engine()

    row = asyncio.run(engine.rate_week("u1", 2, "Better", date(2024, 3, 15)))
    assert row["rating"] == "better"
    assert row["photo_date"] == "2024-03-15"
    snapshot, _ = asyncio.run(engine.load("u1"))
    assert snapshot.document["skinRatings"][0]["skin_rating"] == "better"
    assert [(r.week_number, r.rating) for r in snapshot.ratings] == [(2, "better")]

    with pytest.raises(ValueError):
        asyncio.run(engine.rate_week("u1", 3, "amazing"))
    with pytest.raises(ValueError):
        asyncio.run(engine.rate_week("u1", -1, "same"))


def test_reads_for_unknown_user_degrade_and_skip_cache_write():
    engine = _engine(documents={})

    async def _run():
        score = await engine.score("ghost", DAY)
        streak = await engine.streak("ghost", DAY)
        summary = await engine.weekly_summary("ghost", DAY)
        return score, streak, summary

    score, streak, summary = asyncio.run(_run())

    assert score.daily_score == 0.0
    assert streak.current_streak == 0
    assert summary["overallConsistency"] == 0.0
    assert engine.queue.pending == 0


def test_writes_for_unknown_user_raise_not_found():
    engine = _engine(documents={})

    with pytest.raises(UserDocumentNotFound):
        asyncio.run(engine.complete_step("ghost", "vitamin_c", DAY))


def test_weekly_summary_schedules_stats_write():
    engine = _engine()

    async def _run():
        await engine.complete_step("u1", "vitamin_c", DAY)
        await engine.complete_step("u1", "retinol", DAY)
        await engine.complete_exercise("u1", "jaw_exercise", DAY)
        await engine.queue.drain()
        summary = await engine.weekly_summary("u1", DAY)
        pending = engine.queue.pending
        await engine.queue.drain()
        snapshot, _ = await engine.load("u1")
        return summary, pending, snapshot

    summary, pending, snapshot = asyncio.run(_run())

    assert summary["currentStreak"] == 1
    assert pending == 1
    assert snapshot.stats.best_streak == 1


def test_failed_fan_out_does_not_reach_the_caller():
    engine = _engine(RecordingNotifier(fail=True))

    async def _run():
        await engine.complete_step("u1", "vitamin_c", DAY)
        await engine.complete_step("u1", "retinol", DAY)
        result = await engine.complete_exercise("u1", "jaw_exercise", DAY)
        await engine.queue.drain()
        return result

    result = asyncio.run(_run())

    assert result.all_completed is True
    assert engine.queue.failed == 1


def test_reset_day_clears_completions():
    engine = _engine()

    async def _run():
        await engine.complete_step("u1", "vitamin_c", DAY)
        await engine.complete_session("u1", "morning", [], DAY)
        await engine.reset_day("u1", DAY)
        return await engine.score("u1", DAY)

    assert asyncio.run(_run()).daily_score == 0.0


def test_queue_retries_up_to_max_attempts():
    queue = BackgroundTaskQueue(max_attempts=3)
    attempts = []

    async def _flaky():
        attempts.append(1)
        if len(attempts) < 3:
            raise RuntimeError("try again")

    async def _run():
        queue.submit("flaky", _flaky)
        await queue.drain()

    asyncio.run(_run())

    assert len(attempts) == 3
    assert queue.completed == 1
    assert queue.failed == 0


def test_queue_drops_jobs_when_full():
    queue = BackgroundTaskQueue(max_size=1)

    async def _noop():
        return None

    assert queue.submit("first", _noop) is True
    assert queue.submit("second", _noop) is False
