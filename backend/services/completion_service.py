"""Primary writes to the event log: completions, skips, starts and ratings.

Every write is a single atomic ``DocumentStore.update`` so concurrent
appends to the same user's log are never lost.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date, datetime
from typing import Any, Protocol

from services.event_log_store import (
    DAILY_COMPLETIONS,
    EXERCISE_COMPLETIONS,
    EXERCISE_EARLY_ENDS,
    RATING_VALUES,
    ROUTINE_START_TIMES,
    SESSION_COMPLETIONS,
    SKIN_RATINGS,
    STEP_SKIPS,
    TIMER_SKIPS,
    EventLogStore,
    append_event,
    daily_entry,
    exercise_entry,
    find_daily_entry,
    session_entry,
    step_done_on,
)
from services.reference_plan import SECTIONS, SESSION_WINDOWS, RoutinePlan

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CompletionResult:
    date: date
    completed_steps: list[str]
    all_completed: bool
    newly_all_completed: bool = False

    def as_dict(self) -> dict:
        return {
            "date": self.date.isoformat(),
            "completedSteps": self.completed_steps,
            "allCompleted": self.all_completed,
        }


class CompletionNotifier(Protocol):
    async def routine_completed(self, user_id: str, day: date) -> None:
        ...


class LoggingCompletionNotifier:
    """Default fan-out: records the event; delivery belongs to the notification service."""

    async def routine_completed(self, user_id: str, day: date) -> None:
        logger.info("User %s completed the full routine on %s", user_id, day.isoformat())


def _require_section(section: str) -> str:
    if section not in SECTIONS:
        raise ValueError(f"Unknown session: {section}")
    return section


def _done_ids(document: dict[str, Any], row: dict[str, Any], day: date) -> set[str]:
    done = set(row.get("completedSteps") or [])
    key = day.isoformat()
    for entry in document.get(EXERCISE_COMPLETIONS) or []:
        if isinstance(entry, dict) and entry.get("date") == key:
            done |= {k for k, v in (entry.get("exercises") or {}).items() if v}
    return done


def _refresh_all_completed(document: dict[str, Any], row: dict[str, Any], day: date, plan: RoutinePlan) -> tuple[bool, bool]:
    """Recompute allCompleted; returns (all_completed, newly_all_completed)."""
    required = plan.completable_step_ids()
    was = bool(row.get("allCompleted"))
    now = bool(required) and required <= _done_ids(document, row, day)
    row["allCompleted"] = now
    return now, now and not was


def _result(row: dict[str, Any], day: date, flags: tuple[bool, bool]) -> CompletionResult:
    return CompletionResult(
        date=day,
        completed_steps=list(row.get("completedSteps") or []),
        all_completed=flags[0],
        newly_all_completed=flags[1],
    )


async def mark_step_completed(store: EventLogStore, plan: RoutinePlan, user_id: str, step_id: str, day: date) -> CompletionResult:
    def _apply(document: dict[str, Any]) -> CompletionResult:
        row = daily_entry(document, day)
        if step_id not in row["completedSteps"]:
            row["completedSteps"].append(step_id)
        return _result(row, day, _refresh_all_completed(document, row, day, plan))

    return await store.mutate(user_id, _apply)


async def mark_step_uncompleted(store: EventLogStore, plan: RoutinePlan, user_id: str, step_id: str, day: date) -> CompletionResult:
    def _apply(document: dict[str, Any]) -> CompletionResult:
        row = find_daily_entry(document, day)
        if row is None:
            return CompletionResult(date=day, completed_steps=[], all_completed=False)
        row["completedSteps"] = [s for s in row["completedSteps"] if s != step_id]
        return _result(row, day, _refresh_all_completed(document, row, day, plan))

    return await store.mutate(user_id, _apply)


async def mark_exercise_completed(
    store: EventLogStore, plan: RoutinePlan, user_id: str, exercise_id: str, day: date
) -> CompletionResult:
    def _apply(document: dict[str, Any]) -> CompletionResult:
        exercise_entry(document, day)["exercises"][exercise_id] = True
        row = daily_entry(document, day)
        return _result(row, day, _refresh_all_completed(document, row, day, plan))

    return await store.mutate(user_id, _apply)


async def mark_session_completed(
    store: EventLogStore,
    plan: RoutinePlan,
    user_id: str,
    session: str,
    day: date,
    step_ids: list[str] | None = None,
) -> CompletionResult:
    """Flag a session as run and record the steps done in it.

    The session flag is independent of step completion: a session may be
    marked with no steps.
    """
    _require_section(session)

    def _apply(document: dict[str, Any]) -> CompletionResult:
        session_entry(document, day)[session] = True
        row = daily_entry(document, day)
        row[f"{session}_completed"] = True
        for step_id in step_ids or []:
            if step_id and step_id not in row["completedSteps"]:
                row["completedSteps"].append(step_id)
        return _result(row, day, _refresh_all_completed(document, row, day, plan))

    return await store.mutate(user_id, _apply)


async def record_session_start(store: EventLogStore, user_id: str, session: str, day: date, started_at: datetime) -> bool:
    """Keep only the first start of each session per day."""
    if session not in SESSION_WINDOWS:
        raise ValueError(f"Unknown session: {session}")
    field_name = f"{session}_start"

    def _apply(document: dict[str, Any]) -> bool:
        key = day.isoformat()
        rows = document.setdefault(ROUTINE_START_TIMES, [])
        for row in rows:
            if isinstance(row, dict) and row.get("date") == key:
                if row.get(field_name):
                    return False
                row[field_name] = started_at.isoformat()
                return True
        rows.append({"date": key, field_name: started_at.isoformat()})
        return True

    return await store.mutate(user_id, _apply)


async def record_step_skip(store: EventLogStore, user_id: str, step_id: str, day: date, at: datetime) -> bool:
    def _apply(document: dict[str, Any]) -> bool:
        if step_done_on(document, day, step_id):
            return False
        append_event(
            document,
            STEP_SKIPS,
            {"date": day.isoformat(), "step_id": step_id, "skipped": True, "timestamp": at.isoformat()},
        )
        return True

    return await store.mutate(user_id, _apply)


async def record_timer_skip(
    store: EventLogStore, user_id: str, step_id: str, day: date, at: datetime, timer_duration_seconds: int = 0
) -> bool:
    def _apply(document: dict[str, Any]) -> bool:
        if step_done_on(document, day, step_id):
            return False
        append_event(
            document,
            TIMER_SKIPS,
            {
                "date": day.isoformat(),
                "step_id": step_id,
                "timer_skipped": True,
                "timer_duration": max(int(timer_duration_seconds), 0),
                "timestamp": at.isoformat(),
            },
        )
        return True

    return await store.mutate(user_id, _apply)


async def record_exercise_early_end(store: EventLogStore, user_id: str, exercise_id: str, day: date, at: datetime) -> bool:
    def _apply(document: dict[str, Any]) -> bool:
        if step_done_on(document, day, exercise_id):
            return False
        append_event(
            document,
            EXERCISE_EARLY_ENDS,
            {"date": day.isoformat(), "exercise_id": exercise_id, "ended_early": True, "timestamp": at.isoformat()},
        )
        return True

    return await store.mutate(user_id, _apply)


async def record_outcome_rating(
    store: EventLogStore, user_id: str, week_number: int, rating: str, photo_date: date, at: datetime
) -> dict[str, Any]:
    normalized = (rating or "").strip().lower()
    if normalized not in RATING_VALUES:
        raise ValueError(f"Unsupported rating: {rating}")
    if int(week_number) < 0:
        raise ValueError("week_number must not be negative")
    row = {
        "week_number": int(week_number),
        "photo_date": photo_date.isoformat(),
        "skin_rating": normalized,
        "rating": normalized,
        "timestamp": at.isoformat(),
    }

    def _apply(document: dict[str, Any]) -> dict[str, Any]:
        append_event(document, SKIN_RATINGS, row)
        return row

    return await store.mutate(user_id, _apply)


async def reset_day(store: EventLogStore, user_id: str, day: date) -> None:
    """Developer reset: drop every completion row for one day."""
    key = day.isoformat()

    def _apply(document: dict[str, Any]) -> None:
        for name in (DAILY_COMPLETIONS, SESSION_COMPLETIONS, EXERCISE_COMPLETIONS, ROUTINE_START_TIMES):
            rows = document.get(name)
            if isinstance(rows, list):
                document[name] = [r for r in rows if not (isinstance(r, dict) and r.get("date") == key)]

    await store.mutate(user_id, _apply)
    logger.info("Reset completion data for user %s on %s", user_id, key)


async def reset_skip_analytics(store: EventLogStore, user_id: str) -> None:
    def _apply(document: dict[str, Any]) -> None:
        for name in (STEP_SKIPS, TIMER_SKIPS, EXERCISE_EARLY_ENDS):
            document[name] = []

    await store.mutate(user_id, _apply)
    logger.info("Reset skip analytics for user %s", user_id)
