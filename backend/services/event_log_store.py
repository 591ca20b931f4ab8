"""Typed view over a user's event-log document.

The document layout (top-level keys) is owned here; everything downstream
works with ``EventLogSnapshot``. Malformed rows are skipped rather than
raised so that scoring always sees a usable snapshot.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Any

from services.document_store import DocumentStore, UserDocumentNotFound
from utils.datetime_utils import parse_iso_date, parse_iso_datetime, sunday_based_weekday, utcnow

logger = logging.getLogger(__name__)

DAILY_COMPLETIONS = "dailyCompletions"
SESSION_COMPLETIONS = "sessionCompletions"
EXERCISE_COMPLETIONS = "exerciseCompletions"
STEP_SKIPS = "stepSkips"
TIMER_SKIPS = "timerSkips"
EXERCISE_EARLY_ENDS = "exerciseEarlyEnds"
ROUTINE_START_TIMES = "routineStartTimes"
SKIN_RATINGS = "skinRatings"
OUTCOME_RATINGS = "outcomeRatings"  # legacy key, read only
STATS = "stats"
SIGNUP_DATE = "signupDate"
ROUTINE_START_DATE = "routineStartDate"
NOTIFICATION_PREFERENCES = "notificationPreferences"
TIMEZONE = "timezone"

RATING_VALUES = ("worse", "same", "better")


@dataclass(frozen=True)
class SessionFlags:
    morning: bool = False
    evening: bool = False
    exercises: bool = False

    def ran(self, section: str) -> bool:
        return bool(getattr(self, section, False))


@dataclass(frozen=True)
class DailyRecord:
    date: date
    day_of_week: int  # 0 = Sunday
    completed_step_ids: frozenset[str] = frozenset()
    session_completed: SessionFlags = SessionFlags()
    all_completed: bool = False


@dataclass(frozen=True)
class StepSkip:
    date: date
    step_id: str
    timestamp: datetime | None = None


@dataclass(frozen=True)
class TimerSkip:
    date: date
    step_id: str
    timestamp: datetime | None = None
    timer_duration_seconds: int = 0


@dataclass(frozen=True)
class ExerciseEarlyEnd:
    date: date
    exercise_id: str
    timestamp: datetime | None = None


@dataclass(frozen=True)
class OutcomeRating:
    week_number: int
    photo_date: date | None
    rating: str  # worse | same | better


@dataclass(frozen=True)
class SessionStart:
    date: date
    morning_start: datetime | None = None
    evening_start: datetime | None = None

    def for_session(self, session: str) -> datetime | None:
        return self.morning_start if session == "morning" else self.evening_start if session == "evening" else None


@dataclass(frozen=True)
class CachedStats:
    current_streak: int = 0
    best_streak: int = 0
    total_days_completed: int = 0


@dataclass(frozen=True)
class NotificationPreferences:
    morning_time: str | None = None
    evening_time: str | None = None
    hardest_day_time: str | None = None
    hardest_day_enabled: bool = False


@dataclass(frozen=True)
class EventLogSnapshot:
    user_id: str
    exists: bool = True
    daily_records: dict[date, DailyRecord] = field(default_factory=dict)
    exercise_completions: dict[date, frozenset[str]] = field(default_factory=dict)
    step_skips: tuple[StepSkip, ...] = ()
    timer_skips: tuple[TimerSkip, ...] = ()
    exercise_early_ends: tuple[ExerciseEarlyEnd, ...] = ()
    ratings: tuple[OutcomeRating, ...] = ()
    session_starts: dict[date, SessionStart] = field(default_factory=dict)
    signup_date: date | None = None
    routine_start_date: date | None = None
    stats: CachedStats = CachedStats()
    timezone: str | None = None
    notification_preferences: NotificationPreferences = NotificationPreferences()
    document: dict[str, Any] = field(default_factory=dict)

    def record_for(self, day: date) -> DailyRecord | None:
        return self.daily_records.get(day)

    def completed_ids_on(self, day: date) -> set[str]:
        record = self.daily_records.get(day)
        done = set(record.completed_step_ids) if record else set()
        done |= set(self.exercise_completions.get(day, frozenset()))
        return done

    def skipped_ids_on(self, day: date) -> set[str]:
        return {s.step_id for s in self.step_skips if s.date == day}

    def step_skips_between(self, start: date, end: date) -> list[StepSkip]:
        return [s for s in self.step_skips if start <= s.date <= end]

    def timer_skips_between(self, start: date, end: date) -> list[TimerSkip]:
        return [s for s in self.timer_skips if start <= s.date <= end]

    def early_ends_between(self, start: date, end: date) -> list[ExerciseEarlyEnd]:
        return [s for s in self.exercise_early_ends if start <= s.date <= end]


def empty_snapshot(user_id: str) -> EventLogSnapshot:
    return EventLogSnapshot(user_id=user_id, exists=False)


def _rows(document: dict[str, Any], key: str) -> list[dict[str, Any]]:
    rows = document.get(key)
    if not isinstance(rows, list):
        return []
    return [row for row in rows if isinstance(row, dict)]


def _as_int(value: Any, default: int = 0) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        return default


def _parse_daily_records(document: dict[str, Any]) -> dict[date, DailyRecord]:
    steps: dict[date, set[str]] = {}
    flags: dict[date, dict[str, bool]] = {}
    all_done: dict[date, bool] = {}

    def _touch(day: date) -> None:
        steps.setdefault(day, set())
        flags.setdefault(day, {"morning": False, "evening": False, "exercises": False})

    for row in _rows(document, DAILY_COMPLETIONS):
        day = parse_iso_date(row.get("date"))
        if day is None:
            continue
        _touch(day)
        steps[day].update(str(s) for s in (row.get("completedSteps") or []) if s)
        for section in ("morning", "evening", "exercises"):
            if row.get(f"{section}_completed"):
                flags[day][section] = True
        all_done[day] = all_done.get(day, False) or bool(row.get("allCompleted"))

    for row in _rows(document, SESSION_COMPLETIONS):
        day = parse_iso_date(row.get("date"))
        if day is None:
            continue
        _touch(day)
        for section in ("morning", "evening", "exercises"):
            if row.get(section):
                flags[day][section] = True

    return {
        day: DailyRecord(
            date=day,
            day_of_week=sunday_based_weekday(day),
            completed_step_ids=frozenset(steps[day]),
            session_completed=SessionFlags(**flags[day]),
            all_completed=all_done.get(day, False),
        )
        for day in steps
    }


def _parse_exercise_completions(document: dict[str, Any]) -> dict[date, frozenset[str]]:
    out: dict[date, set[str]] = {}
    for row in _rows(document, EXERCISE_COMPLETIONS):
        day = parse_iso_date(row.get("date"))
        exercises = row.get("exercises")
        if day is None or not isinstance(exercises, dict):
            continue
        out.setdefault(day, set()).update(str(k) for k, done in exercises.items() if done)
    return {day: frozenset(ids) for day, ids in out.items()}


def _parse_ratings(document: dict[str, Any]) -> tuple[OutcomeRating, ...]:
    ratings: list[OutcomeRating] = []
    for row in _rows(document, SKIN_RATINGS) + _rows(document, OUTCOME_RATINGS):
        rating = str(row.get("skin_rating") or row.get("rating") or "").strip().lower()
        if rating not in RATING_VALUES:
            continue
        ratings.append(
            OutcomeRating(
                week_number=_as_int(row.get("week_number"), -1),
                photo_date=parse_iso_date(row.get("photo_date")),
                rating=rating,
            )
        )
    return tuple(ratings)


def _parse_session_starts(document: dict[str, Any]) -> dict[date, SessionStart]:
    out: dict[date, SessionStart] = {}
    for row in _rows(document, ROUTINE_START_TIMES):
        day = parse_iso_date(row.get("date"))
        if day is None:
            continue
        existing = out.get(day)
        morning = parse_iso_datetime(row.get("morning_start"))
        evening = parse_iso_datetime(row.get("evening_start"))
        if existing is not None:
            morning = existing.morning_start or morning
            evening = existing.evening_start or evening
        out[day] = SessionStart(date=day, morning_start=morning, evening_start=evening)
    return out


def _parse_stats(document: dict[str, Any]) -> CachedStats:
    raw = document.get(STATS)
    if not isinstance(raw, dict):
        return CachedStats()
    return CachedStats(
        current_streak=max(_as_int(raw.get("current_streak")), 0),
        best_streak=max(_as_int(raw.get("best_streak")), 0),
        total_days_completed=max(_as_int(raw.get("total_days_completed")), 0),
    )


def _parse_preferences(document: dict[str, Any]) -> NotificationPreferences:
    raw = document.get(NOTIFICATION_PREFERENCES)
    if not isinstance(raw, dict):
        return NotificationPreferences()
    enabled = raw.get("hardestDayNotificationEnabled")
    return NotificationPreferences(
        morning_time=raw.get("morningTime") or None,
        evening_time=raw.get("eveningTime") or None,
        hardest_day_time=raw.get("hardestDayNotificationTime") or None,
        hardest_day_enabled=bool(enabled),
    )


def _dated_rows(document: dict[str, Any], key: str, id_field: str) -> list[tuple[date, dict[str, Any]]]:
    out: list[tuple[date, dict[str, Any]]] = []
    for row in _rows(document, key):
        day = parse_iso_date(row.get("date"))
        if day is None or not row.get(id_field):
            continue
        out.append((day, row))
    return out


def parse_snapshot(user_id: str, document: dict[str, Any]) -> EventLogSnapshot:
    step_skips = tuple(
        StepSkip(date=day, step_id=str(row["step_id"]), timestamp=parse_iso_datetime(row.get("timestamp")))
        for day, row in _dated_rows(document, STEP_SKIPS, "step_id")
    )
    timer_skips = tuple(
        TimerSkip(
            date=day,
            step_id=str(row["step_id"]),
            timestamp=parse_iso_datetime(row.get("timestamp")),
            timer_duration_seconds=max(_as_int(row.get("timer_duration")), 0),
        )
        for day, row in _dated_rows(document, TIMER_SKIPS, "step_id")
    )
    early_ends = tuple(
        ExerciseEarlyEnd(date=day, exercise_id=str(row["exercise_id"]), timestamp=parse_iso_datetime(row.get("timestamp")))
        for day, row in _dated_rows(document, EXERCISE_EARLY_ENDS, "exercise_id")
    )
    tz_name = document.get(TIMEZONE)
    return EventLogSnapshot(
        user_id=user_id,
        exists=True,
        daily_records=_parse_daily_records(document),
        exercise_completions=_parse_exercise_completions(document),
        step_skips=step_skips,
        timer_skips=timer_skips,
        exercise_early_ends=early_ends,
        ratings=_parse_ratings(document),
        session_starts=_parse_session_starts(document),
        signup_date=parse_iso_date(document.get(SIGNUP_DATE)),
        routine_start_date=parse_iso_date(document.get(ROUTINE_START_DATE)),
        stats=_parse_stats(document),
        timezone=tz_name if isinstance(tz_name, str) and tz_name else None,
        notification_preferences=_parse_preferences(document),
        document=document,
    )


# Document mutation helpers. These run inside DocumentStore.update so every
# append is applied to the latest version of the document.

def find_daily_entry(document: dict[str, Any], day: date) -> dict[str, Any] | None:
    key = day.isoformat()
    for row in _rows(document, DAILY_COMPLETIONS):
        if row.get("date") == key:
            row.setdefault("completedSteps", [])
            return row
    return None


def daily_entry(document: dict[str, Any], day: date) -> dict[str, Any]:
    """Return the dailyCompletions row for day, creating it on first use."""
    existing = find_daily_entry(document, day)
    if existing is not None:
        return existing
    key = day.isoformat()
    rows = document.setdefault(DAILY_COMPLETIONS, [])
    row = {
        "date": key,
        "day_of_week": sunday_based_weekday(day),
        "completedSteps": [],
        "allCompleted": False,
        "morning_completed": False,
        "evening_completed": False,
        "exercises_completed": False,
    }
    rows.append(row)
    return row


def session_entry(document: dict[str, Any], day: date) -> dict[str, Any]:
    key = day.isoformat()
    rows = document.setdefault(SESSION_COMPLETIONS, [])
    for row in rows:
        if isinstance(row, dict) and row.get("date") == key:
            return row
    row = {"date": key, "morning": False, "evening": False, "exercises": False}
    rows.append(row)
    return row


def exercise_entry(document: dict[str, Any], day: date) -> dict[str, Any]:
    key = day.isoformat()
    rows = document.setdefault(EXERCISE_COMPLETIONS, [])
    for row in rows:
        if isinstance(row, dict) and row.get("date") == key:
            if not isinstance(row.get("exercises"), dict):
                row["exercises"] = {}
            return row
    row = {"date": key, "exercises": {}}
    rows.append(row)
    return row


def step_done_on(document: dict[str, Any], day: date, step_id: str) -> bool:
    key = day.isoformat()
    for row in _rows(document, DAILY_COMPLETIONS):
        if row.get("date") == key and step_id in (row.get("completedSteps") or []):
            return True
    for row in _rows(document, EXERCISE_COMPLETIONS):
        if row.get("date") == key and (row.get("exercises") or {}).get(step_id):
            return True
    return False


def append_event(document: dict[str, Any], key: str, row: dict[str, Any]) -> None:
    rows = document.get(key)
    if not isinstance(rows, list):
        rows = []
        document[key] = rows
    rows.append(row)


def stats_payload(current_streak: int, best_streak: int, total_days_completed: int) -> dict[str, Any]:
    return {
        "current_streak": int(current_streak),
        "best_streak": int(best_streak),
        "total_days_completed": int(total_days_completed),
        "last_updated": utcnow().isoformat(),
    }


class EventLogStore:
    """Reads snapshots and applies atomic mutations through a DocumentStore."""

    def __init__(self, store: DocumentStore) -> None:
        self._store = store

    @property
    def document_store(self) -> DocumentStore:
        return self._store

    async def load_snapshot(self, user_id: str) -> EventLogSnapshot:
        try:
            document = await self._store.get(user_id)
        except UserDocumentNotFound:
            logger.info("No event log for user %s; using empty snapshot", user_id)
            return empty_snapshot(user_id)
        return parse_snapshot(user_id, document)

    async def mutate(self, user_id: str, mutate):
        return await self._store.update(user_id, mutate)

    async def write_stats(self, user_id: str, current_streak: int, best_streak: int, total_days_completed: int) -> None:
        payload = stats_payload(current_streak, best_streak, total_days_completed)

        def _apply(document: dict[str, Any]) -> None:
            merged = dict(payload)
            existing = document.get(STATS)
            if isinstance(existing, dict):
                # best streak never goes down
                merged["best_streak"] = max(merged["best_streak"], _as_int(existing.get("best_streak")))
            document[STATS] = merged

        await self._store.update(user_id, _apply)
