from __future__ import annotations

from dataclasses import dataclass
from datetime import date

from services.event_log_store import EventLogSnapshot
from services.reference_plan import SECTIONS, RoutinePlan
from utils.rounding import round_half_up

MAX_SCORE = 10.0


@dataclass(frozen=True)
class ScoreSnapshot:
    date: date
    morning_score: float
    evening_score: float
    exercises_score: float
    daily_score: float

    def as_dict(self) -> dict:
        return {
            "date": self.date.isoformat(),
            "morningScore": self.morning_score,
            "eveningScore": self.evening_score,
            "exercisesScore": self.exercises_score,
            "dailyScore": self.daily_score,
        }


def _clamp(value: float) -> float:
    return max(0.0, min(MAX_SCORE, value))


def expected_step_ids(snapshot: EventLogSnapshot, plan: RoutinePlan | None, day: date, section: str) -> set[str]:
    """Steps the user was expected to do in one section on one day.

    A flexible ingredient (both windows) is expected only in a section whose
    session actually ran that day. Steps skipped that day are excluded.
    """
    if section not in SECTIONS:
        raise ValueError(f"Unknown section: {section}")
    if plan is None:
        return set()

    if section == "exercises":
        expected = {step.step_id for step in plan.exercises}
    else:
        record = snapshot.record_for(day)
        session_ran = record.session_completed.ran(section) if record else False
        expected = set()
        for step in plan.ingredients:
            definition = step.definition
            if not definition.completable or section not in definition.timing_windows:
                continue
            if definition.is_flexible and not session_ran:
                continue
            expected.add(step.step_id)

    return expected - snapshot.skipped_ids_on(day)


def section_score(snapshot: EventLogSnapshot, plan: RoutinePlan | None, day: date, section: str) -> float:
    expected = expected_step_ids(snapshot, plan, day, section)
    if not expected:
        return 0.0
    completed = snapshot.completed_ids_on(day) & expected
    return _clamp(round_half_up(len(completed) / len(expected) * MAX_SCORE, 1))


def daily_score_from_sections(morning: float, evening: float, exercises: float) -> float:
    """Unweighted mean of all three sections; an empty section still counts as 0.0."""
    return _clamp(round_half_up((morning + evening + exercises) / 3, 1))


def score_day(snapshot: EventLogSnapshot, plan: RoutinePlan | None, day: date) -> ScoreSnapshot:
    morning = section_score(snapshot, plan, day, "morning")
    evening = section_score(snapshot, plan, day, "evening")
    exercises = section_score(snapshot, plan, day, "exercises")
    return ScoreSnapshot(
        date=day,
        morning_score=morning,
        evening_score=evening,
        exercises_score=exercises,
        daily_score=daily_score_from_sections(morning, evening, exercises),
    )


def daily_score(snapshot: EventLogSnapshot, plan: RoutinePlan | None, day: date) -> float:
    return score_day(snapshot, plan, day).daily_score
