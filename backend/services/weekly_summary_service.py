from __future__ import annotations

from dataclasses import dataclass
from datetime import date, timedelta
from typing import Any

from services.effectiveness_service import (
    EffectivenessParameters,
    SkipImpactWeights,
    estimate_skip_impact,
    estimate_time_vs_effectiveness,
)
from services.event_log_store import EventLogSnapshot
from services.reference_plan import ReferenceTable, RoutinePlan
from services.scoring_service import MAX_SCORE, daily_score
from services.skip_analytics_service import aggregate_skips
from services.streak_service import StreakState
from utils.datetime_utils import iter_days, start_of_week
from utils.rounding import round_half_up

DAYS_PER_WEEK = 7


@dataclass(frozen=True)
class RevealedWindow:
    start: date
    days: int

    @property
    def end(self) -> date:
        return self.start + timedelta(days=self.days - 1)

    def dates(self) -> list[date]:
        return list(iter_days(self.start, self.end))


def routine_anchor(snapshot: EventLogSnapshot, fallback: date) -> date:
    """routineStartDate, then signupDate, then the given fallback."""
    return snapshot.routine_start_date or snapshot.signup_date or fallback


def revealed_window(snapshot: EventLogSnapshot, today: date) -> RevealedWindow:
    week_start = start_of_week(today)
    actual_start = max(week_start, routine_anchor(snapshot, week_start))
    days = (today - actual_start).days + 1
    return RevealedWindow(start=actual_start, days=max(1, min(DAYS_PER_WEEK, days)))


def previous_week_window(snapshot: EventLogSnapshot, today: date) -> RevealedWindow | None:
    """The prior calendar week, starting no earlier than the routine; None if the routine had not begun."""
    previous_start = start_of_week(today) - timedelta(days=DAYS_PER_WEEK)
    previous_end = previous_start + timedelta(days=DAYS_PER_WEEK - 1)
    actual_start = max(previous_start, routine_anchor(snapshot, previous_start))
    if actual_start > previous_end:
        return None
    return RevealedWindow(start=actual_start, days=(previous_end - actual_start).days + 1)


def window_consistency(snapshot: EventLogSnapshot, plan: RoutinePlan | None, window: RevealedWindow | None) -> float:
    """Mean daily score over the window; days without a record score 0.0."""
    if window is None:
        return 0.0
    scores = [daily_score(snapshot, plan, day) for day in window.dates()]
    return round_half_up(sum(scores) / window.days, 1)


def _ratio_score(numerator: int, denominator: int) -> float:
    if denominator <= 0:
        return 0.0
    return min(MAX_SCORE, round_half_up(numerator / denominator * MAX_SCORE, 1))


def section_breakdown(snapshot: EventLogSnapshot, plan: RoutinePlan | None, window: RevealedWindow | None) -> dict[str, Any]:
    if window is None:
        return {"morning": 0.0, "evening": 0.0, "exercises": 0.0, "morningDays": 0, "eveningDays": 0, "exerciseCompletions": 0}

    morning_days = 0
    evening_days = 0
    exercise_completions = 0
    exercise_ids = {step.step_id for step in plan.exercises} if plan else set()
    for day in window.dates():
        record = snapshot.record_for(day)
        if record is not None:
            morning_days += int(record.session_completed.morning)
            evening_days += int(record.session_completed.evening)
        exercise_completions += len(snapshot.completed_ids_on(day) & exercise_ids)

    return {
        "morning": _ratio_score(morning_days, window.days),
        "evening": _ratio_score(evening_days, window.days),
        "exercises": _ratio_score(exercise_completions, len(exercise_ids) * window.days),
        "morningDays": morning_days,
        "eveningDays": evening_days,
        "exerciseCompletions": exercise_completions,
    }


def trend_between(current: float, previous: float) -> str:
    if current > previous:
        return "up"
    if current < previous:
        return "down"
    return "same"


def build_weekly_summary(
    snapshot: EventLogSnapshot,
    plan: RoutinePlan | None,
    today: date,
    streak: StreakState,
    *,
    reference: ReferenceTable | None = None,
    params: EffectivenessParameters | None = None,
    weights: SkipImpactWeights | None = None,
) -> dict[str, Any]:
    week_start = start_of_week(today)
    window = revealed_window(snapshot, today)
    previous = previous_week_window(snapshot, today)

    consistency = window_consistency(snapshot, plan, window)
    previous_consistency = window_consistency(snapshot, plan, previous)
    days_completed = sum(1 for day in window.dates() if snapshot.record_for(day) is not None)
    skips = aggregate_skips(snapshot, window.start, window.end, plan=plan, reference=reference)

    return {
        "weekStart": week_start.isoformat(),
        "weekEnd": (week_start + timedelta(days=DAYS_PER_WEEK - 1)).isoformat(),
        "revealedFrom": window.start.isoformat(),
        "overallConsistency": consistency,
        "daysRevealed": window.days,
        "daysCompleted": days_completed,
        "breakdown": section_breakdown(snapshot, plan, window),
        "breakdownPreviousWeek": section_breakdown(snapshot, plan, previous),
        "currentStreak": streak.current_streak,
        "bestStreak": streak.best_streak,
        "totalQualifyingDays": streak.total_qualifying_days,
        "trend": trend_between(consistency, previous_consistency),
        "previousWeekConsistency": previous_consistency,
        "timerSkips": skips.timer_skip_count,
        "productSkips": skips.product_skip_count,
        "exerciseEarlyEnds": skips.exercise_early_end_count,
        "skippedProducts": [row.as_dict() for row in skips.skipped_products_with_counts],
        "mostSkippedStep": skips.most_skipped_step.as_dict() if skips.most_skipped_step else None,
        "timeVsEffectiveness": estimate_time_vs_effectiveness(
            timer_skips=skips.timer_skip_count,
            product_skips=skips.product_skip_count,
            exercise_early_ends=skips.exercise_early_end_count,
            products_in_routine=len(plan.ingredients) if plan else 0,
            exercises_in_routine=len(plan.exercises) if plan else 0,
            days_in_period=window.days,
            params=params,
        ),
        "skipImpact": estimate_skip_impact(
            current_score=consistency,
            timer_skips=skips.timer_skip_count,
            product_skips=skips.product_skip_count,
            exercise_early_ends=skips.exercise_early_end_count,
            active_days=days_completed,
            weights=weights,
        ),
    }
