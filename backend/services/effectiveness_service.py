"""Time saved by skipping versus the effectiveness given up.

All constants are heuristics and live in ``EffectivenessParameters`` so
they can be tuned from settings without touching the arithmetic.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Any

from config import Settings
from utils.rounding import round_half_up

WEEKS_PER_MONTH = 4


@dataclass(frozen=True)
class EffectivenessParameters:
    waiting_seconds_per_timer: int = 30
    seconds_per_product: int = 45
    average_exercise_minutes: float = 12.0
    exercise_time_fraction: float = 0.5
    waiting_max_loss_percent: float = 30.0
    exercise_max_loss_percent: float = 50.0
    points_per_application: int = 14

    @classmethod
    def from_settings(cls, cfg: Settings) -> "EffectivenessParameters":
        return cls(
            waiting_seconds_per_timer=cfg.EFFECT_WAITING_SECONDS_PER_TIMER,
            seconds_per_product=cfg.EFFECT_SECONDS_PER_PRODUCT,
            average_exercise_minutes=cfg.EFFECT_AVERAGE_EXERCISE_MINUTES,
            exercise_time_fraction=cfg.EFFECT_EXERCISE_TIME_FRACTION,
            waiting_max_loss_percent=cfg.EFFECT_WAITING_MAX_LOSS_PERCENT,
            exercise_max_loss_percent=cfg.EFFECT_EXERCISE_MAX_LOSS_PERCENT,
            points_per_application=cfg.EFFECT_POINTS_PER_APPLICATION,
        )


@dataclass(frozen=True)
class SkipImpactWeights:
    product_points: float = 0.8
    timer_points: float = 0.3
    early_end_points: float = 0.2

    @classmethod
    def from_settings(cls, cfg: Settings) -> "SkipImpactWeights":
        return cls(
            product_points=cfg.SKIP_IMPACT_PRODUCT_POINTS,
            timer_points=cfg.SKIP_IMPACT_TIMER_POINTS,
            early_end_points=cfg.SKIP_IMPACT_EARLY_END_POINTS,
        )


def format_minutes(minutes: float) -> str:
    """45s, 12m, 2h, 1h 5m."""
    minutes = max(float(minutes), 0.0)
    if minutes < 1:
        return f"{int(round_half_up(minutes * 60))}s"
    if minutes < 60:
        return f"{int(round_half_up(minutes))}m"
    hours = math.floor(minutes / 60)
    mins = int(round_half_up(minutes % 60))
    if mins == 60:
        hours, mins = hours + 1, 0
    if mins == 0:
        return f"{hours}h"
    return f"{hours}h {mins}m"


def _capped_ratio(events: int, opportunities: int) -> float:
    if opportunities <= 0:
        return 0.0
    return min(max(events, 0), opportunities) / opportunities


def estimate_time_vs_effectiveness(
    *,
    timer_skips: int,
    product_skips: int,
    exercise_early_ends: int,
    products_in_routine: int,
    exercises_in_routine: int,
    days_in_period: int,
    params: EffectivenessParameters | None = None,
) -> dict[str, Any]:
    p = params or EffectivenessParameters()
    days = max(int(days_in_period), 0)
    products = max(int(products_in_routine), 0)
    exercises = max(int(exercises_in_routine), 0)

    waiting_saved_minutes = max(timer_skips, 0) * p.waiting_seconds_per_timer / 60
    product_saved_minutes = max(product_skips, 0) * p.seconds_per_product / 60
    exercise_saved_minutes = max(exercise_early_ends, 0) * p.average_exercise_minutes * p.exercise_time_fraction
    total_saved = waiting_saved_minutes + product_saved_minutes + exercise_saved_minutes

    application_slots = products * days
    waiting_lost = _capped_ratio(timer_skips, application_slots) * p.waiting_max_loss_percent

    ideal_points = application_slots * p.points_per_application
    if ideal_points > 0:
        earned_points = max(0, application_slots - max(product_skips, 0)) * p.points_per_application
        product_lost = 100 - earned_points / ideal_points * 100
    else:
        product_lost = 0.0

    exercise_lost = _capped_ratio(exercise_early_ends, exercises * days) * p.exercise_max_loss_percent
    total_lost = waiting_lost + product_lost + exercise_lost
    monthly_saved = total_saved * WEEKS_PER_MONTH

    return {
        "waitingTimeSavedMinutes": round(waiting_saved_minutes, 2),
        "productTimeSavedMinutes": round(product_saved_minutes, 2),
        "exerciseTimeSavedMinutes": round(exercise_saved_minutes, 2),
        "totalTimeSavedMinutes": round(total_saved, 2),
        "totalTimeSavedFormatted": format_minutes(total_saved),
        "waitingEffectivenessLost": round(waiting_lost, 2),
        "productEffectivenessLost": round(product_lost, 2),
        "exerciseEffectivenessLost": round(exercise_lost, 2),
        "totalEffectivenessLost": round(total_lost, 2),
        "monthlyTimeSavedMinutes": round(monthly_saved, 2),
        "monthlyTimeSavedFormatted": format_minutes(monthly_saved),
        "daysInPeriod": days,
    }


def estimate_skip_impact(
    *,
    current_score: float,
    timer_skips: int,
    product_skips: int,
    exercise_early_ends: int,
    active_days: int,
    weights: SkipImpactWeights | None = None,
) -> dict[str, Any]:
    """How much the consistency score could rise without the skips."""
    w = weights or SkipImpactWeights()
    impacts = [
        ("products", product_skips, product_skips * w.product_points, "Complete all products"),
        ("timers", timer_skips, timer_skips * w.timer_points, "Complete waiting periods"),
        ("exercises", exercise_early_ends, exercise_early_ends * w.early_end_points, "Complete full exercise sessions"),
    ]
    total_impact = sum(row[2] for row in impacts)
    potential = min(10.0, current_score + total_impact)
    improvement = potential - current_score
    base = current_score if current_score > 0 else 10.0
    total_skips = product_skips + timer_skips + exercise_early_ends

    biggest = None
    biggest_impact = 0.0
    for kind, count, impact, message in impacts:
        if count > 0 and impact > biggest_impact:
            biggest_impact = impact
            biggest = {"type": kind, "count": count, "impact": round(impact, 2), "message": message}

    return {
        "currentScore": round(current_score, 1),
        "potentialScore": round(potential, 1),
        "improvementPoints": round(improvement, 1),
        "improvementPercentage": int(round_half_up(improvement / base * 100)),
        "totalSkips": total_skips,
        "skipRate": round(total_skips / max(active_days, 1), 2),
        "biggestOpportunity": biggest,
        "productSkipImpact": round(impacts[0][2], 2),
        "timerSkipImpact": round(impacts[1][2], 2),
        "exerciseEarlyEndImpact": round(impacts[2][2], 2),
    }
