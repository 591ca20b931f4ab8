from __future__ import annotations

from datetime import date
from typing import Any

from config import Settings, settings
from services.correlation_service import correlation_insights_for_snapshot
from services.effectiveness_service import EffectivenessParameters, estimate_time_vs_effectiveness
from services.event_log_store import EventLogSnapshot
from services.pattern_service import (
    day_of_week_percentages,
    hardest_and_best_day,
    hardest_day_reminder,
    pattern_window,
    session_timing,
)
from services.reference_plan import ReferenceTable, RoutinePlan
from services.skip_analytics_service import aggregate_skips


def configured_session_time(snapshot: EventLogSnapshot, session: str, cfg: Settings) -> str:
    prefs = snapshot.notification_preferences
    if session == "morning":
        return prefs.morning_time or cfg.DEFAULT_MORNING_TIME
    return prefs.evening_time or cfg.DEFAULT_EVENING_TIME


def build_monthly_insights(
    snapshot: EventLogSnapshot,
    plan: RoutinePlan | None,
    today: date,
    *,
    reference: ReferenceTable | None = None,
    cfg: Settings = settings,
) -> dict[str, Any]:
    start, end = pattern_window(today, cfg.PATTERN_WINDOW_DAYS)
    tz_name = snapshot.timezone or cfg.DEFAULT_TIMEZONE

    percentages = day_of_week_percentages(snapshot, plan, start, end)
    hardest, best = hardest_and_best_day(percentages)
    recorded_days = sum(1 for day in snapshot.daily_records if start <= day <= end)

    timing = {
        session: session_timing(
            snapshot,
            session,
            configured_session_time(snapshot, session, cfg),
            start,
            end,
            tz_name=tz_name,
            max_percent=cfg.NOTIFICATION_MAX_LIKELIHOOD_PERCENT,
            saturation_minutes=cfg.NOTIFICATION_SATURATION_MINUTES,
        )
        for session in ("morning", "evening")
    }

    skips = aggregate_skips(snapshot, start, end, plan=plan, reference=reference)
    effectiveness = estimate_time_vs_effectiveness(
        timer_skips=skips.timer_skip_count,
        product_skips=skips.product_skip_count,
        exercise_early_ends=skips.exercise_early_end_count,
        products_in_routine=len(plan.ingredients) if plan else 0,
        exercises_in_routine=len(plan.exercises) if plan else 0,
        days_in_period=(end - start).days + 1,
        params=EffectivenessParameters.from_settings(cfg),
    )

    return {
        "windowStart": start.isoformat(),
        "windowEnd": end.isoformat(),
        "hardestDay": hardest.as_dict() if hardest else None,
        "bestDay": best.as_dict() if best else None,
        "dayPercentages": [row.as_dict() for row in percentages],
        "notificationTiming": timing,
        "correlationInsights": correlation_insights_for_snapshot(
            snapshot,
            plan,
            reference=reference,
            today=today,
            min_rated_weeks=cfg.CORRELATION_MIN_RATED_WEEKS,
            threshold=cfg.CORRELATION_SIGNIFICANCE_THRESHOLD,
        ),
        "hasEnoughData": recorded_days >= cfg.MONTHLY_ENOUGH_DATA_DAYS,
        "recordedDays": recorded_days,
        "skips": skips.as_dict(),
        "timeVsEffectiveness": effectiveness,
    }


def build_hardest_day_reminder(
    snapshot: EventLogSnapshot,
    plan: RoutinePlan | None,
    today: date,
    *,
    cfg: Settings = settings,
) -> dict[str, Any] | None:
    """Weekly reminder payload for the notification collaborator; message rotates by ISO week."""
    start, end = pattern_window(today, cfg.PATTERN_WINDOW_DAYS)
    hardest, _ = hardest_and_best_day(day_of_week_percentages(snapshot, plan, start, end))
    prefs = snapshot.notification_preferences
    return hardest_day_reminder(
        hardest,
        prefs.hardest_day_time or cfg.DEFAULT_HARDEST_DAY_TIME,
        enabled=prefs.hardest_day_enabled,
        rotation=today.isocalendar()[1],
    )
