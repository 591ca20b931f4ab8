from __future__ import annotations

from dataclasses import dataclass
from datetime import date, timedelta
from typing import Any

from services.event_log_store import EventLogSnapshot
from services.reference_plan import RoutinePlan
from services.scoring_service import daily_score
from utils.datetime_utils import format_hhmm, local_minutes_since_midnight, parse_hhmm
from utils.rounding import percent_of, round_half_up

DAY_NAMES = ("Sunday", "Monday", "Tuesday", "Wednesday", "Thursday", "Friday", "Saturday")
MINUTES_PER_DAY = 24 * 60
EVENING_NOTIFICATION_FROM = 18 * 60
EARLY_MORNING_UNTIL = 6 * 60
SAME_DAY_LIMIT_MINUTES = 12 * 60

HARDEST_DAY_MESSAGES = (
    "This is your hardest day of the week. Get it done.",
    "Your toughest day is today. Show up.",
    "This day is your challenge. Complete it.",
    "Hardest day ahead. You've got this.",
)


@dataclass(frozen=True)
class DayPercentage:
    day: str
    day_of_week: int
    percentage: int
    sample_days: int

    def as_dict(self) -> dict:
        return {"day": self.day, "percentage": self.percentage, "sampleDays": self.sample_days}


def pattern_window(today: date, window_days: int = 30) -> tuple[date, date]:
    return today - timedelta(days=window_days), today


def day_of_week_percentages(
    snapshot: EventLogSnapshot,
    plan: RoutinePlan | None,
    start: date,
    end: date,
) -> list[DayPercentage]:
    """Average daily score per weekday (Sunday first), weekdays without data omitted."""
    totals: dict[int, list[float]] = {}
    for day, record in snapshot.daily_records.items():
        if start <= day <= end:
            totals.setdefault(record.day_of_week, []).append(daily_score(snapshot, plan, day))

    out: list[DayPercentage] = []
    for weekday in range(7):
        scores = totals.get(weekday)
        if not scores:
            continue
        average = sum(scores) / len(scores)
        out.append(
            DayPercentage(
                day=DAY_NAMES[weekday],
                day_of_week=weekday,
                percentage=percent_of(average, 10.0),
                sample_days=len(scores),
            )
        )
    return out


def hardest_and_best_day(percentages: list[DayPercentage]) -> tuple[DayPercentage | None, DayPercentage | None]:
    if not percentages:
        return None, None
    # min()/max() keep the first weekday on ties
    hardest = min(percentages, key=lambda row: row.percentage)
    best = max(percentages, key=lambda row: row.percentage)
    return hardest, best


def timing_discrepancy_minutes(average_start: int, configured: int) -> int:
    """Minutes between the average start and the configured reminder time.

    An early-morning start against an evening reminder, or any same-day gap
    over 12 hours, is measured against the adjacent calendar day instead.
    """
    same_day = abs(average_start - configured)
    crosses_midnight = configured >= EVENING_NOTIFICATION_FROM and average_start < EARLY_MORNING_UNTIL
    if not crosses_midnight and same_day <= SAME_DAY_LIMIT_MINUTES:
        return same_day
    if average_start < configured:
        return abs(average_start + MINUTES_PER_DAY - configured)
    return abs(average_start - MINUTES_PER_DAY - configured)


def notification_likelihood_percent(discrepancy_minutes: int, *, max_percent: int = 37, saturation_minutes: int = 240) -> int:
    """Linear estimate of a missed-reminder likelihood, capped at saturation."""
    if discrepancy_minutes >= saturation_minutes:
        return max_percent
    return int(round_half_up(max(discrepancy_minutes, 0) / saturation_minutes * max_percent))


def format_discrepancy(minutes: int) -> str:
    hours, mins = divmod(max(int(minutes), 0), 60)
    if hours == 0:
        return f"{mins}m"
    if mins == 0:
        return f"{hours}h"
    return f"{hours}h {mins}m"


def session_timing(
    snapshot: EventLogSnapshot,
    session: str,
    configured_time: str,
    start: date,
    end: date,
    *,
    tz_name: str | None = None,
    max_percent: int = 37,
    saturation_minutes: int = 240,
) -> dict[str, Any] | None:
    """Average recorded start vs. configured reminder for one session, or None without data."""
    minutes: list[int] = []
    for day, row in snapshot.session_starts.items():
        started = row.for_session(session)
        if started is None or not start <= day <= end:
            continue
        minutes.append(local_minutes_since_midnight(started, tz_name))
    if not minutes:
        return None

    average = int(round_half_up(sum(minutes) / len(minutes)))
    configured = parse_hhmm(configured_time)
    discrepancy = timing_discrepancy_minutes(average, configured)
    return {
        "averageStartTime": {"hour": average // 60, "minute": average % 60},
        "averageStart": format_hhmm(average),
        "configuredTime": format_hhmm(configured),
        "discrepancyMinutes": discrepancy,
        "discrepancyFormatted": format_discrepancy(discrepancy),
        "likelihoodPercent": notification_likelihood_percent(
            discrepancy, max_percent=max_percent, saturation_minutes=saturation_minutes
        ),
        "sampleCount": len(minutes),
    }


def notification_weekday_index(day_name: str) -> int | None:
    """1 = Sunday ... 7 = Saturday, the numbering weekly notification triggers use."""
    lowered = (day_name or "").strip().lower()
    for index, name in enumerate(DAY_NAMES):
        if name.lower() == lowered:
            return index + 1
    return None


def hardest_day_reminder(
    hardest: DayPercentage | None,
    reminder_time: str,
    *,
    enabled: bool = True,
    rotation: int = 0,
) -> dict[str, Any] | None:
    """Payload for the weekly hardest-day reminder, or None when nothing should be scheduled."""
    if not enabled or hardest is None:
        return None
    weekday = notification_weekday_index(hardest.day)
    if weekday is None:
        return None
    minutes = parse_hhmm(reminder_time, "09:00")
    return {
        "identifier": "hardest-day",
        "day": hardest.day,
        "weekday": weekday,
        "hour": minutes // 60,
        "minute": minutes % 60,
        "message": HARDEST_DAY_MESSAGES[rotation % len(HARDEST_DAY_MESSAGES)],
    }
