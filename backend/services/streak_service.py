from __future__ import annotations

from dataclasses import dataclass
from datetime import date, timedelta

from services.event_log_store import EventLogSnapshot
from services.reference_plan import RoutinePlan
from services.scoring_service import daily_score

DEFAULT_QUALIFYING_SCORE = 7.0
DEFAULT_MAX_LOOKBACK_DAYS = 365


@dataclass(frozen=True)
class StreakState:
    current_streak: int
    best_streak: int
    total_qualifying_days: int

    def as_dict(self) -> dict:
        return {
            "currentStreak": self.current_streak,
            "bestStreak": self.best_streak,
            "totalQualifyingDays": self.total_qualifying_days,
        }


def qualifying_dates(
    snapshot: EventLogSnapshot,
    plan: RoutinePlan | None,
    *,
    qualifying_score: float = DEFAULT_QUALIFYING_SCORE,
) -> set[date]:
    """Dates with a daily record whose daily score reaches the threshold."""
    return {day for day in snapshot.daily_records if daily_score(snapshot, plan, day) >= qualifying_score}


def current_streak(qualifying: set[date], today: date, *, max_lookback_days: int = DEFAULT_MAX_LOOKBACK_DAYS) -> int:
    # An unfinished today does not break the streak; count from yesterday.
    cursor = today if today in qualifying else today - timedelta(days=1)
    streak = 0
    while streak < max_lookback_days and cursor in qualifying:
        streak += 1
        cursor -= timedelta(days=1)
    return streak


def longest_run(qualifying: set[date]) -> int:
    best = 0
    run = 0
    previous: date | None = None
    for day in sorted(qualifying):
        if previous is not None and (day - previous).days == 1:
            run += 1
        else:
            run = 1
        best = max(best, run)
        previous = day
    return best


def compute_streak_state(
    snapshot: EventLogSnapshot,
    plan: RoutinePlan | None,
    today: date,
    *,
    qualifying_score: float = DEFAULT_QUALIFYING_SCORE,
    max_lookback_days: int = DEFAULT_MAX_LOOKBACK_DAYS,
) -> StreakState:
    """Current/best streak plus qualifying-day total.

    ``best_streak`` never decreases: it is merged with the cached value and
    is never below the current streak.
    """
    qualifying = qualifying_dates(snapshot, plan, qualifying_score=qualifying_score)
    current = current_streak(qualifying, today, max_lookback_days=max_lookback_days)
    best = max(longest_run(qualifying), snapshot.stats.best_streak, current)
    return StreakState(current_streak=current, best_streak=best, total_qualifying_days=len(qualifying))
