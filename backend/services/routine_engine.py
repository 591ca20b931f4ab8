"""Process-wide entry point that wires the collaborators together.

Built once at startup (see ``main.lifespan``) and handed to the API layer.
Reads load one snapshot per call; side effects that may lag the response
(stats cache, completion fan-out) go through the background queue.
"""

from __future__ import annotations

import logging
from datetime import date, datetime
from typing import Any

from config import Settings
from services import completion_service
from services.completion_service import CompletionNotifier, CompletionResult, LoggingCompletionNotifier
from services.effectiveness_service import EffectivenessParameters, SkipImpactWeights, estimate_time_vs_effectiveness
from services.event_log_store import EventLogSnapshot, EventLogStore
from services.monthly_insights_service import build_hardest_day_reminder, build_monthly_insights
from services.reference_plan import ReferenceTable, RoutinePlan, build_routine_plan
from services.scoring_service import ScoreSnapshot, score_day
from services.skip_analytics_service import SkipAnalytics, aggregate_skips
from services.streak_service import StreakState, compute_streak_state
from services.task_queue import BackgroundTaskQueue
from services.weekly_summary_service import build_weekly_summary
from utils.datetime_utils import iter_days, today_for_tz, utcnow

logger = logging.getLogger(__name__)


class RoutineEngine:
    def __init__(
        self,
        store: EventLogStore,
        reference: ReferenceTable,
        cfg: Settings,
        *,
        queue: BackgroundTaskQueue | None = None,
        notifier: CompletionNotifier | None = None,
    ) -> None:
        self.store = store
        self.reference = reference
        self.cfg = cfg
        self.queue = queue or BackgroundTaskQueue(
            max_attempts=cfg.BACKGROUND_TASK_MAX_ATTEMPTS,
            max_size=cfg.BACKGROUND_QUEUE_MAX_SIZE,
        )
        self.notifier = notifier or LoggingCompletionNotifier()
        self.effectiveness_params = EffectivenessParameters.from_settings(cfg)
        self.skip_impact_weights = SkipImpactWeights.from_settings(cfg)

    # -- reads ---------------------------------------------------------------

    async def load(self, user_id: str) -> tuple[EventLogSnapshot, RoutinePlan]:
        snapshot = await self.store.load_snapshot(user_id)
        return snapshot, build_routine_plan(self.reference, snapshot.document)

    def local_today(self, snapshot: EventLogSnapshot, today: date | None = None) -> date:
        if today is not None:
            return today
        return today_for_tz(snapshot.timezone or self.cfg.DEFAULT_TIMEZONE)

    def _streak(self, snapshot: EventLogSnapshot, plan: RoutinePlan, today: date) -> StreakState:
        return compute_streak_state(
            snapshot,
            plan,
            today,
            qualifying_score=self.cfg.STREAK_QUALIFYING_SCORE,
            max_lookback_days=self.cfg.STREAK_MAX_LOOKBACK_DAYS,
        )

    async def score(self, user_id: str, day: date) -> ScoreSnapshot:
        snapshot, plan = await self.load(user_id)
        return score_day(snapshot, plan, day)

    async def score_range(self, user_id: str, start: date, end: date) -> list[ScoreSnapshot]:
        snapshot, plan = await self.load(user_id)
        return [score_day(snapshot, plan, day) for day in iter_days(start, end)]

    async def streak(self, user_id: str, today: date | None = None) -> StreakState:
        snapshot, plan = await self.load(user_id)
        state = self._streak(snapshot, plan, self.local_today(snapshot, today))
        self._schedule_stats_write(snapshot, state)
        return state

    async def weekly_summary(self, user_id: str, today: date | None = None) -> dict[str, Any]:
        snapshot, plan = await self.load(user_id)
        local_today = self.local_today(snapshot, today)
        state = self._streak(snapshot, plan, local_today)
        summary = build_weekly_summary(
            snapshot,
            plan,
            local_today,
            state,
            reference=self.reference,
            params=self.effectiveness_params,
            weights=self.skip_impact_weights,
        )
        self._schedule_stats_write(snapshot, state)
        return summary

    async def monthly_insights(self, user_id: str, today: date | None = None) -> dict[str, Any]:
        snapshot, plan = await self.load(user_id)
        return build_monthly_insights(
            snapshot, plan, self.local_today(snapshot, today), reference=self.reference, cfg=self.cfg
        )

    async def skip_analytics(self, user_id: str, start: date, end: date) -> SkipAnalytics:
        snapshot, plan = await self.load(user_id)
        return aggregate_skips(snapshot, start, end, plan=plan, reference=self.reference)

    async def time_vs_effectiveness(self, user_id: str, start: date, end: date) -> dict[str, Any]:
        snapshot, plan = await self.load(user_id)
        skips = aggregate_skips(snapshot, start, end, plan=plan, reference=self.reference)
        return estimate_time_vs_effectiveness(
            timer_skips=skips.timer_skip_count,
            product_skips=skips.product_skip_count,
            exercise_early_ends=skips.exercise_early_end_count,
            products_in_routine=len(plan.ingredients),
            exercises_in_routine=len(plan.exercises),
            days_in_period=abs((end - start).days) + 1,
            params=self.effectiveness_params,
        )

    async def hardest_day_reminder(self, user_id: str, today: date | None = None) -> dict[str, Any] | None:
        snapshot, plan = await self.load(user_id)
        return build_hardest_day_reminder(snapshot, plan, self.local_today(snapshot, today), cfg=self.cfg)

    # -- background side effects --------------------------------------------

    def _schedule_stats_write(self, snapshot: EventLogSnapshot, state: StreakState) -> None:
        if not snapshot.exists:
            return
        user_id = snapshot.user_id

        async def _write() -> None:
            await self.store.write_stats(user_id, state.current_streak, state.best_streak, state.total_qualifying_days)
            logger.debug("Stats cache refreshed for user %s", user_id)

        self.queue.submit(f"stats:{user_id}", _write)

    def _schedule_stats_refresh(self, user_id: str, today: date | None) -> None:
        async def _refresh() -> None:
            snapshot, plan = await self.load(user_id)
            if not snapshot.exists:
                return
            state = self._streak(snapshot, plan, self.local_today(snapshot, today))
            await self.store.write_stats(user_id, state.current_streak, state.best_streak, state.total_qualifying_days)

        self.queue.submit(f"stats-refresh:{user_id}", _refresh)

    def _after_completion(self, user_id: str, result: CompletionResult, today: date | None) -> CompletionResult:
        if result.newly_all_completed:
            day = result.date

            async def _fan_out() -> None:
                await self.notifier.routine_completed(user_id, day)

            self.queue.submit(f"routine-completed:{user_id}", _fan_out)
        self._schedule_stats_refresh(user_id, today)
        return result

    # -- writes ----------------------------------------------------------------

    async def _write_context(self, user_id: str, day: date | None) -> tuple[RoutinePlan, date]:
        snapshot, plan = await self.load(user_id)
        return plan, self.local_today(snapshot, day)

    async def complete_step(self, user_id: str, step_id: str, day: date | None = None) -> CompletionResult:
        plan, local_day = await self._write_context(user_id, day)
        result = await completion_service.mark_step_completed(self.store, plan, user_id, step_id, local_day)
        return self._after_completion(user_id, result, day)

    async def uncomplete_step(self, user_id: str, step_id: str, day: date | None = None) -> CompletionResult:
        plan, local_day = await self._write_context(user_id, day)
        result = await completion_service.mark_step_uncompleted(self.store, plan, user_id, step_id, local_day)
        return self._after_completion(user_id, result, day)

    async def complete_exercise(self, user_id: str, exercise_id: str, day: date | None = None) -> CompletionResult:
        plan, local_day = await self._write_context(user_id, day)
        result = await completion_service.mark_exercise_completed(self.store, plan, user_id, exercise_id, local_day)
        return self._after_completion(user_id, result, day)

    async def complete_session(
        self, user_id: str, session: str, step_ids: list[str] | None = None, day: date | None = None
    ) -> CompletionResult:
        plan, local_day = await self._write_context(user_id, day)
        result = await completion_service.mark_session_completed(
            self.store, plan, user_id, session, local_day, step_ids
        )
        return self._after_completion(user_id, result, day)

    async def start_session(self, user_id: str, session: str, at: datetime | None = None, day: date | None = None) -> bool:
        _, local_day = await self._write_context(user_id, day)
        return await completion_service.record_session_start(self.store, user_id, session, local_day, at or utcnow())

    async def skip_step(self, user_id: str, step_id: str, day: date | None = None, at: datetime | None = None) -> bool:
        _, local_day = await self._write_context(user_id, day)
        return await completion_service.record_step_skip(self.store, user_id, step_id, local_day, at or utcnow())

    async def skip_timer(
        self, user_id: str, step_id: str, timer_duration_seconds: int = 0, day: date | None = None, at: datetime | None = None
    ) -> bool:
        _, local_day = await self._write_context(user_id, day)
        return await completion_service.record_timer_skip(
            self.store, user_id, step_id, local_day, at or utcnow(), timer_duration_seconds
        )

    async def end_exercise_early(
        self, user_id: str, exercise_id: str, day: date | None = None, at: datetime | None = None
    ) -> bool:
        _, local_day = await self._write_context(user_id, day)
        return await completion_service.record_exercise_early_end(self.store, user_id, exercise_id, local_day, at or utcnow())

    async def rate_week(self, user_id: str, week_number: int, rating: str, photo_date: date | None = None) -> dict[str, Any]:
        _, local_day = await self._write_context(user_id, None)
        return await completion_service.record_outcome_rating(
            self.store, user_id, week_number, rating, photo_date or local_day, utcnow()
        )

    async def reset_day(self, user_id: str, day: date | None = None) -> None:
        _, local_day = await self._write_context(user_id, day)
        await completion_service.reset_day(self.store, user_id, local_day)
        self._schedule_stats_refresh(user_id, day)

    async def reset_skip_analytics(self, user_id: str) -> None:
        await completion_service.reset_skip_analytics(self.store, user_id)
