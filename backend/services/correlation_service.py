"""What's working / what's hurting.

Relates self-reported weekly outcome ratings to that week's routine
behaviour. Weeks are counted from the signup date; a rating for week N
describes the seven days starting ``signup + 7 * N``.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date, timedelta
from enum import Enum
from typing import Any

from services.event_log_store import EventLogSnapshot, OutcomeRating
from services.reference_plan import ReferenceTable, RoutinePlan, resolve_display_name
from services.scoring_service import daily_score
from services.skip_analytics_service import count_step_skips, most_skipped
from utils.datetime_utils import iter_days
from utils.rounding import percent_of, round_half_up

logger = logging.getLogger(__name__)

INSUFFICIENT_DATA_MESSAGE = "insufficient data"
CONSISTENT_RESULTS_MESSAGE = "consistent results"
MESSAGE_TEXT = {
    INSUFFICIENT_DATA_MESSAGE: "Patterns emerge after 4 weeks.",
    CONSISTENT_RESULTS_MESSAGE: "Consistent results. Keep going.",
}
DEFAULT_STEP_NAME = "this step"


class MetricKind(str, Enum):
    CONSISTENCY_SCORE = "consistency_score"
    MORNING_COMPLETION = "morning_completion"
    EVENING_COMPLETION = "evening_completion"
    EXERCISE_COMPLETION = "exercise_completion"
    TIMER_SKIPS = "timer_skips"
    STEPS_SKIPPED = "steps_skipped"
    MOST_SKIPPED_STEP = "most_skipped_step"


@dataclass(frozen=True)
class PhraseTemplate:
    sentence_prefix: str
    sentence_data: str
    sentence_suffix: str
    advice_prefix: str
    advice_data: str
    advice_suffix: str

    def render_sentence_data(self, step_name: str | None = None) -> str:
        return self.sentence_data.format(step=step_name or DEFAULT_STEP_NAME)

    def render_advice_data(self, step_name: str | None = None) -> str:
        return self.advice_data.format(step=step_name or DEFAULT_STEP_NAME)

    def render(self, step_name: str | None = None) -> dict[str, str]:
        sentence_data = self.render_sentence_data(step_name)
        advice_data = self.render_advice_data(step_name)
        return {
            "sentence": self.sentence_prefix + sentence_data + self.sentence_suffix,
            "sentencePrefix": self.sentence_prefix,
            "sentenceData": sentence_data,
            "sentenceSuffix": self.sentence_suffix,
            "advice": self.advice_prefix + advice_data + self.advice_suffix,
            "advicePrefix": self.advice_prefix,
            "adviceData": advice_data,
            "adviceSuffix": self.advice_suffix,
        }


@dataclass(frozen=True)
class MetricTemplate:
    higher_is_better: bool
    better: PhraseTemplate
    worse: PhraseTemplate
    percent_scale: float | None  # None -> reported as skips/week

    @property
    def unit(self) -> str:
        return "%" if self.percent_scale else " skips/week"

    def format_value(self, value: float) -> float | int:
        if self.percent_scale:
            return percent_of(value, self.percent_scale)
        return round_half_up(value, 1)


def _better(data: str, advice: str) -> PhraseTemplate:
    return PhraseTemplate(
        sentence_prefix="On better weeks, you ",
        sentence_data=data,
        sentence_suffix="than on average.",
        advice_prefix="When you ",
        advice_data=advice,
        advice_suffix="you see better results.",
    )


def _worse(data: str, advice: str) -> PhraseTemplate:
    return PhraseTemplate(
        sentence_prefix="On worse weeks, ",
        sentence_data=data,
        sentence_suffix="than on average.",
        advice_prefix="When you ",
        advice_data=advice,
        advice_suffix="you see worse results.",
    )


TEMPLATES: dict[MetricKind, MetricTemplate] = {
    MetricKind.CONSISTENCY_SCORE: MetricTemplate(
        higher_is_better=True,
        better=_better("had higher consistency score ", "are more consistent, "),
        worse=_worse("your consistency score was lower ", "are not consistent, "),
        percent_scale=10.0,
    ),
    MetricKind.MORNING_COMPLETION: MetricTemplate(
        higher_is_better=True,
        better=_better("completed your morning routine more often ", "complete your morning routine, "),
        worse=_worse("you completed your morning routine less often ", "skip your morning routine, "),
        percent_scale=7.0,
    ),
    MetricKind.EVENING_COMPLETION: MetricTemplate(
        higher_is_better=True,
        better=_better("completed your evening routine more often ", "complete your evening routine, "),
        worse=_worse("you completed your evening routine less often ", "skip your evening routine, "),
        percent_scale=7.0,
    ),
    MetricKind.EXERCISE_COMPLETION: MetricTemplate(
        higher_is_better=True,
        better=_better("did your exercises more often ", "do your exercises, "),
        worse=_worse("you did your exercises less often ", "skip your exercises, "),
        percent_scale=7.0,
    ),
    MetricKind.TIMER_SKIPS: MetricTemplate(
        higher_is_better=False,
        better=_better("skipped fewer timers ", "don't rush through timers, "),
        worse=_worse("you skipped more timers ", "rush through timers, "),
        percent_scale=None,
    ),
    MetricKind.STEPS_SKIPPED: MetricTemplate(
        higher_is_better=False,
        better=_better("skipped fewer steps ", "complete all steps, "),
        worse=_worse("you skipped more steps ", "skip steps, "),
        percent_scale=None,
    ),
    MetricKind.MOST_SKIPPED_STEP: MetricTemplate(
        higher_is_better=False,
        better=_better("skipped {step} less often ", "don't skip {step}, "),
        worse=_worse("you skipped {step} more often ", "skip {step}, "),
        percent_scale=None,
    ),
}

SCALAR_METRICS = (
    MetricKind.CONSISTENCY_SCORE,
    MetricKind.MORNING_COMPLETION,
    MetricKind.EVENING_COMPLETION,
    MetricKind.EXERCISE_COMPLETION,
    MetricKind.TIMER_SKIPS,
    MetricKind.STEPS_SKIPPED,
)


@dataclass(frozen=True)
class MostSkippedStep:
    step_id: str
    step_name: str
    count: int


@dataclass(frozen=True)
class WeekMetrics:
    week_number: int
    consistency_score: float = 0.0
    morning_completion: int = 0
    evening_completion: int = 0
    exercise_completion: int = 0
    timer_skips: int = 0
    steps_skipped: int = 0
    most_skipped_step: MostSkippedStep | None = None
    step_skip_counts: dict[str, int] = field(default_factory=dict)

    def value(self, metric: MetricKind) -> float:
        return float(getattr(self, metric.value))


@dataclass(frozen=True)
class _Deviation:
    metric: MetricKind
    deviation: float
    group_value: float
    baseline_value: float
    step_name: str | None = None


def week_window(signup_date: date, week_number: int) -> tuple[date, date]:
    start = signup_date + timedelta(days=week_number * 7)
    return start, start + timedelta(days=6)


def build_week_metrics(
    snapshot: EventLogSnapshot,
    plan: RoutinePlan | None,
    signup_date: date,
    week_number: int,
    *,
    reference: ReferenceTable | None = None,
    today: date | None = None,
) -> WeekMetrics:
    """Behaviour metrics for one signup-relative week.

    Consistency is the mean daily score over the week's elapsed days, with
    days that have no record scoring 0.0.
    """
    start, end = week_window(signup_date, week_number)
    last = min(end, today) if today is not None else end
    days = list(iter_days(start, last))
    consistency = 0.0
    if days:
        consistency = round_half_up(sum(daily_score(snapshot, plan, d) for d in days) / len(days), 1)

    records = [r for d, r in snapshot.daily_records.items() if start <= d <= end]
    counts = count_step_skips(snapshot, start, end)
    top = most_skipped(counts)
    most = None
    if top is not None:
        most = MostSkippedStep(step_id=top[0], step_name=resolve_display_name(top[0], plan, reference), count=top[1])

    return WeekMetrics(
        week_number=week_number,
        consistency_score=consistency,
        morning_completion=sum(1 for r in records if r.session_completed.morning),
        evening_completion=sum(1 for r in records if r.session_completed.evening),
        exercise_completion=sum(1 for r in records if r.session_completed.exercises),
        timer_skips=len(snapshot.timer_skips_between(start, end)),
        steps_skipped=sum(counts.values()),
        most_skipped_step=most,
        step_skip_counts=counts,
    )


def rated_weeks(ratings: list[OutcomeRating] | tuple[OutcomeRating, ...]) -> list[OutcomeRating]:
    """Ratings for weeks after signup, one per week (latest wins), in week order."""
    by_week: dict[int, OutcomeRating] = {}
    for rating in ratings:
        if rating.week_number > 0:
            by_week[rating.week_number] = rating
    return [by_week[week] for week in sorted(by_week)]


def _mean(values: list[float]) -> float:
    return sum(values) / len(values) if values else 0.0


def _step_average(weeks: list[WeekMetrics], step_id: str) -> float:
    return _mean([float(w.step_skip_counts.get(step_id, 0)) for w in weeks])


def _deviations(group: list[WeekMetrics], everyone: list[WeekMetrics], *, favourable: bool) -> list[_Deviation]:
    """Signed so that a positive deviation means 'this group moved in the reported direction'."""
    out: list[_Deviation] = []
    for metric in SCALAR_METRICS:
        template = TEMPLATES[metric]
        group_mean = _mean([w.value(metric) for w in group])
        baseline = _mean([w.value(metric) for w in everyone])
        delta = group_mean - baseline
        if template.higher_is_better != favourable:
            delta = -delta
        out.append(_Deviation(metric=metric, deviation=delta, group_value=group_mean, baseline_value=baseline))

    candidate = next((w.most_skipped_step for w in group if w.most_skipped_step is not None), None)
    if candidate is not None:
        group_mean = _step_average(group, candidate.step_id)
        baseline = _step_average(everyone, candidate.step_id)
        delta = baseline - group_mean if favourable else group_mean - baseline
        if delta > 0:
            out.append(
                _Deviation(
                    metric=MetricKind.MOST_SKIPPED_STEP,
                    deviation=delta,
                    group_value=group_mean,
                    baseline_value=baseline,
                    step_name=candidate.step_name,
                )
            )
    return out


def _pick(deviations: list[_Deviation], threshold: float) -> _Deviation:
    meaningful = [d for d in deviations if d.deviation >= threshold]
    if not meaningful:
        return next(d for d in deviations if d.metric is MetricKind.CONSISTENCY_SCORE)
    best = meaningful[0]
    for candidate in meaningful[1:]:
        if candidate.deviation > best.deviation:
            best = candidate
    return best


def _render_insight(choice: _Deviation, *, favourable: bool, week_count: int, total_weeks: int) -> dict[str, Any]:
    template = TEMPLATES[choice.metric]
    phrasing = template.better if favourable else template.worse
    insight: dict[str, Any] = {"metric": choice.metric.value}
    insight.update(phrasing.render(choice.step_name))
    value_key = "betterValue" if favourable else "worseValue"
    insight.update(
        {
            "weekCount": week_count,
            "totalWeeks": total_weeks,
            value_key: template.format_value(choice.group_value),
            "baselineValue": template.format_value(choice.baseline_value),
            "unit": template.unit,
            "deviation": round_half_up(choice.deviation, 2),
        }
    )
    if choice.step_name:
        insight["stepName"] = choice.step_name
    return insight


def _result(working=None, hurting=None, message: str | None = None) -> dict[str, Any]:
    return {
        "whatsWorking": working,
        "whatsHurting": hurting,
        "message": message,
        "messageText": MESSAGE_TEXT.get(message) if message else None,
    }


def generate_correlation_insights(
    ratings: list[OutcomeRating] | tuple[OutcomeRating, ...],
    week_metrics: dict[int, WeekMetrics],
    *,
    min_rated_weeks: int = 4,
    threshold: float = 0.5,
) -> dict[str, Any]:
    rated = rated_weeks(ratings)
    if len(rated) < min_rated_weeks:
        return _result(message=INSUFFICIENT_DATA_MESSAGE)
    if all(r.rating == "same" for r in rated):
        return _result(message=CONSISTENT_RESULTS_MESSAGE)

    everyone = [week_metrics.get(r.week_number) or WeekMetrics(week_number=r.week_number) for r in rated]
    by_week = {w.week_number: w for w in everyone}
    better = [by_week[r.week_number] for r in rated if r.rating == "better"]
    worse = [by_week[r.week_number] for r in rated if r.rating == "worse"]
    if not better and not worse:
        return _result()

    working = None
    if better:
        choice = _pick(_deviations(better, everyone, favourable=True), threshold)
        working = _render_insight(choice, favourable=True, week_count=len(better), total_weeks=len(rated))
    hurting = None
    if worse:
        choice = _pick(_deviations(worse, everyone, favourable=False), threshold)
        hurting = _render_insight(choice, favourable=False, week_count=len(worse), total_weeks=len(rated))

    logger.debug(
        "Correlation insights over %d weeks: working=%s hurting=%s",
        len(rated),
        working["metric"] if working else None,
        hurting["metric"] if hurting else None,
    )
    return _result(working, hurting)


def _week_anchor(snapshot: EventLogSnapshot) -> date | None:
    """Week 1 starts at signup, else routine start, else the first logged day."""
    if snapshot.signup_date is not None:
        return snapshot.signup_date
    if snapshot.routine_start_date is not None:
        return snapshot.routine_start_date
    if snapshot.daily_records:
        return min(snapshot.daily_records)
    return None


def correlation_insights_for_snapshot(
    snapshot: EventLogSnapshot,
    plan: RoutinePlan | None,
    *,
    reference: ReferenceTable | None = None,
    today: date | None = None,
    min_rated_weeks: int = 4,
    threshold: float = 0.5,
) -> dict[str, Any]:
    rated = rated_weeks(snapshot.ratings)
    if len(rated) < min_rated_weeks:
        return _result(message=INSUFFICIENT_DATA_MESSAGE)
    if all(r.rating == "same" for r in rated):
        return _result(message=CONSISTENT_RESULTS_MESSAGE)
    anchor = _week_anchor(snapshot)
    if anchor is None:
        logger.info("User %s has outcome ratings but no activity to anchor weeks on", snapshot.user_id)
        return _result()
    metrics = {
        r.week_number: build_week_metrics(snapshot, plan, anchor, r.week_number, reference=reference, today=today)
        for r in rated
    }
    return generate_correlation_insights(
        snapshot.ratings, metrics, min_rated_weeks=min_rated_weeks, threshold=threshold
    )
