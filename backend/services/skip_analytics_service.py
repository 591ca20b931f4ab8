from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date

from services.event_log_store import EventLogSnapshot
from services.reference_plan import ReferenceTable, RoutinePlan, resolve_display_name


@dataclass(frozen=True)
class SkippedStep:
    step_id: str
    name: str
    count: int

    def as_dict(self) -> dict:
        return {"stepId": self.step_id, "name": self.name, "count": self.count}


@dataclass(frozen=True)
class SkipAnalytics:
    start: date
    end: date
    timer_skip_count: int = 0
    product_skip_count: int = 0
    exercise_early_end_count: int = 0
    most_skipped_step: SkippedStep | None = None
    skipped_products_with_counts: list[SkippedStep] = field(default_factory=list)
    step_skip_counts: dict[str, int] = field(default_factory=dict)

    @property
    def total_skips(self) -> int:
        return self.timer_skip_count + self.product_skip_count + self.exercise_early_end_count

    def as_dict(self) -> dict:
        return {
            "start": self.start.isoformat(),
            "end": self.end.isoformat(),
            "timerSkips": self.timer_skip_count,
            "productSkips": self.product_skip_count,
            "exerciseEarlyEnds": self.exercise_early_end_count,
            "mostSkippedStep": self.most_skipped_step.as_dict() if self.most_skipped_step else None,
            "skippedProducts": [row.as_dict() for row in self.skipped_products_with_counts],
        }


def count_step_skips(snapshot: EventLogSnapshot, start: date, end: date) -> dict[str, int]:
    """StepSkip counts per step id, in first-seen order."""
    counts: dict[str, int] = {}
    for skip in snapshot.step_skips_between(start, end):
        counts[skip.step_id] = counts.get(skip.step_id, 0) + 1
    return counts


def most_skipped(counts: dict[str, int]) -> tuple[str, int] | None:
    best: tuple[str, int] | None = None
    for step_id, count in counts.items():
        # strict > keeps the first-seen step on ties
        if best is None or count > best[1]:
            best = (step_id, count)
    return best


def aggregate_skips(
    snapshot: EventLogSnapshot,
    start: date,
    end: date,
    *,
    plan: RoutinePlan | None = None,
    reference: ReferenceTable | None = None,
) -> SkipAnalytics:
    if end < start:
        start, end = end, start

    counts = count_step_skips(snapshot, start, end)
    top = most_skipped(counts)
    most = None
    if top is not None:
        most = SkippedStep(step_id=top[0], name=resolve_display_name(top[0], plan, reference), count=top[1])

    products: list[SkippedStep] = []
    if plan is not None:
        for step_id, count in counts.items():
            if plan.is_product(step_id):
                products.append(SkippedStep(step_id=step_id, name=resolve_display_name(step_id, plan, reference), count=count))

    return SkipAnalytics(
        start=start,
        end=end,
        timer_skip_count=len(snapshot.timer_skips_between(start, end)),
        product_skip_count=sum(counts.values()),
        exercise_early_end_count=len(snapshot.early_ends_between(start, end)),
        most_skipped_step=most,
        skipped_products_with_counts=products,
        step_skip_counts=counts,
    )
