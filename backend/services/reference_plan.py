"""Static step reference table and per-user routine plans.

The reference table is a versioned configuration object loaded once at
process start. A ``RoutinePlan`` joins it with a user's active ingredient and
exercise selections.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

logger = logging.getLogger(__name__)

SECTIONS = ("morning", "evening", "exercises")
SESSION_WINDOWS = ("morning", "evening")
STEP_KINDS = {"ingredient", "exercise"}
ACTIVE_INGREDIENT_STATES = {"added", "active"}
ACTIVE_EXERCISE_STATES = {"added"}


class ReferenceTableError(ValueError):
    pass


@dataclass(frozen=True)
class StepDefinition:
    step_id: str
    kind: str  # ingredient | exercise
    timing_windows: frozenset[str]
    completable: bool = True
    display_name: str = ""

    @property
    def is_flexible(self) -> bool:
        return set(SESSION_WINDOWS) <= self.timing_windows

    @property
    def label(self) -> str:
        return self.display_name or self.step_id


@dataclass(frozen=True)
class ReferenceTable:
    version: str
    steps: dict[str, StepDefinition]

    def get(self, step_id: str) -> StepDefinition | None:
        return self.steps.get(step_id)


@dataclass(frozen=True)
class PlanStep:
    definition: StepDefinition
    product_name: str | None = None

    @property
    def step_id(self) -> str:
        return self.definition.step_id

    @property
    def display_name(self) -> str:
        return self.product_name or self.definition.label


@dataclass(frozen=True)
class RoutinePlan:
    reference_version: str
    steps: tuple[PlanStep, ...] = field(default_factory=tuple)

    def get(self, step_id: str) -> PlanStep | None:
        for step in self.steps:
            if step.step_id == step_id:
                return step
        return None

    @property
    def ingredients(self) -> list[PlanStep]:
        return [s for s in self.steps if s.definition.kind == "ingredient"]

    @property
    def exercises(self) -> list[PlanStep]:
        """Completable exercises only; hold-all-day exercises never count."""
        return [s for s in self.steps if s.definition.kind == "exercise" and s.definition.completable]

    def completable_step_ids(self) -> set[str]:
        return {s.step_id for s in self.steps if s.definition.completable}

    def is_product(self, step_id: str) -> bool:
        step = self.get(step_id)
        return step is not None and step.definition.kind == "ingredient"


def _definition_from_row(row: dict[str, Any]) -> StepDefinition:
    step_id = str(row.get("step_id") or "").strip()
    if not step_id:
        raise ReferenceTableError("Reference step is missing step_id")
    kind = str(row.get("kind") or "").strip().lower()
    if kind not in STEP_KINDS:
        raise ReferenceTableError(f"Unsupported step kind for {step_id}: {kind!r}")
    windows = frozenset(str(w).strip().lower() for w in (row.get("timing_windows") or []))
    unknown = windows - set(SESSION_WINDOWS)
    if unknown:
        raise ReferenceTableError(f"Unsupported timing windows for {step_id}: {sorted(unknown)}")
    if kind == "ingredient" and not windows:
        raise ReferenceTableError(f"Ingredient {step_id} needs at least one timing window")
    return StepDefinition(
        step_id=step_id,
        kind=kind,
        timing_windows=windows,
        completable=bool(row.get("completable", True)),
        display_name=str(row.get("display_name") or "").strip(),
    )


def build_reference_table(payload: dict[str, Any]) -> ReferenceTable:
    rows = payload.get("steps")
    if not isinstance(rows, list):
        raise ReferenceTableError("Reference table must contain a 'steps' list")
    steps: dict[str, StepDefinition] = {}
    for row in rows:
        if not isinstance(row, dict):
            raise ReferenceTableError("Reference step rows must be objects")
        definition = _definition_from_row(row)
        if definition.step_id in steps:
            raise ReferenceTableError(f"Duplicate reference step: {definition.step_id}")
        steps[definition.step_id] = definition
    version = str(payload.get("version") or "unversioned")
    return ReferenceTable(version=version, steps=steps)


def load_reference_table(path: Path) -> ReferenceTable:
    payload = json.loads(Path(path).read_text(encoding="utf-8"))
    table = build_reference_table(payload)
    logger.info("Loaded reference table %s with %d steps", table.version, len(table.steps))
    return table


def build_routine_plan(table: ReferenceTable, document: dict[str, Any] | None) -> RoutinePlan:
    """Resolve the user's active selections against the reference table.

    Unknown step ids are ignored. A selection's ``product_name`` overrides the
    reference display name.
    """
    if not document:
        return RoutinePlan(reference_version=table.version)

    steps: list[PlanStep] = []
    seen: set[str] = set()

    for row in document.get("ingredientSelections") or []:
        if not isinstance(row, dict) or row.get("state") not in ACTIVE_INGREDIENT_STATES:
            continue
        step_id = str(row.get("ingredient_id") or "")
        definition = table.get(step_id)
        if definition is None:
            logger.debug("Ignoring unknown ingredient selection %s", step_id)
            continue
        if definition.kind != "ingredient" or step_id in seen:
            continue
        seen.add(step_id)
        product_name = (row.get("product_name") or "").strip() or None
        steps.append(PlanStep(definition=definition, product_name=product_name))

    for row in document.get("exerciseSelections") or []:
        if not isinstance(row, dict) or row.get("state") not in ACTIVE_EXERCISE_STATES:
            continue
        step_id = str(row.get("exercise_id") or "")
        definition = table.get(step_id)
        if definition is None or definition.kind != "exercise" or step_id in seen:
            continue
        seen.add(step_id)
        steps.append(PlanStep(definition=definition))

    return RoutinePlan(reference_version=table.version, steps=tuple(steps))


def resolve_display_name(step_id: str, plan: RoutinePlan | None, table: ReferenceTable | None) -> str:
    """Plan first, then reference table, then the raw id."""
    if plan is not None:
        step = plan.get(step_id)
        if step is not None:
            return step.display_name
    if table is not None:
        definition = table.get(step_id)
        if definition is not None:
            return definition.label
    return step_id
