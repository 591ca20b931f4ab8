from __future__ import annotations

import sys
from datetime import date
from pathlib import Path


ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from services.effectiveness_service import (  # noqa: E402
    estimate_skip_impact,
    estimate_time_vs_effectiveness,
    format_minutes,
)
from services.event_log_store import parse_snapshot  # noqa: E402
from services.reference_plan import build_routine_plan, load_reference_table  # noqa: E402
from services.skip_analytics_service import aggregate_skips, most_skipped  # noqa: E402

REFERENCE = load_reference_table(ROOT / "reference" / "reference_steps.json")
START = date(2024, 3, 4)
END = date(2024, 3, 10)


def _document(**extra) -> dict:
    doc = {
        "signupDate": "2024-01-01",
        "ingredientSelections": [
            {"ingredient_id": "vitamin_c", "state": "added", "product_name": "Glow Drops C15"},
            {"ingredient_id": "retinol", "state": "added"},
        ],
        "exerciseSelections": [{"exercise_id": "jaw_exercise", "state": "added"}],
    }
    doc.update(extra)
    return doc


def _skip(day: str, step_id: str) -> dict:
    return {"date": day, "step_id": step_id, "skipped": True, "timestamp": f"{day}T08:00:00Z"}


def test_skip_counts_inside_range_only():
    doc = _document(
        stepSkips=[_skip("2024-03-03", "vitamin_c"), _skip("2024-03-04", "vitamin_c"), _skip("2024-03-10", "retinol")],
        timerSkips=[{"date": "2024-03-05", "step_id": "retinol"}, {"date": "2024-03-11", "step_id": "retinol"}],
        exerciseEarlyEnds=[{"date": "2024-03-06", "exercise_id": "jaw_exercise"}],
    )
    snapshot = parse_snapshot("u1", doc)
    analytics = aggregate_skips(snapshot, START, END, plan=build_routine_plan(REFERENCE, doc), reference=REFERENCE)

    assert analytics.product_skip_count == 2
    assert analytics.timer_skip_count == 1
    assert analytics.exercise_early_end_count == 1
    assert analytics.total_skips == 4


def test_most_skipped_tie_keeps_first_seen():
    assert most_skipped({"retinol": 2, "vitamin_c": 2}) == ("retinol", 2)
    assert most_skipped({"retinol": 1, "vitamin_c": 3}) == ("vitamin_c", 3)
    assert most_skipped({}) is None


def test_most_skipped_uses_product_name_override():
    doc = _document(stepSkips=[_skip("2024-03-05", "vitamin_c"), _skip("2024-03-06", "vitamin_c")])
    snapshot = parse_snapshot("u1", doc)
    analytics = aggregate_skips(snapshot, START, END, plan=build_routine_plan(REFERENCE, doc), reference=REFERENCE)

    assert analytics.most_skipped_step.name == "Glow Drops C15"
    assert analytics.skipped_products_with_counts[0].count == 2


def test_skipped_step_outside_plan_falls_back_to_reference_then_id():
    doc = _document(stepSkips=[_skip("2024-03-05", "sunscreen"), _skip("2024-03-05", "mystery_step")])
    snapshot = parse_snapshot("u1", doc)
    analytics = aggregate_skips(snapshot, START, END, plan=build_routine_plan(REFERENCE, doc), reference=REFERENCE)

    assert analytics.most_skipped_step.name == "Sunscreen"
    assert analytics.skipped_products_with_counts == []
    assert analytics.as_dict()["productSkips"] == 2


def test_reversed_range_is_normalized():
    doc = _document(stepSkips=[_skip("2024-03-05", "retinol")])
    analytics = aggregate_skips(parse_snapshot("u1", doc), END, START)

    assert analytics.start == START
    assert analytics.product_skip_count == 1


def test_time_vs_effectiveness_estimate():
    result = estimate_time_vs_effectiveness(
        timer_skips=2,
        product_skips=3,
        exercise_early_ends=1,
        products_in_routine=4,
        exercises_in_routine=2,
        days_in_period=7,
    )

    assert result["waitingTimeSavedMinutes"] == 1.0
    assert result["productTimeSavedMinutes"] == 2.25
    assert result["exerciseTimeSavedMinutes"] == 6.0
    assert result["totalTimeSavedMinutes"] == 9.25
    assert result["totalTimeSavedFormatted"] == "9m"
    assert result["waitingEffectivenessLost"] == 2.14
    assert result["productEffectivenessLost"] == 10.71
    assert result["exerciseEffectivenessLost"] == 3.57
    assert result["totalEffectivenessLost"] == 16.43
    assert result["monthlyTimeSavedMinutes"] == 37.0
    assert result["monthlyTimeSavedFormatted"] == "37m"


def test_effectiveness_with_empty_routine_loses_nothing():
    result = estimate_time_vs_effectiveness(
        timer_skips=3,
        product_skips=3,
        exercise_early_ends=3,
        products_in_routine=0,
        exercises_in_routine=0,
        days_in_period=7,
    )

    assert result["totalEffectivenessLost"] == 0.0
    assert result["totalTimeSavedMinutes"] > 0


def test_waiting_loss_is_capped():
    result = estimate_time_vs_effectiveness(
        timer_skips=100,
        product_skips=0,
        exercise_early_ends=0,
        products_in_routine=1,
        exercises_in_routine=0,
        days_in_period=7,
    )

    assert result["waitingEffectivenessLost"] == 30.0


def test_format_minutes():
    assert format_minutes(0.5) == "30s"
    assert format_minutes(45) == "45m"
    assert format_minutes(60) == "1h"
    assert format_minutes(65) == "1h 5m"
    assert format_minutes(119.6) == "2h"


def test_skip_impact_points_at_biggest_opportunity():
    impact = estimate_skip_impact(
        current_score=5.0,
        timer_skips=2,
        product_skips=3,
        exercise_early_ends=1,
        active_days=5,
    )

    assert impact["potentialScore"] == 8.2
    assert impact["improvementPoints"] == 3.2
    assert impact["improvementPercentage"] == 64
    assert impact["skipRate"] == 1.2
    assert impact["biggestOpportunity"]["type"] == "products"


def test_skip_impact_caps_at_ten_and_handles_no_skips():
    capped = estimate_skip_impact(current_score=9.5, timer_skips=0, product_skips=5, exercise_early_ends=0, active_days=7)
    assert capped["potentialScore"] == 10.0

    clean = estimate_skip_impact(current_score=0.0, timer_skips=0, product_skips=0, exercise_early_ends=0, active_days=0)
    assert clean["biggestOpportunity"] is None
    assert clean["improvementPercentage"] == 0
