from __future__ import annotations

import sys
from datetime import date
from pathlib import Path


ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from services.correlation_service import (  # noqa: E402
    TEMPLATES,
    MetricKind,
    MostSkippedStep,
    WeekMetrics,
    build_week_metrics,
    correlation_insights_for_snapshot,
    generate_correlation_insights,
    rated_weeks,
    week_window,
)
from services.event_log_store import OutcomeRating, parse_snapshot  # noqa: E402
from services.reference_plan import build_routine_plan, load_reference_table  # noqa: E402

REFERENCE = load_reference_table(ROOT / "reference" / "reference_steps.json")
SIGNUP = date(2024, 1, 1)


def _ratings(*values: str) -> list[OutcomeRating]:
    return [OutcomeRating(week_number=i + 1, photo_date=None, rating=v) for i, v in enumerate(values)]


def _metrics(**per_week) -> dict[int, WeekMetrics]:
    weeks = {}
    for week_number in range(1, 5):
        fields = {name: values[week_number - 1] for name, values in per_week.items()}
        weeks[week_number] = WeekMetrics(week_number=week_number, **fields)
    return weeks


def test_better_weeks_point_at_consistency():
    result = generate_correlation_insights(
        _ratings("better", "worse", "same", "better"),
        _metrics(consistency_score=[8.0, 4.0, 6.0, 9.0]),
    )

    working = result["whatsWorking"]
    assert working["metric"] == "consistency_score"
    assert working["weekCount"] == 2
    assert working["totalWeeks"] == 4
    assert working["deviation"] == 1.75
    assert working["betterValue"] == 85
    assert working["baselineValue"] == 68
    assert working["unit"] == "%"
    assert working["sentence"] == "On better weeks, you had higher consistency score than on average."
    assert working["advice"] == "When you are more consistent, you see better results."
    assert result["whatsHurting"]["metric"] == "consistency_score"
    assert result["whatsHurting"]["weekCount"] == 1
    assert result["message"] is None


def test_fewer_than_four_rated_weeks_is_insufficient():
    result = generate_correlation_insights(_ratings("better", "worse", "better"), {})

    assert result["message"] == "insufficient data"
    assert result["messageText"] == "Patterns emerge after 4 weeks."
    assert result["whatsWorking"] is None
    assert result["whatsHurting"] is None


def test_duplicate_and_week_zero_ratings_do_not_count():
    ratings = _ratings("better", "worse", "same") + [
        OutcomeRating(week_number=3, photo_date=None, rating="better"),
        OutcomeRating(week_number=0, photo_date=None, rating="better"),
    ]

    assert [r.rating for r in rated_weeks(ratings)] == ["better", "worse", "better"]
    assert generate_correlation_insights(ratings, {})["message"] == "insufficient data"


def test_all_same_ratings_are_consistent_results():
    result = generate_correlation_insights(_ratings("same", "same", "same", "same"), {})

    assert result["message"] == "consistent results"
    assert result["messageText"] == "Consistent results. Keep going."
    assert result["whatsWorking"] is None


def test_small_deviations_fall_back_to_consistency():
    result = generate_correlation_insights(
        _ratings("better", "worse", "same", "same"),
        _metrics(consistency_score=[6.2, 6.0, 6.0, 6.0], morning_completion=[4, 4, 4, 4]),
    )

    assert result["whatsWorking"]["metric"] == "consistency_score"
    assert result["whatsWorking"]["deviation"] < 0.5


def test_timer_skips_hurt_in_worse_weeks():
    result = generate_correlation_insights(
        _ratings("better", "worse", "same", "better"),
        _metrics(consistency_score=[5.0, 5.0, 5.0, 5.0], timer_skips=[0, 6, 1, 0]),
    )

    hurting = result["whatsHurting"]
    assert hurting["metric"] == "timer_skips"
    assert hurting["worseValue"] == 6.0
    assert hurting["baselineValue"] == 1.8
    assert hurting["unit"] == " skips/week"
    assert hurting["sentence"] == "On worse weeks, you skipped more timers than on average."


def test_most_skipped_step_compared_against_its_own_baseline():
    sunscreen = MostSkippedStep(step_id="sunscreen", step_name="Sunscreen", count=3)
    retinol = MostSkippedStep(step_id="retinol", step_name="Retinol", count=3)
    result = generate_correlation_insights(
        _ratings("better", "worse", "same", "better"),
        _metrics(
            consistency_score=[5.0, 5.0, 5.0, 5.0],
            steps_skipped=[3, 3, 3, 3],
            most_skipped_step=[retinol, sunscreen, retinol, retinol],
            step_skip_counts=[{"retinol": 3}, {"sunscreen": 3}, {"retinol": 3}, {"retinol": 3}],
        ),
    )

    hurting = result["whatsHurting"]
    assert hurting["metric"] == "most_skipped_step"
    assert hurting["stepName"] == "Sunscreen"
    assert hurting["deviation"] == 2.25
    assert hurting["sentence"] == "On worse weeks, you skipped Sunscreen more often than on average."
    assert hurting["advice"] == "When you skip Sunscreen, you see worse results."
    # retinol is skipped more in better weeks than its baseline, so it is not an insight
    assert result["whatsWorking"]["metric"] == "consistency_score"


def test_templates_cover_every_metric_and_keep_fragments_separate():
    assert set(TEMPLATES) == set(MetricKind)
    rendered = TEMPLATES[MetricKind.MOST_SKIPPED_STEP].better.render(None)

    assert rendered["sentenceData"] == "skipped this step less often "
    assert rendered["sentence"] == rendered["sentencePrefix"] + rendered["sentenceData"] + rendered["sentenceSuffix"]


def test_week_window_is_relative_to_signup():
    assert week_window(SIGNUP, 0) == (date(2024, 1, 1), date(2024, 1, 7))
    assert week_window(SIGNUP, 2) == (date(2024, 1, 15), date(2024, 1, 21))


def _document(**extra) -> dict:
    doc = {
        "signupDate": SIGNUP.isoformat(),
        "ingredientSelections": [
            {"ingredient_id": "vitamin_c", "state": "added"},
            {"ingredient_id": "retinol", "state": "added"},
        ],
        "exerciseSelections": [{"exercise_id": "jaw_exercise", "state": "added"}],
        "dailyCompletions": [
            {
                "date": "2024-01-08",
                "completedSteps": ["vitamin_c", "retinol"],
                "morning_completed": True,
                "evening_completed": True,
            }
        ],
        "exerciseCompletions": [{"date": "2024-01-08", "exercises": {"jaw_exercise": True}}],
        "stepSkips": [{"date": "2024-01-09", "step_id": "retinol"}],
        "timerSkips": [{"date": "2024-01-10", "step_id": "vitamin_c"}],
    }
    doc.update(extra)
    return doc


def test_week_metrics_average_over_all_days_of_the_week():
    doc = _document()
    snapshot = parse_snapshot("u1", doc)
    plan = build_routine_plan(REFERENCE, doc)
    metrics = build_week_metrics(snapshot, plan, SIGNUP, 1, reference=REFERENCE)

    assert metrics.consistency_score == 1.4
    assert metrics.morning_completion == 1
    assert metrics.evening_completion == 1
    assert metrics.timer_skips == 1
    assert metrics.steps_skipped == 1
    assert metrics.most_skipped_step.step_name == "Retinol"


def test_week_metrics_only_count_elapsed_days():
    doc = _document()
    snapshot = parse_snapshot("u1", doc)
    plan = build_routine_plan(REFERENCE, doc)

    assert build_week_metrics(snapshot, plan, SIGNUP, 1, today=date(2024, 1, 9)).consistency_score == 5.0


def test_snapshot_insights_without_signup_date():
    same = [{"week_number": n, "skin_rating": "same"} for n in range(1, 5)]
    consistent = correlation_insights_for_snapshot(parse_snapshot("u1", {"skinRatings": same}), None)
    assert consistent["message"] == "consistent results"

    mixed = [
        {"week_number": n, "skin_rating": r, "photo_date": "2024-02-01"}
        for n, r in enumerate(["better", "worse", "same", "worse"], start=1)
    ]
    unanchored = correlation_insights_for_snapshot(parse_snapshot("u1", {"skinRatings": mixed}), None)
    assert unanchored == {"whatsWorking": None, "whatsHurting": None, "message": None, "messageText": None}

    sparse = parse_snapshot("u1", {"skinRatings": mixed[:2]})
    assert correlation_insights_for_snapshot(sparse, None)["message"] == "insufficient data"


def test_snapshot_insights_fall_back_to_routine_start_date():
    mixed = [
        {"week_number": n, "skin_rating": r, "photo_date": "2024-02-01"}
        for n, r in enumerate(["better", "worse", "same", "worse"], start=1)
    ]
    with_signup = _document(skinRatings=mixed)
    without_signup = _document(skinRatings=mixed, routineStartDate=SIGNUP.isoformat())
    del without_signup["signupDate"]

    expected = correlation_insights_for_snapshot(
        parse_snapshot("u1", with_signup), build_routine_plan(REFERENCE, with_signup), reference=REFERENCE, today=date(2024, 2, 15)
    )
    result = correlation_insights_for_snapshot(
        parse_snapshot("u1", without_signup), build_routine_plan(REFERENCE, without_signup), reference=REFERENCE, today=date(2024, 2, 15)
    )

    assert result == expected
    assert result["whatsHurting"]["weekCount"] == 2


def test_snapshot_insights_from_event_log():
    ratings = [
        {"week_number": n, "skin_rating": r, "photo_date": "2024-02-01", "timestamp": "2024-02-01T09:00:00Z"}
        for n, r in enumerate(["better", "worse", "same", "worse"], start=1)
    ]
    doc = _document(skinRatings=ratings)
    snapshot = parse_snapshot("u1", doc)
    result = correlation_insights_for_snapshot(
        snapshot, build_routine_plan(REFERENCE, doc), reference=REFERENCE, today=date(2024, 2, 15)
    )

    assert len(snapshot.ratings) == 4
    assert result["message"] is None
    assert result["whatsWorking"]["weekCount"] == 1
    assert result["whatsHurting"]["weekCount"] == 2
    assert result["whatsHurting"]["totalWeeks"] == 4


def test_legacy_outcome_ratings_are_still_read():
    doc = {
        "skinRatings": [{"week_number": 1, "skin_rating": "Better"}],
        "outcomeRatings": [{"week_number": 2, "rating": "worse"}, {"week_number": 3, "rating": "great"}],
    }
    snapshot = parse_snapshot("u1", doc)

    assert [(r.week_number, r.rating) for r in snapshot.ratings] == [(1, "better"), (2, "worse")]
