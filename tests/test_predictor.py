# ABOUTME: Tests the end-to-end grade predictor on HL and SL subjects.
# ABOUTME: Covers fallbacks, optimistic empty categories, weight policies, and tracing.

import logging
from datetime import date

import pytest

from src.common.schemas import Assessment, Category, Subject
from src.grade_engine.conversion import grade_to_percent_estimate
from src.grade_engine.predictor import logging_trace, predict

HL_SUBJECT = Subject(id="s1", name="Math AA", type="HL")
SL_SUBJECT = Subject(id="s1", name="English", type="SL")


def _assessment(aid, category_id=None, ib_grade=None, raw_percent=None, raw_grade=None):
    return Assessment(
        id=aid,
        subject_id="s1",
        name=f"Assessment {aid}",
        date=date(2024, 3, 1),
        ib_grade=ib_grade,
        raw_percent=raw_percent,
        raw_grade=raw_grade,
        category_id=category_id,
    )


def _category(cid, weight):
    return Category(id=cid, subject_id="s1", name=cid.upper(), raw_weight=weight)


def test_no_assessments_returns_none():
    assert predict(HL_SUBJECT, [], [_category("a", 1.0)]) is None
    assert predict(SL_SUBJECT, [], []) is None


def test_assessments_without_any_score_return_none():
    empty = [_assessment("a1", "a"), _assessment("a2", raw_grade="not a score")]
    assert predict(SL_SUBJECT, empty, [_category("a", 1.0)]) is None
    assert predict(HL_SUBJECT, empty, []) is None


def test_no_categories_averages_ib_grades():
    result = predict(HL_SUBJECT, [_assessment("a1", ib_grade=6), _assessment("a2", ib_grade=4)], [])
    assert result.grade == 5
    assert result.method == "simple-average"
    assert "2 assessments" in result.details


def test_no_categories_rounds_half_up_and_ignores_percent_only():
    assessments = [
        _assessment("a1", ib_grade=6),
        _assessment("a2", ib_grade=5),
        _assessment("a3", raw_percent=10.0),
    ]
    assert predict(SL_SUBJECT, assessments, []).grade == 6


def test_no_categories_and_no_ib_grades_returns_none():
    assert predict(SL_SUBJECT, [_assessment("a1", raw_percent=88.0)], []) is None


def test_full_weight_hl_category():
    categories = [_category("a", 1.0)]
    assessments = [_assessment("a1", "a", ib_grade=6), _assessment("a2", "a", ib_grade=4)]
    result = predict(HL_SUBJECT, assessments, categories)
    assert result.grade == 5
    assert result.method == "weighted-ib"
    assert result.percentage == pytest.approx((97 + 88) / 2)


def test_sl_perfect_score_maps_to_seven():
    result = predict(SL_SUBJECT, [_assessment("a1", "a", raw_percent=100.0)], [_category("a", 1.0)])
    assert result.grade == 7
    assert result.percentage == pytest.approx(100.0)
    assert result.method == "weighted-percent"


def test_empty_category_counts_as_perfect():
    categories = [_category("a", 0.5), _category("b", 0.5)]
    result = predict(SL_SUBJECT, [_assessment("b1", "b", raw_percent=60.0)], categories)
    assert result.percentage == pytest.approx(80.0)
    assert result.grade == 4


def test_raw_magnitude_weights_are_renormalized():
    categories = [_category("a", 55), _category("b", 45)]
    assessments = [_assessment("a1", "a", raw_percent=100.0), _assessment("b1", "b", raw_percent=0.0)]
    result = predict(SL_SUBJECT, assessments, categories)
    assert result.percentage == pytest.approx(55.0)
    assert result.grade == 2


def test_uncategorized_work_takes_remaining_weight():
    categories = [_category("a", 0.6)]
    assessments = [_assessment("a1", "a", ib_grade=6), _assessment("u1", None, ib_grade=4)]
    result = predict(HL_SUBJECT, assessments, categories)
    # 6 * 0.6 + 4 * 0.4 = 5.2
    assert result.grade == 5


def test_unassigned_weight_is_not_scaled_back_up():
    result = predict(SL_SUBJECT, [_assessment("a1", "a", raw_percent=80.0)], [_category("a", 0.5)])
    assert result.percentage == pytest.approx(40.0)
    assert result.grade == 1


def test_unused_categories_fall_back_to_uncategorized_average():
    categories = [_category("a", 1.0)]
    assessments = [_assessment("u1", None, ib_grade=6), _assessment("u2", None, ib_grade=4)]
    result = predict(HL_SUBJECT, assessments, categories)
    assert result.method == "simple-average"
    assert result.grade == 5


def test_unused_categories_fall_back_to_percent_average_for_sl():
    categories = [_category("a", 1.0)]
    assessments = [_assessment("u1", None, raw_percent=80.0), _assessment("u2", None, raw_grade="45/50")]
    result = predict(SL_SUBJECT, assessments, categories)
    assert result.method == "simple-average"
    assert result.percentage == pytest.approx(85.0)
    assert result.grade == 4
    assert "2 uncategorized" in result.details


def test_unused_categories_fallback_estimates_hl_grade_from_percent():
    categories = [_category("a", 1.0)]
    result = predict(HL_SUBJECT, [_assessment("u1", None, raw_percent=75.0), _assessment("u2")], categories)
    assert result.method == "simple-average"
    assert result.grade == 6
    assert result.percentage == pytest.approx(75.0)
    assert "1 uncategorized" in result.details


def test_unscored_uncategorized_work_counts_as_perfect_for_sl():
    categories = [_category("a", 0.5)]
    assessments = [_assessment("a1", "a", raw_percent=80.0), _assessment("u1", None)]
    result = predict(SL_SUBJECT, assessments, categories)
    assert result.method == "weighted-percent"
    assert result.percentage == pytest.approx(90.0)
    assert result.grade == 6


def test_unscored_uncategorized_work_counts_as_perfect_for_hl():
    categories = [_category("a", 0.5)]
    assessments = [_assessment("a1", "a", ib_grade=5), _assessment("u1", None)]
    result = predict(HL_SUBJECT, assessments, categories)
    assert result.method == "weighted-ib"
    # 5 * 0.5 + 7 * 0.5 = 6
    assert result.grade == 6
    assert result.percentage == pytest.approx(0.5 * grade_to_percent_estimate(5, "HL") + 50.0)


def test_zero_weight_uncategorized_is_ignored_when_categories_have_data():
    categories = [_category("a", 1.0)]
    assessments = [_assessment("a1", "a", ib_grade=4), _assessment("u1", None, ib_grade=7)]
    result = predict(HL_SUBJECT, assessments, categories)
    assert result.method == "weighted-ib"
    assert result.grade == 4


def test_deleted_category_assessments_count_as_uncategorized():
    categories = [_category("a", 0.5)]
    assessments = [_assessment("a1", "a", raw_percent=90.0), _assessment("x1", "gone", raw_percent=70.0)]
    result = predict(SL_SUBJECT, assessments, categories)
    assert result.percentage == pytest.approx(80.0)


def test_hl_grade_is_clamped_to_scale():
    result = predict(HL_SUBJECT, [_assessment("a1", "a", ib_grade=2)], [_category("a", 0.1)])
    assert result.grade == 1


def test_raw_grade_string_feeds_sl_math():
    result = predict(SL_SUBJECT, [_assessment("a1", "a", raw_grade="48/50")], [_category("a", 1.0)])
    assert result.percentage == pytest.approx(96.0)
    assert result.grade == 7


def test_predict_is_repeatable():
    categories = [_category("a", 0.4), _category("b", 0.4)]
    assessments = [
        _assessment("a1", "a", ib_grade=5, raw_percent=91.0),
        _assessment("b1", "b", raw_percent=77.0),
        _assessment("u1", None, ib_grade=6),
    ]
    first = predict(HL_SUBJECT, assessments, categories)
    second = predict(HL_SUBJECT, assessments, categories)
    assert first == second


def test_trace_receives_structured_events():
    events = []
    categories = [_category("a", 0.5), _category("b", 0.5)]
    predict(
        SL_SUBJECT,
        [_assessment("b1", "b", raw_percent=60.0)],
        categories,
        trace=lambda event, fields: events.append((event, fields)),
    )
    names = [event for event, _ in events]
    assert names[0] == "weights_resolved"
    assert names.count("bucket_scored") == 2
    optimistic = [fields for event, fields in events if event == "bucket_scored" and fields["optimistic"]]
    assert optimistic[0]["key"] == "a"


def test_logging_trace_writes_to_logger(caplog):
    logger = logging.getLogger("grade_engine.test")
    with caplog.at_level(logging.DEBUG, logger="grade_engine.test"):
        predict(SL_SUBJECT, [], [], trace=logging_trace(logger))
    assert "no_prediction" in caplog.text
