# ABOUTME: Tests bucket partitioning, per-bucket averaging, and weighted combination.
# ABOUTME: Covers dangling categories, optimistic empty buckets, and renormalization.

from datetime import date

import pytest

from src.common.schemas import Assessment, Category
from src.grade_engine.aggregation import (
    BucketSummary,
    GradeAndPercent,
    GradeOnly,
    NoScore,
    PercentOnly,
    aggregate_bucket,
    classify_score,
)
from src.grade_engine.combiner import combine_buckets
from src.grade_engine.weights import resolve_category_weights


def _assessment(aid, category_id=None, ib_grade=None, raw_percent=None, raw_grade=None):
    return Assessment(
        id=aid,
        subject_id="s1",
        name=f"Test {aid}",
        date=date(2024, 1, 1),
        ib_grade=ib_grade,
        raw_percent=raw_percent,
        raw_grade=raw_grade,
        category_id=category_id,
    )


def _category(cid, weight):
    return Category(id=cid, subject_id="s1", name=cid.title(), raw_weight=weight)


def test_resolver_sends_missing_and_dangling_ids_to_uncategorized():
    categories = [_category("exams", 0.6)]
    assessments = [
        _assessment("a1", "exams", ib_grade=6),
        _assessment("a2", None, ib_grade=5),
        _assessment("a3", "deleted-category", ib_grade=4),
    ]

    resolution = resolve_category_weights(categories, assessments)

    assert [a.id for a in resolution.buckets["exams"]] == ["a1"]
    assert [a.id for a in resolution.uncategorized] == ["a2", "a3"]
    assert resolution.category_weights == {"exams": 0.6}
    assert resolution.uncategorized_weight == pytest.approx(0.4)


def test_resolver_floors_uncategorized_weight_at_zero():
    resolution = resolve_category_weights([_category("a", 0.7), _category("b", 0.3)], [])
    assert resolution.uncategorized_weight == 0.0

    resolution = resolve_category_weights([_category("a", 55), _category("b", 45)], [])
    assert resolution.used_category_weight == 100
    assert resolution.uncategorized_weight == 0.0


def test_classify_score_covers_every_shape():
    assert classify_score(_assessment("a", ib_grade=5)) == GradeOnly(5)
    assert classify_score(_assessment("a", raw_percent=72.0)) == PercentOnly(72.0)
    assert classify_score(_assessment("a", ib_grade=6, raw_percent=91.0)) == GradeAndPercent(6, 91.0)
    assert classify_score(_assessment("a", raw_grade="3/4")) == PercentOnly(75.0)
    assert classify_score(_assessment("a", raw_grade="garbage")) == NoScore()
    assert classify_score(_assessment("a")) == NoScore()


def test_hl_bucket_prefers_grade_and_estimates_from_percent():
    bucket = aggregate_bucket(
        "exams",
        1.0,
        [_assessment("a1", ib_grade=6), _assessment("a2", raw_percent=72.0), _assessment("a3")],
        "HL",
    )
    # 72% -> loose estimate 6; the empty record is skipped, not zeroed.
    assert bucket.rep_score == pytest.approx(6.0)
    assert bucket.rep_percent == pytest.approx((97 + 72) / 2)
    assert bucket.contributing == 2
    assert not bucket.optimistic


def test_sl_bucket_prefers_percent_and_estimates_from_grade():
    bucket = aggregate_bucket(
        "tests",
        0.5,
        [_assessment("a1", raw_percent=80.0), _assessment("a2", ib_grade=6)],
        "SL",
    )
    assert bucket.rep_score == pytest.approx((80 + 93) / 2)
    assert bucket.rep_percent == pytest.approx((80 + 93) / 2)


@pytest.mark.parametrize("track,expected", [("HL", 7.0), ("SL", 100.0)])
def test_empty_bucket_gets_benefit_of_the_doubt(track, expected):
    bucket = aggregate_bucket("labs", 0.3, [_assessment("a1")], track)
    assert bucket.optimistic
    assert bucket.rep_score == expected
    assert bucket.rep_percent == 100.0
    assert bucket.contributing == 0


def _bucket(key, weight, score, percent=None):
    return BucketSummary(
        key=key,
        weight=weight,
        rep_score=score,
        rep_percent=score if percent is None else percent,
        contributing=1,
        optimistic=False,
    )


def test_combiner_uses_raw_sum_when_weights_fit_in_one():
    combined = combine_buckets([_bucket("a", 0.5, 100), _bucket("b", 0.3, 60)])
    assert combined.final_score == pytest.approx(68.0)
    assert combined.total_used_weight == pytest.approx(0.8)
    assert not combined.renormalized


def test_combiner_renormalizes_raw_magnitudes():
    combined = combine_buckets([_bucket("a", 55, 100), _bucket("b", 45, 0)])
    assert combined.renormalized
    assert combined.final_score == pytest.approx(55.0)
    assert combined.final_percent == pytest.approx(55.0)


def test_combiner_without_weight_returns_none():
    assert combine_buckets([]) is None
    assert combine_buckets([_bucket("a", 0.0, 90)]) is None
