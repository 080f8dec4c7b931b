# ABOUTME: Scores individual assessments and averages them per weight bucket.
# ABOUTME: Empty buckets get the benefit of the doubt (grade 7 / 100%).

from __future__ import annotations

from dataclasses import dataclass
from typing import List, Optional, Sequence, Union

from src.common.schemas import Assessment

from .conversion import (
    HL,
    MAX_GRADE,
    estimate_grade_from_percent,
    grade_to_percent_estimate,
)
from .raw_score import parse_raw_grade

OPTIMISTIC_PERCENT = 100.0
OPTIMISTIC_GRADE = float(MAX_GRADE)


@dataclass(frozen=True)
class GradeOnly:
    grade: int


@dataclass(frozen=True)
class PercentOnly:
    percent: float


@dataclass(frozen=True)
class GradeAndPercent:
    grade: int
    percent: float


@dataclass(frozen=True)
class NoScore:
    pass


Scored = Union[GradeOnly, PercentOnly, GradeAndPercent, NoScore]


@dataclass(frozen=True)
class BucketSummary:
    key: str
    weight: float
    rep_score: float
    rep_percent: float
    contributing: int
    optimistic: bool


def classify_score(assessment: Assessment) -> Scored:
    """Describe which score representations an assessment actually carries."""

    grade = assessment.ib_grade
    percent = assessment.raw_percent
    if percent is None:
        parsed = parse_raw_grade(assessment.raw_grade)
        if parsed is not None:
            percent = parsed.percent

    if grade is not None and percent is not None:
        return GradeAndPercent(grade=int(grade), percent=float(percent))
    if grade is not None:
        return GradeOnly(grade=int(grade))
    if percent is not None:
        return PercentOnly(percent=float(percent))
    return NoScore()


def has_score(assessment: Assessment) -> bool:
    return not isinstance(classify_score(assessment), NoScore)


def native_score(scored: Scored, track: str) -> Optional[float]:
    """Score in the track's native unit: grade for HL, percent for SL."""

    if isinstance(scored, NoScore):
        return None
    if track == HL:
        if isinstance(scored, (GradeOnly, GradeAndPercent)):
            return float(scored.grade)
        return float(estimate_grade_from_percent(scored.percent))
    if isinstance(scored, (PercentOnly, GradeAndPercent)):
        return scored.percent
    return grade_to_percent_estimate(scored.grade, track)


def percent_score(scored: Scored, track: str) -> Optional[float]:
    if isinstance(scored, NoScore):
        return None
    if isinstance(scored, (PercentOnly, GradeAndPercent)):
        return scored.percent
    return grade_to_percent_estimate(scored.grade, track)


def mean_of(values: Sequence[float]) -> float:
    return sum(values) / len(values)


def aggregate_bucket(
    key: str,
    weight: float,
    assessments: Sequence[Assessment],
    track: str,
) -> BucketSummary:
    """
    Average one bucket's assessments in native units and in percent space.

    Assessments without any usable score are skipped rather than counted as
    zero. A bucket left with nothing to average is scored as perfect.
    """

    scores: List[float] = []
    percents: List[float] = []
    for assessment in assessments:
        scored = classify_score(assessment)
        score = native_score(scored, track)
        if score is None:
            continue
        scores.append(score)
        percents.append(percent_score(scored, track))

    if not scores:
        rep_score = OPTIMISTIC_GRADE if track == HL else OPTIMISTIC_PERCENT
        return BucketSummary(
            key=key,
            weight=weight,
            rep_score=rep_score,
            rep_percent=OPTIMISTIC_PERCENT,
            contributing=0,
            optimistic=True,
        )

    return BucketSummary(
        key=key,
        weight=weight,
        rep_score=mean_of(scores),
        rep_percent=mean_of(percents),
        contributing=len(scores),
        optimistic=False,
    )
