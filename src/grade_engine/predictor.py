# ABOUTME: Entry point that turns a subject's assessments and categories into a grade.
# ABOUTME: Uses grade-space math for HL and percent-space math for SL subjects.

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Sequence

from src.common.schemas import Assessment, Category, Subject

from .aggregation import (
    BucketSummary,
    aggregate_bucket,
    classify_score,
    has_score,
    mean_of,
    percent_score,
)
from .combiner import combine_buckets
from .conversion import HL, MAX_GRADE, MIN_GRADE, SL, normalize_track, percent_to_grade, round_half_up
from .weights import resolve_category_weights

METHOD_SIMPLE_AVERAGE = "simple-average"
METHOD_WEIGHTED_IB = "weighted-ib"
METHOD_WEIGHTED_PERCENT = "weighted-percent"

UNCATEGORIZED_KEY = "uncategorized"

TraceSink = Callable[[str, Dict[str, Any]], None]


@dataclass(frozen=True)
class PredictionResult:
    grade: int
    percentage: float
    method: str
    details: str


def logging_trace(logger: logging.Logger, level: int = logging.DEBUG) -> TraceSink:
    """Adapt a stdlib logger into a trace sink for ``predict``."""

    def _emit(event: str, fields: Dict[str, Any]) -> None:
        logger.log(level, "%s %s", event, fields)

    return _emit


def _emit(trace: Optional[TraceSink], event: str, **fields: Any) -> None:
    if trace is not None:
        trace(event, fields)


def _clamp_grade(value: float) -> int:
    return max(MIN_GRADE, min(MAX_GRADE, round_half_up(value)))


def predict(
    subject: Subject,
    assessments: Sequence[Assessment],
    categories: Sequence[Category],
    trace: Optional[TraceSink] = None,
) -> Optional[PredictionResult]:
    """
    Predict the final 1-7 grade for one subject from its full current snapshot.

    Returns None when there is nothing to predict from: no assessments, or
    none carrying an IB grade, a percentage, or a parseable raw score.

    Without categories the prediction is the plain average of recorded IB
    grades. With categories every category bucket is averaged (empty ones
    count as perfect), uncategorized work takes the weight left over, and the
    buckets are combined by weight.
    """

    track = normalize_track(subject.type)

    if not assessments:
        _emit(trace, "no_prediction", reason="no assessments")
        return None
    if not any(has_score(assessment) for assessment in assessments):
        _emit(trace, "no_prediction", reason="no usable scores")
        return None

    if not categories:
        return _predict_without_categories(track, assessments, trace)

    resolution = resolve_category_weights(categories, assessments)
    _emit(
        trace,
        "weights_resolved",
        category_weights=dict(resolution.category_weights),
        used_category_weight=resolution.used_category_weight,
        uncategorized_weight=resolution.uncategorized_weight,
        uncategorized_count=len(resolution.uncategorized),
    )

    buckets: List[BucketSummary] = []
    for category_id, members in resolution.buckets.items():
        bucket = aggregate_bucket(category_id, resolution.category_weights[category_id], members, track)
        _emit(trace, "bucket_scored", **vars(bucket))
        buckets.append(bucket)

    if (
        resolution.uncategorized
        and resolution.uncategorized_weight == 0
        and all(bucket.optimistic for bucket in buckets)
    ):
        rescued = _simple_average(track, resolution.uncategorized)
        if rescued is not None:
            _emit(trace, "simple_average_fallback", assessments=len(resolution.uncategorized))
            return rescued

    if resolution.uncategorized and resolution.uncategorized_weight > 0:
        bucket = aggregate_bucket(
            UNCATEGORIZED_KEY, resolution.uncategorized_weight, resolution.uncategorized, track
        )
        _emit(trace, "bucket_scored", **vars(bucket))
        buckets.append(bucket)

    combined = combine_buckets(buckets)
    if combined is None:
        _emit(trace, "no_prediction", reason="no weight")
        return None
    if combined.renormalized:
        _emit(trace, "renormalized", total_used_weight=combined.total_used_weight)

    if track == HL:
        return PredictionResult(
            grade=_clamp_grade(combined.final_score),
            percentage=combined.final_percent,
            method=METHOD_WEIGHTED_IB,
            details="Weighted average of IB grades (HL logic)",
        )
    return PredictionResult(
        grade=percent_to_grade(round_half_up(combined.final_score), SL),
        percentage=combined.final_score,
        method=METHOD_WEIGHTED_PERCENT,
        details=f"Weighted average of {combined.final_score:.1f}% (SL logic)",
    )


def _predict_without_categories(
    track: str,
    assessments: Sequence[Assessment],
    trace: Optional[TraceSink],
) -> Optional[PredictionResult]:
    graded = [assessment for assessment in assessments if assessment.ib_grade is not None]
    if not graded:
        _emit(trace, "no_prediction", reason="no IB grades without categories")
        return None

    mean_grade = mean_of([float(assessment.ib_grade) for assessment in graded])
    percents = [percent_score(classify_score(assessment), track) for assessment in graded]
    return PredictionResult(
        grade=_clamp_grade(mean_grade),
        percentage=mean_of(percents),
        method=METHOD_SIMPLE_AVERAGE,
        details=f"Average of {len(graded)} assessments (no categories)",
    )


def _simple_average(track: str, assessments: Sequence[Assessment]) -> Optional[PredictionResult]:
    bucket = aggregate_bucket(UNCATEGORIZED_KEY, 0.0, assessments, track)
    if bucket.optimistic:
        return None

    details = f"Average of {bucket.contributing} uncategorized assessments (categories unused)"
    if track == HL:
        return PredictionResult(
            grade=_clamp_grade(bucket.rep_score),
            percentage=bucket.rep_percent,
            method=METHOD_SIMPLE_AVERAGE,
            details=details,
        )
    return PredictionResult(
        grade=percent_to_grade(round_half_up(bucket.rep_score), SL),
        percentage=bucket.rep_score,
        method=METHOD_SIMPLE_AVERAGE,
        details=details,
    )
