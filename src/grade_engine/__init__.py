# ABOUTME: Exposes the deterministic grade-prediction engine.
# ABOUTME: Groups conversion tables, raw-score parsing, weighting, and the predictor.

from .conversion import (
    estimate_grade_from_percent,
    grade_to_percent_estimate,
    normalize_track,
    percent_to_grade,
    round_half_up,
)
from .raw_score import RawScore, parse_raw_grade, raw_percent
from .weights import WeightResolution, resolve_category_weights
from .aggregation import BucketSummary, aggregate_bucket, classify_score
from .combiner import CombinedScore, combine_buckets
from .predictor import PredictionResult, logging_trace, predict

__all__ = [
    "estimate_grade_from_percent",
    "grade_to_percent_estimate",
    "normalize_track",
    "percent_to_grade",
    "round_half_up",
    "RawScore",
    "parse_raw_grade",
    "raw_percent",
    "WeightResolution",
    "resolve_category_weights",
    "BucketSummary",
    "aggregate_bucket",
    "classify_score",
    "CombinedScore",
    "combine_buckets",
    "PredictionResult",
    "logging_trace",
    "predict",
]
