# ABOUTME: Merges per-bucket averages into one weighted score and percentage.
# ABOUTME: Renormalizes only when the supplied weights add up to more than 1.0.

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional, Sequence

from .aggregation import BucketSummary
from .weights import WEIGHT_EPSILON


@dataclass(frozen=True)
class CombinedScore:
    final_score: float
    final_percent: float
    total_used_weight: float
    renormalized: bool


def combine_buckets(buckets: Sequence[BucketSummary]) -> Optional[CombinedScore]:
    """
    Weighted sum of bucket scores.

    Weights summing past 1.0 are treated as raw magnitudes (e.g. 55 and 45)
    and divided out. Weights summing to 1.0 or less are used as-is, so any
    weight left unassigned pulls the result down.
    """

    total_weighted_score = 0.0
    total_weighted_percent = 0.0
    total_used_weight = 0.0
    for bucket in buckets:
        if bucket.weight <= 0:
            continue
        total_weighted_score += bucket.rep_score * bucket.weight
        total_weighted_percent += bucket.rep_percent * bucket.weight
        total_used_weight += bucket.weight

    if total_used_weight == 0:
        return None

    if total_used_weight > 1.0 + WEIGHT_EPSILON:
        return CombinedScore(
            final_score=total_weighted_score / total_used_weight,
            final_percent=total_weighted_percent / total_used_weight,
            total_used_weight=total_used_weight,
            renormalized=True,
        )

    return CombinedScore(
        final_score=total_weighted_score,
        final_percent=total_weighted_percent,
        total_used_weight=total_used_weight,
        renormalized=False,
    )
