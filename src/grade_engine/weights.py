# ABOUTME: Partitions assessments into category buckets and resolves bucket weights.
# ABOUTME: The uncategorized bucket receives whatever weight the categories leave over.

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, List, Sequence

from src.common.schemas import Assessment, Category

# Remainders smaller than this are float noise (0.7 + 0.3 != 1.0).
WEIGHT_EPSILON = 1e-9


@dataclass(frozen=True)
class WeightResolution:
    category_weights: Dict[str, float]
    used_category_weight: float
    uncategorized_weight: float
    buckets: Dict[str, List[Assessment]] = field(default_factory=dict)
    uncategorized: List[Assessment] = field(default_factory=list)


def resolve_category_weights(
    categories: Sequence[Category],
    assessments: Sequence[Assessment],
) -> WeightResolution:
    """
    Split assessments by category and work out how much weight each bucket carries.

    Category weights are used exactly as given. Assessments without a
    category, or pointing at a category that no longer exists, land in the
    uncategorized bucket, whose weight is ``max(0, 1 - sum(category weights))``.
    """

    buckets: Dict[str, List[Assessment]] = {category.id: [] for category in categories}
    uncategorized: List[Assessment] = []
    for assessment in assessments:
        if assessment.category_id and assessment.category_id in buckets:
            buckets[assessment.category_id].append(assessment)
        else:
            uncategorized.append(assessment)

    category_weights = {category.id: float(category.raw_weight) for category in categories}
    used = sum(category_weights.values())
    remainder = 1.0 - used
    if remainder <= WEIGHT_EPSILON:
        remainder = 0.0

    return WeightResolution(
        category_weights=category_weights,
        used_category_weight=used,
        uncategorized_weight=remainder,
        buckets=buckets,
        uncategorized=uncategorized,
    )
