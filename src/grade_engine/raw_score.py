# ABOUTME: Parses "score/total" raw grade strings into normalized percentages.
# ABOUTME: Unparseable input yields None instead of raising.

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Optional


@dataclass(frozen=True)
class RawScore:
    score: float
    total: float

    @property
    def percent(self) -> float:
        return raw_percent(self.score, self.total)


def parse_raw_grade(text: Optional[str]) -> Optional[RawScore]:
    """
    Parse a raw grade such as ``"31/32"``.

    Returns None unless the string has exactly two numeric parts and a
    non-zero total.
    """
    if not isinstance(text, str):
        return None
    parts = text.strip().split("/")
    if len(parts) != 2:
        return None
    try:
        score = float(parts[0].strip())
        total = float(parts[1].strip())
    except ValueError:
        return None
    if not (math.isfinite(score) and math.isfinite(total)) or total == 0:
        return None
    return RawScore(score=score, total=total)


def raw_percent(score: float, total: float) -> float:
    if total == 0:
        return 0.0
    return 100.0 * score / total
