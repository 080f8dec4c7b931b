# ABOUTME: Maps between raw percentages and the IB 1-7 grade scale per track.
# ABOUTME: Holds the fixed HL/SL boundary tables and band-midpoint estimates.

from __future__ import annotations

import math
from typing import Dict, List, Tuple

HL = "HL"
SL = "SL"
TRACKS = (HL, SL)

MIN_GRADE = 1
MAX_GRADE = 7

# (grade, inclusive lower bound), scanned high to low. Anything below maps to 1.
GRADE_BOUNDARIES: Dict[str, List[Tuple[int, int]]] = {
    HL: [(7, 98), (6, 96), (5, 90), (4, 86), (3, 76), (2, 50)],
    SL: [(7, 96), (6, 90), (5, 86), (4, 76), (3, 70), (2, 50)],
}

# Midpoint of each grade's band, used when a record has a grade but no percent.
BAND_MIDPOINTS: Dict[str, Dict[int, float]] = {
    HL: {7: 99, 6: 97, 5: 93, 4: 88, 3: 81, 2: 63, 1: 25},
    SL: {7: 98, 6: 93, 5: 88, 4: 81, 3: 73, 2: 60, 1: 25},
}

UNKNOWN_GRADE_PERCENT = 50.0

# Deliberately coarser than GRADE_BOUNDARIES.
LOOSE_GRADE_THRESHOLDS: List[Tuple[int, int]] = [(7, 80), (6, 70), (5, 60), (4, 50), (3, 40), (2, 30)]


def round_half_up(value: float) -> int:
    """Round to the nearest integer, with .5 always going up."""
    return int(math.floor(value + 0.5))


def normalize_track(track: str) -> str:
    # Unknown tracks are read with the SL table rather than raising.
    return HL if str(track).upper() == HL else SL


def percent_to_grade(percent: float, track: str) -> int:
    """
    Convert a percentage to a 1-7 grade using the track's boundary table.

    The percentage is rounded half-up before the scan, so 97.5 on HL is 7.
    Non-finite input falls through to grade 1.
    """
    if percent is None or not math.isfinite(percent):
        return MIN_GRADE
    rounded = round_half_up(percent)
    for grade, threshold in GRADE_BOUNDARIES[normalize_track(track)]:
        if rounded >= threshold:
            return grade
    return MIN_GRADE


def grade_to_percent_estimate(grade: float, track: str) -> float:
    """Return the midpoint percentage of ``grade``'s band (50 for grades outside 1-7)."""
    if grade is None or not math.isfinite(grade):
        return UNKNOWN_GRADE_PERCENT
    midpoint = BAND_MIDPOINTS[normalize_track(track)].get(round_half_up(grade))
    if midpoint is None:
        return UNKNOWN_GRADE_PERCENT
    return float(midpoint)


def estimate_grade_from_percent(percent: float) -> int:
    """Loose percent -> grade approximation used to fill in grades for HL math."""
    if percent is None or not math.isfinite(percent):
        return MIN_GRADE
    for grade, threshold in LOOSE_GRADE_THRESHOLDS:
        if percent >= threshold:
            return grade
    return MIN_GRADE
