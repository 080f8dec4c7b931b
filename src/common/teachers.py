# ABOUTME: Registry of teacher-specific grading profiles with fixed category sets.
# ABOUTME: Routes a subject to its teacher's calculation or to the generic predictor.

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional, Sequence, Tuple

from src.grade_engine.predictor import PredictionResult, TraceSink, predict
from src.grade_engine.raw_score import parse_raw_grade

from .schemas import Assessment, Category, Subject

METHOD_TEACHER_PROFILE = "teacher-profile"

ProfileCalculator = Callable[[Subject, Sequence[Assessment], Sequence[Category]], Optional[PredictionResult]]


@dataclass(frozen=True)
class TeacherCategory:
    name: str
    weight: float


@dataclass(frozen=True)
class TeacherProfile:
    id: str
    display_name: str
    categories: Tuple[TeacherCategory, ...]
    note: str
    calculate_grade: Optional[ProfileCalculator] = field(default=None, compare=False)


# (lower bound of raw %, grade, adjusted % at lower bound, adjusted % span, raw % span)
GREENWOOD_BANDS = [
    (80.0, 7, 98.0, 2.0, 20.0),
    (73.0, 6, 96.0, 2.0, 7.0),
    (60.0, 5, 90.0, 6.0, 13.0),
    (50.0, 4, 86.0, 4.0, 10.0),
    (40.0, 3, 76.0, 10.0, 10.0),
    (30.0, 2, 50.0, 26.0, 10.0),
]
GREENWOOD_TESTS_WEIGHT = 0.8
# Labs count 18%; the remaining 2% is discarded.
GREENWOOD_LABS_WEIGHT = 0.18


def _sum_raw_scores(assessments: Sequence[Assessment], category_id: str) -> Tuple[float, float]:
    score_total = 0.0
    max_total = 0.0
    for assessment in assessments:
        if assessment.category_id != category_id:
            continue
        parsed = parse_raw_grade(assessment.raw_grade)
        if parsed is not None:
            score_total += parsed.score
            max_total += parsed.total
    return score_total, max_total


def _greenwood_band(raw_percentage: float) -> Tuple[int, float]:
    for lower, grade, adjusted_base, adjusted_span, raw_span in GREENWOOD_BANDS:
        if raw_percentage >= lower:
            position = min((raw_percentage - lower) / raw_span, 1.0)
            return grade, adjusted_base + position * adjusted_span
    return 1, min(raw_percentage * 1.5, 49.0)


def calculate_greenwood_grade(
    subject: Subject,
    assessments: Sequence[Assessment],
    categories: Sequence[Category],
) -> Optional[PredictionResult]:
    """
    Physics (Greenwood): Tests and Labs are scored from raw points only.

    Points are pooled per category, an empty category counts as 100%, and
    the weighted raw percentage is stretched onto the IB-adjusted scale.
    """

    tests = next((c for c in categories if c.name == "Tests"), None)
    labs = next((c for c in categories if c.name == "Labs"), None)
    if tests is None or labs is None:
        return None

    tests_score, tests_max = _sum_raw_scores(assessments, tests.id)
    labs_score, labs_max = _sum_raw_scores(assessments, labs.id)
    if tests_max == 0 and labs_max == 0:
        return None

    tests_percent = tests_score / tests_max * 100 if tests_max > 0 else 100.0
    labs_percent = labs_score / labs_max * 100 if labs_max > 0 else 100.0
    raw_percentage = tests_percent * GREENWOOD_TESTS_WEIGHT + labs_percent * GREENWOOD_LABS_WEIGHT
    grade, adjusted = _greenwood_band(raw_percentage)

    details = " • ".join(
        [
            f"Tests: {tests_score:g}/{tests_max:g} = {tests_percent:.1f}%",
            f"Labs: {labs_score:g}/{labs_max:g} = {labs_percent:.1f}%",
            f"Weighted Average: {raw_percentage:.1f}%",
            f"Grade {grade} (Adjusted: {adjusted:.3f}%)",
        ]
    )
    return PredictionResult(grade=grade, percentage=adjusted, method=METHOD_TEACHER_PROFILE, details=details)


TEACHER_PROFILES: Dict[str, TeacherProfile] = {
    "Greenwood": TeacherProfile(
        id="Greenwood",
        display_name="Greenwood (PMSS; Physics)",
        categories=(TeacherCategory("Tests", 0.8), TeacherCategory("Labs", 0.2)),
        note="Only raw score (e.g., 31/33) is required. Other fields are not used in the calculation.",
        calculate_grade=calculate_greenwood_grade,
    ),
}


def get_teacher_profile(teacher_id: Optional[str]) -> Optional[TeacherProfile]:
    if not teacher_id:
        return None
    return TEACHER_PROFILES.get(teacher_id)


def is_valid_teacher(teacher_id: Optional[str]) -> bool:
    # No teacher means the generic algorithm.
    if not teacher_id:
        return True
    return teacher_id in TEACHER_PROFILES


def list_teacher_profiles() -> List[TeacherProfile]:
    return list(TEACHER_PROFILES.values())


def profile_categories(teacher_id: str, subject_id: str) -> List[Category]:
    """Materialize a profile's fixed category set for one subject."""

    profile = get_teacher_profile(teacher_id)
    if profile is None:
        raise ValueError(f"Unknown teacher profile '{teacher_id}'.")
    return [
        Category(id=f"{subject_id}:{teacher_id}:{cat.name}", subject_id=subject_id, name=cat.name, raw_weight=cat.weight)
        for cat in profile.categories
    ]


def resolve_prediction(
    subject: Subject,
    assessments: Sequence[Assessment],
    categories: Sequence[Category],
    trace: Optional[TraceSink] = None,
) -> Optional[PredictionResult]:
    """Use the subject's teacher profile when it has one, otherwise the generic predictor."""

    profile = get_teacher_profile(subject.teacher)
    if profile is not None and profile.calculate_grade is not None:
        return profile.calculate_grade(subject, assessments, categories)
    return predict(subject, assessments, categories, trace=trace)
