# ABOUTME: Defines canonical data structures shared by the engine, store, and CLI.
# ABOUTME: Centralizes subject, category, assessment, and feedback records.

from dataclasses import dataclass, field
from datetime import date, datetime
from typing import List, Optional

SUBJECT_COUNT = 6
MAX_TOTAL = 42
FEEDBACK_TYPES = ("feedback", "feature")


@dataclass(frozen=True)
class Assessment:
    """One graded event. Any of the three score fields may be missing."""

    id: str
    subject_id: str
    name: str
    date: date
    ib_grade: Optional[int] = None
    raw_percent: Optional[float] = None
    raw_grade: Optional[str] = None
    notes: Optional[str] = None
    category_id: Optional[str] = None


@dataclass(frozen=True)
class Category:
    """Named weight bucket; raw_weight is a direct fraction of the subject grade."""

    id: str
    subject_id: str
    name: str
    raw_weight: float


@dataclass(frozen=True)
class Subject:
    id: str
    name: str
    type: str
    teacher: Optional[str] = None
    target_grade: int = 7
    ai_predicted_grade: Optional[int] = None
    ai_explanation: Optional[str] = None
    prediction_dirty: bool = False


@dataclass(frozen=True)
class Feedback:
    id: str
    content: str
    type: str
    created_at: datetime
    user_email: Optional[str] = None


@dataclass(frozen=True)
class SubjectSnapshot:
    """Complete current state of one subject, as handed to the predictor."""

    subject: Subject
    assessments: List[Assessment] = field(default_factory=list)
    categories: List[Category] = field(default_factory=list)
