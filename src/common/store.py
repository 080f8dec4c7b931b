# ABOUTME: Persists subjects, categories, assessments, and feedback as Parquet tables.
# ABOUTME: Hands the predictor complete per-subject snapshots and tracks dirty predictions.

from __future__ import annotations

import logging
import math
import uuid
from datetime import date, datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

import pandas as pd

from src.grade_engine.conversion import MAX_GRADE, MIN_GRADE, TRACKS
from src.grade_engine.raw_score import parse_raw_grade

from .schemas import (
    FEEDBACK_TYPES,
    SUBJECT_COUNT,
    Assessment,
    Category,
    Feedback,
    Subject,
    SubjectSnapshot,
)
from .teachers import get_teacher_profile, is_valid_teacher, profile_categories

logger = logging.getLogger(__name__)

TABLE_COLUMNS: Dict[str, List[str]] = {
    "subjects": [
        "id",
        "name",
        "type",
        "teacher",
        "target_grade",
        "ai_predicted_grade",
        "ai_explanation",
        "prediction_dirty",
        "created_at",
    ],
    "categories": ["id", "subject_id", "name", "raw_weight", "created_at"],
    "assessments": [
        "id",
        "subject_id",
        "name",
        "date",
        "ib_grade",
        "raw_percent",
        "raw_grade",
        "notes",
        "category_id",
        "created_at",
    ],
    "feedback": ["id", "content", "type", "user_email", "created_at"],
}

ASSESSMENT_FIELDS = ("name", "date", "ib_grade", "raw_percent", "raw_grade", "notes", "category_id")
_UNSET = object()

DateLike = Union[date, datetime, str]


def _new_id() -> str:
    return uuid.uuid4().hex


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


def _clean(value: Any) -> Any:
    """Turn pandas/pyarrow scalars back into plain Python values."""
    if value is None:
        return None
    if hasattr(value, "item") and not isinstance(value, (str, bytes)):
        value = value.item()
    if isinstance(value, float) and math.isnan(value):
        return None
    return value


def _optional_int(value: Any) -> Optional[int]:
    value = _clean(value)
    return None if value is None else int(value)


def _optional_float(value: Any) -> Optional[float]:
    value = _clean(value)
    return None if value is None else float(value)


def parse_date(value: DateLike) -> date:
    """Accept a date, datetime, or ISO string; any time component is dropped."""
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    text = str(value).strip()
    return date.fromisoformat(text.split("T")[0].split(" ")[0])


def _percent_follows_raw_grade(row: Dict[str, Any]) -> bool:
    """True when the stored percentage is the one parsed from the stored raw grade."""
    parsed = parse_raw_grade(_clean(row["raw_grade"]))
    percent = _optional_float(row["raw_percent"])
    return parsed is not None and percent is not None and math.isclose(percent, parsed.percent)


def _validate_track(track: str) -> str:
    normalized = str(track).strip().upper()
    if normalized not in TRACKS:
        raise ValueError(f"Unsupported subject type '{track}'. Expected one of: {', '.join(TRACKS)}.")
    return normalized


def _validate_weight(raw_weight: float) -> float:
    weight = float(raw_weight)
    if not (0 < weight <= 1):
        raise ValueError(f"Category weight must be in (0, 1], got {raw_weight}.")
    return weight


def _validate_scores(ib_grade: Optional[int], raw_percent: Optional[float]) -> None:
    if ib_grade is not None and not (MIN_GRADE <= int(ib_grade) <= MAX_GRADE):
        raise ValueError(f"IB grade must be between {MIN_GRADE} and {MAX_GRADE}, got {ib_grade}.")
    if raw_percent is not None and not (0 <= float(raw_percent) <= 100):
        raise ValueError(f"Raw percent must be between 0 and 100, got {raw_percent}.")


class GradebookStore:
    """
    File-backed gradebook for one user.

    Each table lives in ``<data_dir>/<table>.parquet`` and is rewritten in
    full on every mutation; the data set is six subjects and their
    assessments, so there is no incremental write path.
    """

    def __init__(self, data_dir: Path):
        self.data_dir = Path(data_dir)

    # -- table io -------------------------------------------------------

    def _path(self, table: str) -> Path:
        return self.data_dir / f"{table}.parquet"

    def _load_rows(self, table: str) -> List[Dict[str, Any]]:
        path = self._path(table)
        if not path.exists():
            return []
        df = pd.read_parquet(path)
        return [{key: _clean(value) for key, value in row.items()} for row in df.to_dict("records")]

    def _save_rows(self, table: str, rows: List[Dict[str, Any]]) -> None:
        self.data_dir.mkdir(parents=True, exist_ok=True)
        df = pd.DataFrame(rows, columns=TABLE_COLUMNS[table])
        df.to_parquet(self._path(table), index=False)

    def _find(self, rows: List[Dict[str, Any]], record_id: str, kind: str) -> Dict[str, Any]:
        for row in rows:
            if row["id"] == record_id:
                return row
        raise KeyError(f"Unknown {kind} '{record_id}'.")

    def _mark_dirty(self, subject_id: str) -> None:
        rows = self._load_rows("subjects")
        row = self._find(rows, subject_id, "subject")
        if not row["prediction_dirty"]:
            row["prediction_dirty"] = True
            self._save_rows("subjects", rows)

    # -- subjects -------------------------------------------------------

    def create_subject(self, name: str, track: str, teacher: Optional[str] = None) -> Subject:
        if not name or not name.strip():
            raise ValueError("Subject name must not be empty.")
        track = _validate_track(track)
        if not is_valid_teacher(teacher):
            raise ValueError(f"Unknown teacher profile '{teacher}'.")

        rows = self._load_rows("subjects")
        if len(rows) >= SUBJECT_COUNT:
            raise ValueError(f"A gradebook tracks exactly {SUBJECT_COUNT} subjects; delete one first.")
        if any(r["name"].lower() == name.strip().lower() for r in rows):
            raise ValueError(f"Subject '{name.strip()}' already exists.")

        row = {
            "id": _new_id(),
            "name": name.strip(),
            "type": track,
            "teacher": teacher or None,
            "target_grade": MAX_GRADE,
            "ai_predicted_grade": None,
            "ai_explanation": None,
            "prediction_dirty": False,
            "created_at": _now(),
        }
        rows.append(row)
        self._save_rows("subjects", rows)
        logger.info("Created subject %s (%s)", row["name"], track)

        if teacher:
            self.apply_teacher_profile(row["id"], teacher)
            return self.get_subject(row["id"])
        return _subject_from_row(row)

    def list_subjects(self) -> List[Subject]:
        rows = sorted(self._load_rows("subjects"), key=lambda r: r["created_at"])
        return [_subject_from_row(row) for row in rows]

    def get_subject(self, subject_id: str) -> Subject:
        return _subject_from_row(self._find(self._load_rows("subjects"), subject_id, "subject"))

    def find_subject(self, name: str) -> Optional[Subject]:
        for subject in self.list_subjects():
            if subject.name.lower() == name.strip().lower():
                return subject
        return None

    def update_subject(
        self,
        subject_id: str,
        name: Optional[str] = None,
        track: Optional[str] = None,
        teacher: Any = _UNSET,
    ) -> Subject:
        """
        Rename, retype, or change the teacher of a subject.

        Switching to a teacher profile replaces the subject's categories with
        the profile's fixed set. Clearing the teacher removes those profile
        categories; their assessments stay and count as uncategorized until
        they are reassigned.
        """
        rows = self._load_rows("subjects")
        row = self._find(rows, subject_id, "subject")
        previous_teacher = _clean(row["teacher"])
        if name is not None:
            if not name.strip():
                raise ValueError("Subject name must not be empty.")
            if any(r["id"] != subject_id and r["name"].lower() == name.strip().lower() for r in rows):
                raise ValueError(f"Subject '{name.strip()}' already exists.")
            row["name"] = name.strip()
        if track is not None:
            row["type"] = _validate_track(track)
            row["prediction_dirty"] = True
        if teacher is not _UNSET:
            if not is_valid_teacher(teacher):
                raise ValueError(f"Unknown teacher profile '{teacher}'.")
            row["teacher"] = teacher or None
            row["prediction_dirty"] = True
        self._save_rows("subjects", rows)

        if teacher is not _UNSET and (teacher or None) != previous_teacher:
            if teacher:
                self.apply_teacher_profile(subject_id, teacher)
            elif previous_teacher:
                self._drop_profile_categories(subject_id, previous_teacher)
            return self.get_subject(subject_id)
        return _subject_from_row(row)

    def delete_subject(self, subject_id: str) -> None:
        rows = self._load_rows("subjects")
        self._find(rows, subject_id, "subject")
        self._save_rows("subjects", [r for r in rows if r["id"] != subject_id])
        for table in ("categories", "assessments"):
            remaining = [r for r in self._load_rows(table) if r["subject_id"] != subject_id]
            self._save_rows(table, remaining)
        logger.info("Deleted subject %s with its categories and assessments", subject_id)

    def save_oracle_prediction(self, subject_id: str, grade: int, explanation: str) -> Subject:
        rows = self._load_rows("subjects")
        row = self._find(rows, subject_id, "subject")
        row["ai_predicted_grade"] = int(grade)
        row["ai_explanation"] = explanation
        row["prediction_dirty"] = False
        self._save_rows("subjects", rows)
        return _subject_from_row(row)

    # -- categories -----------------------------------------------------

    def add_category(self, subject_id: str, name: str, raw_weight: float) -> Category:
        self._ensure_categories_editable(subject_id)
        if not name or not name.strip():
            raise ValueError("Category name must not be empty.")
        row = {
            "id": _new_id(),
            "subject_id": subject_id,
            "name": name.strip(),
            "raw_weight": _validate_weight(raw_weight),
            "created_at": _now(),
        }
        rows = self._load_rows("categories")
        rows.append(row)
        self._save_rows("categories", rows)
        self._warn_if_overweight(subject_id, rows)
        self._mark_dirty(subject_id)
        return _category_from_row(row)

    def update_category(
        self,
        category_id: str,
        name: Optional[str] = None,
        raw_weight: Optional[float] = None,
    ) -> Category:
        rows = self._load_rows("categories")
        row = self._find(rows, category_id, "category")
        self._ensure_categories_editable(row["subject_id"])
        if name is not None:
            if not name.strip():
                raise ValueError("Category name must not be empty.")
            row["name"] = name.strip()
        if raw_weight is not None:
            row["raw_weight"] = _validate_weight(raw_weight)
        self._save_rows("categories", rows)
        self._warn_if_overweight(row["subject_id"], rows)
        self._mark_dirty(row["subject_id"])
        return _category_from_row(row)

    def delete_category(self, category_id: str) -> None:
        """Remove a category. Its assessments keep the stale id and count as uncategorized."""
        rows = self._load_rows("categories")
        row = self._find(rows, category_id, "category")
        self._ensure_categories_editable(row["subject_id"])
        self._save_rows("categories", [r for r in rows if r["id"] != category_id])
        self._mark_dirty(row["subject_id"])

    def list_categories(self, subject_id: str) -> List[Category]:
        rows = [r for r in self._load_rows("categories") if r["subject_id"] == subject_id]
        rows.sort(key=lambda r: r["created_at"])
        return [_category_from_row(row) for row in rows]

    def apply_teacher_profile(self, subject_id: str, teacher_id: str) -> List[Category]:
        """Replace a subject's categories with a teacher profile's fixed set."""
        categories = profile_categories(teacher_id, subject_id)
        rows = [r for r in self._load_rows("categories") if r["subject_id"] != subject_id]
        created_at = _now()
        for category in categories:
            rows.append(
                {
                    "id": category.id,
                    "subject_id": subject_id,
                    "name": category.name,
                    "raw_weight": category.raw_weight,
                    "created_at": created_at,
                }
            )
        self._save_rows("categories", rows)
        self._mark_dirty(subject_id)
        return categories

    def _drop_profile_categories(self, subject_id: str, teacher_id: str) -> None:
        profile_ids = {c.id for c in profile_categories(teacher_id, subject_id)}
        rows = self._load_rows("categories")
        self._save_rows("categories", [r for r in rows if r["id"] not in profile_ids])
        self._mark_dirty(subject_id)

    def _ensure_categories_editable(self, subject_id: str) -> None:
        subject = self.get_subject(subject_id)
        profile = get_teacher_profile(subject.teacher)
        if profile is not None:
            raise ValueError(f"Categories of '{subject.name}' are fixed by the {profile.display_name} profile.")

    def _warn_if_overweight(self, subject_id: str, rows: List[Dict[str, Any]]) -> None:
        total = sum(r["raw_weight"] for r in rows if r["subject_id"] == subject_id)
        if total > 1.0 + 1e-9:
            logger.warning("Category weights for subject %s sum to %.3f; predictions will renormalize", subject_id, total)

    # -- assessments ----------------------------------------------------

    def add_assessment(
        self,
        subject_id: str,
        name: str,
        date: DateLike,
        ib_grade: Optional[int] = None,
        raw_percent: Optional[float] = None,
        raw_grade: Optional[str] = None,
        notes: Optional[str] = None,
        category_id: Optional[str] = None,
    ) -> Assessment:
        self.get_subject(subject_id)
        row = {
            "id": _new_id(),
            "subject_id": subject_id,
            "name": (name or "").strip(),
            "date": None,
            "ib_grade": None,
            "raw_percent": None,
            "raw_grade": None,
            "notes": None,
            "category_id": None,
            "created_at": _now(),
        }
        self._apply_assessment_changes(
            row,
            {
                "name": name,
                "date": date,
                "ib_grade": ib_grade,
                "raw_percent": raw_percent,
                "raw_grade": raw_grade,
                "notes": notes,
                "category_id": category_id,
            },
        )
        rows = self._load_rows("assessments")
        rows.append(row)
        self._save_rows("assessments", rows)
        self._mark_dirty(subject_id)
        return _assessment_from_row(row)

    def update_assessment(self, assessment_id: str, **changes: Any) -> Assessment:
        unknown = set(changes) - set(ASSESSMENT_FIELDS)
        if unknown:
            raise ValueError(f"Unknown assessment fields: {', '.join(sorted(unknown))}.")
        rows = self._load_rows("assessments")
        row = self._find(rows, assessment_id, "assessment")
        if "raw_grade" in changes and "raw_percent" not in changes and _percent_follows_raw_grade(row):
            # A percentage derived from the old raw grade is re-derived from the new one.
            changes["raw_percent"] = None
        self._apply_assessment_changes(row, changes)
        self._save_rows("assessments", rows)
        self._mark_dirty(row["subject_id"])
        return _assessment_from_row(row)

    def delete_assessment(self, assessment_id: str) -> None:
        rows = self._load_rows("assessments")
        row = self._find(rows, assessment_id, "assessment")
        self._save_rows("assessments", [r for r in rows if r["id"] != assessment_id])
        self._mark_dirty(row["subject_id"])

    def list_assessments(self, subject_id: str) -> List[Assessment]:
        """Assessments for one subject, newest first."""
        rows = [r for r in self._load_rows("assessments") if r["subject_id"] == subject_id]
        rows.sort(key=lambda r: (r["date"], r["created_at"]), reverse=True)
        return [_assessment_from_row(row) for row in rows]

    def _apply_assessment_changes(self, row: Dict[str, Any], changes: Dict[str, Any]) -> None:
        merged = dict(row)
        merged.update(changes)

        if not merged["name"] or not str(merged["name"]).strip():
            raise ValueError("Assessment name must not be empty.")
        if merged["date"] is None:
            raise ValueError("Assessment date is required.")

        ib_grade = _optional_int(merged["ib_grade"])
        raw_percent = _optional_float(merged["raw_percent"])
        _validate_scores(ib_grade, raw_percent)

        raw_grade = merged["raw_grade"] or None
        if raw_grade is not None and raw_percent is None:
            parsed = parse_raw_grade(raw_grade)
            if parsed is not None:
                raw_percent = parsed.percent

        category_id = merged["category_id"] or None
        if category_id is not None and "category_id" in changes:
            known = {c.id for c in self.list_categories(row["subject_id"])}
            if category_id not in known:
                raise ValueError(f"Category '{category_id}' does not belong to subject '{row['subject_id']}'.")

        row.update(
            {
                "name": str(merged["name"]).strip(),
                "date": parse_date(merged["date"]).isoformat(),
                "ib_grade": ib_grade,
                "raw_percent": raw_percent,
                "raw_grade": raw_grade,
                "notes": merged["notes"] or None,
                "category_id": category_id,
            }
        )

    # -- snapshots ------------------------------------------------------

    def snapshot(self, subject_id: str) -> SubjectSnapshot:
        return SubjectSnapshot(
            subject=self.get_subject(subject_id),
            assessments=self.list_assessments(subject_id),
            categories=self.list_categories(subject_id),
        )

    def snapshots(self) -> List[SubjectSnapshot]:
        return [self.snapshot(subject.id) for subject in self.list_subjects()]

    # -- feedback -------------------------------------------------------

    def add_feedback(self, content: str, type: str = "feedback", user_email: Optional[str] = None) -> Feedback:
        if not content or not content.strip():
            raise ValueError("Feedback must not be empty.")
        if type not in FEEDBACK_TYPES:
            raise ValueError(f"Unsupported feedback type '{type}'. Expected one of: {', '.join(FEEDBACK_TYPES)}.")
        row = {
            "id": _new_id(),
            "content": content.strip(),
            "type": type,
            "user_email": user_email,
            "created_at": _now(),
        }
        rows = self._load_rows("feedback")
        rows.append(row)
        self._save_rows("feedback", rows)
        return _feedback_from_row(row)

    def list_feedback(self) -> List[Feedback]:
        rows = sorted(self._load_rows("feedback"), key=lambda r: r["created_at"], reverse=True)
        return [_feedback_from_row(row) for row in rows]


def _subject_from_row(row: Dict[str, Any]) -> Subject:
    return Subject(
        id=row["id"],
        name=row["name"],
        type=row["type"],
        teacher=row["teacher"],
        target_grade=int(row["target_grade"]),
        ai_predicted_grade=_optional_int(row["ai_predicted_grade"]),
        ai_explanation=row["ai_explanation"],
        prediction_dirty=bool(row["prediction_dirty"]),
    )


def _category_from_row(row: Dict[str, Any]) -> Category:
    return Category(
        id=row["id"],
        subject_id=row["subject_id"],
        name=row["name"],
        raw_weight=float(row["raw_weight"]),
    )


def _assessment_from_row(row: Dict[str, Any]) -> Assessment:
    return Assessment(
        id=row["id"],
        subject_id=row["subject_id"],
        name=row["name"],
        date=parse_date(row["date"]),
        ib_grade=_optional_int(row["ib_grade"]),
        raw_percent=_optional_float(row["raw_percent"]),
        raw_grade=row["raw_grade"],
        notes=row["notes"],
        category_id=row["category_id"],
    )


def _feedback_from_row(row: Dict[str, Any]) -> Feedback:
    return Feedback(
        id=row["id"],
        content=row["content"],
        type=row["type"],
        user_email=row["user_email"],
        created_at=datetime.fromisoformat(row["created_at"]),
    )
