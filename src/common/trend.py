# ABOUTME: Builds the chronological trend of per-subject predictions and the total out of 42.
# ABOUTME: Replays each subject's snapshot up to every assessment date.

from __future__ import annotations

from typing import Iterable, Mapping, Optional, Sequence

import numpy as np
import pandas as pd

from src.grade_engine.predictor import PredictionResult

from .schemas import SUBJECT_COUNT, SubjectSnapshot
from .teachers import resolve_prediction


def overall_predicted_total(predictions: Iterable[Optional[PredictionResult]]) -> int:
    """Sum predicted grades, skipping subjects with no prediction yet."""

    return int(sum(p.grade for p in predictions if p is not None))


def predict_snapshots(snapshots: Sequence[SubjectSnapshot]) -> Mapping[str, Optional[PredictionResult]]:
    return {
        snap.subject.name: resolve_prediction(snap.subject, snap.assessments, snap.categories)
        for snap in snapshots
    }


def calculate_trend_data(snapshots: Sequence[SubjectSnapshot]) -> pd.DataFrame:
    """
    Replay predictions over time.

    One row per unique assessment date in ascending order. Each subject
    column holds the grade predicted from assessments dated on or before that
    row's date (NaN before the subject's first assessment). ``predicted_total``
    is only filled once all six subjects have a grade.
    """

    subject_names = [snap.subject.name for snap in snapshots]
    columns = ["date", *subject_names, "predicted_total"]

    dates = sorted({a.date for snap in snapshots for a in snap.assessments})
    if not dates:
        return pd.DataFrame(columns=columns)

    rows = []
    for current in dates:
        row = {"date": pd.Timestamp(current)}
        graded = 0
        total = 0
        for snap in snapshots:
            visible = [a for a in snap.assessments if a.date <= current]
            result = resolve_prediction(snap.subject, visible, snap.categories) if visible else None
            if result is None:
                row[snap.subject.name] = np.nan
                continue
            row[snap.subject.name] = result.grade
            graded += 1
            total += result.grade
        row["predicted_total"] = total if graded == SUBJECT_COUNT else np.nan
        rows.append(row)

    trend = pd.DataFrame(rows, columns=columns)
    return trend.sort_values("date", kind="mergesort").reset_index(drop=True)
