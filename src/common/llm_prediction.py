# ABOUTME: Asks an LLM for an independent grade prediction from a subject's snapshot.
# ABOUTME: Builds HL/SL prompts, parses JSON replies, and reconciles with the local engine.

from __future__ import annotations

import asyncio
import json
import logging
import os
import re
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Sequence, Tuple

import anthropic
import openai

from src.grade_engine.conversion import HL, MAX_GRADE, MIN_GRADE
from src.grade_engine.predictor import PredictionResult

from .config import LLMConfig, TrackerConfig
from .schemas import Assessment, Category, Subject, SubjectSnapshot
from .teachers import resolve_prediction

logger = logging.getLogger(__name__)

SOURCE_LOCAL = "local"
SOURCE_ORACLE = "oracle"

HL_SYSTEM_PROMPT = (
    "You are an expert IB Coordinator and teacher. Your task is to predict students' final IB grades (1-7) "
    "based on their assessment data. Always respond with valid JSON only, no markdown formatting."
)
SL_SYSTEM_PROMPT = (
    "You are a mathematical calculator. For SL subjects, calculate the exact weighted average percentage "
    "and convert to IB grade. This is pure mathematics - no interpretation, no trends, no adjustments. "
    "Always respond with valid JSON only, no markdown formatting."
)


def sanitize_for_prompt(text: Any, max_length: int = 100) -> str:
    """
    Sanitize user-provided text for safe inclusion in LLM prompts.

    Removes newlines and non-printable characters, collapses whitespace and
    truncates, so notes and names cannot reshape the prompt.
    """
    if text is None:
        return ""
    if not isinstance(text, str):
        text = str(text)
    text = text.replace("\n", " ").replace("\r", " ")
    text = "".join(char for char in text if char.isprintable() or char == " ")
    text = re.sub(r"\s+", " ", text)
    return text[:max_length].strip()


@dataclass(frozen=True)
class OraclePrediction:
    predicted_grade: int
    explanation: str


@dataclass(frozen=True)
class ReconciledPrediction:
    grade: int
    source: str
    explanation: str
    local: Optional[PredictionResult] = None
    oracle: Optional[OraclePrediction] = None


def build_prediction_payload(
    subject: Subject,
    assessments: Sequence[Assessment],
    categories: Sequence[Category],
) -> Dict[str, Any]:
    """Serialize a snapshot into the structure embedded in the prompt."""

    names = {c.id: c.name for c in categories}
    assessment_data = [
        {
            "name": sanitize_for_prompt(a.name, max_length=80),
            "ibGrade": a.ib_grade,
            "rawPercent": a.raw_percent,
            "date": a.date.isoformat(),
            "notes": sanitize_for_prompt(a.notes, max_length=200) or None,
            "category_id": a.category_id if a.category_id in names else None,
            "category_name": sanitize_for_prompt(names.get(a.category_id, "Uncategorized"), max_length=50),
        }
        for a in assessments
    ]
    category_data = [
        {"id": c.id, "name": sanitize_for_prompt(c.name, max_length=50), "weight": c.raw_weight}
        for c in categories
    ]
    total_weight = sum(c.raw_weight for c in categories)
    return {
        "assessments": assessment_data,
        "categories": category_data,
        "uncategorized_weight": max(0.0, 1.0 - total_weight),
        "has_uncategorized": any(item["category_id"] is None for item in assessment_data),
    }


def _uncategorized_note(payload: Dict[str, Any]) -> str:
    if not payload["has_uncategorized"]:
        return ""
    weight = payload["uncategorized_weight"]
    note = (
        f"\nCRITICAL: Uncategorized assessments have an implicit weight of {weight * 100:.1f}% "
        "(remaining weight after categories)."
    )
    if weight == 0:
        note += " THIS MEANS UNCATEGORIZED ASSESSMENTS ARE WORTH 0% AND MUST BE COMPLETELY IGNORED IN YOUR CALCULATION."
    return note


def format_prediction_prompt(subject: Subject, payload: Dict[str, Any]) -> Tuple[str, str]:
    """Return (system prompt, user prompt) for the subject's track."""

    safe_name = sanitize_for_prompt(subject.name, max_length=60)
    data_block = (
        f"Assessment data: {json.dumps(payload['assessments'])}\n"
        f"Category weightings: {json.dumps(payload['categories'])}\n"
        f"{_uncategorized_note(payload)}"
    )

    if subject.type.upper() == HL:
        user_prompt = f"""Predict the final IB grade (1-7) for the HL (Higher Level) subject "{safe_name}".

{data_block}

HL RULES (CONSERVATIVE):
1. Compute the weighted average of ibGrade first. Category weights are direct fractions (0.2 = 20%);
   uncategorized assessments use the remaining weight. Do not deviate more than one grade from it,
   and round DOWN when between grades.
2. Never predict a grade the student has never achieved.
3. Trend adjustments are limited: only move up one grade after 3+ recent high-weight assessments at that grade.
4. Notes change weight: "practice only"/"mock" lowers it, "sick"/"bad day" lowers it, "final"/"cumulative" raises it.

Output strictly in this JSON format:
{{"predictedGrade": number, "explanation": "max 2 sentences citing the weighted average"}}
"""
        return HL_SYSTEM_PROMPT, user_prompt

    user_prompt = f"""Predict the final IB grade (1-7) for the SL (Standard Level) subject "{safe_name}".

{data_block}

THIS IS PURE MATHEMATICS - NO INTERPRETATION, NO TRENDS, NO ADJUSTMENTS. Use rawPercent.
1. For each category: average rawPercent of its assessments; if it has none, assume 100%.
   contribution = weight x average.
2. Uncategorized assessments (category_id null) use the uncategorized weight; ignore them when it is 0.
3. weighted_avg = sum of contributions. Only if the weights sum to more than 1.0, divide by that sum.
4. Convert: 96-100 = 7, 90-95 = 6, 86-89 = 5, 76-85 = 4, 70-75 = 3, 50-69 = 2, 0-49 = 1.

Output strictly in this JSON format:
{{"predictedGrade": number, "explanation": "Weighted average: X.X%. Grade boundary: Y."}}
"""
    return SL_SYSTEM_PROMPT, user_prompt


def _strip_code_fences(content: str) -> str:
    if "```json" in content:
        return content.split("```json")[1].split("```")[0]
    if "```" in content:
        return content.split("```")[1].split("```")[0]
    return content


def parse_oracle_response(content: Optional[str]) -> OraclePrediction:
    """Parse ``{"predictedGrade": int, "explanation": str}``; raise ValueError otherwise."""

    if not content:
        raise ValueError("Empty response from LLM.")
    try:
        result = json.loads(_strip_code_fences(content).strip())
    except json.JSONDecodeError as exc:
        raise ValueError(f"LLM response is not valid JSON: {exc}") from exc
    if not isinstance(result, dict) or "predictedGrade" not in result:
        raise ValueError("LLM response is missing 'predictedGrade'.")

    grade = result["predictedGrade"]
    if isinstance(grade, bool) or not isinstance(grade, (int, float)) or grade != int(grade):
        raise ValueError(f"predictedGrade must be an integer, got {grade!r}.")
    grade = int(grade)
    if not (MIN_GRADE <= grade <= MAX_GRADE):
        raise ValueError(f"predictedGrade must be between {MIN_GRADE} and {MAX_GRADE}, got {grade}.")

    explanation = result.get("explanation") or "No explanation provided."
    return OraclePrediction(predicted_grade=grade, explanation=str(explanation))


async def generate_oracle_prediction(
    subject: Subject,
    assessments: Sequence[Assessment],
    categories: Sequence[Category],
    llm: Optional[LLMConfig] = None,
    api_key: Optional[str] = None,
) -> OraclePrediction:
    """
    Ask the configured provider for a prediction.

    Raises ValueError when the API key is missing or the reply is unusable;
    provider errors propagate.
    """
    llm = llm or LLMConfig()
    payload = build_prediction_payload(subject, assessments, categories)
    system_prompt, user_prompt = format_prediction_prompt(subject, payload)
    temperature = llm.temperature_hl if subject.type.upper() == HL else llm.temperature_sl

    if llm.provider == "anthropic":
        api_key = api_key or os.environ.get("ANTHROPIC_API_KEY")
        if not api_key:
            raise ValueError("ANTHROPIC_API_KEY not set")
        client = anthropic.AsyncAnthropic(api_key=api_key)
        response = await client.messages.create(
            model=llm.resolved_model,
            max_tokens=llm.max_tokens,
            system=system_prompt,
            temperature=temperature,
            messages=[{"role": "user", "content": user_prompt}],
        )
        content = response.content[0].text
    else:
        api_key = api_key or os.environ.get("OPENAI_API_KEY")
        if not api_key:
            raise ValueError("OPENAI_API_KEY not set")
        client = openai.AsyncOpenAI(api_key=api_key)
        response = await client.chat.completions.create(
            model=llm.resolved_model,
            messages=[
                {"role": "system", "content": system_prompt},
                {"role": "user", "content": user_prompt},
            ],
            temperature=temperature,
            max_tokens=llm.max_tokens,
            response_format={"type": "json_object"},
        )
        content = response.choices[0].message.content

    prediction = parse_oracle_response(content)
    logger.info("LLM predicted %s for %s", prediction.predicted_grade, subject.name)
    return prediction


def generate_oracle_prediction_sync(
    subject: Subject,
    assessments: Sequence[Assessment],
    categories: Sequence[Category],
    llm: Optional[LLMConfig] = None,
    api_key: Optional[str] = None,
) -> OraclePrediction:
    """Synchronous wrapper for generate_oracle_prediction."""
    return asyncio.run(generate_oracle_prediction(subject, assessments, categories, llm, api_key))


def reconcile_prediction(
    subject: Subject,
    local: Optional[PredictionResult],
    oracle: Optional[OraclePrediction],
) -> Optional[ReconciledPrediction]:
    """
    Pick the grade to show.

    SL subjects trust the deterministic engine (weights matter more than
    narrative); HL subjects take the LLM's view when there is one.
    """
    if local is None and oracle is None:
        return None

    prefer_local = subject.type.upper() != HL
    if oracle is None or (prefer_local and local is not None):
        return ReconciledPrediction(
            grade=local.grade, source=SOURCE_LOCAL, explanation=local.details, local=local, oracle=oracle
        )
    return ReconciledPrediction(
        grade=oracle.predicted_grade,
        source=SOURCE_ORACLE,
        explanation=oracle.explanation,
        local=local,
        oracle=oracle,
    )


def predict_with_oracle(
    snapshot: SubjectSnapshot,
    config: TrackerConfig,
    store: Optional[Any] = None,
    api_key: Optional[str] = None,
) -> Optional[ReconciledPrediction]:
    """
    Deterministic prediction, cross-checked by the LLM when enabled.

    LLM failures are logged and the local result is used. A successful LLM
    result is written back through ``store`` (clearing the dirty flag).
    """
    subject = snapshot.subject
    local = resolve_prediction(subject, snapshot.assessments, snapshot.categories)

    oracle: Optional[OraclePrediction] = None
    if config.llm.enabled and snapshot.assessments:
        try:
            oracle = generate_oracle_prediction_sync(
                subject, snapshot.assessments, snapshot.categories, config.llm, api_key
            )
        except Exception as exc:
            logger.warning("LLM prediction failed for %s, using local result: %s", subject.name, exc)
        else:
            if store is not None:
                store.save_oracle_prediction(subject.id, oracle.predicted_grade, oracle.explanation)

    return reconcile_prediction(subject, local, oracle)


def compare_predictions(snapshots: Sequence[SubjectSnapshot]) -> List[Dict[str, Any]]:
    """Line up cached LLM grades against the local engine for every subject."""
    rows = []
    for snap in snapshots:
        local = resolve_prediction(snap.subject, snap.assessments, snap.categories)
        ai_grade = snap.subject.ai_predicted_grade
        rows.append(
            {
                "subject": snap.subject.name,
                "local_grade": local.grade if local else None,
                "ai_grade": ai_grade,
                "difference": (ai_grade - local.grade) if (local and ai_grade is not None) else None,
                "stale": snap.subject.prediction_dirty,
            }
        )
    return rows
