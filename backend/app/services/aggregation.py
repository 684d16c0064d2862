"""
Folding per-question outcomes into one grade.
"""

import json
from dataclasses import dataclass
from decimal import Decimal, ROUND_HALF_UP
from typing import List

from app.config import logger
from app.models.grading import QuestionOutcome

TWO_PLACES = Decimal("0.01")


def _dec(value: float) -> Decimal:
    return Decimal(str(value))


def round_half_up(value: Decimal) -> Decimal:
    return value.quantize(TWO_PLACES, rounding=ROUND_HALF_UP)


@dataclass(frozen=True)
class AggregateGrade:
    ai_score: float
    confidence_score: float
    needs_review: bool
    question_scores: str
    feedback: str


def needs_review(outcomes: List[QuestionOutcome], threshold: float) -> bool:
    return any(o.confidence < threshold or o.illegible for o in outcomes)


def serialize_question_scores(outcomes: List[QuestionOutcome]) -> str:
    entries = [
        {
            "questionNumber": o.question_number,
            "pointsAwarded": o.points_awarded,
            "pointsAvailable": o.points_available,
            "confidenceScore": float(round_half_up(_dec(o.confidence) * 100)),
            "illegible": o.illegible,
            "feedback": o.feedback,
        }
        for o in outcomes
    ]
    try:
        return json.dumps(entries)
    except (TypeError, ValueError) as e:
        # Scores and the review flag are still worth persisting without the detail array
        logger.error(f"Failed to serialize question scores: {e}")
        return "[]"


def aggregate(outcomes: List[QuestionOutcome], threshold: float) -> AggregateGrade:
    """Sum points, average confidence, flag for review. Outcomes must be non-empty."""
    ordered = sorted(outcomes, key=lambda o: o.question_number)

    total_awarded = sum((_dec(o.points_awarded) for o in ordered), Decimal(0))
    total_available = sum((_dec(o.points_available) for o in ordered), Decimal(0))

    if total_available == 0:
        ai_score = Decimal(0)
    else:
        ai_score = round_half_up(total_awarded / total_available * 100)

    mean_confidence = sum((_dec(o.confidence) for o in ordered), Decimal(0)) / len(ordered)
    confidence_score = round_half_up(mean_confidence * 100)

    feedback = "\n".join(f"Q{o.question_number}: {o.feedback}" for o in ordered)

    return AggregateGrade(
        ai_score=float(ai_score),
        confidence_score=float(confidence_score),
        needs_review=needs_review(ordered, threshold),
        question_scores=serialize_question_scores(ordered),
        feedback=feedback,
    )
