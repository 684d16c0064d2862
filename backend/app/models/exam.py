"""Exam template and rubric Pydantic models"""

from pydantic import BaseModel, ConfigDict, Field
from typing import Optional


class RubricEntry(BaseModel):
    """One question's grading criteria within an exam template"""
    model_config = ConfigDict(extra="ignore", frozen=True)
    template_id: str
    question_number: int = Field(ge=1)
    expected_answer: Optional[str] = None
    acceptable_variations: Optional[str] = None
    grading_notes: Optional[str] = None
    points_available: float = Field(gt=0)
