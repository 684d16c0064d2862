"""Grading outcome, result, review and job Pydantic models"""

import json
from enum import Enum
from pydantic import BaseModel, Field, ConfigDict, field_validator
from typing import Optional
from datetime import datetime, timezone


class QuestionOutcome(BaseModel):
    """What the grading model returned for one question"""
    question_number: int
    points_awarded: float
    points_available: float
    confidence: float = Field(ge=0.0, le=1.0)
    feedback: str = ""
    illegible: bool = False


class GradingResult(BaseModel):
    """Persisted outcome of one grading attempt for one submission"""
    model_config = ConfigDict(extra="ignore")
    grade_id: str
    submission_id: str
    ai_score: float = 0
    final_score: float = 0
    confidence_score: float = 0
    needs_review: bool = False
    question_scores: str = "[]"  # JSON array, one entry per question
    ai_feedback: Optional[str] = None
    teacher_override: bool = False
    reviewed_by: Optional[str] = None
    reviewed_at: Optional[datetime] = None
    processing_time_ms: int = 0
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    updated_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


class GradingReviewRequest(BaseModel):
    """Teacher confirming or overriding an AI grade"""
    final_score: float = Field(ge=0, le=100)
    teacher_override: bool
    question_scores: Optional[str] = None  # Omit to keep the AI scores
    reviewed_by: Optional[str] = None

    @field_validator("question_scores")
    @classmethod
    def must_be_json_array(cls, value):
        if value is None:
            return value
        try:
            parsed = json.loads(value)
        except ValueError:
            raise ValueError("question_scores must be a JSON array")
        if not isinstance(parsed, list):
            raise ValueError("question_scores must be a JSON array")
        return value


class EnqueueStatus(str, Enum):
    QUEUED = "QUEUED"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"
    ALREADY_GRADED = "ALREADY_GRADED"


class GradingEnqueuedResponse(BaseModel):
    submission_id: str
    status: EnqueueStatus
    enqueued_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


class GradingTask(BaseModel):
    """Queued grading job, one pending task per submission"""
    model_config = ConfigDict(extra="ignore")
    task_id: str
    submission_id: str
    status: str = "pending"  # pending, processing, done, failed, dead_letter
    attempts: int = 0
    enqueued_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    visible_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    last_error: Optional[str] = None
