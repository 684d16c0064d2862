"""Pydantic models for the grading pipeline"""

from .submission import SubmissionStatus, Submission
from .exam import RubricEntry
from .grading import (
    QuestionOutcome,
    GradingResult,
    GradingReviewRequest,
    EnqueueStatus,
    GradingEnqueuedResponse,
    GradingTask,
)
from .user import TeacherThresholdResponse, TeacherThresholdUpdate
