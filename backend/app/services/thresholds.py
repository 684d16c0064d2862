"""
Confidence-threshold resolution: teacher override, then configured default,
then the hardcoded safe default.
"""

import math
from typing import Optional

from app.config import logger, SAFE_DEFAULT_CONFIDENCE_THRESHOLD
from app.errors import ResourceNotFoundError
from app.models.submission import Submission
from app.models.user import TeacherThresholdResponse

SOURCE_DEFAULT = "default"
SOURCE_TEACHER_OVERRIDE = "teacher_override"


def is_valid_threshold(value) -> bool:
    return isinstance(value, (int, float)) and math.isfinite(value) and 0.0 <= value <= 1.0


class ThresholdResolver:
    def __init__(self, settings_store, configured_default: float):
        self.settings_store = settings_store
        self.configured_default = configured_default

    def default_threshold(self) -> float:
        if is_valid_threshold(self.configured_default):
            return float(self.configured_default)
        logger.warning(
            f"Invalid configured confidence threshold={self.configured_default}, "
            f"using safe fallback={SAFE_DEFAULT_CONFIDENCE_THRESHOLD}"
        )
        return SAFE_DEFAULT_CONFIDENCE_THRESHOLD

    async def _teacher_threshold(self, teacher_id: Optional[str]) -> Optional[float]:
        if not teacher_id:
            return None
        teacher = await self.settings_store.find_teacher(teacher_id)
        if not teacher:
            return None
        value = teacher.get("confidence_threshold")
        if value is None:
            return None
        if not is_valid_threshold(value):
            logger.warning(f"Ignoring invalid confidence threshold={value} for teacher {teacher_id}")
            return None
        return float(value)

    async def resolve(self, submission: Submission) -> float:
        """Effective threshold for grading this submission."""
        teacher_id = await self.settings_store.find_teacher_for_assignment(submission.assignment_id)
        teacher_threshold = await self._teacher_threshold(teacher_id)
        if teacher_threshold is not None:
            return teacher_threshold
        return self.default_threshold()

    async def get_teacher_threshold(self, teacher_id: str) -> TeacherThresholdResponse:
        teacher = await self.settings_store.find_teacher(teacher_id)
        if not teacher:
            raise ResourceNotFoundError("Teacher", teacher_id)
        return self._to_response(await self._teacher_threshold(teacher_id))

    async def update_teacher_threshold(self, teacher_id: str, threshold: Optional[float]) -> TeacherThresholdResponse:
        if threshold is not None and not is_valid_threshold(threshold):
            raise ValueError("confidence_threshold must be between 0.0 and 1.0")
        if not await self.settings_store.set_confidence_threshold(teacher_id, threshold):
            raise ResourceNotFoundError("Teacher", teacher_id)
        logger.info(f"Confidence threshold for teacher {teacher_id} set to {threshold}")
        return self._to_response(threshold)

    def _to_response(self, teacher_threshold: Optional[float]) -> TeacherThresholdResponse:
        if teacher_threshold is not None:
            return TeacherThresholdResponse(
                effective_threshold=teacher_threshold,
                source=SOURCE_TEACHER_OVERRIDE,
                teacher_threshold=teacher_threshold,
            )
        return TeacherThresholdResponse(
            effective_threshold=self.default_threshold(),
            source=SOURCE_DEFAULT,
            teacher_threshold=None,
        )
