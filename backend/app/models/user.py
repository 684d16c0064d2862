"""Teacher settings Pydantic models"""

from pydantic import BaseModel, Field
from typing import Optional


class TeacherThresholdResponse(BaseModel):
    effective_threshold: float
    source: str  # teacher_override or default
    teacher_threshold: Optional[float] = None


class TeacherThresholdUpdate(BaseModel):
    """Set to null to fall back to the system default"""
    confidence_threshold: Optional[float] = Field(default=None, ge=0.0, le=1.0)
