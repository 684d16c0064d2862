"""Submission Pydantic models"""

import json
from enum import Enum
from pydantic import BaseModel, Field, ConfigDict, field_validator
from typing import Optional, List
from datetime import datetime, timezone


class SubmissionStatus(str, Enum):
    PENDING = "PENDING"
    PROCESSING = "PROCESSING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"


class Submission(BaseModel):
    """One learner's uploaded answer set for one assignment"""
    model_config = ConfigDict(extra="ignore")
    submission_id: str
    assignment_id: str
    student_id: str
    exam_template_id: Optional[str] = None
    image_urls: Optional[List[str]] = None  # Ordered page images
    original_format: str = "png"  # pdf, jpg, png, heic
    status: SubmissionStatus = SubmissionStatus.PENDING
    submitted_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    @field_validator("image_urls", mode="before")
    @classmethod
    def parse_image_urls(cls, value):
        # Older rows store the list as a JSON string
        if isinstance(value, str):
            try:
                parsed = json.loads(value)
            except ValueError:
                return None
            return parsed if isinstance(parsed, list) else None
        return value

    def first_image_url(self) -> Optional[str]:
        if not self.image_urls:
            return None
        first = self.image_urls[0]
        return first if isinstance(first, str) and first else None
