"""
External grading model client.

One request per rubric question: the answer image plus the question's expected
answer, sent to Gemini; the JSON reply is parsed into a QuestionOutcome.
Transport and API failures are mapped onto the ModelServiceError classes so the
retry wrapper can tell rate limiting apart from everything else.
"""

import asyncio
import base64
import json
import math
import re
from dataclasses import dataclass
from typing import Optional

import httpx
import google.generativeai as genai
from google.api_core import exceptions as google_exceptions
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from app.config import logger
from app.errors import (
    MalformedResponseError,
    ModelClientError,
    ModelServerError,
    ModelServiceError,
    RateLimitedError,
)
from app.models.grading import QuestionOutcome

GRADING_OPERATION = "GRADING"

GRADING_SYSTEM_PROMPT = """You are an expert grader. Analyze handwritten student answers in images.
Respond in strict JSON format with these exact fields:
pointsAwarded (number), feedback (string),
confidenceScore (number between 0.0 and 1.0), illegible (boolean).
If the handwriting cannot be read, set illegible=true and pointsAwarded=0."""


class ImageContent:
    """Raw answer-page bytes ready for inclusion in a model request."""

    def __init__(self, data: bytes, mime_type: str = "image/png"):
        self.data = data
        self.mime_type = mime_type

    @classmethod
    def from_data_uri(cls, uri: str) -> "ImageContent":
        header, _, b64 = uri.partition(",")
        mime_type = header[len("data:"):].split(";", 1)[0] or "image/png"
        return cls(base64.b64decode(b64), mime_type)

    def to_genai_part(self) -> dict:
        return {"inline_data": {"mime_type": self.mime_type, "data": self.data}}


@dataclass(frozen=True)
class GradingRequest:
    question_number: int
    expected_answer: str
    points_available: float
    acceptable_variations: Optional[str] = None
    grading_notes: Optional[str] = None


class ModelGradingReply(BaseModel):
    """Shape of the JSON the model is asked to return"""
    model_config = ConfigDict(populate_by_name=True, extra="ignore")
    points_awarded: float = Field(alias="pointsAwarded")
    confidence_score: float = Field(alias="confidenceScore")
    feedback: str = ""
    illegible: bool = False


def build_grading_prompt(request: GradingRequest) -> str:
    return (
        f"Grade the handwritten answer in the image for question {request.question_number}.\n"
        f"Expected answer: {request.expected_answer}\n"
        f"Acceptable variations: {request.acceptable_variations or 'none specified'}\n"
        f"Grading notes: {request.grading_notes or 'none'}\n"
        f"Points available: {request.points_available}\n"
        "Respond with JSON only."
    )


def _extract_json(text: str) -> Optional[dict]:
    """Direct parse, then fenced code block, then first {...} span."""
    text = text.strip()
    try:
        parsed = json.loads(text)
        return parsed if isinstance(parsed, dict) else None
    except json.JSONDecodeError:
        pass

    if text.startswith("```"):
        inner = text.split("```")[1]
        if inner.startswith("json"):
            inner = inner[4:]
        try:
            parsed = json.loads(inner.strip())
            return parsed if isinstance(parsed, dict) else None
        except json.JSONDecodeError:
            pass

    match = re.search(r"\{.*\}", text, re.DOTALL)
    if match:
        try:
            parsed = json.loads(match.group())
            return parsed if isinstance(parsed, dict) else None
        except json.JSONDecodeError:
            pass
    return None


def parse_grading_reply(text: str, request: GradingRequest) -> QuestionOutcome:
    """Turn the model's reply into a QuestionOutcome or raise MalformedResponseError."""
    payload = _extract_json(text or "")
    if payload is None:
        logger.error(f"Failed to parse grading response content: {text!r}")
        raise MalformedResponseError("PARSE_GRADING", "Failed to parse model grading response")
    try:
        reply = ModelGradingReply.model_validate(payload)
    except ValidationError as e:
        logger.error(f"Grading response missing required fields: {payload}")
        raise MalformedResponseError("PARSE_GRADING", f"Invalid model grading response: {e}")

    if not (math.isfinite(reply.confidence_score) and math.isfinite(reply.points_awarded)):
        logger.error(f"Non-finite values in grading response: {payload}")
        raise MalformedResponseError("PARSE_GRADING", "Model grading response has non-finite numbers")

    confidence = min(max(reply.confidence_score, 0.0), 1.0)
    points = min(max(reply.points_awarded, 0.0), request.points_available)
    if confidence != reply.confidence_score or points != reply.points_awarded:
        logger.warning(
            f"Clamped model output for Q{request.question_number}: "
            f"points {reply.points_awarded}->{points}, confidence {reply.confidence_score}->{confidence}"
        )

    return QuestionOutcome(
        question_number=request.question_number,
        points_awarded=points,
        points_available=request.points_available,
        confidence=confidence,
        feedback=reply.feedback,
        illegible=reply.illegible,
    )


def map_google_error(operation: str, error: google_exceptions.GoogleAPICallError) -> ModelServiceError:
    status = error.code if isinstance(error.code, int) else 0
    if isinstance(error, google_exceptions.TooManyRequests):
        return RateLimitedError(operation, str(error))
    if isinstance(error, google_exceptions.ClientError):
        return ModelClientError(operation, str(error), status or 400)
    return ModelServerError(operation, str(error), status or 500)


class GeminiGradingClient:
    """Grades one question per call against a Gemini vision model."""

    def __init__(self, model_name: str = "gemini-2.5-flash", temperature: float = 0.2,
                 max_output_tokens: int = 1000, timeout_seconds: float = 30.0):
        self.model_name = model_name
        self.temperature = temperature
        self.max_output_tokens = max_output_tokens
        self.timeout_seconds = timeout_seconds
        self._model = None  # lazily created

    @classmethod
    def from_settings(cls, settings) -> "GeminiGradingClient":
        return cls(
            model_name=settings.grading_model,
            temperature=settings.grading_temperature,
            max_output_tokens=settings.grading_max_output_tokens,
            timeout_seconds=settings.model_timeout_seconds,
        )

    def _ensure_model(self):
        if self._model is None:
            self._model = genai.GenerativeModel(
                model_name=self.model_name,
                system_instruction=GRADING_SYSTEM_PROMPT,
                generation_config={
                    "temperature": self.temperature,
                    "max_output_tokens": self.max_output_tokens,
                    "response_mime_type": "application/json",
                },
            )
        return self._model

    async def load_image(self, image_url: str) -> ImageContent:
        """Fetch the answer page once; it is reused for every question."""
        if image_url.startswith("data:"):
            try:
                return ImageContent.from_data_uri(image_url)
            except ValueError as e:
                raise ModelClientError("FETCH_IMAGE", f"Invalid image data URI: {e}", 400)
        try:
            async with httpx.AsyncClient(timeout=self.timeout_seconds) as client:
                response = await client.get(image_url)
                response.raise_for_status()
        except httpx.HTTPStatusError as e:
            raise ModelClientError("FETCH_IMAGE", f"Image fetch failed: {e}", e.response.status_code)
        except httpx.HTTPError as e:
            raise ModelServerError("FETCH_IMAGE", f"Image fetch failed: {e}", 0)
        mime_type = response.headers.get("content-type", "image/png").split(";", 1)[0]
        return ImageContent(response.content, mime_type)

    async def grade_question(self, image: ImageContent, request: GradingRequest) -> QuestionOutcome:
        logger.info(f"Grading question {request.question_number}")
        model = self._ensure_model()
        parts = [build_grading_prompt(request), image.to_genai_part()]

        loop = asyncio.get_event_loop()
        try:
            response = await asyncio.wait_for(
                loop.run_in_executor(
                    None,
                    lambda: model.generate_content(parts, request_options={"timeout": self.timeout_seconds})
                ),
                timeout=self.timeout_seconds + 5
            )
        except asyncio.TimeoutError:
            raise ModelServerError(GRADING_OPERATION, f"Model call timed out after {self.timeout_seconds}s", 504)
        except google_exceptions.GoogleAPICallError as e:
            raise map_google_error(GRADING_OPERATION, e)

        try:
            text = response.text
        except ValueError as e:
            # Raised by the SDK when the reply has no text part (blocked or empty)
            raise MalformedResponseError("PARSE_GRADING", f"Model returned no text: {e}")
        return parse_grading_reply(text, request)
