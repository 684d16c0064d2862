"""
Error taxonomy for the grading pipeline.

NOT_FOUND, GRADING_FAILED and the external model failure classes. Routes turn
these into HTTP responses; services raise them unchanged.
"""

from typing import Optional


class ResourceNotFoundError(Exception):
    """A submission, template, rubric set or grading result is absent."""

    def __init__(self, resource: str, identifier):
        super().__init__(f"{resource} not found: {identifier}")
        self.resource = resource
        self.identifier = identifier


class ModelServiceError(Exception):
    """Failure talking to the external grading model."""

    def __init__(self, operation: str, message: str, http_status: int = 0):
        super().__init__(message)
        self.operation = operation
        self.http_status = http_status


class RateLimitedError(ModelServiceError):
    """429 from the model service. The only retryable failure."""

    def __init__(self, operation: str, message: str = "Rate limited by model service"):
        super().__init__(operation, message, 429)


class ModelClientError(ModelServiceError):
    """4xx other than rate limiting."""


class ModelServerError(ModelServiceError):
    """5xx, timeouts and transport failures."""


class MalformedResponseError(ModelServiceError):
    """The model answered but the body could not be parsed."""

    def __init__(self, operation: str, message: str):
        super().__init__(operation, message, 200)


class RateLimitExhaustedError(ModelServiceError):
    """Rate limited on every attempt of the retry budget."""

    def __init__(self, operation: str, attempts: int):
        super().__init__(operation, f"Model rate limit exceeded after {attempts} attempt(s)", 429)
        self.attempts = attempts


class RetryAbortedError(ModelServiceError):
    """Backoff sleep was cancelled."""

    def __init__(self, operation: str):
        super().__init__(operation, "Interrupted during retry backoff", 0)


class GradingFailedError(Exception):
    """A grading attempt failed terminally. A FAILED result has been persisted."""

    def __init__(self, submission_id: str, cause: Optional[BaseException] = None):
        super().__init__(
            f"Grading failed for submission: {submission_id}. "
            "Result has been flagged for manual review."
        )
        self.submission_id = submission_id
        self.__cause__ = cause


class GradingInProgressError(Exception):
    """Another worker holds the grading lease for this submission."""

    def __init__(self, submission_id: str):
        super().__init__(f"Grading already in progress for submission: {submission_id}")
        self.submission_id = submission_id


class DuplicateResultError(Exception):
    """A grading result already exists for the submission."""

    def __init__(self, submission_id: str):
        super().__init__(f"Grading result already exists for submission: {submission_id}")
        self.submission_id = submission_id
