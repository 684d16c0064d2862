"""
Grading service - drives AI grading of one submission.

For each rubric question the answer image goes to the grading model (through
the retry wrapper), the outcomes are aggregated into a score and a review flag,
and exactly one GradingResult is persisted per submission. The first terminal
model failure aborts the loop: a FAILED result is stored, the submission is
marked FAILED, and GradingFailedError is raised.

Concurrent attempts on one submission are serialized by the grading lease taken
with the PROCESSING transition, and by the unique index on
grading_results.submission_id.
"""

import asyncio
import functools
import time
import uuid
from datetime import datetime, timezone
from typing import List, Optional

from app.config import logger
from app.errors import (
    DuplicateResultError,
    GradingFailedError,
    GradingInProgressError,
    ModelServiceError,
    ResourceNotFoundError,
)
from app.models.exam import RubricEntry
from app.models.grading import GradingResult, QuestionOutcome
from app.models.submission import Submission, SubmissionStatus
from app.services.aggregation import aggregate
from app.services.llm import GRADING_OPERATION, GradingRequest
from app.services.retry import RetryConfig, with_retry

FAILED_GRADING_FEEDBACK = "Grading failed due to AI service error. Manual review required."
MISSING_EXPECTED_ANSWER = "Refer to rubric."


def new_grade_id() -> str:
    return f"grade_{uuid.uuid4().hex}"


def result_status(result: GradingResult) -> SubmissionStatus:
    """Submission status that matches a stored result"""
    if result.ai_feedback == FAILED_GRADING_FEEDBACK:
        return SubmissionStatus.FAILED
    return SubmissionStatus.COMPLETED


class GradingOrchestrator:
    def __init__(self, submissions, rubrics, results, model_client, threshold_resolver,
                 retry_config: RetryConfig = RetryConfig(), metrics=None,
                 lease_ttl_seconds: int = 1800, lease_wait_seconds: float = 0.0,
                 lease_poll_interval_seconds: float = 0.5, sleep=asyncio.sleep):
        self.submissions = submissions
        self.rubrics = rubrics
        self.results = results
        self.model_client = model_client
        self.threshold_resolver = threshold_resolver
        self.retry_config = retry_config
        self.metrics = metrics
        self.lease_ttl_seconds = lease_ttl_seconds
        self.lease_wait_seconds = lease_wait_seconds
        self.lease_poll_interval_seconds = lease_poll_interval_seconds
        self._sleep = sleep

    # ============== PUBLIC API ==============

    async def grade(self, submission_id: str) -> GradingResult:
        """Grade a submission, or return its existing result untouched."""
        existing = await self.results.find_by_submission_id(submission_id)
        if existing:
            logger.info(f"Grading result already exists for submission {submission_id}")
            return existing

        submission = await self.submissions.find_by_id(submission_id)
        if not submission:
            raise ResourceNotFoundError("Submission", submission_id)
        if not submission.exam_template_id:
            raise ResourceNotFoundError("ExamTemplate for submission", submission_id)

        rubrics = await self.rubrics.find_by_template(submission.exam_template_id)
        if not rubrics:
            raise ResourceNotFoundError("Rubrics for exam template", submission.exam_template_id)

        image_url = submission.first_image_url()
        if not image_url:
            raise ResourceNotFoundError("Submission image URL for submission", submission_id)

        threshold = await self.threshold_resolver.resolve(submission)

        lease_owner = uuid.uuid4().hex
        if not await self.submissions.acquire_grading_lease(submission_id, lease_owner, self.lease_ttl_seconds):
            logger.info(f"Grading lease for submission {submission_id} held elsewhere, waiting for its result")
            return await self._await_winner(submission_id)

        # A concurrent attempt may have finished between the first check and the lease
        existing = await self.results.find_by_submission_id(submission_id)
        if existing:
            logger.info(f"Grading result for submission {submission_id} stored by a concurrent attempt")
            await self.submissions.finish(submission_id, result_status(existing))
            return existing

        logger.info(f"Grading submission {submission_id}: {len(rubrics)} question(s), threshold={threshold}")
        start = time.monotonic()
        try:
            outcomes = await self._grade_questions(submission, rubrics, image_url)
        except ModelServiceError as e:
            processing_ms = int((time.monotonic() - start) * 1000)
            logger.error(
                f"AI grading failed for submission {submission_id} "
                f"(operation={e.operation}, status={e.http_status}): {e}",
                exc_info=True
            )
            return await self._persist_failure(submission, processing_ms, e)
        except Exception as e:
            processing_ms = int((time.monotonic() - start) * 1000)
            logger.error(f"Unexpected error grading submission {submission_id}: {e}", exc_info=True)
            return await self._persist_failure(submission, processing_ms, e)

        processing_ms = int((time.monotonic() - start) * 1000)
        return await self._persist_success(submission, outcomes, threshold, processing_ms)

    async def get_result(self, submission_id: str) -> GradingResult:
        result = await self.results.find_by_submission_id(submission_id)
        if not result:
            raise ResourceNotFoundError("GradingResult for submission", submission_id)
        return result

    async def get_pending_reviews(self) -> List[GradingResult]:
        return await self.results.find_pending_reviews()

    async def review_grade(self, grade_id: str, final_score: float, teacher_override: bool,
                           question_scores: Optional[str] = None,
                           reviewed_by: Optional[str] = None) -> GradingResult:
        """
        Record a human review. Always clears needs_review; replaces the
        per-question array only when one is supplied.
        """
        if not 0 <= final_score <= 100:
            raise ValueError("final_score must be between 0 and 100")

        updates = {
            "final_score": final_score,
            "teacher_override": teacher_override,
            "reviewed_by": reviewed_by,
            "reviewed_at": datetime.now(timezone.utc),
            "needs_review": False,
        }
        if question_scores is not None:
            updates["question_scores"] = question_scores

        result = await self.results.apply_review(grade_id, updates)
        if not result:
            raise ResourceNotFoundError("GradingResult", grade_id)

        logger.info(f"Review saved grade_id={grade_id} teacher_override={teacher_override} final_score={final_score}")
        return result

    # ============== CORE GRADING FLOW ==============

    async def _grade_questions(self, submission: Submission, rubrics: List[RubricEntry],
                               image_url: str) -> List[QuestionOutcome]:
        image = await self.model_client.load_image(image_url)

        outcomes = []
        for rubric in rubrics:
            request = GradingRequest(
                question_number=rubric.question_number,
                expected_answer=rubric.expected_answer or MISSING_EXPECTED_ANSWER,
                points_available=rubric.points_available,
                acceptable_variations=rubric.acceptable_variations,
                grading_notes=rubric.grading_notes,
            )
            try:
                outcome = await with_retry(
                    GRADING_OPERATION,
                    functools.partial(self.model_client.grade_question, image, request),
                    self.retry_config,
                    sleep=self._sleep,
                )
            except ModelServiceError:
                await self._record_model_call(False)
                logger.error(f"Question {rubric.question_number} of submission {submission.submission_id} failed")
                raise
            await self._record_model_call(True)
            outcomes.append(outcome)
        return outcomes

    async def _persist_failure(self, submission: Submission, processing_ms: int,
                               cause: Exception) -> GradingResult:
        failed = GradingResult(
            grade_id=new_grade_id(),
            submission_id=submission.submission_id,
            ai_score=0,
            final_score=0,
            confidence_score=0,
            needs_review=True,
            question_scores="[]",
            ai_feedback=FAILED_GRADING_FEEDBACK,
            teacher_override=False,
            processing_time_ms=processing_ms,
        )
        try:
            await self.results.insert(failed)
        except DuplicateResultError:
            return await self._winner_result(submission.submission_id)

        await self.submissions.finish(submission.submission_id, SubmissionStatus.FAILED)
        if self.metrics:
            await self.metrics.record_grading_failure(processing_ms)
        logger.warning(f"Persisted FAILED grading result for submission {submission.submission_id}")
        raise GradingFailedError(submission.submission_id, cause)

    async def _persist_success(self, submission: Submission, outcomes: List[QuestionOutcome],
                               threshold: float, processing_ms: int) -> GradingResult:
        grade = aggregate(outcomes, threshold)
        result = GradingResult(
            grade_id=new_grade_id(),
            submission_id=submission.submission_id,
            ai_score=grade.ai_score,
            final_score=grade.ai_score,
            confidence_score=grade.confidence_score,
            needs_review=grade.needs_review,
            question_scores=grade.question_scores,
            ai_feedback=grade.feedback,
            teacher_override=False,
            processing_time_ms=processing_ms,
        )
        try:
            await self.results.insert(result)
        except DuplicateResultError:
            return await self._winner_result(submission.submission_id)

        await self.submissions.finish(submission.submission_id, SubmissionStatus.COMPLETED)
        if self.metrics:
            await self.metrics.record_grading_success(processing_ms, grade.confidence_score, grade.needs_review)

        logger.info(
            f"Grading completed submission={submission.submission_id} ai_score={grade.ai_score} "
            f"needs_review={grade.needs_review} processing_ms={processing_ms}"
        )
        return result

    # ============== CONCURRENT ATTEMPTS ==============

    async def _winner_result(self, submission_id: str) -> GradingResult:
        """Discard our result, release our lease under the winner's status"""
        logger.warning(f"Concurrent grading result already stored for submission {submission_id}; discarding ours")
        winner = await self.get_result(submission_id)
        await self.submissions.finish(submission_id, result_status(winner))
        return winner

    async def _await_winner(self, submission_id: str) -> GradingResult:
        waited = 0.0
        while True:
            result = await self.results.find_by_submission_id(submission_id)
            if result:
                return result
            if waited >= self.lease_wait_seconds:
                raise GradingInProgressError(submission_id)
            await self._sleep(self.lease_poll_interval_seconds)
            waited += self.lease_poll_interval_seconds

    async def _record_model_call(self, success: bool):
        if self.metrics:
            await self.metrics.record_model_call(success)
