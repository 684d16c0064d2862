"""
Grading front door - accepts grading requests and hands them to the queue or
runs them inline.

Which of the two happens is fixed when the front door is built: with a task
publisher the job is queued for the worker, without one the orchestrator runs
in the request.
"""

from app.config import logger
from app.errors import GradingFailedError, ResourceNotFoundError
from app.models.grading import EnqueueStatus, GradingEnqueuedResponse
from app.models.submission import SubmissionStatus


class GradingJobPublisher:
    """Puts grading jobs on the Mongo task queue"""

    def __init__(self, task_store):
        self.task_store = task_store

    async def publish(self, submission_id: str) -> str:
        task_id = await self.task_store.publish(submission_id)
        logger.info(f"Published grading task {task_id} for submission {submission_id}")
        return task_id


class SynchronousDispatch:
    """Grades in the caller's request"""

    def __init__(self, orchestrator, submissions):
        self.orchestrator = orchestrator
        self.submissions = submissions

    async def dispatch(self, submission_id: str) -> EnqueueStatus:
        try:
            await self.orchestrator.grade(submission_id)
        except GradingFailedError:
            return EnqueueStatus.FAILED

        submission = await self.submissions.find_by_id(submission_id)
        if submission and submission.status == SubmissionStatus.FAILED:
            return EnqueueStatus.FAILED
        return EnqueueStatus.COMPLETED


class QueuedDispatch:
    """Hands the job to the worker queue"""

    def __init__(self, publisher, submissions, metrics=None):
        self.publisher = publisher
        self.submissions = submissions
        self.metrics = metrics

    async def dispatch(self, submission_id: str) -> EnqueueStatus:
        submission = await self.submissions.find_by_id(submission_id)
        if not submission:
            raise ResourceNotFoundError("Submission", submission_id)

        if not await self.submissions.mark_pending(submission_id):
            logger.info(f"Submission {submission_id} is being graded, leaving status as is")
        await self.publisher.publish(submission_id)

        if self.metrics:
            await self.metrics.record_job_enqueued()
        return EnqueueStatus.QUEUED


class GradingFrontDoor:
    def __init__(self, results, dispatch):
        self.results = results
        self.dispatch = dispatch

    async def enqueue_grading(self, submission_id: str) -> GradingEnqueuedResponse:
        """Entry point for grading requests. Never grades a submission twice."""
        existing = await self.results.find_by_submission_id(submission_id)
        if existing:
            logger.info(f"Submission {submission_id} already graded (grade_id={existing.grade_id})")
            return GradingEnqueuedResponse(submission_id=submission_id, status=EnqueueStatus.ALREADY_GRADED)

        status = await self.dispatch.dispatch(submission_id)
        logger.info(f"Grading request for submission {submission_id}: {status.value}")
        return GradingEnqueuedResponse(submission_id=submission_id, status=status)


def build_front_door(orchestrator, submissions, results, publisher=None, metrics=None) -> GradingFrontDoor:
    if publisher is not None:
        dispatch = QueuedDispatch(publisher, submissions, metrics)
    else:
        dispatch = SynchronousDispatch(orchestrator, submissions)
    return GradingFrontDoor(results, dispatch)
