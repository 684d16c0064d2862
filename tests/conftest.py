"""
Shared fixtures for the grading pipeline tests.
In-memory stores stand in for MongoDB and the grading model is scripted.
Zero network calls.
"""
import asyncio
from datetime import datetime, timezone, timedelta

import pytest

from app.errors import DuplicateResultError
from app.models.exam import RubricEntry
from app.models.grading import GradingResult, GradingTask, QuestionOutcome
from app.models.submission import Submission, SubmissionStatus
from app.services.grading import GradingOrchestrator
from app.services.llm import ImageContent
from app.services.retry import RetryConfig
from app.services.thresholds import ThresholdResolver


class FakeSubmissionStore:
    def __init__(self, submissions=()):
        self.submissions = {s.submission_id: s for s in submissions}
        self.leases = {}
        self.status_writes = []

    async def find_by_id(self, submission_id):
        return self.submissions.get(submission_id)

    async def acquire_grading_lease(self, submission_id, owner, ttl_seconds):
        if submission_id not in self.submissions:
            return False
        now = datetime.now(timezone.utc)
        held = self.leases.get(submission_id)
        if held and held[1] >= now:
            return False
        self.leases[submission_id] = (owner, now + timedelta(seconds=ttl_seconds))
        self._set_status(submission_id, SubmissionStatus.PROCESSING)
        return True

    async def finish(self, submission_id, status):
        self.leases.pop(submission_id, None)
        self._set_status(submission_id, status)

    async def mark_pending(self, submission_id):
        submission = self.submissions.get(submission_id)
        if not submission or submission.status == SubmissionStatus.PROCESSING:
            return False
        self._set_status(submission_id, SubmissionStatus.PENDING)
        return True

    def _set_status(self, submission_id, status):
        self.submissions[submission_id] = self.submissions[submission_id].model_copy(update={"status": status})
        self.status_writes.append((submission_id, status))

    def status_of(self, submission_id):
        return self.submissions[submission_id].status


class FakeRubricStore:
    def __init__(self, rubrics=()):
        self.rubrics = list(rubrics)

    async def find_by_template(self, template_id):
        return sorted(
            (r for r in self.rubrics if r.template_id == template_id),
            key=lambda r: r.question_number
        )


class FakeResultStore:
    def __init__(self, results=()):
        self.results = {r.submission_id: r for r in results}
        self.inserts = 0

    async def find_by_submission_id(self, submission_id):
        return self.results.get(submission_id)

    async def find_by_grade_id(self, grade_id):
        return next((r for r in self.results.values() if r.grade_id == grade_id), None)

    async def find_pending_reviews(self):
        pending = [r for r in self.results.values() if r.needs_review and r.reviewed_at is None]
        return sorted(pending, key=lambda r: r.created_at)

    async def insert(self, result):
        if result.submission_id in self.results:
            raise DuplicateResultError(result.submission_id)
        self.inserts += 1
        self.results[result.submission_id] = result

    async def apply_review(self, grade_id, updates):
        current = await self.find_by_grade_id(grade_id)
        if not current:
            return None
        updated = current.model_copy(update={**updates, "updated_at": datetime.now(timezone.utc)})
        self.results[updated.submission_id] = updated
        return updated


class FakeTaskStore:
    def __init__(self):
        self.tasks = {}
        self._counter = 0

    async def publish(self, submission_id):
        for task in self.tasks.values():
            if task.submission_id == submission_id and task.status == "pending":
                return task.task_id
        self._counter += 1
        task = GradingTask(task_id=f"task_{self._counter}", submission_id=submission_id)
        self.tasks[task.task_id] = task
        return task.task_id

    async def claim_next(self, visibility_timeout_seconds):
        now = datetime.now(timezone.utc)
        visible = [
            t for t in self.tasks.values()
            if t.status in ("pending", "processing") and t.visible_at <= now
        ]
        if not visible:
            return None
        task = min(visible, key=lambda t: t.enqueued_at)
        claimed = task.model_copy(update={
            "status": "processing",
            "attempts": task.attempts + 1,
            "visible_at": now + timedelta(seconds=visibility_timeout_seconds),
        })
        self.tasks[task.task_id] = claimed
        return claimed

    async def complete(self, task_id, status, error=None):
        self.tasks[task_id] = self.tasks[task_id].model_copy(update={"status": status, "last_error": error})

    async def release(self, task_id, error):
        self.tasks[task_id] = self.tasks[task_id].model_copy(update={"last_error": error})


class FakeSettingsStore:
    def __init__(self, assignments=None, teachers=None):
        self.assignments = assignments or {}
        self.teachers = teachers or {}

    async def find_teacher_for_assignment(self, assignment_id):
        return self.assignments.get(assignment_id)

    async def find_teacher(self, teacher_id):
        if teacher_id not in self.teachers:
            return None
        return {"user_id": teacher_id, "confidence_threshold": self.teachers[teacher_id]}

    async def set_confidence_threshold(self, teacher_id, threshold):
        if teacher_id not in self.teachers:
            return False
        self.teachers[teacher_id] = threshold
        return True


class ScriptedModelClient:
    """
    Grading model double. `script` maps question number to a list of
    outcomes or exceptions, consumed one per call.
    """

    def __init__(self, script=None, image_error=None):
        self.script = {q: list(steps) for q, steps in (script or {}).items()}
        self.image_error = image_error
        self.calls = []
        self.image_loads = 0

    async def load_image(self, image_url):
        self.image_loads += 1
        if self.image_error:
            raise self.image_error
        return ImageContent(b"answer-page", "image/png")

    async def grade_question(self, image, request):
        self.calls.append(request.question_number)
        await asyncio.sleep(0)
        step = self.script[request.question_number].pop(0)
        if isinstance(step, BaseException):
            raise step
        return step


def make_submission(submission_id="sub_1", template_id="tmpl_1", image_urls=("https://cdn.test/page1.png",),
                    assignment_id="asg_1", status=SubmissionStatus.PENDING):
    return Submission(
        submission_id=submission_id,
        assignment_id=assignment_id,
        student_id="stu_1",
        exam_template_id=template_id,
        image_urls=list(image_urls) if image_urls is not None else None,
        status=status,
    )


def make_rubric(question_number, points_available=10, template_id="tmpl_1"):
    return RubricEntry(
        template_id=template_id,
        question_number=question_number,
        expected_answer=f"answer {question_number}",
        points_available=points_available,
    )


def make_outcome(question_number, points_awarded, points_available=10, confidence=0.9,
                 illegible=False, feedback="ok"):
    return QuestionOutcome(
        question_number=question_number,
        points_awarded=points_awarded,
        points_available=points_available,
        confidence=confidence,
        feedback=feedback,
        illegible=illegible,
    )


def make_result(submission_id="sub_1", grade_id="grade_1", needs_review=True, **fields):
    return GradingResult(
        grade_id=grade_id,
        submission_id=submission_id,
        ai_score=fields.pop("ai_score", 70.0),
        final_score=fields.pop("final_score", 70.0),
        confidence_score=fields.pop("confidence_score", 60.0),
        needs_review=needs_review,
        question_scores=fields.pop("question_scores", '[{"questionNumber": 1}]'),
        ai_feedback=fields.pop("ai_feedback", "Q1: ok"),
        **fields,
    )


async def no_sleep(seconds):
    return None


@pytest.fixture
def submissions():
    return FakeSubmissionStore([make_submission()])


@pytest.fixture
def rubrics():
    return FakeRubricStore([make_rubric(1)])


@pytest.fixture
def results():
    return FakeResultStore()


@pytest.fixture
def settings_store():
    return FakeSettingsStore()


@pytest.fixture
def threshold_resolver(settings_store):
    return ThresholdResolver(settings_store, 0.80)


@pytest.fixture
def build_orchestrator(submissions, rubrics, results, threshold_resolver):
    """Factory: orchestrator over the shared fake stores with a given model client"""
    def _build(model_client, **kwargs):
        kwargs.setdefault("retry_config", RetryConfig(max_retries=3, base_delay_ms=1000))
        kwargs.setdefault("sleep", no_sleep)
        return GradingOrchestrator(
            submissions=submissions,
            rubrics=rubrics,
            results=results,
            model_client=model_client,
            threshold_resolver=threshold_resolver,
            **kwargs,
        )
    return _build
