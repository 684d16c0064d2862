"""Tests for the grading front door and its two dispatch modes."""

import pytest
from unittest.mock import AsyncMock

from app.errors import ModelServerError, ResourceNotFoundError
from app.models.grading import EnqueueStatus
from app.models.submission import SubmissionStatus
from app.services.dispatch import (
    GradingJobPublisher,
    QueuedDispatch,
    SynchronousDispatch,
    build_front_door,
)
from conftest import FakeTaskStore, ScriptedModelClient, make_outcome, make_result, make_submission


@pytest.mark.asyncio
async def test_build_without_publisher_grades_inline(build_orchestrator, submissions, results):
    orchestrator = build_orchestrator(ScriptedModelClient({1: [make_outcome(1, 9)]}))
    front_door = build_front_door(orchestrator, submissions, results)

    response = await front_door.enqueue_grading("sub_1")

    assert isinstance(front_door.dispatch, SynchronousDispatch)
    assert response.status == EnqueueStatus.COMPLETED
    assert response.submission_id == "sub_1"
    assert results.results["sub_1"].ai_score == 90.00


@pytest.mark.asyncio
async def test_inline_failure_reports_failed(build_orchestrator, submissions, results):
    orchestrator = build_orchestrator(ScriptedModelClient({1: [ModelServerError("GRADING", "boom", 500)]}))
    front_door = build_front_door(orchestrator, submissions, results)

    response = await front_door.enqueue_grading("sub_1")

    assert response.status == EnqueueStatus.FAILED
    assert submissions.status_of("sub_1") == SubmissionStatus.FAILED


@pytest.mark.asyncio
async def test_already_graded_touches_nothing(build_orchestrator, submissions, results):
    results.results["sub_1"] = make_result()
    client = ScriptedModelClient()
    task_store = FakeTaskStore()
    front_door = build_front_door(
        build_orchestrator(client), submissions, results, publisher=GradingJobPublisher(task_store)
    )

    response = await front_door.enqueue_grading("sub_1")

    assert response.status == EnqueueStatus.ALREADY_GRADED
    assert task_store.tasks == {}
    assert submissions.status_writes == []
    assert client.calls == []


@pytest.mark.asyncio
async def test_queued_marks_pending_and_publishes(build_orchestrator, submissions, results):
    submissions.submissions["sub_1"] = make_submission(status=SubmissionStatus.FAILED)
    task_store = FakeTaskStore()
    metrics = AsyncMock()
    client = ScriptedModelClient()
    front_door = build_front_door(
        build_orchestrator(client), submissions, results,
        publisher=GradingJobPublisher(task_store), metrics=metrics
    )

    response = await front_door.enqueue_grading("sub_1")

    assert isinstance(front_door.dispatch, QueuedDispatch)
    assert response.status == EnqueueStatus.QUEUED
    assert submissions.status_of("sub_1") == SubmissionStatus.PENDING
    assert [t.submission_id for t in task_store.tasks.values()] == ["sub_1"]
    assert client.calls == []
    metrics.record_job_enqueued.assert_awaited_once()


@pytest.mark.asyncio
async def test_repeated_enqueue_coalesces_into_one_task(build_orchestrator, submissions, results):
    task_store = FakeTaskStore()
    front_door = build_front_door(
        build_orchestrator(ScriptedModelClient()), submissions, results,
        publisher=GradingJobPublisher(task_store)
    )

    await front_door.enqueue_grading("sub_1")
    await front_door.enqueue_grading("sub_1")

    assert len(task_store.tasks) == 1


@pytest.mark.asyncio
async def test_queued_never_resets_processing_submission(build_orchestrator, submissions, results):
    submissions.submissions["sub_1"] = make_submission(status=SubmissionStatus.PROCESSING)
    task_store = FakeTaskStore()
    front_door = build_front_door(
        build_orchestrator(ScriptedModelClient()), submissions, results,
        publisher=GradingJobPublisher(task_store)
    )

    response = await front_door.enqueue_grading("sub_1")

    assert response.status == EnqueueStatus.QUEUED
    assert submissions.status_of("sub_1") == SubmissionStatus.PROCESSING


@pytest.mark.asyncio
async def test_queued_unknown_submission(build_orchestrator, submissions, results):
    task_store = FakeTaskStore()
    front_door = build_front_door(
        build_orchestrator(ScriptedModelClient()), submissions, results,
        publisher=GradingJobPublisher(task_store)
    )

    with pytest.raises(ResourceNotFoundError):
        await front_door.enqueue_grading("sub_missing")
    assert task_store.tasks == {}


@pytest.mark.asyncio
async def test_inline_unknown_submission(build_orchestrator, submissions, results):
    front_door = build_front_door(build_orchestrator(ScriptedModelClient()), submissions, results)

    with pytest.raises(ResourceNotFoundError):
        await front_door.enqueue_grading("sub_missing")
