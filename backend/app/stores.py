"""
MongoDB-backed stores for submissions, rubrics, grading results, grading tasks
and teacher settings.

Every method addresses documents by business identifier (submission_id,
grade_id, ...). Mongo's _id never leaves this module.
"""

import uuid
from datetime import datetime, timezone, timedelta
from typing import List, Optional

from pymongo import ASCENDING, ReturnDocument
from pymongo.errors import DuplicateKeyError

from app.config import logger
from app.errors import DuplicateResultError
from app.models.exam import RubricEntry
from app.models.grading import GradingResult, GradingTask
from app.models.submission import Submission, SubmissionStatus
from app.utils.serialization import serialize_doc


def _now() -> datetime:
    return datetime.now(timezone.utc)


class SubmissionStore:
    def __init__(self, db):
        self.collection = db.submissions

    async def find_by_id(self, submission_id: str) -> Optional[Submission]:
        doc = await self.collection.find_one({"submission_id": submission_id}, {"_id": 0})
        return Submission(**doc) if doc else None

    async def acquire_grading_lease(self, submission_id: str, owner: str, ttl_seconds: int) -> bool:
        """
        Move the submission to PROCESSING and take the grading lease in one write.
        Fails when another attempt holds an unexpired lease.
        """
        now = _now()
        result = await self.collection.update_one(
            {
                "submission_id": submission_id,
                "$or": [
                    {"grading_lease_expires_at": None},
                    {"grading_lease_expires_at": {"$lt": now}},
                ],
            },
            {"$set": {
                "status": SubmissionStatus.PROCESSING.value,
                "grading_lease_owner": owner,
                "grading_lease_expires_at": now + timedelta(seconds=ttl_seconds),
            }}
        )
        return result.modified_count == 1

    async def finish(self, submission_id: str, status: SubmissionStatus):
        """Terminal status write. Releases the grading lease."""
        await self.collection.update_one(
            {"submission_id": submission_id},
            {
                "$set": {"status": status.value},
                "$unset": {"grading_lease_owner": "", "grading_lease_expires_at": ""},
            }
        )

    async def mark_pending(self, submission_id: str) -> bool:
        """Set PENDING unless a grading attempt is already running."""
        result = await self.collection.update_one(
            {"submission_id": submission_id, "status": {"$ne": SubmissionStatus.PROCESSING.value}},
            {"$set": {"status": SubmissionStatus.PENDING.value}}
        )
        return result.matched_count == 1


class RubricStore:
    def __init__(self, db):
        self.collection = db.rubrics

    async def find_by_template(self, template_id: str) -> List[RubricEntry]:
        docs = await self.collection.find(
            {"template_id": template_id}, {"_id": 0}
        ).sort("question_number", ASCENDING).to_list(None)
        return [RubricEntry(**doc) for doc in docs]


class GradingResultStore:
    def __init__(self, db):
        self.collection = db.grading_results

    async def ensure_indexes(self):
        # One result per submission; this index is what makes concurrent inserts safe
        await self.collection.create_index("submission_id", unique=True)
        await self.collection.create_index("grade_id", unique=True)
        await self.collection.create_index([("needs_review", ASCENDING), ("reviewed_at", ASCENDING)])

    async def find_by_submission_id(self, submission_id: str) -> Optional[GradingResult]:
        doc = await self.collection.find_one({"submission_id": submission_id}, {"_id": 0})
        return GradingResult(**doc) if doc else None

    async def find_by_grade_id(self, grade_id: str) -> Optional[GradingResult]:
        doc = await self.collection.find_one({"grade_id": grade_id}, {"_id": 0})
        return GradingResult(**doc) if doc else None

    async def find_pending_reviews(self) -> List[GradingResult]:
        docs = await self.collection.find(
            {"needs_review": True, "reviewed_at": None}, {"_id": 0}
        ).sort("created_at", ASCENDING).to_list(None)
        return [GradingResult(**doc) for doc in docs]

    async def insert(self, result: GradingResult):
        try:
            await self.collection.insert_one(result.model_dump())
        except DuplicateKeyError:
            raise DuplicateResultError(result.submission_id)

    async def apply_review(self, grade_id: str, updates: dict) -> Optional[GradingResult]:
        """Write all review fields in a single document update."""
        doc = await self.collection.find_one_and_update(
            {"grade_id": grade_id},
            {"$set": {**updates, "updated_at": _now()}},
            projection={"_id": 0},
            return_document=ReturnDocument.AFTER
        )
        return GradingResult(**doc) if doc else None


class GradingTaskStore:
    """Mongo-backed work queue for grading jobs"""

    def __init__(self, db):
        self.collection = db.grading_tasks

    async def ensure_indexes(self):
        await self.collection.create_index(
            "submission_id",
            unique=True,
            partialFilterExpression={"status": "pending"}
        )
        await self.collection.create_index([("status", ASCENDING), ("visible_at", ASCENDING)])

    async def publish(self, submission_id: str) -> str:
        """Add a pending task for the submission; repeats coalesce into the existing one."""
        task = GradingTask(task_id=f"task_{uuid.uuid4().hex[:12]}", submission_id=submission_id)
        try:
            await self.collection.update_one(
                {"submission_id": submission_id, "status": "pending"},
                {"$setOnInsert": task.model_dump()},
                upsert=True
            )
        except DuplicateKeyError:
            logger.info(f"Grading task already pending for submission {submission_id}")
        doc = await self.collection.find_one(
            {"submission_id": submission_id, "status": "pending"}, {"_id": 0, "task_id": 1}
        )
        return doc["task_id"] if doc else task.task_id

    async def claim_next(self, visibility_timeout_seconds: int) -> Optional[GradingTask]:
        """Claim the oldest visible task; it reappears after the visibility timeout."""
        now = _now()
        doc = await self.collection.find_one_and_update(
            {"status": {"$in": ["pending", "processing"]}, "visible_at": {"$lte": now}},
            {
                "$set": {
                    "status": "processing",
                    "visible_at": now + timedelta(seconds=visibility_timeout_seconds),
                },
                "$inc": {"attempts": 1},
            },
            projection={"_id": 0},
            sort=[("enqueued_at", ASCENDING)],
            return_document=ReturnDocument.AFTER
        )
        return GradingTask(**doc) if doc else None

    async def complete(self, task_id: str, status: str, error: Optional[str] = None):
        await self.collection.update_one(
            {"task_id": task_id},
            {"$set": {"status": status, "last_error": error, "finished_at": _now()}}
        )

    async def release(self, task_id: str, error: str):
        """Leave the task for redelivery once its visibility timeout passes."""
        await self.collection.update_one(
            {"task_id": task_id},
            {"$set": {"last_error": error}}
        )


class TeacherSettingsStore:
    def __init__(self, db):
        self.assignments = db.assignments
        self.users = db.users

    async def find_teacher_for_assignment(self, assignment_id: str) -> Optional[str]:
        doc = await self.assignments.find_one(
            {"assignment_id": assignment_id}, {"_id": 0, "teacher_id": 1}
        )
        return doc.get("teacher_id") if doc else None

    async def find_teacher(self, teacher_id: str) -> Optional[dict]:
        doc = await self.users.find_one(
            {"user_id": teacher_id, "role": "teacher"},
            {"user_id": 1, "confidence_threshold": 1}
        )
        return serialize_doc(doc)

    async def set_confidence_threshold(self, teacher_id: str, threshold: Optional[float]) -> bool:
        result = await self.users.update_one(
            {"user_id": teacher_id, "role": "teacher"},
            {"$set": {"confidence_threshold": threshold}}
        )
        return result.matched_count == 1
