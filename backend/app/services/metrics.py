"""
API and grading-pipeline metrics, written as events to MongoDB.

Metric writes never fail the caller: errors are logged and dropped.
"""

from datetime import datetime, timezone, timedelta
from typing import Optional

from app.config import logger

GRADING_JOBS_COMPLETED = "grading.jobs.completed"
GRADING_REVIEWS_FLAGGED = "grading.reviews.flagged"
GRADING_JOBS_ENQUEUED = "grading.jobs.enqueued"
MODEL_API_CALLS = "model.api.calls"


class GradingMetrics:
    def __init__(self, db):
        self.collection = db.grading_metrics

    async def _record(self, name: str, **fields):
        try:
            await self.collection.insert_one({
                "metric": name,
                **fields,
                "timestamp": datetime.now(timezone.utc).isoformat()
            })
        except Exception as e:
            logger.error(f"Failed to record metric {name}: {e}")

    async def record_grading_success(self, processing_time_ms: int, confidence_score: float, needs_review: bool):
        await self._record(
            GRADING_JOBS_COMPLETED, outcome="success",
            processing_time_ms=processing_time_ms, confidence_score=confidence_score
        )
        if needs_review:
            await self._record(GRADING_REVIEWS_FLAGGED)

    async def record_grading_failure(self, processing_time_ms: int):
        await self._record(GRADING_JOBS_COMPLETED, outcome="failure", processing_time_ms=processing_time_ms)

    async def record_job_enqueued(self):
        await self._record(GRADING_JOBS_ENQUEUED)

    async def record_model_call(self, success: bool):
        await self._record(MODEL_API_CALLS, outcome="success" if success else "failure")


async def log_api_metric(db, endpoint: str, method: str, response_time_ms: int,
                         status_code: int, error_type: Optional[str], ip_address: Optional[str]):
    """Log API metrics to database"""
    try:
        await db.api_metrics.insert_one({
            "endpoint": endpoint,
            "method": method,
            "response_time_ms": response_time_ms,
            "status_code": status_code,
            "error_type": error_type,
            "ip_address": ip_address,
            "timestamp": datetime.now(timezone.utc).isoformat()
        })
    except Exception as e:
        logger.error(f"Failed to log API metric: {e}")


async def cleanup_old_metrics(db):
    """Delete metrics data older than 1 year"""
    try:
        one_year_ago = (datetime.now(timezone.utc) - timedelta(days=365)).isoformat()

        result1 = await db.grading_metrics.delete_many({"timestamp": {"$lt": one_year_ago}})
        logger.info(f"Deleted {result1.deleted_count} old grading_metrics records")

        result2 = await db.api_metrics.delete_many({"timestamp": {"$lt": one_year_ago}})
        logger.info(f"Deleted {result2.deleted_count} old api_metrics records")
    except Exception as e:
        logger.error(f"Error during metrics cleanup: {e}", exc_info=True)
