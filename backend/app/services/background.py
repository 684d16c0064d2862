"""
Background worker service - metrics cleanup, then the grading task worker.
"""

from app.config import logger
from app.services.metrics import cleanup_old_metrics
from app.services.task_worker import worker_loop


async def run_background_worker(db, orchestrator, task_store, settings):
    """Integrated background worker - processes queued grading tasks."""
    logger.info("🔄 Background worker started")
    logger.info("=" * 60)

    # Run cleanup once on startup
    await cleanup_old_metrics(db)

    try:
        await worker_loop(orchestrator, task_store, settings)  # runs forever, handles polling internally
    except Exception as e:
        logger.error(f"Background worker error: {e}", exc_info=True)
