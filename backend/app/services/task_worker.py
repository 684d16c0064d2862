"""
Background task worker - polls the grading task queue and runs the orchestrator.
"""

import asyncio

from app.config import logger
from app.errors import GradingFailedError, GradingInProgressError, ResourceNotFoundError
from app.models.grading import GradingTask

TASK_DONE = "done"
TASK_FAILED = "failed"
TASK_DEAD_LETTER = "dead_letter"


async def process_task(orchestrator, task_store, task: GradingTask, max_receive_count: int):
    """
    Run one claimed task.

    Outcomes with a durable record (result stored, FAILED result stored, or
    nothing to grade) finish the task. Anything else leaves it for redelivery
    until its receive count is used up.
    """
    if task.attempts > max_receive_count:
        logger.error(f"Task {task.task_id} exceeded {max_receive_count} deliveries, moving to dead letter")
        await task_store.complete(task.task_id, TASK_DEAD_LETTER, task.last_error)
        return

    logger.info(f"Processing task {task.task_id} submission={task.submission_id} attempt={task.attempts}")
    try:
        await orchestrator.grade(task.submission_id)
    except GradingFailedError as e:
        await task_store.complete(task.task_id, TASK_FAILED, str(e))
        return
    except ResourceNotFoundError as e:
        logger.error(f"Task {task.task_id}: {e}")
        await task_store.complete(task.task_id, TASK_FAILED, str(e))
        return
    except GradingInProgressError as e:
        logger.info(f"Task {task.task_id}: {e}")
        await _retry_later(task_store, task, str(e), max_receive_count)
        return
    except Exception as e:
        logger.error(f"Task {task.task_id} failed unexpectedly: {e}", exc_info=True)
        await _retry_later(task_store, task, f"{type(e).__name__}: {e}", max_receive_count)
        return

    await task_store.complete(task.task_id, TASK_DONE)


async def _retry_later(task_store, task: GradingTask, error: str, max_receive_count: int):
    if task.attempts >= max_receive_count:
        logger.error(f"Task {task.task_id} failed {task.attempts} time(s), moving to dead letter")
        await task_store.complete(task.task_id, TASK_DEAD_LETTER, error)
    else:
        await task_store.release(task.task_id, error)


async def claim_batch(task_store, batch_size: int, visibility_timeout_seconds: int):
    tasks = []
    for _ in range(batch_size):
        task = await task_store.claim_next(visibility_timeout_seconds)
        if task is None:
            break
        tasks.append(task)
    return tasks


async def worker_loop(orchestrator, task_store, settings, sleep=asyncio.sleep):
    """
    Main worker loop. Runs until cancelled, grading claimed tasks concurrently
    and sleeping for the poll interval whenever the queue is empty.
    """
    logger.info(
        f"🔄 Task worker loop started (batch={settings.worker_batch_size}, "
        f"poll={settings.worker_poll_interval_seconds}s)"
    )
    while True:
        try:
            tasks = await claim_batch(
                task_store, settings.worker_batch_size, settings.worker_visibility_timeout_seconds
            )
            if tasks:
                await asyncio.gather(*[
                    process_task(orchestrator, task_store, task, settings.worker_max_receive_count)
                    for task in tasks
                ])
                continue
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error(f"Task worker error: {e}", exc_info=True)
        await sleep(settings.worker_poll_interval_seconds)
