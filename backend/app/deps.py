"""
FastAPI dependencies - grading services wired against the shared database.
"""

from functools import lru_cache

from .config import get_settings
from .database import db
from .services.dispatch import GradingJobPublisher, build_front_door
from .services.grading import GradingOrchestrator
from .services.llm import GeminiGradingClient
from .services.metrics import GradingMetrics
from .services.retry import RetryConfig
from .services.thresholds import ThresholdResolver
from .stores import (
    GradingResultStore,
    GradingTaskStore,
    RubricStore,
    SubmissionStore,
    TeacherSettingsStore,
)


@lru_cache()
def get_threshold_resolver() -> ThresholdResolver:
    settings = get_settings()
    return ThresholdResolver(TeacherSettingsStore(db), settings.confidence_threshold)


@lru_cache()
def get_task_store() -> GradingTaskStore:
    return GradingTaskStore(db)


@lru_cache()
def get_grading_service() -> GradingOrchestrator:
    """Process-wide orchestrator; retry and lease limits are fixed here from settings."""
    settings = get_settings()
    return GradingOrchestrator(
        submissions=SubmissionStore(db),
        rubrics=RubricStore(db),
        results=GradingResultStore(db),
        model_client=GeminiGradingClient.from_settings(settings),
        threshold_resolver=get_threshold_resolver(),
        retry_config=RetryConfig(
            max_retries=settings.model_max_retries,
            base_delay_ms=settings.model_retry_base_delay_ms,
        ),
        metrics=GradingMetrics(db),
        lease_ttl_seconds=settings.lease_ttl_seconds,
        lease_wait_seconds=settings.lease_wait_seconds,
    )


@lru_cache()
def get_front_door():
    settings = get_settings()
    orchestrator = get_grading_service()
    publisher = GradingJobPublisher(get_task_store()) if settings.queue_enabled else None
    return build_front_door(
        orchestrator,
        orchestrator.submissions,
        orchestrator.results,
        publisher=publisher,
        metrics=orchestrator.metrics,
    )
