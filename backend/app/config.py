"""
Configuration - env vars, settings object, logging, API key setup.
"""

import os
import logging
from functools import lru_cache
from pathlib import Path
from typing import List

from dotenv import load_dotenv
from pydantic import BaseModel
import google.generativeai as genai

ROOT_DIR = Path(__file__).parent.parent
load_dotenv(ROOT_DIR / '.env')

# Logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger("gradeflow")

# httpx logs every request at INFO
logging.getLogger("httpx").setLevel(logging.WARNING)

SAFE_DEFAULT_CONFIDENCE_THRESHOLD = 0.80


def _env_bool(name: str, default: bool = False) -> bool:
    value = os.environ.get(name)
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


class Settings(BaseModel):
    """Runtime settings, read once from the environment."""
    mongo_url: str = "mongodb://localhost:27017"
    db_name: str = "gradeflow"
    gemini_api_key: str = ""

    # External grading model
    grading_model: str = "gemini-2.5-flash"
    grading_temperature: float = 0.2
    grading_max_output_tokens: int = 1000
    model_timeout_seconds: float = 30.0
    model_max_retries: int = 3
    model_retry_base_delay_ms: int = 1000

    # Review flagging
    confidence_threshold: float = SAFE_DEFAULT_CONFIDENCE_THRESHOLD

    # Worker queue
    queue_enabled: bool = False
    worker_poll_interval_seconds: float = 1.0
    worker_batch_size: int = 10
    worker_visibility_timeout_seconds: int = 300
    worker_max_receive_count: int = 3

    # Per-submission grading lease
    lease_ttl_seconds: int = 1800
    lease_wait_seconds: float = 0.0

    cors_origins: List[str] = ["http://localhost:3000", "http://127.0.0.1:3000"]

    @classmethod
    def from_env(cls) -> "Settings":
        defaults = cls()
        cors_env = os.environ.get("CORS_ORIGINS")
        return cls(
            mongo_url=os.environ.get("MONGO_URL", defaults.mongo_url),
            db_name=os.environ.get("DB_NAME", defaults.db_name),
            gemini_api_key=os.environ.get("GEMINI_API_KEY", ""),
            grading_model=os.environ.get("GRADING_MODEL", defaults.grading_model),
            grading_temperature=float(os.environ.get("GRADING_TEMPERATURE", defaults.grading_temperature)),
            grading_max_output_tokens=int(os.environ.get("GRADING_MAX_OUTPUT_TOKENS", defaults.grading_max_output_tokens)),
            model_timeout_seconds=float(os.environ.get("MODEL_TIMEOUT_SECONDS", defaults.model_timeout_seconds)),
            model_max_retries=int(os.environ.get("MODEL_MAX_RETRIES", defaults.model_max_retries)),
            model_retry_base_delay_ms=int(os.environ.get("MODEL_RETRY_BASE_DELAY_MS", defaults.model_retry_base_delay_ms)),
            confidence_threshold=float(os.environ.get("GRADING_CONFIDENCE_THRESHOLD", defaults.confidence_threshold)),
            queue_enabled=_env_bool("GRADING_QUEUE_ENABLED", defaults.queue_enabled),
            worker_poll_interval_seconds=float(os.environ.get("WORKER_POLL_INTERVAL_SECONDS", defaults.worker_poll_interval_seconds)),
            worker_batch_size=int(os.environ.get("WORKER_BATCH_SIZE", defaults.worker_batch_size)),
            worker_visibility_timeout_seconds=int(os.environ.get("WORKER_VISIBILITY_TIMEOUT_SECONDS", defaults.worker_visibility_timeout_seconds)),
            worker_max_receive_count=int(os.environ.get("WORKER_MAX_RECEIVE_COUNT", defaults.worker_max_receive_count)),
            lease_ttl_seconds=int(os.environ.get("GRADING_LEASE_TTL_SECONDS", defaults.lease_ttl_seconds)),
            lease_wait_seconds=float(os.environ.get("GRADING_LEASE_WAIT_SECONDS", defaults.lease_wait_seconds)),
            cors_origins=[origin.strip() for origin in cors_env.split(",")] if cors_env else defaults.cors_origins,
        )


@lru_cache()
def get_settings() -> Settings:
    """Settings for this process (cached)."""
    settings = Settings.from_env()
    if not settings.gemini_api_key:
        logger.warning("No GEMINI_API_KEY found - AI grading will fail")
    else:
        genai.configure(api_key=settings.gemini_api_key)
    return settings


def get_version_info():
    """Get deployment version information."""
    git_commit = os.environ.get("GIT_COMMIT_SHA")
    if not git_commit and os.path.exists(".git_commit"):
        with open(".git_commit", "r") as f:
            git_commit = f.read().strip()

    if not git_commit:
        logger.warning("GIT_COMMIT_SHA not set and .git_commit not found. Build pipeline issue?")
        git_commit = "unknown"

    return {
        "git_commit": git_commit,
        "build_time": os.environ.get("BUILD_TIME", "unknown"),
        "environment": os.environ.get("ENV", os.environ.get("ENVIRONMENT", "development"))
    }
