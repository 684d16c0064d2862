"""
GradeFlow API - main entry point.
Creates FastAPI app, sets up lifespan (indexes, queue worker), CORS, metrics middleware,
registers all routes.
"""

import time
import asyncio
from contextlib import asynccontextmanager

from fastapi import FastAPI, APIRouter, Request
from fastapi.middleware.cors import CORSMiddleware

from app.config import logger, get_settings, get_version_info
from app.database import client, db
from app.deps import get_grading_service, get_task_store
from app.services.background import run_background_worker
from app.services.metrics import log_api_metric
from app.routes import register_all_routes

settings = get_settings()

# Global reference to the background worker task
_worker_task = None


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager - creates indexes, starts/stops the queue worker"""
    global _worker_task

    logger.info("🚀 FastAPI app starting up...")
    logger.info("REGISTERED ROUTES: %s", [r.path for r in app.routes])

    orchestrator = get_grading_service()
    task_store = get_task_store()
    try:
        await orchestrator.results.ensure_indexes()
        await task_store.ensure_indexes()
        logger.info("✅ Grading indexes ensured")
    except Exception as e:
        logger.error(f"❌ Failed to create indexes: {e}", exc_info=True)

    if settings.queue_enabled:
        logger.info("🔄 Starting integrated background task worker...")
        _worker_task = asyncio.create_task(run_background_worker(db, orchestrator, task_store, settings))
        logger.info("=" * 60)
    else:
        logger.info("Grading queue disabled, grading runs in the request")

    yield

    # Shutdown: Cancel the background worker
    logger.info("🛑 FastAPI app shutting down...")
    if _worker_task and not _worker_task.done():
        logger.info("⏹️  Stopping background task worker...")
        _worker_task.cancel()
        try:
            await _worker_task
        except asyncio.CancelledError:
            logger.info("✅ Background task worker stopped cleanly")
    client.close()


# Create the main app with lifespan
app = FastAPI(title="GradeFlow API", lifespan=lifespan)

# Create a router with the /api prefix
api_router = APIRouter(prefix="/api")


@api_router.get("/version")
async def get_version():
    """Public version endpoint for deployment verification"""
    return get_version_info()


# Register all route modules on the api_router
register_all_routes(api_router)

# Include the api_router on the app
app.include_router(api_router)


# Root-level health check endpoint (for Kubernetes probes)
@app.get("/health")
async def root_health_check():
    """Health check for Kubernetes liveness/readiness probes"""
    return {"status": "healthy", "service": "GradeFlow API"}


# ============== METRICS TRACKING MIDDLEWARE ==============

@app.middleware("http")
async def metrics_tracking_middleware(request: Request, call_next):
    """Track API metrics for all requests"""
    start_time = time.time()

    response = None
    error_type = None
    status_code = 500

    try:
        response = await call_next(request)
        status_code = response.status_code
    except Exception as e:
        error_type = type(e).__name__
        status_code = 500
        logger.error(f"Request failed: {str(e)}")
        raise
    finally:
        response_time_ms = int((time.time() - start_time) * 1000)

        asyncio.create_task(log_api_metric(
            db,
            endpoint=request.url.path,
            method=request.method,
            response_time_ms=response_time_ms,
            status_code=status_code,
            error_type=error_type,
            ip_address=request.client.host if request.client else None
        ))

    return response


# ============== CORS ==============

app.add_middleware(
    CORSMiddleware,
    allow_credentials=True,
    allow_origins=settings.cors_origins,
    allow_methods=["*"],
    allow_headers=["*"],
)
