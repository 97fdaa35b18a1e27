"""
Seminary Mail Service - Main Application Entry Point

This module initializes and configures the FastAPI application including:
- Redis connection (failed delivery outbox, stored email settings)
- Delivery engine wired to the stored email settings
- Background job scheduler
- CORS middleware
- Health check and email diagnostics endpoints
"""

from contextlib import asynccontextmanager

from fastapi import Body, FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware

from seminary_mail.core import redis as redis_core
from seminary_mail.core.config import settings
from seminary_mail.core.email import (
    DeliveryEngine,
    close_transports,
    describe_transport_config,
    get_outbox,
    log_transport_config_status,
    set_delivery_engine,
)
from seminary_mail.core.redis import close_redis, init_redis
from seminary_mail.core.scheduler import (
    list_registered_jobs,
    pause_job,
    resume_job,
    start_scheduler,
    stop_scheduler,
    trigger_job_manually,
)
from seminary_mail.modules.email_settings import (
    build_stored_transport_config,
    get_settings_store,
    stored_email_config,
)
from seminary_mail.modules.notifications import register_notification_jobs
from seminary_mail.modules.notifications.jobs import (
    audit_recipient_addresses,
    summarize_domains,
)


@asynccontextmanager
async def lifespan(_app: FastAPI):
    """
    Application lifespan manager.

    Handles startup and shutdown events including:
    - Redis connection
    - Delivery engine configuration
    - Background job scheduler
    - Pooled email transports
    """
    print(f"Starting Seminary Mail service in {settings.python_env} mode...")

    try:
        await init_redis()
        print("[OK] Redis connected")
    except Exception as e:
        print(f"[FAIL] Redis connection failed: {e}")
        if settings.is_production:
            raise

    # Stored admin settings take precedence over the environment on every send
    set_delivery_engine(DeliveryEngine(config_provider=stored_email_config(get_settings_store())))
    print("[OK] Email delivery engine configured")
    if settings.is_production:
        log_transport_config_status(await build_stored_transport_config(get_settings_store()))

    try:
        register_notification_jobs()
        await start_scheduler()
        print("[OK] Background scheduler started")
    except Exception as e:
        print(f"[FAIL] Background scheduler failed to start: {e}")
        if settings.is_production:
            raise

    yield

    print("Shutting down Seminary Mail service...")

    await stop_scheduler()
    print("[OK] Background scheduler stopped")

    await close_transports()
    await close_redis()
    set_delivery_engine(None)
    print("[OK] Cleanup complete")


app = FastAPI(
    title="Seminary Mail API",
    description="Email delivery service for the MOPGOM Theological Seminary platform",
    version="0.1.0",
    docs_url="/docs" if settings.is_development else None,
    redoc_url="/redoc" if settings.is_development else None,
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins_list,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.get("/", tags=["Root"])
async def root() -> dict[str, str]:
    """Root endpoint - service welcome message."""
    return {
        "message": "Welcome to the Seminary Mail API",
        "status": "running",
        "environment": settings.python_env,
    }


@app.get("/health", tags=["Health"])
async def health_check() -> dict[str, str]:
    """Health check endpoint for container orchestration."""
    return {"status": "healthy"}


@app.get("/ready", tags=["Health"])
async def readiness_check() -> dict[str, str]:
    """Readiness check endpoint."""
    return {"status": "ready"}


@app.get("/debug/redis", tags=["Debug"])
async def debug_redis():
    """Test Redis connection."""
    if not redis_core.is_redis_available():
        return {"redis": "not initialized"}
    try:
        await redis_core.get_redis().ping()
    except Exception as e:
        return {"redis": "error", "message": str(e)}
    return {"redis": "connected"}


# ============================================
# Email Debug Endpoints
# ============================================


@app.get("/debug/email", tags=["Debug"])
async def debug_email():
    """
    Show the effective email transport configuration.

    Credentials are reported as set/missing only.
    """
    config = await build_stored_transport_config(get_settings_store(), settings)
    return {
        "environment": settings.python_env,
        "transport": describe_transport_config(config),
        "failed_outbox_size": await get_outbox().size(),
    }


@app.post("/debug/email/audit", tags=["Debug"])
async def audit_addresses(addresses: list[str] = Body(..., embed=True)):
    """
    Check recipient addresses for common problems.

    Returns:
        Problematic addresses and the domain distribution.
    """
    if not addresses:
        raise HTTPException(status_code=400, detail="Please provide at least one address")
    return {
        "total": len(addresses),
        "problems": audit_recipient_addresses(addresses),
        "domains": summarize_domains(addresses),
    }


# ============================================
# Background Job Debug Endpoints
# ============================================
# Manual control of background jobs. In production, jobs run on schedule.


@app.get("/debug/jobs", tags=["Debug"])
async def list_jobs():
    """List all registered background jobs and their status."""
    return {"jobs": list_registered_jobs()}


@app.post("/debug/jobs/{job_id}/trigger", tags=["Debug"])
async def trigger_job(job_id: str):
    """
    Manually trigger a background job.

    Args:
        job_id: The ID of the job to trigger. Available jobs:
            - notifications_resend_failed_emails

    Raises:
        HTTPException 400: If job_id is not found.
    """
    try:
        return await trigger_job_manually(job_id)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e)) from e


@app.post("/debug/jobs/{job_id}/pause", tags=["Debug"])
async def pause_job_endpoint(job_id: str):
    """Pause a scheduled background job."""
    return {"job_id": job_id, "paused": pause_job(job_id)}


@app.post("/debug/jobs/{job_id}/resume", tags=["Debug"])
async def resume_job_endpoint(job_id: str):
    """Resume a paused background job."""
    return {"job_id": job_id, "resumed": resume_job(job_id)}
