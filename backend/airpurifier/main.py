"""
Air Purifier Backend - Main Application Entry Point
"""
import logging
import uuid
from contextlib import asynccontextmanager
from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse
from fastapi.middleware.cors import CORSMiddleware
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from airpurifier.config import settings
from airpurifier.database import init_db, AsyncSessionLocal
from airpurifier.exceptions import (
    ValidationError, NotFoundError, InvalidTransitionError, StorageError,
)
from airpurifier.extensions import limiter
from airpurifier.routers import (
    auth, users, devices, readings, commands, settings as settings_router, system_events,
)
from airpurifier.services.auth import create_default_admin
from airpurifier.services.liveness import OfflineSweeper

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)

scheduler = AsyncIOScheduler(timezone="UTC")


async def _acquire_scheduler_lock(job_id: str, ttl_seconds: int) -> bool:
    """SETNX guard so one worker per interval runs a job. An unreachable Redis counts as acquired."""
    import redis.asyncio as aioredis
    from redis.exceptions import RedisError
    try:
        r = aioredis.from_url(settings.REDIS_URL, socket_connect_timeout=1)
        acquired = await r.set(f"sched:{job_id}", "1", nx=True, ex=ttl_seconds)
        await r.aclose()
        return bool(acquired)
    except (RedisError, OSError) as exc:
        logger.debug("Scheduler lock unavailable for %s: %s", job_id, exc)
        return True


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Startup
    logger.info(f"Starting {settings.APP_NAME} v{settings.APP_VERSION}")
    await init_db()
    async with AsyncSessionLocal() as db:
        await create_default_admin(db)

    sweeper = OfflineSweeper(
        AsyncSessionLocal,
        lock=_acquire_scheduler_lock if settings.REDIS_URL else None,
    )
    sweeper.start(scheduler)
    scheduler.start()
    logger.info("Scheduled tasks started")

    yield

    # Shutdown
    scheduler.shutdown()
    logger.info(f"{settings.APP_NAME} shutting down")


app = FastAPI(
    title=settings.APP_NAME,
    version=settings.APP_VERSION,
    lifespan=lifespan,
    docs_url="/api/docs",
    redoc_url="/api/redoc",
)

# Rate limiting
app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)


# Domain errors
@app.exception_handler(ValidationError)
async def validation_error_handler(request: Request, exc: ValidationError):
    return JSONResponse(status_code=status.HTTP_400_BAD_REQUEST, content={"detail": exc.message})


@app.exception_handler(NotFoundError)
async def not_found_handler(request: Request, exc: NotFoundError):
    return JSONResponse(status_code=status.HTTP_404_NOT_FOUND, content={"detail": exc.message})


@app.exception_handler(InvalidTransitionError)
async def invalid_transition_handler(request: Request, exc: InvalidTransitionError):
    return JSONResponse(
        status_code=status.HTTP_409_CONFLICT,
        content={"detail": exc.message, "current_status": exc.current, "requested_status": exc.requested},
    )


@app.exception_handler(StorageError)
async def storage_error_handler(request: Request, exc: StorageError):
    logger.error("Storage error on %s %s: %s", request.method, request.url.path, exc.message)
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={"detail": "Internal storage error"},
    )


# CORS
origins = settings.ALLOWED_ORIGINS.split(",") if settings.ALLOWED_ORIGINS != "*" else ["*"]
app.add_middleware(
    CORSMiddleware,
    allow_origins=origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# Request id echo and hardening headers
@app.middleware("http")
async def response_headers(request: Request, call_next):
    request_id = request.headers.get("X-Request-ID") or uuid.uuid4().hex[:8]
    response = await call_next(request)
    response.headers["X-Request-ID"] = request_id
    response.headers["X-Content-Type-Options"] = "nosniff"
    response.headers["X-Frame-Options"] = "DENY"
    response.headers["Referrer-Policy"] = "strict-origin-when-cross-origin"
    if settings.HTTPS_ONLY:
        response.headers["Strict-Transport-Security"] = "max-age=31536000; includeSubDomains"
    return response


# Routers
app.include_router(auth.router)
app.include_router(users.router)
app.include_router(devices.router)
app.include_router(readings.router)
app.include_router(commands.router)
app.include_router(settings_router.router)
app.include_router(system_events.router)


@app.get("/api/health")
async def health():
    return {"status": "ok", "version": settings.APP_VERSION}
