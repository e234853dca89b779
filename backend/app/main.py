"""
Seat Booking Engine - application entry point.

Wires the REST routes and the seat update WebSocket onto one FastAPI app, and
owns the process-wide resources: the database engine, the Redis cache client,
the expiry sweeper task and the Redis relay that fans seat events out to
the other instances. The broadcaster is in-memory, so a restart starts a new
stream and every watcher re-snapshots.
"""

from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from app.api.middleware import RequestLoggingMiddleware
from app.api.router import root_router
from app.core.config import get_settings
from app.core.exceptions import BookingEngineError, booking_engine_error_handler
from app.core.logging import get_logger, setup_logging
from app.core.metrics import metrics_endpoint
from app.db.session import dispose_engine, get_engine, init_engine
from app.infrastructure import close_redis, get_redis
from app.services.broadcaster import broadcaster
from app.services.cache_service import get_cache_stats
from app.services.event_relay import event_relay
from app.services.expiry_sweeper import expiry_sweeper

settings = get_settings()
logger = get_logger(__name__)


async def _startup() -> None:
    init_engine()
    if await get_redis() is None:
        logger.warning("cache_disabled", reason="redis disabled or unreachable")
    await event_relay.start()
    if settings.SWEEPER_ENABLED:
        await expiry_sweeper.start()


async def _shutdown() -> None:
    # Sweeper first so it does not run against a disposed engine
    await expiry_sweeper.stop()
    await event_relay.stop()
    await close_redis()
    await dispose_engine()


@asynccontextmanager
async def lifespan(app: FastAPI):
    setup_logging(stream=broadcaster.stream_id)
    logger.info(
        "application_starting",
        version=settings.APP_VERSION,
        environment=settings.ENVIRONMENT,
        lock_ttl_seconds=settings.LOCK_TTL_SECONDS,
        sweeper_enabled=settings.SWEEPER_ENABLED,
    )
    await _startup()
    try:
        yield
    finally:
        await _shutdown()
        logger.info("application_shutdown")


app = FastAPI(
    title=settings.APP_NAME,
    version=settings.APP_VERSION,
    description="Real-time seat inventory and booking engine with concurrency-safe locking",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
app.add_middleware(RequestLoggingMiddleware)
app.add_exception_handler(BookingEngineError, booking_engine_error_handler)
app.include_router(root_router)


async def _database_status() -> dict:
    try:
        async with get_engine().connect() as conn:
            await conn.execute(text("SELECT 1"))
    except (SQLAlchemyError, OSError) as e:
        logger.error("health_database_unreachable", error=str(e))
        return {"status": "error", "error": type(e).__name__}
    return {"status": "ok"}


@app.get("/health", tags=["Health"])
async def health_check():
    """
    Liveness plus dependencies. Answers 503 when the inventory store is
    unreachable; a missing cache only degrades reads and is reported as-is.
    """
    database = await _database_status()
    healthy = database["status"] == "ok"
    body = {
        "status": "healthy" if healthy else "unhealthy",
        "version": settings.APP_VERSION,
        "environment": settings.ENVIRONMENT,
        "stream": broadcaster.stream_id,
        "database": database,
        "cache": await get_cache_stats(),
        "sweeper_running": expiry_sweeper.running,
        "relay_running": event_relay.running,
    }
    return JSONResponse(body, status_code=200 if healthy else 503)


@app.get("/metrics", tags=["Health"])
async def metrics():
    return metrics_endpoint()


@app.get("/", tags=["Root"])
async def root():
    return {"service": settings.APP_NAME, "version": settings.APP_VERSION, "docs": "/docs"}
