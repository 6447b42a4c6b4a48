"""FastAPI application entry point."""

import asyncio
import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from datetime import timedelta

import httpx
from fastapi import FastAPI

from app.api.error_handlers import register_exception_handlers
from app.api.routes import bills, health, readings, users
from app.core.config import settings
from app.core.database import create_engine_and_sessionmaker, create_tables
from app.core.logging import setup_logging
from app.services.billing import BillingEngine
from app.services.leak_detector import LeakDetector
from app.services.notifier import PushNotifier
from app.services.reading_store import ReadingStore
from app.services.scheduler import cancel_task, run_periodically

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Application lifespan manager."""
    setup_logging(settings.LOG_LEVEL, settings.LOG_JSON)

    # Startup: create database tables and wire components
    engine, session_factory = create_engine_and_sessionmaker(settings.DATABASE_URL)
    await create_tables(engine)

    store = ReadingStore(session_factory)
    http_client = httpx.AsyncClient(timeout=settings.PUSH_TIMEOUT_SECONDS)
    notifier = PushNotifier(
        store,
        http_client,
        gateway_url=settings.PUSH_GATEWAY_URL,
        timeout=settings.PUSH_TIMEOUT_SECONDS,
        token_prefix=settings.PUSH_TOKEN_PREFIX,
        record_on_failure=settings.NOTIFY_RECORD_ON_FAILURE,
    )
    detector = LeakDetector(
        store,
        notifier,
        sample_size=settings.LEAK_SAMPLE_SIZE,
        multiplier=settings.LEAK_THRESHOLD_MULTIPLIER,
        max_concurrency=settings.LEAK_MAX_CONCURRENCY,
        cooldown=(
            timedelta(minutes=settings.LEAK_ALERT_COOLDOWN_MINUTES)
            if settings.LEAK_ALERT_COOLDOWN_MINUTES > 0
            else None
        ),
    )

    app.state.settings = settings
    app.state.store = store
    app.state.billing_engine = BillingEngine(
        store,
        rate_per_unit=settings.RATE_PER_UNIT,
        max_register_value=settings.max_register_value,
        period_days=settings.BILL_PERIOD_DAYS,
        due_days=settings.BILL_DUE_DAYS,
    )
    app.state.leak_detector = detector
    app.state.http_client = http_client

    leak_task: asyncio.Task | None = None
    if settings.LEAK_DETECTION_ENABLED:
        leak_task = asyncio.create_task(
            run_periodically(
                detector.run_once,
                interval=settings.LEAK_CHECK_INTERVAL_SECONDS,
                timeout=settings.LEAK_RUN_TIMEOUT_SECONDS,
                name="leak detection",
            )
        )
        logger.info(
            "Leak detection scheduled every %ss", settings.LEAK_CHECK_INTERVAL_SECONDS
        )
    else:
        logger.info("Leak detection disabled on this instance")
    app.state.leak_task = leak_task

    logger.info("Server running at http://%s:%s", settings.HOST, settings.PORT)
    yield

    # Shutdown
    await cancel_task(leak_task)
    await http_client.aclose()
    await engine.dispose()


app = FastAPI(
    title=settings.PROJECT_NAME,
    version=settings.VERSION,
    description="Water meter billing and leak alert API",
    lifespan=lifespan,
)

register_exception_handlers(app)

app.include_router(health.router)
app.include_router(readings.router)
app.include_router(bills.router)
app.include_router(users.router)


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "app.main:app",
        host=settings.HOST,
        port=settings.PORT,
        reload=settings.DEBUG,
    )
