"""
Cap Table Management API — Application entry-point.

Initializes the FastAPI application, registers middleware, exception handlers,
routers, and manages the application lifecycle (table creation and default
project bootstrap on startup).
"""

import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.gzip import GZipMiddleware
from fastapi.openapi.docs import get_redoc_html
from sqlalchemy import text
from sqlalchemy.exc import OperationalError, SQLAlchemyError
from sqlmodel import SQLModel

from captable.api.v1.api import api_router
from captable.core.cache import cache
from captable.core.config import settings
from captable.core.events import change_feed
from captable.core.exceptions import add_exception_handlers
from captable.core.logging import setup_logging
from captable.core.resilience import db_circuit_breaker, retry_with_backoff
from captable.db.session import AsyncSessionLocal, engine
from captable.middleware import RequestIDMiddleware, RequestTimingMiddleware
from captable.models.cap_table import CapTable
from captable.models.investor import Investor
from captable.models.project import Project
from captable.repositories.cap_table_repo import CapTableRepository
from captable.repositories.investor_repo import InvestorRepository
from captable.repositories.project_repo import ProjectRepository
from captable.services.cap_table_service import CapTableService
from captable.services.investor_service import InvestorService

# ── Initialise production logging (rotating files + JSON structured) ──
setup_logging()
logger = logging.getLogger(__name__)

VERSION = "1.0.0"

_STARTUP_FAILURES = (OperationalError, ConnectionError, OSError, TimeoutError)


@retry_with_backoff(
    max_retries=settings.DB_CONNECT_RETRIES,
    base_delay=settings.DB_CONNECT_RETRY_DELAY,
    retryable_exceptions=_STARTUP_FAILURES,
)
async def bootstrap_database() -> None:
    """
    Create tables, make sure a default project and cap table exist, and
    run the KYC expiry sweep once.
    """
    import captable.models  # noqa: F401

    logger.info("Connecting to database…")
    async with engine.begin() as conn:
        await conn.run_sync(SQLModel.metadata.create_all)
    logger.info("Database tables ready")

    async with AsyncSessionLocal() as session:
        investor_repo = InvestorRepository(Investor, session)
        cap_table_repo = CapTableRepository(CapTable, session)
        service = CapTableService(ProjectRepository(Project, session), cap_table_repo, investor_repo)
        project = await service.ensure_defaults()
        logger.info("Default project: %s (%s)", project.name, project.id)
        await InvestorService(investor_repo, cap_table_repo).check_kyc_expirations()


# ────────────────────────────────────────────────────────────────────────────
# Application lifespan
# ────────────────────────────────────────────────────────────────────────────


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """
    Startup:
      - Creates tables and bootstraps defaults, retrying with backoff.
      - If the database is unreachable after all retries, the app starts in
        degraded mode (health check reports ``database: false``).

    Shutdown:
      - Disposes of the connection pool.
    """
    try:
        await bootstrap_database()
    except _STARTUP_FAILURES as exc:
        logger.error(
            "Could not initialise the database after %d retries. The application "
            "will start in DEGRADED mode; database-backed endpoints return 503 "
            "until it becomes available. Last error: %s",
            settings.DB_CONNECT_RETRIES,
            exc,
        )

    yield

    logger.info("Shutting down, disposing connection pool (%d change listeners)", change_feed.listener_count)
    await engine.dispose()


# ────────────────────────────────────────────────────────────────────────────
# FastAPI application instance
# ────────────────────────────────────────────────────────────────────────────

app = FastAPI(
    title=settings.PROJECT_NAME,
    version=VERSION,
    description=(
        "Cap table management: projects, cap tables, investors, subscriptions, "
        "token allocation and distribution, CSV import and export."
    ),
    openapi_url=f"{settings.API_V1_STR}/openapi.json",
    redoc_url=None,
    lifespan=lifespan,
)


# ── Custom ReDoc route — default cdn.redoc.ly is blocked by Chrome ORB ──
@app.get("/redoc", include_in_schema=False)
async def custom_redoc_html():
    """Serve ReDoc using the unpkg CDN which has proper CORS headers."""
    return get_redoc_html(
        openapi_url=app.openapi_url or f"{settings.API_V1_STR}/openapi.json",
        title=f"{settings.PROJECT_NAME} — ReDoc",
        redoc_js_url="https://unpkg.com/redoc@latest/bundles/redoc.standalone.js",
    )


# ── Middleware (order matters: outermost = first to execute) ──
app.add_middleware(GZipMiddleware, minimum_size=500)
app.add_middleware(RequestIDMiddleware)
app.add_middleware(RequestTimingMiddleware)
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS.split(","),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# ── Global error handlers ──
add_exception_handlers(app)

# ── API routers ──
app.include_router(api_router, prefix=settings.API_V1_STR)


# ── Health check ──


@app.get("/health", tags=["Health"])
async def health_check():
    """
    Liveness / readiness probe with database connectivity check.

    Also reports circuit breaker state and cache statistics.
    """
    db_healthy = True
    try:
        async with AsyncSessionLocal() as session:
            await session.execute(text("SELECT 1"))
    except (SQLAlchemyError, OSError) as exc:
        logger.warning("Health check database probe failed: %s", exc)
        db_healthy = False

    return {
        "status": "ok" if db_healthy else "degraded",
        "version": VERSION,
        "database": db_healthy,
        "circuit_breaker": db_circuit_breaker.get_status(),
        "cache": cache.get_stats(),
    }
