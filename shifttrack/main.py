"""
Shift Tracker — application entry point.

This is the **only** file that assembles the app.  All business logic
lives in the `api/`, `services/`, `models/`, and `core/` packages.
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy import select

from shifttrack.api.v1.api import api_router
from shifttrack.api.v1.endpoints.auth import limiter
from shifttrack.core.config import settings
from shifttrack.core.exceptions import register_exception_handlers
from shifttrack.core.security import get_password_hash
from shifttrack.db.base import Base
from shifttrack.db.session import async_session_factory, engine

# Ensure all models are imported so metadata.create_all can see them
from shifttrack.models.employee import Employee
from shifttrack.models.shift import Shift  # noqa: F401

logging.basicConfig(
    level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO),
    format="%(asctime)s | %(levelname)-8s | %(name)s | %(message)s",
)
logger = logging.getLogger(__name__)


# ── Lifespan ────────────────────────────────────────────────────────
@asynccontextmanager
async def lifespan(_app: FastAPI):
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.info("Database tables initialised")

    # Seed default admin on first run
    async with async_session_factory() as session:
        result = await session.execute(
            select(Employee).where(Employee.employee_id == settings.FIRST_ADMIN_EMPLOYEE_ID)
        )
        if result.scalar_one_or_none() is None:
            session.add(
                Employee(
                    employee_id=settings.FIRST_ADMIN_EMPLOYEE_ID,
                    name=settings.FIRST_ADMIN_NAME,
                    role="admin",
                    timezone=settings.DEFAULT_TIMEZONE,
                    hashed_password=get_password_hash(settings.FIRST_ADMIN_PASSWORD),
                )
            )
            await session.commit()
            logger.info(
                "Default admin created: %s (password: <redacted>)",
                settings.FIRST_ADMIN_EMPLOYEE_ID,
            )

    logger.info(
        "Shift Tracker v%s started (default timezone %s, %s shift lock)",
        settings.VERSION,
        settings.DEFAULT_TIMEZONE,
        settings.SHIFT_LOCK_BACKEND,
    )
    yield
    await engine.dispose()
    logger.info("Shutdown complete")


# ── App factory ─────────────────────────────────────────────────────
def create_app() -> FastAPI:
    application = FastAPI(
        title=settings.PROJECT_NAME,
        description="Multi-segment shift tracking with server-derived status",
        version=settings.VERSION,
        openapi_url=f"{settings.API_V1_PREFIX}/openapi.json",
        docs_url="/docs",
        redoc_url="/redoc",
        lifespan=lifespan,
    )

    application.state.limiter = limiter

    # CORS
    application.add_middleware(
        CORSMiddleware,
        allow_origins=settings.CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Global exception handlers (prevent stack-trace leakage)
    register_exception_handlers(application)

    # Mount API v1
    application.include_router(api_router, prefix=settings.API_V1_PREFIX)

    return application


app = create_app()
