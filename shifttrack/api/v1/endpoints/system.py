"""
Health and status endpoints.
"""

from __future__ import annotations

import logging

import redis.asyncio as aioredis
from fastapi import APIRouter, Depends
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from shifttrack.api.v1.deps import get_current_active_employee, get_db
from shifttrack.core.config import settings
from shifttrack.core.status import ShiftStatus
from shifttrack.core.timeutils import current_date_in, current_time_in, now_utc
from shifttrack.models.employee import Employee
from shifttrack.models.shift import Shift
from shifttrack.schemas.employee import HealthResponse, StatusResponse

router = APIRouter(tags=["system"])
logger = logging.getLogger(__name__)


@router.get("/health", response_model=HealthResponse)
async def health(db: AsyncSession = Depends(get_db)) -> HealthResponse:
    """Public health check — DB and Redis connectivity."""
    result = HealthResponse(db=False, redis=False)

    try:
        await db.execute(select(1))
        result.db = True
    except Exception as e:
        logger.error("Health check DB failure: %s", e)

    try:
        r = aioredis.from_url(settings.REDIS_URL)
        await r.ping()
        await r.aclose()
        result.redis = True
    except Exception as e:
        logger.error("Health check Redis failure: %s", e)

    return result


@router.get("/status", response_model=StatusResponse)
async def system_status(
    db: AsyncSession = Depends(get_db),
    _current: Employee = Depends(get_current_active_employee),
) -> StatusResponse:
    """Employee count and today's shifts in the server timezone."""
    moment = now_utc()
    server_tz = settings.DEFAULT_TIMEZONE
    today = current_date_in(server_tz, moment)

    emp_count = await db.execute(
        select(func.count(Employee.id)).where(Employee.is_active.is_(True))
    )
    shift_count = await db.execute(
        select(func.count(Shift.id)).where(Shift.shift_date == today)
    )
    active_count = await db.execute(
        select(func.count(Shift.id)).where(
            Shift.shift_date == today, Shift.status == ShiftStatus.ACTIVE.value
        )
    )

    return StatusResponse(
        total_employees=emp_count.scalar() or 0,
        today_shifts=shift_count.scalar() or 0,
        active_now=active_count.scalar() or 0,
        status="operational",
        version=settings.VERSION,
        server_timezone=server_tz,
        server_time=f"{today} {current_time_in(server_tz, moment)}",
    )
