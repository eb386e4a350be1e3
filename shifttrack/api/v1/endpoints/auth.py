"""
Auth endpoints — login (OAuth2 password flow) with staff code and password.
"""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, Form, HTTPException, Request, Response, status
from fastapi.security import OAuth2PasswordRequestForm
from slowapi import Limiter
from slowapi.util import get_remote_address
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from shifttrack.api.v1.deps import get_current_active_employee, get_db
from shifttrack.core.config import settings
from shifttrack.core.security import create_access_token, verify_password
from shifttrack.core.timeutils import extract_timezone_id, get_zone, resolve_timezone
from shifttrack.models.employee import Employee
from shifttrack.schemas.employee import EmployeeRead, LogoutResponse
from shifttrack.schemas.token import Token

# Rate limiter keyed by client IP
limiter = Limiter(key_func=get_remote_address, enabled=settings.RATE_LIMIT_ENABLED)

router = APIRouter(prefix="/auth", tags=["auth"])
logger = logging.getLogger(__name__)


@router.post("/login", response_model=Token)
@limiter.limit(settings.LOGIN_RATE_LIMIT)
async def login_for_access_token(
    request: Request,
    response: Response,
    form_data: OAuth2PasswordRequestForm = Depends(),
    timezone: str | None = Form(default=None),
    db: AsyncSession = Depends(get_db),
) -> Token:
    """Authenticate with employee ID + password; sets an HttpOnly cookie.

    A valid ``timezone`` form field is remembered on the employee and used
    whenever later requests do not send ``clientTimezone``.
    """
    result = await db.execute(
        select(Employee).where(Employee.employee_id == form_data.username.strip().upper())
    )
    employee = result.scalar_one_or_none()

    if employee is None or not verify_password(form_data.password, employee.hashed_password):
        logger.warning("Failed login for %r", form_data.username)
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Incorrect employee ID or password",
            headers={"WWW-Authenticate": "Bearer"},
        )
    if not employee.is_active:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Employee account is inactive",
        )

    tz_id = extract_timezone_id(timezone)
    if tz_id and get_zone(tz_id) is not None and tz_id != employee.timezone:
        employee.timezone = tz_id
        await db.commit()
        logger.info("Stored timezone %s for %s", tz_id, employee.employee_id)

    access_token = create_access_token(employee.employee_id, role=employee.role)
    response.set_cookie(
        key="access_token",
        value=f"Bearer {access_token}",
        httponly=True,
        secure=settings.COOKIE_SECURE,
        samesite="lax",
        max_age=settings.ACCESS_TOKEN_EXPIRE_MINUTES * 60,
    )
    logger.info("Login: %s (%s)", employee.employee_id, employee.role)

    return Token(
        access_token=access_token,
        employee_id=employee.employee_id,
        name=employee.name,
        role=employee.role,
        timezone=resolve_timezone(employee.timezone),
    )


@router.post("/logout", response_model=LogoutResponse)
async def logout(response: Response) -> LogoutResponse:
    """Clear the auth cookie."""
    response.delete_cookie("access_token")
    return LogoutResponse(message="Logged out")


@router.get("/me", response_model=EmployeeRead)
async def read_current_employee(
    current: Employee = Depends(get_current_active_employee),
) -> Employee:
    """Profile of the signed-in employee."""
    return current
