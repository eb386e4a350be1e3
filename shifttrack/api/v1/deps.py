"""
FastAPI dependencies — auth guards, database session and the shift service.
"""

from __future__ import annotations

from collections.abc import AsyncGenerator
from typing import Optional

from fastapi import Cookie, Depends, HTTPException, status
from fastapi.security import OAuth2PasswordBearer
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from shifttrack.core.locks import ShiftLock, get_shift_lock
from shifttrack.core.security import decode_access_token
from shifttrack.core.timeutils import resolve_timezone
from shifttrack.db.session import async_session_factory
from shifttrack.models.employee import Employee
from shifttrack.services.shifts import ShiftService

# auto_error=False so the HttpOnly cookie can be used when the header is missing
oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/api/v1/auth/login", auto_error=False)


# ── Database session ────────────────────────────────────────────────
async def get_db() -> AsyncGenerator[AsyncSession, None]:
    async with async_session_factory() as session:
        try:
            yield session
        finally:
            await session.close()


def get_shift_service(
    db: AsyncSession = Depends(get_db),
    lock: ShiftLock = Depends(get_shift_lock),
) -> ShiftService:
    return ShiftService(db, lock)


# ── Auth dependencies ───────────────────────────────────────────────
async def get_current_employee(
    token: Optional[str] = Depends(oauth2_scheme),
    access_token: Optional[str] = Cookie(default=None),
    db: AsyncSession = Depends(get_db),
) -> Employee:
    """Decode JWT from header or cookie (header wins), look up the employee."""
    final_token = token
    if not final_token and access_token:
        final_token = access_token.removeprefix("Bearer ")

    credentials_exc = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Could not validate credentials",
        headers={"WWW-Authenticate": "Bearer"},
    )
    if not final_token:
        raise credentials_exc

    payload = decode_access_token(final_token)
    if payload is None or not payload.get("sub"):
        raise credentials_exc

    result = await db.execute(select(Employee).where(Employee.employee_id == payload["sub"]))
    employee = result.scalar_one_or_none()
    if employee is None:
        raise credentials_exc
    return employee


async def get_current_active_employee(
    current: Employee = Depends(get_current_employee),
) -> Employee:
    """Reject deactivated accounts."""
    if not current.is_active:
        raise HTTPException(status_code=400, detail="Inactive employee account")
    return current


async def require_admin(
    current: Employee = Depends(get_current_active_employee),
) -> Employee:
    """Only allow admin role to proceed."""
    if not current.is_admin:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Admin privileges required",
        )
    return current


# ── Scoping helpers ─────────────────────────────────────────────────
def scoped_employee_id(current: Employee, requested: str | None) -> str:
    """Staff may only act on their own shifts; managers and admins on anyone's."""
    if not requested or requested == current.employee_id:
        return current.employee_id
    if not current.can_view_all_shifts:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="You can only access your own shifts",
        )
    return requested


def caller_timezone(current: Employee, requested: str | None) -> str:
    """Request timezone, then the caller's stored one, then the default."""
    return resolve_timezone(requested, current.timezone)
