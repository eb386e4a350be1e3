"""
Staff directory endpoints.

- GET operations require any authenticated employee.
- POST / PUT / DELETE operations require admin role.
"""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from shifttrack.api.v1.deps import get_current_active_employee, get_db, require_admin
from shifttrack.core.security import get_password_hash
from shifttrack.models.employee import Employee
from shifttrack.schemas.employee import (
    DeleteResponse,
    EmployeeCreate,
    EmployeeRead,
    EmployeeUpdate,
)

router = APIRouter(prefix="/employees", tags=["employees"])
logger = logging.getLogger(__name__)


async def fetch_staff(
    db: AsyncSession,
    *,
    skip: int = 0,
    limit: int = 500,
    search: str | None = None,
    department: str | None = None,
) -> list[Employee]:
    """Active employees ordered by name."""
    query = (
        select(Employee)
        .where(Employee.is_active.is_(True))
        .order_by(Employee.name)
        .offset(skip)
        .limit(limit)
    )
    if search:
        # Escape SQL LIKE metacharacters to prevent wildcard injection
        safe_search = search.replace("%", r"\%").replace("_", r"\_")
        query = query.where(Employee.name.ilike(f"%{safe_search}%", escape="\\"))
    if department:
        query = query.where(Employee.department == department)
    result = await db.execute(query)
    return list(result.scalars().all())


async def _get_or_404(db: AsyncSession, employee_id: str) -> Employee:
    result = await db.execute(select(Employee).where(Employee.employee_id == employee_id.upper()))
    emp = result.scalar_one_or_none()
    if emp is None:
        raise HTTPException(status_code=404, detail="Employee not found")
    return emp


@router.get("", response_model=list[EmployeeRead])
async def list_employees(
    skip: int = 0,
    limit: int = Query(default=100, le=500),
    search: str | None = None,
    department: str | None = None,
    db: AsyncSession = Depends(get_db),
    _current: Employee = Depends(get_current_active_employee),
) -> list[Employee]:
    """Staff list used by the shift entry and history views."""
    return await fetch_staff(db, skip=skip, limit=limit, search=search, department=department)


@router.post("", response_model=EmployeeRead, status_code=201)
async def create_employee(
    body: EmployeeCreate,
    db: AsyncSession = Depends(get_db),
    _admin: Employee = Depends(require_admin),
) -> Employee:
    existing = await db.execute(select(Employee).where(Employee.employee_id == body.employee_id))
    if existing.scalar_one_or_none():
        raise HTTPException(
            status_code=400,
            detail=f"Employee ID '{body.employee_id}' already registered",
        )

    employee = Employee(
        **body.model_dump(exclude={"password"}),
        hashed_password=get_password_hash(body.password),
    )
    db.add(employee)
    await db.commit()
    await db.refresh(employee)
    logger.info("Created employee %s (%s)", employee.employee_id, employee.name)
    return employee


@router.get("/{employee_id}", response_model=EmployeeRead)
async def get_employee(
    employee_id: str,
    db: AsyncSession = Depends(get_db),
    _current: Employee = Depends(get_current_active_employee),
) -> Employee:
    emp = await _get_or_404(db, employee_id)
    if not emp.is_active:
        raise HTTPException(status_code=404, detail="Employee not found")
    return emp


@router.put("/{employee_id}", response_model=EmployeeRead)
async def update_employee(
    employee_id: str,
    body: EmployeeUpdate,
    db: AsyncSession = Depends(get_db),
    _admin: Employee = Depends(require_admin),
) -> Employee:
    emp = await _get_or_404(db, employee_id)

    changes = body.model_dump(exclude_unset=True)
    password = changes.pop("password", None)
    for field, value in changes.items():
        setattr(emp, field, value)
    if password:
        emp.hashed_password = get_password_hash(password)

    await db.commit()
    await db.refresh(emp)
    logger.info("Updated employee %s", emp.employee_id)
    return emp


@router.delete("/{employee_id}", response_model=DeleteResponse)
async def delete_employee(
    employee_id: str,
    db: AsyncSession = Depends(get_db),
    admin: Employee = Depends(require_admin),
) -> DeleteResponse:
    """Soft-delete (deactivate) an employee. Shift history is preserved."""
    emp = await _get_or_404(db, employee_id)
    if emp.employee_id == admin.employee_id:
        raise HTTPException(status_code=400, detail="You cannot deactivate your own account")

    emp.is_active = False
    await db.commit()
    logger.info("Deactivated employee %s (%s)", emp.employee_id, emp.name)
    return DeleteResponse(success=True, message=f"Employee '{emp.name}' deactivated")
