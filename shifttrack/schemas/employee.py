"""Pydantic schemas for the staff directory."""

from __future__ import annotations

import re
from datetime import datetime

from pydantic import BaseModel, field_validator

from shifttrack.core.timeutils import extract_timezone_id, get_zone

_VALID_ROLES = {"admin", "manager", "staff"}
_EMPLOYEE_ID_RE = re.compile(r"^[A-Za-z0-9_-]{2,32}$")


def _timezone(v: str | None) -> str | None:
    if v is None or not v.strip():
        return None
    key = extract_timezone_id(v)
    if get_zone(key) is None:
        raise ValueError(f"Unknown timezone '{v}'")
    return key


class EmployeeCreate(BaseModel):
    employee_id: str
    name: str
    password: str
    email: str | None = None
    role: str = "staff"
    department: str | None = None
    timezone: str | None = None

    @field_validator("employee_id")
    @classmethod
    def _employee_id(cls, v: str) -> str:
        v = v.strip().upper()
        if not _EMPLOYEE_ID_RE.match(v):
            raise ValueError("Employee ID must be 2-32 letters, digits, '-' or '_'")
        return v

    @field_validator("name")
    @classmethod
    def _name(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("Name must not be empty")
        if len(v) > 200:
            raise ValueError("Name must not exceed 200 characters")
        return v

    @field_validator("password")
    @classmethod
    def _password(cls, v: str) -> str:
        if len(v) < 8:
            raise ValueError("Password must be at least 8 characters")
        return v

    @field_validator("role")
    @classmethod
    def _validate_role(cls, v: str) -> str:
        if v not in _VALID_ROLES:
            raise ValueError(f"Role must be one of: {sorted(_VALID_ROLES)}")
        return v

    @field_validator("timezone")
    @classmethod
    def _tz(cls, v: str | None) -> str | None:
        return _timezone(v)


class EmployeeUpdate(BaseModel):
    name: str | None = None
    email: str | None = None
    role: str | None = None
    department: str | None = None
    timezone: str | None = None
    password: str | None = None

    @field_validator("role")
    @classmethod
    def _validate_role(cls, v: str | None) -> str | None:
        if v is not None and v not in _VALID_ROLES:
            raise ValueError(f"Role must be one of: {sorted(_VALID_ROLES)}")
        return v

    @field_validator("timezone")
    @classmethod
    def _tz(cls, v: str | None) -> str | None:
        return _timezone(v)


class EmployeeRead(BaseModel):
    id: int
    employee_id: str
    name: str
    email: str | None
    role: str
    department: str | None
    timezone: str | None
    is_active: bool
    created_at: datetime | None

    model_config = {"from_attributes": True}


class DeleteResponse(BaseModel):
    success: bool
    message: str


class LogoutResponse(BaseModel):
    message: str


class HealthResponse(BaseModel):
    db: bool
    redis: bool


class StatusResponse(BaseModel):
    total_employees: int
    today_shifts: int
    active_now: int
    status: str
    version: str
    server_timezone: str
    server_time: str
