"""
Employee model — staff directory, login identity and home timezone.
"""

from __future__ import annotations

from datetime import datetime, timezone

from sqlalchemy import Boolean, Column, DateTime, Integer, String

from shifttrack.db.base import Base


class Employee(Base):
    __tablename__ = "employees"

    id: int = Column(Integer, primary_key=True, index=True)  # type: ignore[assignment]
    employee_id: str = Column(String(32), unique=True, nullable=False, index=True)  # type: ignore[assignment]
    name: str = Column(String(200), nullable=False)  # type: ignore[assignment]
    email: str | None = Column(String(320), nullable=True)  # type: ignore[assignment]
    role: str = Column(  # type: ignore[assignment]
        String(20),
        nullable=False,
        default="staff",
        server_default="staff",
    )  # admin | manager | staff
    department: str | None = Column(String(100), nullable=True)  # type: ignore[assignment]
    timezone: str | None = Column(String(64), nullable=True)  # type: ignore[assignment]  # IANA id
    hashed_password: str | None = Column(String(128), nullable=True)  # type: ignore[assignment]
    is_active: bool = Column(Boolean, default=True, server_default="true")  # type: ignore[assignment]
    created_at: datetime = Column(  # type: ignore[assignment]
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
    )

    @property
    def is_admin(self) -> bool:
        return self.role == "admin"

    @property
    def can_view_all_shifts(self) -> bool:
        return self.role in ("admin", "manager")
