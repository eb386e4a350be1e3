"""
Shift model — one row per employee per calendar day.

``segments`` holds the ordered work periods as JSON
(``[{segmentId, startTime, endTime, duration}, ...]``).  The list is always
reassigned, never mutated in place, so SQLAlchemy sees every change.
"""

from __future__ import annotations

from datetime import datetime, timezone

from sqlalchemy import JSON, Boolean, Column, DateTime, Float, Index, Integer, String

from shifttrack.db.base import Base


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Shift(Base):
    __tablename__ = "shifts"
    # Not unique: one shift per employee-day is enforced by the write lock.
    __table_args__ = (Index("ix_shifts_employee_date", "employee_id", "shift_date"),)

    id: int = Column(Integer, primary_key=True, index=True)  # type: ignore[assignment]
    shift_id: str = Column(String(32), unique=True, nullable=False, index=True)  # type: ignore[assignment]
    employee_id: str = Column(String(32), nullable=False, index=True)  # type: ignore[assignment]
    employee_name: str = Column(String(200), nullable=False)  # type: ignore[assignment]
    shift_date: str = Column(String(10), nullable=False, index=True)  # type: ignore[assignment]  # YYYY-MM-DD
    shift_type: str = Column(String(50), nullable=False, default="Regular")  # type: ignore[assignment]
    segments: list = Column(JSON, nullable=False, default=list)  # type: ignore[assignment]
    first_start_time: str | None = Column(String(5), nullable=True)  # type: ignore[assignment]
    last_end_time: str | None = Column(String(5), nullable=True)  # type: ignore[assignment]
    total_duration: float = Column(Float, nullable=False, default=0.0)  # type: ignore[assignment]
    status: str = Column(String(20), nullable=False, default="DRAFT", index=True)  # type: ignore[assignment]
    # Zone the HH:MM values were recorded in.
    timezone: str = Column(String(64), nullable=False)  # type: ignore[assignment]
    finalized: bool = Column(Boolean, nullable=False, default=False)  # type: ignore[assignment]
    initial_segments: list | None = Column(JSON, nullable=True)  # type: ignore[assignment]
    updated: bool = Column(Boolean, nullable=False, default=False)  # type: ignore[assignment]
    created_at: datetime = Column(DateTime(timezone=True), default=_utcnow)  # type: ignore[assignment]
    last_updated: datetime = Column(  # type: ignore[assignment]
        DateTime(timezone=True),
        default=_utcnow,
        onupdate=_utcnow,
    )
