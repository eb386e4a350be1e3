"""Pydantic schemas for shifts, segments and the named-action dispatcher.

Field names are snake_case in Python and camelCase on the wire
(``employeeId``, ``shiftDate``, ``startTime`` ...), matching the records the
web client already sends.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, field_validator
from pydantic.alias_generators import to_camel

from shifttrack.core.exceptions import MalformedTimeError
from shifttrack.core.timeutils import format_for_display, normalize_hhmm


class CamelModel(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        from_attributes=True,
    )


def _hhmm_or_none(v: object) -> str | None:
    if v is None or (isinstance(v, str) and not v.strip()):
        return None
    try:
        return normalize_hhmm(v)
    except MalformedTimeError:
        raise ValueError(f"Time must be HH:MM, got {v!r}") from None


def _strip_or_none(v: object) -> str | None:
    if v is None:
        return None
    v = str(v).strip()
    return v or None


# ── Segments ────────────────────────────────────────────────────────
class SegmentIn(CamelModel):
    segment_id: int | None = None
    start_time: str
    end_time: str | None = None
    duration: float | None = None  # ignored, recomputed server-side

    @field_validator("start_time", mode="before")
    @classmethod
    def _start(cls, v: object) -> str:
        value = _hhmm_or_none(v)
        if value is None:
            raise ValueError("startTime is required")
        return value

    @field_validator("end_time", mode="before")
    @classmethod
    def _end(cls, v: object) -> str | None:
        return _hhmm_or_none(v)


class SegmentRead(CamelModel):
    segment_id: int
    start_time: str
    end_time: str | None = None
    duration: float | None = None
    start_time_formatted: str | None = None
    end_time_formatted: str | None = None


# ── Requests ────────────────────────────────────────────────────────
class _ShiftKey(CamelModel):
    employee_id: str | None = None
    shift_date: str | None = None
    client_timezone: str | None = None

    @field_validator("employee_id", "shift_date", "client_timezone", mode="before")
    @classmethod
    def _strip(cls, v: object) -> str | None:
        return _strip_or_none(v)


class StartShiftRequest(_ShiftKey):
    employee_name: str | None = None
    start_time: str | None = None
    shift_type: str | None = None

    @field_validator("start_time", mode="before")
    @classmethod
    def _start(cls, v: object) -> str | None:
        return _hhmm_or_none(v)


class StopShiftRequest(_ShiftKey):
    end_time: str | None = None

    @field_validator("end_time", mode="before")
    @classmethod
    def _end(cls, v: object) -> str | None:
        return _hhmm_or_none(v)


class CompleteShiftRequest(StopShiftRequest):
    pass


class CurrentShiftQuery(_ShiftKey):
    pass


class ShiftFilter(CamelModel):
    employee_id: str | None = None
    start_date: str | None = None
    end_date: str | None = None
    period: str | None = None
    status: str | None = None
    client_timezone: str | None = None


class CompleteShiftUpsert(_ShiftKey):
    """Full schedule for one employee-day (``createCompleteShift``)."""

    employee_name: str | None = None
    shift_type: str | None = None
    segments: list[SegmentIn] = []
    first_start_time: str | None = None
    last_end_time: str | None = None

    @field_validator("first_start_time", "last_end_time", mode="before")
    @classmethod
    def _times(cls, v: object) -> str | None:
        return _hhmm_or_none(v)


class StatusOverride(CamelModel):
    status: str
    client_timezone: str | None = None


class ShiftIdRequest(CamelModel):
    shift_id: str
    client_timezone: str | None = None


class ActionRequest(BaseModel):
    """Envelope of ``POST /actions``; the remaining keys belong to the action."""

    model_config = ConfigDict(extra="allow", populate_by_name=True)

    action: str

    @property
    def payload(self) -> dict[str, Any]:
        return dict(self.model_extra or {})


# ── Responses ───────────────────────────────────────────────────────
class ShiftRead(CamelModel):
    shift_id: str
    employee_id: str
    employee_name: str
    shift_date: str
    shift_type: str
    segments: list[SegmentRead]
    number_of_segments: int
    first_start_time: str | None = None
    last_end_time: str | None = None
    first_start_time_formatted: str | None = None
    last_end_time_formatted: str | None = None
    total_duration: float
    status: str
    finalized: bool = False
    updated: bool = False
    initial_segments: list[dict[str, Any]] | None = None
    timezone: str
    recorded_timezone: str
    created_at: datetime | None = None
    last_updated: datetime | None = None

    @classmethod
    def from_shift(cls, shift: Any, display_tz: str) -> ShiftRead:
        """Build the wire shape with times converted to *display_tz*."""

        def fmt(value: str | None) -> str | None:
            return format_for_display(value, display_tz, shift.timezone, on=shift.shift_date)

        segments = [
            SegmentRead(
                segment_id=seg.get("segmentId") or index,
                start_time=seg.get("startTime"),
                end_time=seg.get("endTime"),
                duration=seg.get("duration"),
                start_time_formatted=fmt(seg.get("startTime")),
                end_time_formatted=fmt(seg.get("endTime")),
            )
            for index, seg in enumerate(shift.segments or [], start=1)
        ]
        return cls(
            shift_id=shift.shift_id,
            employee_id=shift.employee_id,
            employee_name=shift.employee_name,
            shift_date=shift.shift_date,
            shift_type=shift.shift_type,
            segments=segments,
            number_of_segments=len(segments),
            first_start_time=shift.first_start_time,
            last_end_time=shift.last_end_time,
            first_start_time_formatted=fmt(shift.first_start_time),
            last_end_time_formatted=fmt(shift.last_end_time),
            total_duration=shift.total_duration or 0.0,
            status=shift.status,
            finalized=bool(shift.finalized),
            updated=bool(shift.updated),
            initial_segments=shift.initial_segments,
            timezone=display_tz,
            recorded_timezone=shift.timezone,
            created_at=shift.created_at,
            last_updated=shift.last_updated,
        )


class ShiftResponse(BaseModel):
    success: bool = True
    message: str
    data: ShiftRead | None = None


class ShiftListResponse(BaseModel):
    success: bool = True
    message: str
    count: int
    data: list[ShiftRead]


class SyncResult(CamelModel):
    shift_id: str
    old_status: str
    new_status: str
    changed: bool


class SyncResponse(BaseModel):
    success: bool = True
    message: str
    data: SyncResult


class StatusChange(CamelModel):
    shift_id: str
    employee_id: str
    shift_date: str
    old_status: str
    new_status: str


class SweepResult(CamelModel):
    checked: int
    updated: int
    changes: list[StatusChange]


class SweepResponse(BaseModel):
    success: bool = True
    message: str
    data: SweepResult


class CleanupResult(CamelModel):
    removed: int
    removed_shift_ids: list[str]


class CleanupResponse(BaseModel):
    success: bool = True
    message: str
    data: CleanupResult


class ActionResponse(CamelModel):
    success: bool = True
    message: str
    data: Any = None
    server_timezone: str
    client_timezone: str
    server_time: str
