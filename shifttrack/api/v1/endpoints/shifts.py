"""
Shift endpoints — clock in/out, history and administrative corrections.

- Staff act on their own shifts; managers and admins may pass any employeeId.
- Status override, duplicate cleanup and the status sweep are admin-only.
"""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, Query

from shifttrack.api.v1.deps import (
    caller_timezone,
    get_current_active_employee,
    get_shift_service,
    require_admin,
    scoped_employee_id,
)
from shifttrack.models.employee import Employee
from shifttrack.schemas.shift import (
    CleanupResponse,
    CleanupResult,
    CompleteShiftRequest,
    CompleteShiftUpsert,
    ShiftListResponse,
    ShiftRead,
    ShiftResponse,
    StartShiftRequest,
    StatusChange,
    StatusOverride,
    StopShiftRequest,
    SweepResponse,
    SweepResult,
    SyncResponse,
    SyncResult,
)
from shifttrack.services.shifts import ShiftOutcome, ShiftService

router = APIRouter(prefix="/shifts", tags=["shifts"])
logger = logging.getLogger(__name__)


def _owner_name(current: Employee, employee_id: str, given: str | None) -> str | None:
    if given:
        return given.strip()
    return current.name if employee_id == current.employee_id else None


def shift_response(outcome: ShiftOutcome, tz: str) -> ShiftResponse:
    data = ShiftRead.from_shift(outcome.shift, tz) if outcome.shift is not None else None
    return ShiftResponse(message=outcome.message, data=data)


# ── Clock in / out ──────────────────────────────────────────────────
@router.post("/start", response_model=ShiftResponse)
async def start_shift(
    body: StartShiftRequest,
    service: ShiftService = Depends(get_shift_service),
    current: Employee = Depends(get_current_active_employee),
) -> ShiftResponse:
    """Open the first segment of the day, or a new one after a break."""
    employee_id = scoped_employee_id(current, body.employee_id)
    tz = caller_timezone(current, body.client_timezone)
    outcome = await service.start(
        employee_id,
        _owner_name(current, employee_id, body.employee_name),
        body.shift_date,
        start_time=body.start_time,
        shift_type=body.shift_type,
        timezone=tz,
    )
    return shift_response(outcome, tz)


@router.post("/stop", response_model=ShiftResponse)
async def stop_shift(
    body: StopShiftRequest,
    service: ShiftService = Depends(get_shift_service),
    current: Employee = Depends(get_current_active_employee),
) -> ShiftResponse:
    """Close the open segment."""
    employee_id = scoped_employee_id(current, body.employee_id)
    outcome = await service.stop(employee_id, body.shift_date, end_time=body.end_time)
    return shift_response(outcome, caller_timezone(current, body.client_timezone))


@router.post("/complete", response_model=ShiftResponse)
async def complete_shift(
    body: CompleteShiftRequest,
    service: ShiftService = Depends(get_shift_service),
    current: Employee = Depends(get_current_active_employee),
) -> ShiftResponse:
    """Close any open segment and mark the shift completed."""
    employee_id = scoped_employee_id(current, body.employee_id)
    outcome = await service.complete(employee_id, body.shift_date, end_time=body.end_time)
    return shift_response(outcome, caller_timezone(current, body.client_timezone))


@router.put("", response_model=ShiftResponse)
async def create_complete_shift(
    body: CompleteShiftUpsert,
    service: ShiftService = Depends(get_shift_service),
    current: Employee = Depends(get_current_active_employee),
) -> ShiftResponse:
    """Create or replace the full schedule for one employee-day."""
    employee_id = scoped_employee_id(current, body.employee_id)
    tz = caller_timezone(current, body.client_timezone)
    outcome = await service.upsert(
        employee_id,
        _owner_name(current, employee_id, body.employee_name),
        body.shift_date,
        body.segments,
        shift_type=body.shift_type,
        first_start_time=body.first_start_time,
        last_end_time=body.last_end_time,
        timezone=tz,
    )
    return shift_response(outcome, tz)


# ── Reads ───────────────────────────────────────────────────────────
@router.get("/current", response_model=ShiftResponse)
async def get_current_shift(
    employee_id: str | None = Query(default=None, alias="employeeId"),
    shift_date: str | None = Query(default=None, alias="shiftDate"),
    client_timezone: str | None = Query(default=None, alias="clientTimezone"),
    service: ShiftService = Depends(get_shift_service),
    current: Employee = Depends(get_current_active_employee),
) -> ShiftResponse:
    """Today's (or *shiftDate*'s) shift; ``data`` is null when there is none."""
    employee_id = scoped_employee_id(current, employee_id)
    tz = caller_timezone(current, client_timezone)
    outcome = await service.current(employee_id, shift_date, timezone=tz)
    return shift_response(outcome, tz)


@router.get("", response_model=ShiftListResponse)
async def get_shifts(
    employee_id: str | None = Query(default=None, alias="employeeId"),
    start_date: str | None = Query(default=None, alias="startDate"),
    end_date: str | None = Query(default=None, alias="endDate"),
    period: str | None = None,
    status: str | None = None,
    client_timezone: str | None = Query(default=None, alias="clientTimezone"),
    service: ShiftService = Depends(get_shift_service),
    current: Employee = Depends(get_current_active_employee),
) -> ShiftListResponse:
    """Shift history. Staff only ever see their own rows."""
    if not current.can_view_all_shifts:
        employee_id = scoped_employee_id(current, employee_id)
    tz = caller_timezone(current, client_timezone)
    shifts = await service.history(
        employee_id=employee_id,
        start_date=start_date,
        end_date=end_date,
        period=period,
        status=status,
        timezone=tz,
    )
    data = [ShiftRead.from_shift(shift, tz) for shift in shifts]
    return ShiftListResponse(message=f"Found {len(data)} shift(s)", count=len(data), data=data)


@router.post("/{shift_id}/sync", response_model=SyncResponse)
async def sync_shift_status(
    shift_id: str,
    service: ShiftService = Depends(get_shift_service),
    current: Employee = Depends(get_current_active_employee),
) -> SyncResponse:
    """Recompute and persist one shift's status."""
    scoped_employee_id(current, (await service.get(shift_id)).employee_id)
    result = await service.sync(shift_id)
    changed = result.old_status != result.new_status
    return SyncResponse(
        message="Status updated" if changed else "Status already up to date",
        data=SyncResult(
            shift_id=shift_id,
            old_status=result.old_status,
            new_status=result.new_status,
            changed=changed,
        ),
    )


# ── Admin ───────────────────────────────────────────────────────────
@router.put("/{shift_id}/status", response_model=ShiftResponse)
async def override_shift_status(
    shift_id: str,
    body: StatusOverride,
    service: ShiftService = Depends(get_shift_service),
    admin: Employee = Depends(require_admin),
) -> ShiftResponse:
    outcome = await service.override_status(shift_id, body.status)
    return shift_response(outcome, caller_timezone(admin, body.client_timezone))


@router.post("/cleanup-duplicates", response_model=CleanupResponse)
async def cleanup_duplicate_shifts(
    service: ShiftService = Depends(get_shift_service),
    _admin: Employee = Depends(require_admin),
) -> CleanupResponse:
    removed = await service.cleanup_duplicates()
    return CleanupResponse(
        message=f"Removed {len(removed)} duplicate shift(s)",
        data=CleanupResult(removed=len(removed), removed_shift_ids=removed),
    )


@router.post("/status-sweep", response_model=SweepResponse)
async def status_sweep(
    service: ShiftService = Depends(get_shift_service),
    _admin: Employee = Depends(require_admin),
) -> SweepResponse:
    """Apply status resolution and the auto-completion policy to open shifts."""
    checked, corrections = await service.sweep()
    return SweepResponse(
        message=f"Checked {checked} shift(s), updated {len(corrections)}",
        data=sweep_result(checked, corrections),
    )


def sweep_result(checked: int, corrections: list) -> SweepResult:
    return SweepResult(
        checked=checked,
        updated=len(corrections),
        changes=[
            StatusChange(
                shift_id=c.shift.shift_id,
                employee_id=c.shift.employee_id,
                shift_date=c.shift.shift_date,
                old_status=c.old_status,
                new_status=c.new_status,
            )
            for c in corrections
        ],
    )
