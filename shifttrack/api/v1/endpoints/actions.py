"""
Named-action dispatcher — ``POST /actions`` with ``{"action": ..., ...}``.

Lets clients written against the old ``doPost`` action switch keep working.
Each action validates its own payload and calls the same service method as
the REST endpoint, so behaviour is identical on both surfaces.
"""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable
from typing import Any, TypeVar

from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from shifttrack.api.v1.deps import (
    caller_timezone,
    get_current_active_employee,
    get_db,
    get_shift_service,
    scoped_employee_id,
)
from shifttrack.api.v1.endpoints.employees import fetch_staff
from shifttrack.api.v1.endpoints.shifts import sweep_result
from shifttrack.core.config import settings
from shifttrack.core.exceptions import ValidationError
from shifttrack.core.timeutils import current_date_in, current_time_in, now_utc
from shifttrack.models.employee import Employee
from shifttrack.schemas.employee import EmployeeRead
from shifttrack.schemas.shift import (
    ActionRequest,
    ActionResponse,
    CompleteShiftRequest,
    CompleteShiftUpsert,
    CurrentShiftQuery,
    ShiftFilter,
    ShiftIdRequest,
    ShiftRead,
    StartShiftRequest,
    StopShiftRequest,
)
from shifttrack.services.shifts import ShiftOutcome, ShiftService

router = APIRouter(tags=["actions"])
logger = logging.getLogger(__name__)

M = TypeVar("M", bound=BaseModel)


class ActionContext:
    def __init__(
        self,
        payload: dict[str, Any],
        service: ShiftService,
        db: AsyncSession,
        current: Employee,
        tz: str,
    ) -> None:
        self.payload = payload
        self.service = service
        self.db = db
        self.current = current
        self.tz = tz

    def parse(self, model: type[M]) -> M:
        try:
            return model.model_validate(self.payload)
        except PydanticValidationError as exc:
            problems = "; ".join(
                f"{'.'.join(str(p) for p in err['loc']) or 'body'}: {err['msg']}"
                for err in exc.errors()
            )
            raise ValidationError(f"Invalid request: {problems}") from None

    def require_admin(self) -> None:
        if not self.current.is_admin:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail="Admin privileges required",
            )

    def owner_name(self, employee_id: str, given: str | None) -> str | None:
        if given:
            return given.strip()
        return self.current.name if employee_id == self.current.employee_id else None

    def shift_data(self, outcome: ShiftOutcome) -> dict[str, Any] | None:
        if outcome.shift is None:
            return None
        return ShiftRead.from_shift(outcome.shift, self.tz).model_dump(by_alias=True, mode="json")


ActionResult = tuple[str, Any]
Handler = Callable[[ActionContext], Awaitable[ActionResult]]


# ── Handlers ────────────────────────────────────────────────────────
async def _start_shift(ctx: ActionContext) -> ActionResult:
    req = ctx.parse(StartShiftRequest)
    employee_id = scoped_employee_id(ctx.current, req.employee_id)
    outcome = await ctx.service.start(
        employee_id,
        ctx.owner_name(employee_id, req.employee_name),
        req.shift_date,
        start_time=req.start_time,
        shift_type=req.shift_type,
        timezone=ctx.tz,
    )
    return outcome.message, ctx.shift_data(outcome)


async def _stop_shift(ctx: ActionContext) -> ActionResult:
    req = ctx.parse(StopShiftRequest)
    employee_id = scoped_employee_id(ctx.current, req.employee_id)
    outcome = await ctx.service.stop(employee_id, req.shift_date, end_time=req.end_time)
    return outcome.message, ctx.shift_data(outcome)


async def _complete_shift(ctx: ActionContext) -> ActionResult:
    req = ctx.parse(CompleteShiftRequest)
    employee_id = scoped_employee_id(ctx.current, req.employee_id)
    outcome = await ctx.service.complete(employee_id, req.shift_date, end_time=req.end_time)
    return outcome.message, ctx.shift_data(outcome)


async def _get_current_shift(ctx: ActionContext) -> ActionResult:
    req = ctx.parse(CurrentShiftQuery)
    employee_id = scoped_employee_id(ctx.current, req.employee_id)
    outcome = await ctx.service.current(employee_id, req.shift_date, timezone=ctx.tz)
    return outcome.message, ctx.shift_data(outcome)


async def _get_shifts(ctx: ActionContext) -> ActionResult:
    req = ctx.parse(ShiftFilter)
    employee_id = req.employee_id
    if not ctx.current.can_view_all_shifts:
        employee_id = scoped_employee_id(ctx.current, employee_id)
    shifts = await ctx.service.history(
        employee_id=employee_id,
        start_date=req.start_date,
        end_date=req.end_date,
        period=req.period,
        status=req.status,
        timezone=ctx.tz,
    )
    data = [ShiftRead.from_shift(s, ctx.tz).model_dump(by_alias=True, mode="json") for s in shifts]
    return f"Found {len(data)} shift(s)", data


async def _sync_shift_status(ctx: ActionContext) -> ActionResult:
    req = ctx.parse(ShiftIdRequest)
    scoped_employee_id(ctx.current, (await ctx.service.get(req.shift_id)).employee_id)
    result = await ctx.service.sync(req.shift_id)
    changed = result.old_status != result.new_status
    return (
        "Status updated" if changed else "Status already up to date",
        {
            "shiftId": req.shift_id,
            "oldStatus": result.old_status,
            "newStatus": result.new_status,
            "changed": changed,
        },
    )


async def _create_complete_shift(ctx: ActionContext) -> ActionResult:
    req = ctx.parse(CompleteShiftUpsert)
    employee_id = scoped_employee_id(ctx.current, req.employee_id)
    outcome = await ctx.service.upsert(
        employee_id,
        ctx.owner_name(employee_id, req.employee_name),
        req.shift_date,
        req.segments,
        shift_type=req.shift_type,
        first_start_time=req.first_start_time,
        last_end_time=req.last_end_time,
        timezone=ctx.tz,
    )
    return outcome.message, ctx.shift_data(outcome)


async def _fix_shift_status(ctx: ActionContext) -> ActionResult:
    ctx.require_admin()
    req = ctx.parse(ShiftIdRequest)
    new_status = ctx.payload.get("status") or ctx.payload.get("newStatus")
    if not new_status:
        raise ValidationError("Missing required fields: status")
    outcome = await ctx.service.override_status(req.shift_id, str(new_status))
    return outcome.message, ctx.shift_data(outcome)


async def _cleanup_duplicates(ctx: ActionContext) -> ActionResult:
    ctx.require_admin()
    removed = await ctx.service.cleanup_duplicates()
    return (
        f"Removed {len(removed)} duplicate shift(s)",
        {"removed": len(removed), "removedShiftIds": removed},
    )


async def _manual_status_update(ctx: ActionContext) -> ActionResult:
    ctx.require_admin()
    checked, corrections = await ctx.service.sweep()
    result = sweep_result(checked, corrections)
    return (
        f"Checked {checked} shift(s), updated {len(corrections)}",
        result.model_dump(by_alias=True, mode="json"),
    )


async def _get_staff_list(ctx: ActionContext) -> ActionResult:
    staff = await fetch_staff(ctx.db)
    data = [EmployeeRead.model_validate(e).model_dump(mode="json") for e in staff]
    return f"Found {len(data)} staff member(s)", data


async def _test_connection(ctx: ActionContext) -> ActionResult:
    await ctx.db.execute(select(1))
    return "Connection successful", {"status": "connected", "version": settings.VERSION}


ACTIONS: dict[str, Handler] = {
    "startShift": _start_shift,
    "addNewSegment": _start_shift,
    "stopShift": _stop_shift,
    "completeShift": _complete_shift,
    "getCurrentShift": _get_current_shift,
    "getShifts": _get_shifts,
    "syncShiftStatus": _sync_shift_status,
    "createCompleteShift": _create_complete_shift,
    "fixShiftStatus": _fix_shift_status,
    "updateShiftStatus": _fix_shift_status,
    "cleanupDuplicates": _cleanup_duplicates,
    "cleanupDuplicateShifts": _cleanup_duplicates,
    "manualStatusUpdate": _manual_status_update,
    "getStaffList": _get_staff_list,
    "testConnection": _test_connection,
}


# ── Endpoint ────────────────────────────────────────────────────────
@router.post("/actions", response_model=ActionResponse)
async def dispatch_action(
    body: ActionRequest,
    service: ShiftService = Depends(get_shift_service),
    db: AsyncSession = Depends(get_db),
    current: Employee = Depends(get_current_active_employee),
) -> ActionResponse:
    """Route a named action to the shift service."""
    handler = ACTIONS.get(body.action)
    if handler is None:
        raise ValidationError(f"Invalid action: {body.action}")

    payload = body.payload
    tz = caller_timezone(current, payload.get("clientTimezone"))
    logger.debug("Action %s from %s (tz=%s)", body.action, current.employee_id, tz)
    message, data = await handler(ActionContext(payload, service, db, current, tz))

    moment = now_utc()
    server_tz = settings.DEFAULT_TIMEZONE
    return ActionResponse(
        message=message,
        data=data,
        server_timezone=server_tz,
        client_timezone=tz,
        server_time=f"{current_date_in(server_tz, moment)} {current_time_in(server_tz, moment)}",
    )
