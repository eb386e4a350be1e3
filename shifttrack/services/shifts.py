"""
Shift repository and the clock-in / clock-out operations built on it.

Every mutation runs under the process-wide shift write lock and ends in a
single commit, so segments, duration, cached times and status for one
transition land together.  Every read re-derives the status through
:func:`resolve_shift_status` and persists corrections.
"""

from __future__ import annotations

import logging
import uuid
from collections.abc import Sequence
from dataclasses import dataclass
from datetime import date, datetime
from typing import Any

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from shifttrack.core.config import settings
from shifttrack.core.exceptions import (
    LockTimeoutError,
    MalformedTimeError,
    NotFoundError,
    ShiftStateError,
    ValidationError,
)
from shifttrack.core.locks import ShiftLock
from shifttrack.core.status import ShiftStatus, has_open_segment, resolve_shift_status
from shifttrack.core.timeutils import (
    Period,
    current_date_in,
    current_time_in,
    minutes_after,
    normalize_date,
    normalize_hhmm,
    now_utc,
    period_bounds,
    resolve_timezone,
    segment_duration,
)
from shifttrack.models.shift import Shift

logger = logging.getLogger(__name__)

DEFAULT_SHIFT_TYPE = "Regular"


def new_shift_id() -> str:
    return "SH" + uuid.uuid4().hex[:12].upper()


def _require(**fields: object) -> None:
    missing = [name for name, value in fields.items() if value in (None, "")]
    if missing:
        raise ValidationError(f"Missing required fields: {', '.join(missing)}")


def _time_or_error(value: str | None, field: str) -> str | None:
    if value is None:
        return None
    try:
        return normalize_hhmm(value)
    except MalformedTimeError:
        raise ValidationError(f"{field} must be HH:MM, got '{value}'") from None


# ── Segment helpers ─────────────────────────────────────────────────
def _check_end(segment_id: int, start: str, end: str) -> None:
    """An end earlier than its start only counts as overnight within the rollover window."""
    if minutes_after(end, start) < 0:
        raise ValidationError(
            f"Segment {segment_id} cannot end at {end}, before it started at {start}"
        )


def close_segment(segment: dict[str, Any], end_time: str) -> dict[str, Any]:
    return {
        **segment,
        "endTime": end_time,
        "duration": segment_duration(segment["startTime"], end_time),
    }


def apply_derived_fields(shift: Shift) -> None:
    """Rewrite the cached first/last times and the total from ``segments``."""
    segments = shift.segments or []
    closed = [seg for seg in segments if seg.get("endTime")]
    shift.first_start_time = segments[0]["startTime"] if segments else None
    shift.last_end_time = closed[-1]["endTime"] if closed else None
    shift.total_duration = round(sum(seg.get("duration") or 0.0 for seg in closed), 2)


def normalize_segments(raw: Sequence[Any]) -> list[dict[str, Any]]:
    """Validate a submitted schedule and recompute numbering and durations.

    At most one segment may be open and it must be the last one; anything
    else is rejected rather than repaired.
    """
    segments: list[dict[str, Any]] = []
    for index, seg in enumerate(raw, start=1):
        start, end = seg.start_time, seg.end_time
        if end is None and index != len(raw):
            raise ValidationError(
                f"Segment {index} has no end time but is not the last segment"
            )
        if end is not None:
            _check_end(index, start, end)
        segments.append(
            {
                "segmentId": index,
                "startTime": start,
                "endTime": end,
                "duration": segment_duration(start, end) if end else None,
            }
        )
    for previous, current in zip(segments, segments[1:]):
        if minutes_after(current["startTime"], previous["endTime"]) < 0:
            raise ValidationError(
                f"Segment {current['segmentId']} starts at {current['startTime']}, "
                f"before segment {previous['segmentId']} ended at {previous['endTime']}"
            )
    return segments


# ── Repository ──────────────────────────────────────────────────────
class ShiftRepository:
    """Data access for :class:`Shift` rows. Does not commit."""

    def __init__(self, db: AsyncSession) -> None:
        self.db = db

    async def find(self, employee_id: str, shift_date: str) -> Shift | None:
        result = await self.db.execute(
            select(Shift)
            .where(Shift.employee_id == employee_id, Shift.shift_date == shift_date)
            .order_by(Shift.id)
            .limit(1)
        )
        return result.scalar_one_or_none()

    async def get(self, shift_id: str) -> Shift | None:
        result = await self.db.execute(select(Shift).where(Shift.shift_id == shift_id))
        return result.scalar_one_or_none()

    async def reload(self, shift: Shift) -> Shift | None:
        """Re-read *shift* from the database, overwriting loaded state."""
        result = await self.db.execute(
            select(Shift)
            .where(Shift.id == shift.id)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    def add(self, shift: Shift) -> None:
        self.db.add(shift)

    async def search(
        self,
        employee_id: str | None = None,
        start: date | None = None,
        end: date | None = None,
    ) -> list[Shift]:
        query = select(Shift).order_by(Shift.shift_date.desc(), Shift.employee_id, Shift.id)
        if employee_id:
            query = query.where(Shift.employee_id == employee_id)
        if start:
            query = query.where(Shift.shift_date >= start.isoformat())
        if end:
            query = query.where(Shift.shift_date <= end.isoformat())
        result = await self.db.execute(query)
        return list(result.scalars().all())

    async def unsettled(self) -> list[Shift]:
        """Shifts the status sweep still has to look at."""
        result = await self.db.execute(
            select(Shift)
            .where(Shift.finalized.is_(False), Shift.status != ShiftStatus.COMPLETED.value)
            .order_by(Shift.id)
        )
        return list(result.scalars().all())

    async def duplicates(self) -> list[Shift]:
        """Every row after the earliest for its (employee, date) pair."""
        result = await self.db.execute(
            select(Shift).order_by(Shift.employee_id, Shift.shift_date, Shift.id)
        )
        seen: set[tuple[str, str]] = set()
        extra: list[Shift] = []
        for shift in result.scalars():
            key = (shift.employee_id, shift.shift_date)
            if key in seen:
                extra.append(shift)
            else:
                seen.add(key)
        return extra

    async def delete(self, shift: Shift) -> None:
        await self.db.delete(shift)


# ── Service ─────────────────────────────────────────────────────────
@dataclass
class ShiftOutcome:
    shift: Shift | None
    message: str


@dataclass
class StatusCorrection:
    shift: Shift
    old_status: str
    new_status: str


class ShiftService:
    def __init__(
        self,
        db: AsyncSession,
        lock: ShiftLock,
        *,
        grace_minutes: int | None = None,
    ) -> None:
        self.db = db
        self.repo = ShiftRepository(db)
        self.lock = lock
        self.grace_minutes = (
            settings.AUTO_COMPLETE_GRACE_MINUTES if grace_minutes is None else grace_minutes
        )

    # ── status ──────────────────────────────────────────────────────
    def resolve(self, shift: Shift, moment: datetime) -> ShiftStatus:
        tz = shift.timezone
        return resolve_shift_status(
            shift.segments or [],
            shift.status,
            shift_date=shift.shift_date,
            today=current_date_in(tz, moment),
            now=current_time_in(tz, moment),
            grace_minutes=self.grace_minutes,
            finalized=bool(shift.finalized),
        )

    def _refresh(self, shift: Shift, moment: datetime) -> str:
        """Recompute every derived field in place; return the previous status."""
        old = shift.status
        apply_derived_fields(shift)
        shift.status = self.resolve(shift, moment).value
        return old

    async def reconcile(self, shifts: Sequence[Shift], moment: datetime) -> list[StatusCorrection]:
        """Apply engine statuses and persist the ones that changed.

        Rows are re-read under the lock so a writer that committed after
        *shifts* were loaded is never overwritten.  The computed status is
        reported even when the correction cannot be written because the
        lock is busy.
        """
        stale = [shift for shift in shifts if self.resolve(shift, moment).value != shift.status]
        if not stale:
            return []
        corrections: list[StatusCorrection] = []
        try:
            async with self.lock.hold():
                for shift in stale:
                    fresh = await self.repo.reload(shift)
                    if fresh is None:
                        continue
                    new = self.resolve(fresh, moment).value
                    if new != fresh.status:
                        corrections.append(StatusCorrection(fresh, fresh.status, new))
                        fresh.status = new
                await self.db.commit()
        except LockTimeoutError:
            logger.warning("Status corrections for %d shift(s) not persisted: lock busy", len(stale))
            corrections = []
            for shift in stale:
                new = self.resolve(shift, moment).value
                corrections.append(StatusCorrection(shift, shift.status, new))
                shift.status = new
            return corrections
        for c in corrections:
            logger.info(
                "Corrected status of %s (%s %s): %s -> %s",
                c.shift.shift_id, c.shift.employee_id, c.shift.shift_date,
                c.old_status, c.new_status,
            )
        return corrections

    # ── writes ──────────────────────────────────────────────────────
    async def start(
        self,
        employee_id: str | None,
        employee_name: str | None,
        shift_date: str | None,
        *,
        start_time: str | None = None,
        shift_type: str | None = None,
        timezone: str | None = None,
    ) -> ShiftOutcome:
        """Clock in: create the day's shift or open a new segment."""
        _require(employeeId=employee_id, employeeName=employee_name, shiftDate=shift_date)
        shift_date = normalize_date(shift_date)
        start_time = _time_or_error(start_time, "startTime")

        async with self.lock.hold():
            moment = now_utc()
            shift = await self.repo.find(employee_id, shift_date)

            if shift is None:
                tz = resolve_timezone(timezone)
                start = start_time or current_time_in(tz, moment)
                shift = Shift(
                    shift_id=new_shift_id(),
                    employee_id=employee_id,
                    employee_name=employee_name,
                    shift_date=shift_date,
                    shift_type=shift_type or DEFAULT_SHIFT_TYPE,
                    segments=[{"segmentId": 1, "startTime": start, "endTime": None, "duration": None}],
                    status=ShiftStatus.DRAFT.value,
                    timezone=tz,
                    finalized=False,
                    updated=False,
                )
                self._refresh(shift, moment)
                self.repo.add(shift)
                await self.db.commit()
                logger.info("Shift %s started for %s on %s at %s", shift.shift_id, employee_id, shift_date, start)
                return ShiftOutcome(shift, "Shift started successfully")

            current = self.resolve(shift, moment)
            if shift.finalized or current is ShiftStatus.COMPLETED:
                raise ShiftStateError(f"Shift already completed for {employee_id} on {shift_date}")
            segments = list(shift.segments or [])
            if has_open_segment(segments):
                if current.value != shift.status:
                    shift.status = current.value
                    await self.db.commit()
                return ShiftOutcome(shift, "Your shift is already active")

            start = start_time or current_time_in(shift.timezone, moment)
            if segments and minutes_after(start, segments[-1]["endTime"]) < 0:
                raise ValidationError(
                    f"New segment cannot start at {start}, before the previous "
                    f"segment ended at {segments[-1]['endTime']}"
                )
            segments.append(
                {"segmentId": len(segments) + 1, "startTime": start, "endTime": None, "duration": None}
            )
            shift.segments = segments
            if shift_type:
                shift.shift_type = shift_type
            self._refresh(shift, moment)
            await self.db.commit()
            logger.info("Segment %d opened on %s at %s", len(segments), shift.shift_id, start)
            return ShiftOutcome(shift, "New segment started")

    async def stop(
        self,
        employee_id: str | None,
        shift_date: str | None,
        *,
        end_time: str | None = None,
    ) -> ShiftOutcome:
        """Clock out: close the open segment."""
        _require(employeeId=employee_id, shiftDate=shift_date)
        shift_date = normalize_date(shift_date)
        end_time = _time_or_error(end_time, "endTime")

        async with self.lock.hold():
            moment = now_utc()
            shift = await self._find_or_404(employee_id, shift_date)
            segments = list(shift.segments or [])
            if not has_open_segment(segments):
                raise ShiftStateError("No active segment to stop")
            end = end_time or current_time_in(shift.timezone, moment)
            if end_time:
                _check_end(len(segments), segments[-1]["startTime"], end_time)
            segments[-1] = close_segment(segments[-1], end)
            shift.segments = segments
            self._refresh(shift, moment)
            await self.db.commit()
            logger.info("Segment %d closed on %s at %s", len(segments), shift.shift_id, end)
            return ShiftOutcome(shift, "Shift segment stopped")

    async def complete(
        self,
        employee_id: str | None,
        shift_date: str | None,
        *,
        end_time: str | None = None,
    ) -> ShiftOutcome:
        """Close any open segment and finalize the shift."""
        _require(employeeId=employee_id, shiftDate=shift_date)
        shift_date = normalize_date(shift_date)
        end_time = _time_or_error(end_time, "endTime")

        async with self.lock.hold():
            moment = now_utc()
            shift = await self._find_or_404(employee_id, shift_date)
            segments = list(shift.segments or [])
            if not segments:
                raise ShiftStateError("Cannot complete a shift with no segments")
            if has_open_segment(segments):
                if end_time:
                    _check_end(len(segments), segments[-1]["startTime"], end_time)
                segments[-1] = close_segment(
                    segments[-1], end_time or current_time_in(shift.timezone, moment)
                )
                shift.segments = segments
            shift.finalized = True
            self._refresh(shift, moment)
            await self.db.commit()
            logger.info("Shift %s completed (%.2f h)", shift.shift_id, shift.total_duration)
            return ShiftOutcome(shift, "Shift completed successfully")

    async def upsert(
        self,
        employee_id: str | None,
        employee_name: str | None,
        shift_date: str | None,
        segments: Sequence[Any],
        *,
        shift_type: str | None = None,
        first_start_time: str | None = None,
        last_end_time: str | None = None,
        timezone: str | None = None,
    ) -> ShiftOutcome:
        """Store a whole day's schedule, creating or replacing the shift."""
        _require(employeeId=employee_id, employeeName=employee_name, shiftDate=shift_date)
        shift_date = normalize_date(shift_date)
        normalized = normalize_segments(segments)

        closed = [seg for seg in normalized if seg["endTime"]]
        expected_first = normalized[0]["startTime"] if normalized else None
        expected_last = closed[-1]["endTime"] if closed else None
        if first_start_time and first_start_time != expected_first:
            raise ValidationError(
                f"firstStartTime {first_start_time} does not match the first segment ({expected_first})"
            )
        if last_end_time and last_end_time != expected_last:
            raise ValidationError(
                f"lastEndTime {last_end_time} does not match the segments ({expected_last})"
            )

        async with self.lock.hold():
            moment = now_utc()
            shift = await self.repo.find(employee_id, shift_date)
            if shift is None:
                shift = Shift(
                    shift_id=new_shift_id(),
                    employee_id=employee_id,
                    employee_name=employee_name,
                    shift_date=shift_date,
                    shift_type=shift_type or DEFAULT_SHIFT_TYPE,
                    segments=normalized,
                    initial_segments=[dict(seg) for seg in normalized],
                    status=ShiftStatus.DRAFT.value,
                    timezone=resolve_timezone(timezone),
                    finalized=False,
                    updated=False,
                )
                self.repo.add(shift)
                message = "Shift created successfully"
            else:
                if normalized != (shift.segments or []):
                    shift.updated = True
                shift.segments = normalized
                shift.employee_name = employee_name
                if shift_type:
                    shift.shift_type = shift_type
                if has_open_segment(normalized):
                    shift.finalized = False
                message = "Shift updated successfully"
            self._refresh(shift, moment)
            await self.db.commit()
            logger.info("%s: %s with %d segment(s)", message, shift.shift_id, len(normalized))
            return ShiftOutcome(shift, message)

    async def override_status(self, shift_id: str, status: str) -> ShiftOutcome:
        """Administrator override of the stored status.

        COMPLETED finalizes the shift; any other value clears the flag and
        will be re-derived on the next read.
        """
        new_status = ShiftStatus.parse(status)
        if new_status is None:
            raise ValidationError(
                f"Invalid status '{status}'. Use one of: {', '.join(s.value for s in ShiftStatus)}"
            )
        async with self.lock.hold():
            shift = await self._get_or_404(shift_id)
            if new_status is ShiftStatus.COMPLETED and has_open_segment(shift.segments or []):
                raise ShiftStateError("Close the open segment before completing the shift")
            old = shift.status
            shift.status = new_status.value
            shift.finalized = new_status is ShiftStatus.COMPLETED
            await self.db.commit()
            logger.info("Status of %s overridden: %s -> %s", shift_id, old, new_status.value)
            return ShiftOutcome(shift, f"Status updated from {old} to {new_status.value}")

    async def cleanup_duplicates(self) -> list[str]:
        """Delete later rows of any duplicated (employee, date) pair."""
        async with self.lock.hold():
            extra = await self.repo.duplicates()
            removed = [shift.shift_id for shift in extra]
            for shift in extra:
                await self.repo.delete(shift)
            await self.db.commit()
        if removed:
            logger.warning("Removed %d duplicate shift(s): %s", len(removed), ", ".join(removed))
        return removed

    async def sweep(self) -> tuple[int, list[StatusCorrection]]:
        """Re-resolve every unsettled shift and persist the changes."""
        async with self.lock.hold():
            moment = now_utc()
            shifts = await self.repo.unsettled()
            corrections = []
            for shift in shifts:
                new = self.resolve(shift, moment).value
                if new != shift.status:
                    corrections.append(StatusCorrection(shift, shift.status, new))
                    shift.status = new
            await self.db.commit()
        logger.info("Status sweep checked %d shift(s), updated %d", len(shifts), len(corrections))
        return len(shifts), corrections

    # ── reads ───────────────────────────────────────────────────────
    async def current(
        self,
        employee_id: str | None,
        shift_date: str | None = None,
        *,
        timezone: str | None = None,
    ) -> ShiftOutcome:
        _require(employeeId=employee_id)
        moment = now_utc()
        if shift_date:
            shift_date = normalize_date(shift_date)
        else:
            shift_date = current_date_in(resolve_timezone(timezone), moment)
        shift = await self.repo.find(employee_id, shift_date)
        if shift is None:
            return ShiftOutcome(None, "No shift found for this date")
        await self.reconcile([shift], moment)
        return ShiftOutcome(shift, "Shift found")

    async def history(
        self,
        *,
        employee_id: str | None = None,
        start_date: str | None = None,
        end_date: str | None = None,
        period: str | None = None,
        status: str | None = None,
        timezone: str | None = None,
    ) -> list[Shift]:
        """Shift history, newest first, with engine-computed statuses."""
        moment = now_utc()
        wanted = None
        if status:
            wanted = ShiftStatus.parse(status)
            if wanted is None:
                raise ValidationError(f"Invalid status filter '{status}'")

        if period:
            try:
                preset = Period(period)
            except ValueError:
                raise ValidationError(
                    f"Unknown period '{period}'. Use one of: {', '.join(p.value for p in Period)}"
                ) from None
            today = date.fromisoformat(current_date_in(resolve_timezone(timezone), moment))
            bounds = period_bounds(preset, today, start_date, end_date)
            start, end = bounds if bounds else (None, None)
        else:
            start = date.fromisoformat(normalize_date(start_date)) if start_date else None
            end = date.fromisoformat(normalize_date(end_date)) if end_date else None
        if start and end and start > end:
            raise ValidationError("startDate must not be after endDate")

        shifts = await self.repo.search(employee_id, start, end)
        await self.reconcile(shifts, moment)
        if wanted is not None:
            shifts = [shift for shift in shifts if shift.status == wanted.value]
        return shifts

    async def sync(self, shift_id: str) -> StatusCorrection:
        """Recompute and persist one shift's status."""
        async with self.lock.hold():
            moment = now_utc()
            shift = await self._get_or_404(shift_id)
            old = self._refresh(shift, moment)
            await self.db.commit()
        if old != shift.status:
            logger.info("Synced %s: %s -> %s", shift_id, old, shift.status)
        return StatusCorrection(shift, old, shift.status)

    # ── helpers ─────────────────────────────────────────────────────
    async def get(self, shift_id: str) -> Shift:
        return await self._get_or_404(shift_id)

    async def _find_or_404(self, employee_id: str, shift_date: str) -> Shift:
        shift = await self.repo.find(employee_id, shift_date)
        if shift is None:
            raise NotFoundError(f"No shift found for {employee_id} on {shift_date}")
        return shift

    async def _get_or_404(self, shift_id: str) -> Shift:
        shift = await self.repo.get(shift_id)
        if shift is None:
            raise NotFoundError(f"Shift '{shift_id}' not found")
        return shift
