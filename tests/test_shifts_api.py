"""Tests for the shift endpoints: clock in/out, reads, corrections and admin tools."""

import asyncio

import pytest
from httpx import AsyncClient
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from shifttrack.core.config import settings
from shifttrack.core.locks import LocalShiftLock, get_shift_lock
from shifttrack.core.timeutils import now_utc
from shifttrack.main import app
from shifttrack.models.shift import Shift
from shifttrack.services.shifts import ShiftService

API = "/api/v1/shifts"
DAY = "2025-01-15"


def start_body(**overrides):
    body = {
        "employeeId": "EMP001",
        "employeeName": "Alice Smith",
        "shiftDate": DAY,
        "clientTimezone": "UTC",
    }
    body.update(overrides)
    return body


def stop_body(**overrides):
    body = {"employeeId": "EMP001", "shiftDate": DAY, "clientTimezone": "UTC"}
    body.update(overrides)
    return body


async def make_shift(db: AsyncSession, **fields) -> Shift:
    segments = fields.pop("segments", [])
    shift = Shift(
        shift_id=fields.pop("shift_id", "SHTEST0000001"),
        employee_id=fields.pop("employee_id", "EMP001"),
        employee_name=fields.pop("employee_name", "Alice Smith"),
        shift_date=fields.pop("shift_date", DAY),
        shift_type="Regular",
        segments=segments,
        first_start_time=segments[0]["startTime"] if segments else None,
        last_end_time=fields.pop("last_end_time", None),
        total_duration=fields.pop("total_duration", 0.0),
        status=fields.pop("status", "ACTIVE"),
        timezone=fields.pop("timezone", "UTC"),
        finalized=fields.pop("finalized", False),
        updated=False,
    )
    db.add(shift)
    await db.commit()
    return shift


async def stored(db: AsyncSession, shift_id: str) -> Shift:
    db.expire_all()
    result = await db.execute(select(Shift).where(Shift.shift_id == shift_id))
    return result.scalar_one()


# ── Clock in / out ──────────────────────────────────────────────────
@pytest.mark.asyncio
async def test_start_creates_active_shift(async_client: AsyncClient, clock):
    clock.set("09:00")
    resp = await async_client.post(f"{API}/start", json=start_body())
    assert resp.status_code == 200
    body = resp.json()
    assert body["success"] is True
    assert body["message"] == "Shift started successfully"
    data = body["data"]
    assert data["shiftId"].startswith("SH")
    assert data["status"] == "ACTIVE"
    assert data["numberOfSegments"] == 1
    assert data["segments"][0] == {
        "segmentId": 1,
        "startTime": "09:00",
        "endTime": None,
        "duration": None,
        "startTimeFormatted": "09:00",
        "endTimeFormatted": None,
    }
    assert data["firstStartTime"] == "09:00"
    assert data["lastEndTime"] is None
    assert data["recordedTimezone"] == "UTC"


@pytest.mark.asyncio
async def test_start_twice_reports_already_active(async_client: AsyncClient, db_session, clock):
    clock.set("09:00")
    await async_client.post(f"{API}/start", json=start_body())
    clock.set("09:05")
    resp = await async_client.post(f"{API}/start", json=start_body())
    assert resp.status_code == 200
    assert resp.json()["message"] == "Your shift is already active"
    assert resp.json()["data"]["numberOfSegments"] == 1

    rows = (await db_session.execute(select(Shift))).scalars().all()
    assert len(rows) == 1


@pytest.mark.asyncio
async def test_full_day_with_break(async_client: AsyncClient, clock):
    clock.set("09:00")
    await async_client.post(f"{API}/start", json=start_body())

    clock.set("12:00")
    resp = await async_client.post(f"{API}/stop", json=stop_body())
    data = resp.json()["data"]
    assert data["status"] == "ON BREAK"
    assert data["totalDuration"] == 3.0
    assert data["lastEndTime"] == "12:00"

    clock.set("12:45")
    resp = await async_client.post(f"{API}/start", json=start_body())
    assert resp.json()["message"] == "New segment started"
    data = resp.json()["data"]
    assert data["status"] == "ACTIVE"
    assert data["numberOfSegments"] == 2

    clock.set("17:15")
    resp = await async_client.post(f"{API}/stop", json=stop_body())
    data = resp.json()["data"]
    assert data["totalDuration"] == 7.5
    assert [s["duration"] for s in data["segments"]] == [3.0, 4.5]
    assert data["firstStartTime"] == "09:00"
    assert data["lastEndTime"] == "17:15"


@pytest.mark.asyncio
async def test_explicit_times_are_used(async_client: AsyncClient, clock):
    clock.set("18:00")
    await async_client.post(f"{API}/start", json=start_body(startTime="8:30"))
    resp = await async_client.post(f"{API}/stop", json=stop_body(endTime="16:45"))
    data = resp.json()["data"]
    assert data["segments"][0]["startTime"] == "08:30"
    assert data["segments"][0]["endTime"] == "16:45"
    assert data["totalDuration"] == 8.25


@pytest.mark.asyncio
async def test_stop_before_segment_start_rejected(async_client: AsyncClient, db_session, clock):
    clock.set("14:00")
    await async_client.post(f"{API}/start", json=start_body(startTime="13:00"))
    resp = await async_client.post(f"{API}/stop", json=stop_body(endTime="12:00"))
    assert resp.status_code == 400
    assert "before it started at 13:00" in resp.json()["detail"]

    resp = await async_client.post(f"{API}/complete", json=stop_body(endTime="12:00"))
    assert resp.status_code == 400

    shifts = (await db_session.execute(select(Shift))).scalars().all()
    assert shifts[0].segments[0]["endTime"] is None


@pytest.mark.asyncio
async def test_overnight_stop_is_allowed(async_client: AsyncClient, clock):
    clock.set("23:00")
    await async_client.post(f"{API}/start", json=start_body(startTime="22:00"))
    resp = await async_client.post(f"{API}/stop", json=stop_body(endTime="02:00"))
    assert resp.status_code == 200
    assert resp.json()["data"]["totalDuration"] == 4.0


@pytest.mark.asyncio
async def test_new_segment_cannot_start_before_previous_end(async_client: AsyncClient, clock):
    clock.set("12:00")
    await async_client.post(f"{API}/start", json=start_body(startTime="09:00"))
    await async_client.post(f"{API}/stop", json=stop_body(endTime="12:00"))
    resp = await async_client.post(f"{API}/start", json=start_body(startTime="11:00"))
    assert resp.status_code == 400
    assert "before the previous segment ended" in resp.json()["detail"]


@pytest.mark.asyncio
async def test_complete_finalizes_and_blocks_restart(async_client: AsyncClient, clock):
    clock.set("09:00")
    await async_client.post(f"{API}/start", json=start_body())
    clock.set("11:00")
    resp = await async_client.post(f"{API}/complete", json=stop_body())
    assert resp.status_code == 200
    data = resp.json()["data"]
    assert data["status"] == "COMPLETED"
    assert data["finalized"] is True
    assert data["segments"][0]["endTime"] == "11:00"
    assert data["totalDuration"] == 2.0

    resp = await async_client.post(f"{API}/start", json=start_body())
    assert resp.status_code == 409
    assert "already completed" in resp.json()["detail"]
    assert resp.json()["success"] is False


@pytest.mark.asyncio
async def test_stop_without_shift_is_not_found(async_client: AsyncClient, clock):
    resp = await async_client.post(f"{API}/stop", json=stop_body())
    assert resp.status_code == 404
    assert "No shift found" in resp.json()["detail"]


@pytest.mark.asyncio
async def test_stop_without_open_segment_conflicts(async_client: AsyncClient, clock):
    clock.set("09:00")
    await async_client.post(f"{API}/start", json=start_body())
    await async_client.post(f"{API}/stop", json=stop_body())
    resp = await async_client.post(f"{API}/stop", json=stop_body())
    assert resp.status_code == 409
    assert resp.json()["detail"] == "No active segment to stop"


@pytest.mark.asyncio
async def test_complete_without_segments_conflicts(async_client: AsyncClient, db_session, clock):
    await make_shift(db_session, segments=[], status="DRAFT")
    resp = await async_client.post(f"{API}/complete", json=stop_body())
    assert resp.status_code == 409


@pytest.mark.asyncio
async def test_missing_shift_date_is_validation_error(async_client: AsyncClient, clock):
    resp = await async_client.post(f"{API}/start", json=start_body(shiftDate=None))
    assert resp.status_code == 400
    assert resp.json()["detail"] == "Missing required fields: shiftDate"


@pytest.mark.asyncio
async def test_bad_date_is_validation_error(async_client: AsyncClient, clock):
    resp = await async_client.post(f"{API}/start", json=start_body(shiftDate="15/01/2025"))
    assert resp.status_code == 400


@pytest.mark.asyncio
async def test_malformed_start_time_rejected(async_client: AsyncClient, clock):
    resp = await async_client.post(f"{API}/start", json=start_body(startTime="9am"))
    assert resp.status_code == 422


@pytest.mark.asyncio
async def test_concurrent_clock_ins_create_one_shift(async_client: AsyncClient, db_session, clock):
    clock.set("09:00")
    responses = await asyncio.gather(
        *(async_client.post(f"{API}/start", json=start_body()) for _ in range(5))
    )
    assert all(r.status_code == 200 for r in responses)
    messages = sorted(r.json()["message"] for r in responses)
    assert messages.count("Shift started successfully") == 1
    assert messages.count("Your shift is already active") == 4

    rows = (await db_session.execute(select(Shift))).scalars().all()
    assert len(rows) == 1


@pytest.mark.asyncio
async def test_lock_timeout_returns_503(async_client: AsyncClient, monkeypatch, clock):
    busy = LocalShiftLock()
    monkeypatch.setattr(settings, "SHIFT_LOCK_TIMEOUT_SECONDS", 0.05)
    app.dependency_overrides[get_shift_lock] = lambda: busy
    try:
        async with busy.hold(timeout=1):
            resp = await async_client.post(f"{API}/start", json=start_body())
    finally:
        app.dependency_overrides.pop(get_shift_lock, None)
    assert resp.status_code == 503
    assert resp.headers["Retry-After"] == "1"
    assert "retry" in resp.json()["detail"].lower()


# ── Reads ───────────────────────────────────────────────────────────
@pytest.mark.asyncio
async def test_current_shift_none(async_client: AsyncClient, clock):
    resp = await async_client.get(
        f"{API}/current", params={"employeeId": "EMP001", "shiftDate": DAY}
    )
    assert resp.status_code == 200
    assert resp.json()["success"] is True
    assert resp.json()["data"] is None


@pytest.mark.asyncio
async def test_current_shift_corrects_and_persists_status(
    async_client: AsyncClient, db_session, clock
):
    await make_shift(
        db_session,
        segments=[{"segmentId": 1, "startTime": "09:00", "endTime": "12:00", "duration": 3.0}],
        status="ACTIVE",
    )
    clock.set("15:00")
    resp = await async_client.get(
        f"{API}/current", params={"employeeId": "EMP001", "clientTimezone": "UTC"}
    )
    assert resp.json()["data"]["status"] == "COMPLETED"
    assert (await stored(db_session, "SHTEST0000001")).status == "COMPLETED"


@pytest.mark.asyncio
async def test_current_shift_keeps_break_within_grace(async_client: AsyncClient, db_session, clock):
    await make_shift(
        db_session,
        segments=[{"segmentId": 1, "startTime": "09:00", "endTime": "12:00", "duration": 3.0}],
        status="ACTIVE",
    )
    clock.set("12:20")
    resp = await async_client.get(f"{API}/current", params={"employeeId": "EMP001"})
    assert resp.json()["data"]["status"] == "ON BREAK"


@pytest.mark.asyncio
async def test_display_times_follow_client_timezone(async_client: AsyncClient, clock):
    clock.set("09:00")
    await async_client.post(f"{API}/start", json=start_body())
    resp = await async_client.get(
        f"{API}/current",
        params={"employeeId": "EMP001", "shiftDate": DAY, "clientTimezone": "Asia/Kolkata"},
    )
    data = resp.json()["data"]
    assert data["timezone"] == "Asia/Kolkata"
    assert data["firstStartTime"] == "09:00"
    assert data["firstStartTimeFormatted"] == "14:30"


@pytest.mark.asyncio
async def test_get_shifts_filters(async_client: AsyncClient, db_session, clock):
    closed = [{"segmentId": 1, "startTime": "09:00", "endTime": "17:00", "duration": 8.0}]
    await make_shift(db_session, shift_id="SH1", shift_date="2025-01-13", segments=closed, status="COMPLETED")
    await make_shift(db_session, shift_id="SH2", shift_date="2025-01-14", segments=closed, status="ACTIVE")
    await make_shift(
        db_session,
        shift_id="SH3",
        employee_id="EMP002",
        employee_name="Bob",
        segments=[{"segmentId": 1, "startTime": "09:00", "endTime": None, "duration": None}],
    )
    clock.set("10:00")

    resp = await async_client.get(API)
    body = resp.json()
    assert body["count"] == 3
    # Newest first
    assert [s["shiftId"] for s in body["data"]] == ["SH3", "SH2", "SH1"]
    # Yesterday's closed shift is corrected to COMPLETED on read
    assert body["data"][1]["status"] == "COMPLETED"
    assert (await stored(db_session, "SH2")).status == "COMPLETED"

    resp = await async_client.get(API, params={"employeeId": "EMP001"})
    assert {s["shiftId"] for s in resp.json()["data"]} == {"SH1", "SH2"}

    resp = await async_client.get(API, params={"startDate": "2025-01-14", "endDate": DAY})
    assert {s["shiftId"] for s in resp.json()["data"]} == {"SH2", "SH3"}

    resp = await async_client.get(API, params={"status": "ACTIVE"})
    assert [s["shiftId"] for s in resp.json()["data"]] == ["SH3"]

    resp = await async_client.get(API, params={"period": "Today", "clientTimezone": "UTC"})
    assert [s["shiftId"] for s in resp.json()["data"]] == ["SH3"]


@pytest.mark.asyncio
async def test_get_shifts_rejects_bad_filters(async_client: AsyncClient, clock):
    assert (await async_client.get(API, params={"period": "Fortnight"})).status_code == 400
    assert (await async_client.get(API, params={"status": "PAUSED"})).status_code == 400
    resp = await async_client.get(API, params={"startDate": "2025-02-01", "endDate": "2025-01-01"})
    assert resp.status_code == 400


@pytest.mark.asyncio
async def test_staff_only_see_own_shifts(async_client: AsyncClient, db_session, clock, as_staff):
    await make_shift(db_session, shift_id="SH1", segments=[])
    await make_shift(db_session, shift_id="SH2", employee_id="EMP002", employee_name="Bob", segments=[])

    resp = await async_client.get(API)
    assert [s["shiftId"] for s in resp.json()["data"]] == ["SH1"]

    resp = await async_client.get(API, params={"employeeId": "EMP002"})
    assert resp.status_code == 403


@pytest.mark.asyncio
async def test_staff_clock_in_defaults_to_self(async_client: AsyncClient, clock, as_staff):
    clock.set("09:00")
    resp = await async_client.post(f"{API}/start", json={"shiftDate": DAY})
    data = resp.json()["data"]
    assert data["employeeId"] == "EMP001"
    assert data["employeeName"] == "Alice Smith"

    resp = await async_client.post(f"{API}/start", json=start_body(employeeId="EMP002"))
    assert resp.status_code == 403


@pytest.mark.asyncio
async def test_sync_reports_old_and_new_status(async_client: AsyncClient, db_session, clock):
    await make_shift(
        db_session,
        segments=[{"segmentId": 1, "startTime": "09:00", "endTime": None, "duration": None}],
        status="OFFLINE",
    )
    clock.set("10:00")
    resp = await async_client.post(f"{API}/SHTEST0000001/sync")
    assert resp.status_code == 200
    assert resp.json()["data"] == {
        "shiftId": "SHTEST0000001",
        "oldStatus": "OFFLINE",
        "newStatus": "ACTIVE",
        "changed": True,
    }
    resp = await async_client.post(f"{API}/SHTEST0000001/sync")
    assert resp.json()["data"]["changed"] is False


@pytest.mark.asyncio
async def test_sync_unknown_shift(async_client: AsyncClient, clock):
    resp = await async_client.post(f"{API}/SHNOPE/sync")
    assert resp.status_code == 404


# ── createCompleteShift ─────────────────────────────────────────────
def schedule(*segments, **overrides):
    body = {
        "employeeId": "EMP001",
        "employeeName": "Alice Smith",
        "shiftDate": DAY,
        "clientTimezone": "UTC",
        "segments": [{"startTime": s, "endTime": e} for s, e in segments],
    }
    body.update(overrides)
    return body


@pytest.mark.asyncio
async def test_upsert_creates_and_updates(async_client: AsyncClient, clock):
    clock.set("20:00")
    resp = await async_client.put(API, json=schedule(("09:00", "12:00"), ("13:00", "17:30")))
    assert resp.status_code == 200
    data = resp.json()["data"]
    assert resp.json()["message"] == "Shift created successfully"
    assert data["status"] == "COMPLETED"
    assert data["totalDuration"] == 7.5
    assert [s["segmentId"] for s in data["segments"]] == [1, 2]
    assert data["updated"] is False
    assert len(data["initialSegments"]) == 2

    resp = await async_client.put(API, json=schedule(("09:00", "12:00"), ("13:00", "18:00")))
    data = resp.json()["data"]
    assert resp.json()["message"] == "Shift updated successfully"
    assert data["updated"] is True
    assert data["totalDuration"] == 8.0
    assert data["initialSegments"][1]["endTime"] == "17:30"


@pytest.mark.asyncio
async def test_upsert_with_open_last_segment_is_active(async_client: AsyncClient, clock):
    clock.set("14:00")
    resp = await async_client.put(API, json=schedule(("09:00", "12:00"), ("13:00", None)))
    assert resp.json()["data"]["status"] == "ACTIVE"


@pytest.mark.asyncio
async def test_upsert_rejects_open_segment_in_the_middle(async_client: AsyncClient, clock):
    resp = await async_client.put(API, json=schedule(("09:00", None), ("13:00", "17:00")))
    assert resp.status_code == 400
    assert "not the last segment" in resp.json()["detail"]


@pytest.mark.asyncio
async def test_upsert_rejects_inconsistent_summary_times(async_client: AsyncClient, clock):
    resp = await async_client.put(
        API, json=schedule(("09:00", "12:00"), lastEndTime="17:00")
    )
    assert resp.status_code == 400
    assert "lastEndTime" in resp.json()["detail"]

    resp = await async_client.put(
        API, json=schedule(("09:00", "12:00"), firstStartTime="08:00")
    )
    assert resp.status_code == 400


@pytest.mark.asyncio
async def test_upsert_rejects_segment_ending_before_start(async_client: AsyncClient, clock):
    resp = await async_client.put(API, json=schedule(("13:00", "12:00")))
    assert resp.status_code == 400
    assert "Segment 1 cannot end at 12:00" in resp.json()["detail"]


@pytest.mark.asyncio
async def test_upsert_rejects_overlapping_segments(async_client: AsyncClient, clock):
    resp = await async_client.put(API, json=schedule(("09:00", "12:00"), ("11:00", "13:00")))
    assert resp.status_code == 400


# ── Admin tools ─────────────────────────────────────────────────────
@pytest.mark.asyncio
async def test_override_status(async_client: AsyncClient, db_session, clock):
    closed = [{"segmentId": 1, "startTime": "09:00", "endTime": "12:00", "duration": 3.0}]
    await make_shift(db_session, segments=closed, status="ON BREAK")
    clock.set("12:10")

    resp = await async_client.put(f"{API}/SHTEST0000001/status", json={"status": "COMPLETED"})
    assert resp.status_code == 200
    assert resp.json()["data"]["status"] == "COMPLETED"
    assert resp.json()["data"]["finalized"] is True

    # Finalized shifts stay completed on read, even inside the grace period.
    resp = await async_client.get(f"{API}/current", params={"employeeId": "EMP001"})
    assert resp.json()["data"]["status"] == "COMPLETED"

    resp = await async_client.put(f"{API}/SHTEST0000001/status", json={"status": "SLEEPING"})
    assert resp.status_code == 400


@pytest.mark.asyncio
async def test_override_completed_with_open_segment_conflicts(
    async_client: AsyncClient, db_session, clock
):
    await make_shift(
        db_session,
        segments=[{"segmentId": 1, "startTime": "09:00", "endTime": None, "duration": None}],
    )
    resp = await async_client.put(f"{API}/SHTEST0000001/status", json={"status": "COMPLETED"})
    assert resp.status_code == 409


@pytest.mark.asyncio
async def test_override_requires_admin(async_client: AsyncClient, db_session, clock, as_staff):
    await make_shift(db_session, segments=[])
    resp = await async_client.put(f"{API}/SHTEST0000001/status", json={"status": "COMPLETED"})
    assert resp.status_code == 403


@pytest.mark.asyncio
async def test_cleanup_duplicates_keeps_earliest(async_client: AsyncClient, db_session, clock):
    await make_shift(db_session, shift_id="SHFIRST", segments=[])
    await make_shift(db_session, shift_id="SHSECOND", segments=[])
    await make_shift(db_session, shift_id="SHOTHER", shift_date="2025-01-14", segments=[])

    resp = await async_client.post(f"{API}/cleanup-duplicates")
    assert resp.status_code == 200
    assert resp.json()["data"] == {"removed": 1, "removedShiftIds": ["SHSECOND"]}

    db_session.expire_all()
    remaining = (await db_session.execute(select(Shift.shift_id))).scalars().all()
    assert sorted(remaining) == ["SHFIRST", "SHOTHER"]


@pytest.mark.asyncio
async def test_status_sweep_completes_idle_shifts(async_client: AsyncClient, db_session, clock):
    closed = [{"segmentId": 1, "startTime": "09:00", "endTime": "12:00", "duration": 3.0}]
    await make_shift(db_session, shift_id="SHIDLE", segments=closed, status="ON BREAK")
    await make_shift(
        db_session,
        shift_id="SHBUSY",
        employee_id="EMP002",
        employee_name="Bob",
        segments=[{"segmentId": 1, "startTime": "09:00", "endTime": None, "duration": None}],
        status="ACTIVE",
    )
    clock.set("14:00")

    resp = await async_client.post(f"{API}/status-sweep")
    data = resp.json()["data"]
    assert data["checked"] == 2
    assert data["updated"] == 1
    assert data["changes"][0]["shiftId"] == "SHIDLE"
    assert data["changes"][0]["newStatus"] == "COMPLETED"
    assert (await stored(db_session, "SHIDLE")).status == "COMPLETED"


@pytest.mark.asyncio
async def test_system_status_counts_today(async_client: AsyncClient, db_session, clock):
    open_segment = [{"segmentId": 1, "startTime": "09:00", "endTime": None, "duration": None}]
    await make_shift(db_session, shift_id="SHTODAY", segments=open_segment, status="ACTIVE")
    await make_shift(db_session, shift_id="SHOLD", shift_date="2025-01-10", status="COMPLETED")
    clock.set("14:00")

    resp = await async_client.get("/api/v1/status")
    assert resp.status_code == 200
    data = resp.json()
    assert data["today_shifts"] == 1
    assert data["active_now"] == 1
    assert data["server_timezone"] == "America/New_York"
    assert data["server_time"] == "2025-01-15 09:00"


# ── Read corrections vs concurrent writers ──────────────────────────
@pytest.mark.asyncio
async def test_read_correction_rechecks_row_under_lock(db_session, other_db_session, clock):
    """A status correction computed from a stale read must not clobber a newer segment."""
    closed = [{"segmentId": 1, "startTime": "08:00", "endTime": "09:00", "duration": 1.0}]
    await make_shift(db_session, segments=closed, status="ACTIVE", last_end_time="09:00")
    lock = LocalShiftLock()
    reader = ShiftService(db_session, lock)
    writer = ShiftService(other_db_session, lock)
    clock.set("09:30")

    loaded = await reader.repo.find("EMP001", DAY)
    assert reader.resolve(loaded, now_utc()).value == "ON BREAK"

    await writer.start("EMP001", "Alice Smith", DAY, start_time="09:20")

    corrections = await reader.reconcile([loaded], now_utc())
    assert corrections == []
    assert loaded.status == "ACTIVE"
    assert len(loaded.segments) == 2

    row = await stored(db_session, "SHTEST0000001")
    assert row.status == "ACTIVE"
    assert row.segments[1]["endTime"] is None
