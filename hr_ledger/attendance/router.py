"""Attendance router — punches, daily status, records, shifts, holidays,
day close and period locks.

All endpoints require authentication.  Punch endpoints are rate limited per
client; configuration endpoints need ``attendance:configure``.
"""


import uuid
from datetime import date, datetime
from typing import Optional

from fastapi import APIRouter, Depends, Query, Request
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from hr_ledger.attendance.day_close import run_day_close
from hr_ledger.attendance.schemas import (
    AttendanceDayOut,
    AttendanceRecordOut,
    DayCloseRequest,
    DayCloseResult,
    HolidayCreate,
    HolidayOut,
    LockRequest,
    LockResult,
    PunchRequest,
    ShiftCreate,
    ShiftOut,
    ShiftUpdate,
)
from hr_ledger.attendance.service import AttendanceService
from hr_ledger.auth.dependencies import get_current_actor, require_permission
from hr_ledger.auth.guards import ensure_self_or_permission
from hr_ledger.auth.schemas import Actor
from hr_ledger.common.concurrency import run_ledger_write
from hr_ledger.common.constants import MAX_DATE_RANGE_DAYS
from hr_ledger.common.exceptions import ValidationException
from hr_ledger.common.pagination import PaginationParams
from hr_ledger.common.rate_limit import PUNCH_RATE_LIMIT, limiter
from hr_ledger.core.service import EmployeeService
from hr_ledger.database import get_db, get_session_factory

router = APIRouter(prefix="", tags=["attendance"])


def _punch_target(actor: Actor, body: PunchRequest) -> tuple[uuid.UUID, Optional[datetime]]:
    """Self-service punches use server time; on-behalf punches may backfill."""
    employee_id = body.employee_id or actor.employee_id
    timestamp = body.timestamp if actor.can("attendance:act_on_behalf") else None
    return employee_id, timestamp


# ── POST /check-in ──────────────────────────────────────────────────

@router.post("/check-in", response_model=AttendanceRecordOut, status_code=201)
@limiter.limit(PUNCH_RATE_LIMIT)
async def check_in(
    request: Request,
    body: PunchRequest,
    actor: Actor = Depends(get_current_actor),
    session_factory: async_sessionmaker = Depends(get_session_factory),
):
    """Record today's check-in."""
    employee_id, timestamp = _punch_target(actor, body)

    async def _check_in(db: AsyncSession) -> AttendanceRecordOut:
        record = await AttendanceService.record_check_in(
            db, actor, employee_id, timestamp, body.location,
        )
        return AttendanceRecordOut.model_validate(record)

    return await run_ledger_write(session_factory, _check_in, label="check-in")


# ── POST /check-out ─────────────────────────────────────────────────

@router.post("/check-out", response_model=AttendanceRecordOut)
@limiter.limit(PUNCH_RATE_LIMIT)
async def check_out(
    request: Request,
    body: PunchRequest,
    actor: Actor = Depends(get_current_actor),
    session_factory: async_sessionmaker = Depends(get_session_factory),
):
    """Close today's check-in (or last night's, for overnight shifts)."""
    employee_id, timestamp = _punch_target(actor, body)

    async def _check_out(db: AsyncSession) -> AttendanceRecordOut:
        record = await AttendanceService.record_check_out(
            db, actor, employee_id, timestamp, body.location,
        )
        return AttendanceRecordOut.model_validate(record)

    return await run_ledger_write(session_factory, _check_out, label="check-out")


# ── GET /status/{day} ───────────────────────────────────────────────

@router.get("/status/{day}", response_model=AttendanceDayOut)
async def daily_status(
    day: date,
    employee_id: Optional[uuid.UUID] = Query(None),
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db),
):
    """Derived status for one day; nothing is written."""
    target = employee_id or actor.employee_id
    ensure_self_or_permission(actor, target, "attendance:read_all")
    await EmployeeService.get_employee(db, target, actor.company_id, active_only=False)
    return await AttendanceService.compute_daily_status(db, target, day)


# ── GET /records ────────────────────────────────────────────────────

@router.get("/records")
async def list_records(
    from_date: date = Query(...),
    to_date: date = Query(...),
    employee_id: Optional[uuid.UUID] = Query(None),
    pagination: PaginationParams = Depends(),
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db),
):
    if from_date > to_date:
        raise ValidationException({"from_date": ["from_date must be on or before to_date."]})
    if (to_date - from_date).days > MAX_DATE_RANGE_DAYS:
        raise ValidationException(
            {"to_date": [f"Date range cannot exceed {MAX_DATE_RANGE_DAYS} days."]}
        )
    return await AttendanceService.list_records(
        db, actor, employee_id or actor.employee_id, from_date, to_date, pagination,
    )


@router.get("/records/{record_id}", response_model=AttendanceRecordOut)
async def get_record(
    record_id: uuid.UUID,
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db),
):
    return await AttendanceService.get_record(db, actor, record_id)


# ── Shifts ──────────────────────────────────────────────────────────

@router.get("/shifts", response_model=list[ShiftOut])
async def list_shifts(
    include_inactive: bool = Query(False),
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db),
):
    return await AttendanceService.list_shifts(
        db, actor.company_id, include_inactive=include_inactive,
    )


@router.post("/shifts", response_model=ShiftOut, status_code=201)
async def create_shift(
    body: ShiftCreate,
    actor: Actor = Depends(require_permission("attendance:configure")),
    session_factory: async_sessionmaker = Depends(get_session_factory),
):
    async def _create(db: AsyncSession) -> ShiftOut:
        return ShiftOut.model_validate(await AttendanceService.create_shift(db, actor, body))

    return await run_ledger_write(session_factory, _create, label="create shift")


@router.patch("/shifts/{shift_id}", response_model=ShiftOut)
async def update_shift(
    shift_id: uuid.UUID,
    body: ShiftUpdate,
    actor: Actor = Depends(require_permission("attendance:configure")),
    session_factory: async_sessionmaker = Depends(get_session_factory),
):
    async def _update(db: AsyncSession) -> ShiftOut:
        return ShiftOut.model_validate(
            await AttendanceService.update_shift(db, actor, shift_id, body)
        )

    return await run_ledger_write(session_factory, _update, label="update shift")


# ── Holidays ────────────────────────────────────────────────────────

@router.get("/holidays", response_model=list[HolidayOut])
async def list_holidays(
    year: Optional[int] = Query(None, ge=2000, le=2100),
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db),
):
    return await AttendanceService.list_holidays(db, actor.company_id, year=year)


@router.post("/holidays", response_model=HolidayOut, status_code=201)
async def create_holiday(
    body: HolidayCreate,
    actor: Actor = Depends(require_permission("attendance:configure")),
    session_factory: async_sessionmaker = Depends(get_session_factory),
):
    async def _create(db: AsyncSession) -> HolidayOut:
        return HolidayOut.model_validate(await AttendanceService.create_holiday(db, actor, body))

    return await run_ledger_write(session_factory, _create, label="create holiday")


# ── Day close / lock ────────────────────────────────────────────────

@router.post("/day-close", response_model=DayCloseResult)
async def day_close(
    body: DayCloseRequest,
    actor: Actor = Depends(require_permission("attendance:configure")),
    session_factory: async_sessionmaker = Depends(get_session_factory),
):
    """Settle every employee-day of the company for one elapsed date."""
    return await run_day_close(session_factory, actor.company_id, body.business_date)


@router.post("/lock", response_model=LockResult)
async def lock_records(
    body: LockRequest,
    actor: Actor = Depends(require_permission("attendance:lock")),
    session_factory: async_sessionmaker = Depends(get_session_factory),
):
    async def _lock(db: AsyncSession) -> LockResult:
        locked = await AttendanceService.lock_records(
            db, actor, body.from_date, body.to_date, employee_id=body.employee_id,
        )
        return LockResult(locked=locked)

    return await run_ledger_write(session_factory, _lock, label="lock records")
