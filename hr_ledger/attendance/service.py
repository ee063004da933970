"""Attendance service layer — punches, daily status, shifts and holidays.

Business logic:
  - Check-in / check-out with one pair per employee per local date
  - Minutes and status derived by ``hr_ledger.attendance.rules`` and stored on
    the record; ``compute_daily_status`` returns the same derivation without
    writing anything
  - ``materialize_daily_status`` persists the derivation for days nobody
    punched (absent, holiday, on leave) and is shared by day close, the
    regularization workflow and the leave lifecycle
  - Locking periods for payroll
  - Shift and holiday configuration
"""

from __future__ import annotations

import logging
import uuid
from datetime import date, datetime, timedelta, timezone
from typing import Optional, Sequence
from zoneinfo import ZoneInfo

from sqlalchemy import or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from hr_ledger.attendance.models import AttendanceRecord, Holiday, Shift
from hr_ledger.attendance.rules import (
    DerivedDay,
    ShiftRules,
    as_utc,
    derive_day,
    local_date,
)
from hr_ledger.attendance.schemas import (
    AttendanceDayOut,
    AttendanceRecordOut,
    HolidayCreate,
    Location,
    ShiftCreate,
    ShiftUpdate,
)
from hr_ledger.auth.guards import ensure_permission, ensure_self_or_permission
from hr_ledger.auth.schemas import Actor
from hr_ledger.common.audit import create_audit_entry
from hr_ledger.common.concurrency import hold_keys, ledger_key
from hr_ledger.common.constants import AttendanceSource, HolidayType, LeaveStatus
from hr_ledger.common.exceptions import (
    AlreadyCheckedIn,
    AlreadyCheckedOut,
    ConflictError,
    InvalidStateException,
    NoActiveCheckIn,
    NotFoundException,
    RecordLocked,
    ValidationException,
)
from hr_ledger.common.pagination import PaginatedResponse, PaginationParams, paginate
from hr_ledger.core.models import Employee
from hr_ledger.core.service import EmployeeService
from hr_ledger.leave.models import LeaveRequest

logger = logging.getLogger(__name__)

# Shift fields that feed the derivation; frozen once records reference the shift
_TIMING_FIELDS = (
    "start_time",
    "end_time",
    "break_minutes",
    "grace_minutes",
    "half_day_minutes",
    "full_day_minutes",
    "working_days",
)


def attendance_key(employee_id: uuid.UUID, day: date) -> str:
    return ledger_key("attendance", employee_id, day.isoformat())


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ═════════════════════════════════════════════════════════════════════
# AttendanceService
# ═════════════════════════════════════════════════════════════════════


class AttendanceService:
    """Async attendance operations: punch, derive, materialise, configure."""

    # ── Context helpers ─────────────────────────────────────────────

    @staticmethod
    def company_tz(employee: Employee) -> ZoneInfo:
        return ZoneInfo(employee.company.timezone)

    @staticmethod
    async def resolve_rules(db: AsyncSession, employee: Employee) -> ShiftRules:
        """Employee's shift, else the company default shift, else built-in defaults."""
        if employee.shift_id is not None:
            shift = employee.shift or await db.get(Shift, employee.shift_id)
            if shift is not None:
                return ShiftRules.from_shift(shift)

        result = await db.execute(
            select(Shift).where(
                Shift.company_id == employee.company_id,
                Shift.is_default.is_(True),
                Shift.is_active.is_(True),
            )
        )
        shift = result.scalars().first()
        return ShiftRules.from_shift(shift) if shift else ShiftRules.default()

    @staticmethod
    async def _rules_for_record(
        db: AsyncSession,
        record: Optional[AttendanceRecord],
        employee: Employee,
    ) -> ShiftRules:
        """A record keeps the shift it was created under."""
        if record is not None and record.shift_id is not None:
            shift = await db.get(Shift, record.shift_id)
            if shift is not None:
                return ShiftRules.from_shift(shift)
        return await AttendanceService.resolve_rules(db, employee)

    @staticmethod
    async def holiday_dates(
        db: AsyncSession,
        company_id: uuid.UUID,
        from_date: date,
        to_date: date,
    ) -> set[date]:
        """Company holidays in range; optional holidays are not days off."""
        result = await db.execute(
            select(Holiday.date).where(
                Holiday.company_id == company_id,
                Holiday.date >= from_date,
                Holiday.date <= to_date,
                Holiday.type != HolidayType.optional,
            )
        )
        return set(result.scalars().all())

    @staticmethod
    async def approved_leave_dates(
        db: AsyncSession,
        employee_id: uuid.UUID,
        from_date: date,
        to_date: date,
        tz: ZoneInfo,
    ) -> set[date]:
        """Working dates covered by approved leave.

        A leave cancelled after approval keeps covering the dates before the
        (local) day it was cancelled, so elapsed ON_LEAVE days never flip.
        """
        result = await db.execute(
            select(LeaveRequest).where(
                LeaveRequest.employee_id == employee_id,
                LeaveRequest.start_date <= to_date,
                LeaveRequest.end_date >= from_date,
                or_(
                    LeaveRequest.status == LeaveStatus.approved,
                    (LeaveRequest.status == LeaveStatus.cancelled)
                    & LeaveRequest.reviewed_at.is_not(None),
                ),
            )
        )
        covered: set[date] = set()
        for leave in result.scalars().all():
            cutoff = None
            if leave.status == LeaveStatus.cancelled and leave.cancelled_at is not None:
                cutoff = local_date(leave.cancelled_at, tz)
            for day in leave.working_dates:
                if from_date <= day <= to_date and (cutoff is None or day < cutoff):
                    covered.add(day)
        return covered

    @staticmethod
    async def _get_record(
        db: AsyncSession,
        employee_id: uuid.UUID,
        day: date,
        *,
        for_update: bool = False,
    ) -> Optional[AttendanceRecord]:
        query = select(AttendanceRecord).where(
            AttendanceRecord.employee_id == employee_id,
            AttendanceRecord.date == day,
        )
        if for_update:
            query = query.with_for_update().execution_options(populate_existing=True)
        result = await db.execute(query)
        return result.scalars().first()

    @staticmethod
    async def _derive(
        db: AsyncSession,
        employee: Employee,
        day: date,
        rules: ShiftRules,
        *,
        now: datetime,
        check_in: Optional[datetime],
        check_out: Optional[datetime],
    ) -> DerivedDay:
        tz = AttendanceService.company_tz(employee)
        holidays = await AttendanceService.holiday_dates(db, employee.company_id, day, day)
        leave = await AttendanceService.approved_leave_dates(db, employee.id, day, day, tz)
        return derive_day(
            day=day,
            rules=rules,
            tz=tz,
            now=now,
            check_in=as_utc(check_in) if check_in else None,
            check_out=as_utc(check_out) if check_out else None,
            is_holiday=day in holidays,
            on_leave=day in leave,
        )

    @staticmethod
    def _apply(record: AttendanceRecord, derived: DerivedDay, now: datetime) -> bool:
        """Copy derived values onto *record*; returns whether anything changed."""
        values = {
            "late_minutes": derived.late_minutes,
            "early_leaving_minutes": derived.early_leaving_minutes,
            "total_work_minutes": derived.total_work_minutes,
            "overtime_minutes": derived.overtime_minutes,
            "status": derived.status,
        }
        changed = False
        for field, value in values.items():
            if getattr(record, field) != value:
                setattr(record, field, value)
                changed = True
        if changed:
            record.updated_at = now
        return changed

    # ── Check in ────────────────────────────────────────────────────

    @staticmethod
    async def record_check_in(
        db: AsyncSession,
        actor: Actor,
        employee_id: uuid.UUID,
        timestamp: Optional[datetime] = None,
        location: Optional[Location] = None,
        *,
        now: Optional[datetime] = None,
    ) -> AttendanceRecord:
        """Record the day's check-in; the date is the local date of *timestamp*."""
        ensure_self_or_permission(
            actor, employee_id, "attendance:act_on_behalf",
            "You can only check in for yourself.",
        )
        employee = await EmployeeService.get_employee(db, employee_id, actor.company_id)
        tz = AttendanceService.company_tz(employee)
        current = as_utc(now) if now else _utcnow()
        ts = as_utc(timestamp) if timestamp else current
        day = local_date(ts, tz)

        await hold_keys(db, attendance_key(employee_id, day))
        record = await AttendanceService._get_record(db, employee_id, day, for_update=True)
        if record is not None:
            if record.is_locked:
                raise RecordLocked()
            if record.check_in_time is not None:
                raise AlreadyCheckedIn()

        rules = await AttendanceService._rules_for_record(db, record, employee)
        if record is None:
            record = AttendanceRecord(
                company_id=employee.company_id,
                employee_id=employee_id,
                date=day,
                shift_id=rules.shift_id,
                created_at=current,
            )
            db.add(record)
        elif record.shift_id is None:
            record.shift_id = rules.shift_id

        record.check_in_time = ts
        record.check_in_location = location.model_dump() if location else None
        record.source = AttendanceSource.check_in
        derived = await AttendanceService._derive(
            db, employee, day, rules,
            now=current, check_in=ts, check_out=record.check_out_time,
        )
        AttendanceService._apply(record, derived, current)
        record.updated_at = current
        await db.flush()

        await create_audit_entry(
            db,
            action="check_in",
            entity_type="attendance_record",
            entity_id=record.id,
            actor_id=actor.employee_id,
            new_values={"timestamp": ts.isoformat(), "status": record.status.value},
        )
        logger.info(
            "check-in recorded",
            extra={"employee_id": str(employee_id), "date": day.isoformat()},
        )
        return record

    # ── Check out ───────────────────────────────────────────────────

    @staticmethod
    async def record_check_out(
        db: AsyncSession,
        actor: Actor,
        employee_id: uuid.UUID,
        timestamp: Optional[datetime] = None,
        location: Optional[Location] = None,
        *,
        now: Optional[datetime] = None,
    ) -> AttendanceRecord:
        """Close the open pair; overnight shifts may close yesterday's record."""
        ensure_self_or_permission(
            actor, employee_id, "attendance:act_on_behalf",
            "You can only check out for yourself.",
        )
        employee = await EmployeeService.get_employee(db, employee_id, actor.company_id)
        tz = AttendanceService.company_tz(employee)
        current = as_utc(now) if now else _utcnow()
        ts = as_utc(timestamp) if timestamp else current
        day = local_date(ts, tz)
        previous_day = day - timedelta(days=1)

        await hold_keys(
            db,
            attendance_key(employee_id, day),
            attendance_key(employee_id, previous_day),
        )
        record = await AttendanceService._get_record(db, employee_id, day, for_update=True)
        if record is None or record.check_in_time is None:
            previous = await AttendanceService._get_record(
                db, employee_id, previous_day, for_update=True,
            )
            if (
                previous is not None
                and previous.check_in_time is not None
                and previous.check_out_time is None
            ):
                previous_rules = await AttendanceService._rules_for_record(db, previous, employee)
                if previous_rules.is_overnight:
                    record = previous

        if record is None or record.check_in_time is None:
            raise NoActiveCheckIn()
        if record.is_locked:
            raise RecordLocked()
        if record.check_out_time is not None:
            raise AlreadyCheckedOut()
        if ts < as_utc(record.check_in_time):
            raise ValidationException(
                {"timestamp": ["Check-out cannot be before check-in."]}
            )

        rules = await AttendanceService._rules_for_record(db, record, employee)
        record.check_out_time = ts
        record.check_out_location = location.model_dump() if location else None
        derived = await AttendanceService._derive(
            db, employee, record.date, rules,
            now=current, check_in=record.check_in_time, check_out=ts,
        )
        AttendanceService._apply(record, derived, current)
        record.updated_at = current
        await db.flush()

        await create_audit_entry(
            db,
            action="check_out",
            entity_type="attendance_record",
            entity_id=record.id,
            actor_id=actor.employee_id,
            new_values={
                "timestamp": ts.isoformat(),
                "status": record.status.value,
                "total_work_minutes": record.total_work_minutes,
                "overtime_minutes": record.overtime_minutes,
            },
        )
        logger.info(
            "check-out recorded",
            extra={"employee_id": str(employee_id), "date": record.date.isoformat()},
        )
        return record

    # ── Daily status ────────────────────────────────────────────────

    @staticmethod
    async def compute_daily_status(
        db: AsyncSession,
        employee_id: uuid.UUID,
        day: date,
        *,
        now: Optional[datetime] = None,
    ) -> AttendanceDayOut:
        """Derive the day's status from stored punches; writes nothing."""
        employee = await EmployeeService.get_employee(db, employee_id, active_only=False)
        record = await AttendanceService._get_record(db, employee_id, day)
        rules = await AttendanceService._rules_for_record(db, record, employee)
        tz = AttendanceService.company_tz(employee)
        holidays = await AttendanceService.holiday_dates(db, employee.company_id, day, day)
        leave = await AttendanceService.approved_leave_dates(db, employee_id, day, day, tz)

        check_in = record.check_in_time if record else None
        check_out = record.check_out_time if record else None
        derived = derive_day(
            day=day,
            rules=rules,
            tz=tz,
            now=as_utc(now) if now else _utcnow(),
            check_in=as_utc(check_in) if check_in else None,
            check_out=as_utc(check_out) if check_out else None,
            is_holiday=day in holidays,
            on_leave=day in leave,
        )
        return AttendanceDayOut(
            employee_id=employee_id,
            date=day,
            record_id=record.id if record else None,
            shift_id=record.shift_id if record and record.shift_id else rules.shift_id,
            check_in_time=check_in,
            check_out_time=check_out,
            late_minutes=derived.late_minutes,
            early_leaving_minutes=derived.early_leaving_minutes,
            total_work_minutes=derived.total_work_minutes,
            overtime_minutes=derived.overtime_minutes,
            status=derived.status,
            is_holiday=day in holidays,
            on_leave=day in leave,
            expected=derived.expected,
        )

    @staticmethod
    async def materialize_daily_status(
        db: AsyncSession,
        employee_id: uuid.UUID,
        day: date,
        *,
        now: Optional[datetime] = None,
        source: AttendanceSource = AttendanceSource.day_close,
        skip_locked: bool = False,
    ) -> Optional[AttendanceRecord]:
        """Persist the derived status for one employee-day.

        Creates a synthetic record when a status is expected and none exists,
        updates an existing one otherwise, and removes a punch-less record
        once no status is expected any more.  Locked records raise
        ``RecordLocked`` unless *skip_locked* is set.
        """
        current = as_utc(now) if now else _utcnow()
        employee = await EmployeeService.get_employee(db, employee_id, active_only=False)

        await hold_keys(db, attendance_key(employee_id, day))
        record = await AttendanceService._get_record(db, employee_id, day, for_update=True)
        if record is not None and record.is_locked:
            if skip_locked:
                return record
            raise RecordLocked()

        rules = await AttendanceService._rules_for_record(db, record, employee)
        derived = await AttendanceService._derive(
            db, employee, day, rules,
            now=current,
            check_in=record.check_in_time if record else None,
            check_out=record.check_out_time if record else None,
        )

        if derived.status is None:
            if record is not None and record.check_in_time is None and record.check_out_time is None:
                await db.delete(record)
                await db.flush()
                logger.info(
                    "synthetic record removed",
                    extra={"employee_id": str(employee_id), "date": day.isoformat()},
                )
                return None
            return record

        if record is None:
            record = AttendanceRecord(
                company_id=employee.company_id,
                employee_id=employee_id,
                date=day,
                shift_id=rules.shift_id,
                source=source,
                created_at=current,
                updated_at=current,
            )
            db.add(record)
            AttendanceService._apply(record, derived, current)
        elif AttendanceService._apply(record, derived, current) and record.check_in_time is None:
            record.source = source

        await db.flush()
        return record

    # ── Locking ─────────────────────────────────────────────────────

    @staticmethod
    async def lock_records(
        db: AsyncSession,
        actor: Actor,
        from_date: date,
        to_date: date,
        *,
        employee_id: Optional[uuid.UUID] = None,
    ) -> int:
        """Freeze records in range for payroll; returns how many were locked."""
        ensure_permission(actor, "attendance:lock")
        if from_date > to_date:
            raise ValidationException({"from_date": ["from_date must be on or before to_date."]})

        stmt = (
            update(AttendanceRecord)
            .where(
                AttendanceRecord.company_id == actor.company_id,
                AttendanceRecord.date >= from_date,
                AttendanceRecord.date <= to_date,
                AttendanceRecord.is_locked.is_(False),
            )
            .values(is_locked=True, locked_at=_utcnow(), locked_by=actor.employee_id)
            .execution_options(synchronize_session=False)
        )
        if employee_id is not None:
            stmt = stmt.where(AttendanceRecord.employee_id == employee_id)
        result = await db.execute(stmt)
        locked = result.rowcount or 0

        await create_audit_entry(
            db,
            action="lock",
            entity_type="attendance_period",
            entity_id=employee_id or actor.company_id,
            actor_id=actor.employee_id,
            new_values={
                "from_date": from_date.isoformat(),
                "to_date": to_date.isoformat(),
                "locked": locked,
            },
        )
        logger.info(
            "attendance locked",
            extra={"company_id": str(actor.company_id), "locked": locked},
        )
        return locked

    # ── Reads ───────────────────────────────────────────────────────

    @staticmethod
    async def get_record(
        db: AsyncSession,
        actor: Actor,
        record_id: uuid.UUID,
    ) -> AttendanceRecord:
        record = await db.get(AttendanceRecord, record_id)
        if record is None or record.company_id != actor.company_id:
            raise NotFoundException("AttendanceRecord", record_id)
        ensure_self_or_permission(actor, record.employee_id, "attendance:read_all")
        return record

    @staticmethod
    async def list_records(
        db: AsyncSession,
        actor: Actor,
        employee_id: uuid.UUID,
        from_date: date,
        to_date: date,
        params: PaginationParams,
    ) -> PaginatedResponse:
        ensure_self_or_permission(actor, employee_id, "attendance:read_all")
        await EmployeeService.get_employee(db, employee_id, actor.company_id, active_only=False)
        query = (
            select(AttendanceRecord)
            .where(
                AttendanceRecord.employee_id == employee_id,
                AttendanceRecord.date >= from_date,
                AttendanceRecord.date <= to_date,
            )
            .order_by(AttendanceRecord.date.asc())
        )
        return await paginate(db, query, params, transform=AttendanceRecordOut.model_validate)

    # ── Shifts ──────────────────────────────────────────────────────

    @staticmethod
    async def _get_shift(db: AsyncSession, company_id: uuid.UUID, shift_id: uuid.UUID) -> Shift:
        shift = await db.get(Shift, shift_id)
        if shift is None or shift.company_id != company_id:
            raise NotFoundException("Shift", shift_id)
        return shift

    @staticmethod
    async def _clear_default(db: AsyncSession, company_id: uuid.UUID) -> None:
        await db.execute(
            update(Shift)
            .where(Shift.company_id == company_id, Shift.is_default.is_(True))
            .values(is_default=False)
            .execution_options(synchronize_session="fetch")
        )

    @staticmethod
    async def create_shift(db: AsyncSession, actor: Actor, data: ShiftCreate) -> Shift:
        ensure_permission(actor, "attendance:configure")
        duplicate = await db.execute(
            select(Shift.id).where(Shift.company_id == actor.company_id, Shift.code == data.code)
        )
        if duplicate.first() is not None:
            raise ConflictError("code", data.code)

        if data.is_default:
            await AttendanceService._clear_default(db, actor.company_id)

        shift = Shift(company_id=actor.company_id, is_active=True, **data.model_dump())
        db.add(shift)
        await db.flush()

        await create_audit_entry(
            db,
            action="create",
            entity_type="shift",
            entity_id=shift.id,
            actor_id=actor.employee_id,
            new_values=data.model_dump(mode="json"),
        )
        return shift

    @staticmethod
    async def update_shift(
        db: AsyncSession,
        actor: Actor,
        shift_id: uuid.UUID,
        data: ShiftUpdate,
    ) -> Shift:
        """Update a shift.  Timings are frozen once attendance refers to it."""
        ensure_permission(actor, "attendance:configure")
        shift = await AttendanceService._get_shift(db, actor.company_id, shift_id)
        changes = {
            field: value
            for field, value in data.model_dump(exclude_unset=True, exclude_none=True).items()
            if getattr(shift, field) != value
        }
        if not changes:
            return shift

        if any(field in _TIMING_FIELDS for field in changes):
            in_use = await db.execute(
                select(AttendanceRecord.id).where(AttendanceRecord.shift_id == shift.id).limit(1)
            )
            if in_use.first() is not None:
                raise InvalidStateException(
                    "Shift timings cannot change once attendance has been recorded "
                    "against it; create a new shift instead.",
                    state="in_use",
                )

        half = changes.get("half_day_minutes", shift.half_day_minutes)
        full = changes.get("full_day_minutes", shift.full_day_minutes)
        if half > full:
            raise ValidationException(
                {"half_day_minutes": ["half_day_minutes cannot exceed full_day_minutes."]}
            )
        if changes.get("is_default"):
            await AttendanceService._clear_default(db, actor.company_id)

        old_values = {field: getattr(shift, field) for field in changes}
        for field, value in changes.items():
            setattr(shift, field, value)
        shift.updated_at = _utcnow()
        await db.flush()

        await create_audit_entry(
            db,
            action="update",
            entity_type="shift",
            entity_id=shift.id,
            actor_id=actor.employee_id,
            old_values=old_values,
            new_values=changes,
        )
        return shift

    @staticmethod
    async def list_shifts(
        db: AsyncSession,
        company_id: uuid.UUID,
        *,
        include_inactive: bool = False,
    ) -> Sequence[Shift]:
        query = select(Shift).where(Shift.company_id == company_id)
        if not include_inactive:
            query = query.where(Shift.is_active.is_(True))
        result = await db.execute(query.order_by(Shift.code))
        return result.scalars().all()

    # ── Holidays ────────────────────────────────────────────────────

    @staticmethod
    async def create_holiday(db: AsyncSession, actor: Actor, data: HolidayCreate) -> Holiday:
        ensure_permission(actor, "attendance:configure")
        existing = await db.execute(
            select(Holiday.id).where(
                Holiday.company_id == actor.company_id, Holiday.date == data.date,
            )
        )
        if existing.first() is not None:
            raise ConflictError(
                "date", data.date, detail="Holiday already exists for this date.",
            )

        holiday = Holiday(company_id=actor.company_id, date=data.date, name=data.name, type=data.type)
        db.add(holiday)
        await db.flush()

        await create_audit_entry(
            db,
            action="create",
            entity_type="holiday",
            entity_id=holiday.id,
            actor_id=actor.employee_id,
            new_values=data.model_dump(mode="json"),
        )
        return holiday

    @staticmethod
    async def list_holidays(
        db: AsyncSession,
        company_id: uuid.UUID,
        *,
        year: Optional[int] = None,
    ) -> Sequence[Holiday]:
        query = select(Holiday).where(Holiday.company_id == company_id)
        if year is not None:
            query = query.where(
                Holiday.date >= date(year, 1, 1), Holiday.date <= date(year, 12, 31),
            )
        result = await db.execute(query.order_by(Holiday.date))
        return result.scalars().all()
