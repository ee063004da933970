"""Leave service layer — leave types and the request lifecycle.

Business logic:
  - Working-day count over the employee's shift working days minus company
    holidays; only working days consume balance
  - Non-negative balance policy per leave type, checked on submit and again
    on approve
  - Approve debits the balance and marks every working date ON_LEAVE;
    cancelling an approved request credits the same days back and releases
    the dates that have not elapsed yet
  - Status moves only through ``LEAVE_WORKFLOW``
"""

from __future__ import annotations

import logging
import uuid
from datetime import date, datetime, timedelta, timezone
from decimal import Decimal
from typing import Optional, Sequence

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from hr_ledger.attendance.rules import as_utc, local_date
from hr_ledger.attendance.service import AttendanceService, attendance_key
from hr_ledger.auth.guards import ensure_permission, ensure_self_or_permission
from hr_ledger.auth.schemas import Actor
from hr_ledger.common.audit import create_audit_entry
from hr_ledger.common.concurrency import hold_keys, ledger_key
from hr_ledger.common.constants import (
    AttendanceSource,
    BalanceAdjustmentSource,
    LeaveDayKind,
    LeaveStatus,
)
from hr_ledger.common.exceptions import (
    ConflictError,
    InsufficientBalanceException,
    NotFoundException,
    RecordLocked,
    Unauthorized,
    ValidationException,
)
from hr_ledger.common.pagination import PaginatedResponse, PaginationParams, paginate
from hr_ledger.common.workflow import LEAVE_WORKFLOW
from hr_ledger.core.service import EmployeeService
from hr_ledger.leave.balances import LeaveBalanceStore
from hr_ledger.leave.models import LeaveRequest, LeaveType
from hr_ledger.leave.schemas import LeaveRequestCreate, LeaveRequestOut, LeaveTypeCreate
from hr_ledger.notifications.service import (
    notify_leave_approved,
    notify_leave_cancelled,
    notify_leave_rejected,
    notify_leave_requested,
)

logger = logging.getLogger(__name__)

HALF_DAY = Decimal("0.5")


def _leave_key(employee_id: uuid.UUID) -> str:
    return ledger_key("leave", employee_id)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class LeaveService:
    """Async leave operations: configure types, submit, approve, reject, cancel."""

    # ── Helpers ─────────────────────────────────────────────────────

    @staticmethod
    def _calculate_leave_days(
        start_date: date,
        end_date: date,
        working_days: frozenset[int],
        holidays: set[date],
    ) -> tuple[Decimal, dict[str, str]]:
        """Classify each date in range and count the ones that consume balance.

        Returns:
            (total_days, day_details) where day_details maps ISO date to
            ``working`` | ``weekend`` | ``holiday``.
        """
        details: dict[str, str] = {}
        total = Decimal("0")
        current = start_date
        while current <= end_date:
            if current.weekday() not in working_days:
                kind = LeaveDayKind.weekend
            elif current in holidays:
                kind = LeaveDayKind.holiday
            else:
                kind = LeaveDayKind.working
                total += Decimal("1")
            details[current.isoformat()] = kind.value
            current += timedelta(days=1)
        return total, details

    @staticmethod
    async def _get_request(
        db: AsyncSession,
        request_id: uuid.UUID,
        company_id: uuid.UUID,
        *,
        for_update: bool = False,
    ) -> LeaveRequest:
        query = (
            select(LeaveRequest)
            .where(LeaveRequest.id == request_id)
            .options(selectinload(LeaveRequest.leave_type))
        )
        if for_update:
            query = query.with_for_update().execution_options(populate_existing=True)
        result = await db.execute(query)
        leave_req = result.scalars().first()
        if leave_req is None or leave_req.company_id != company_id:
            raise NotFoundException("LeaveRequest", request_id)
        return leave_req

    @staticmethod
    async def _lock_request(
        db: AsyncSession,
        request_id: uuid.UUID,
        company_id: uuid.UUID,
    ) -> LeaveRequest:
        """Load, serialise on the employee's leave key, then re-read under lock."""
        leave_req = await LeaveService._get_request(db, request_id, company_id)
        await hold_keys(db, _leave_key(leave_req.employee_id))
        return await LeaveService._get_request(db, request_id, company_id, for_update=True)

    @staticmethod
    async def _ensure_affordable(
        db: AsyncSession,
        leave_type: LeaveType,
        employee_id: uuid.UUID,
        days: Decimal,
    ) -> None:
        """Refuse ``days`` above the current balance; pending requests are not held."""
        if not leave_type.enforce_non_negative:
            return
        balance = await LeaveBalanceStore.get_balance(db, employee_id, leave_type.id)
        if days > balance:
            raise InsufficientBalanceException(requested=days, available=balance)

    @staticmethod
    async def _apply_approval(
        db: AsyncSession,
        leave_req: LeaveRequest,
        *,
        reviewer_id: Optional[uuid.UUID],
        remarks: Optional[str],
        now: datetime,
    ) -> None:
        """Debit the balance and mark every working date ON_LEAVE."""
        leave_req.status = LEAVE_WORKFLOW.advance(leave_req.status, LeaveStatus.approved)
        leave_req.reviewed_by = reviewer_id
        leave_req.reviewed_at = now
        leave_req.review_remarks = remarks
        leave_req.updated_at = now
        await db.flush()

        await LeaveBalanceStore.adjust_balance(
            db,
            leave_req.employee_id,
            leave_req.leave_type_id,
            -leave_req.total_days,
            f"Leave approved: {leave_req.id}",
            None,
            source=BalanceAdjustmentSource.leave_debit,
            reference_id=leave_req.id,
        )
        for day in leave_req.working_dates:
            await AttendanceService.materialize_daily_status(
                db, leave_req.employee_id, day, now=now, source=AttendanceSource.leave,
            )

    @staticmethod
    async def _release_dates(
        db: AsyncSession,
        leave_req: LeaveRequest,
        from_date: date,
        now: datetime,
    ) -> None:
        """Undo ON_LEAVE marking for working dates on or after *from_date*.

        Records nobody punched on exist only because of the leave and are
        removed; the rest are recomputed.
        """
        for day in leave_req.working_dates:
            if day < from_date:
                continue
            await hold_keys(db, attendance_key(leave_req.employee_id, day))
            record = await AttendanceService._get_record(
                db, leave_req.employee_id, day, for_update=True,
            )
            if record is None:
                continue
            if record.is_locked:
                raise RecordLocked()
            if record.check_in_time is None and record.check_out_time is None:
                await db.delete(record)
                await db.flush()
            else:
                await AttendanceService.materialize_daily_status(
                    db, leave_req.employee_id, day, now=now, source=AttendanceSource.leave,
                )

    # ── Leave types ─────────────────────────────────────────────────

    @staticmethod
    async def create_leave_type(
        db: AsyncSession,
        actor: Actor,
        data: LeaveTypeCreate,
    ) -> LeaveType:
        """Create a leave type and seed every active employee's balance."""
        ensure_permission(actor, "leave:configure")
        duplicate = await db.execute(
            select(LeaveType.id).where(
                LeaveType.company_id == actor.company_id, LeaveType.code == data.code,
            )
        )
        if duplicate.first() is not None:
            raise ConflictError("code", data.code)

        leave_type = LeaveType(company_id=actor.company_id, is_active=True, **data.model_dump())
        db.add(leave_type)
        await db.flush()

        seeded = await LeaveBalanceStore.seed_leave_type(
            db, leave_type, actor_id=actor.employee_id,
        )
        await create_audit_entry(
            db,
            action="create",
            entity_type="leave_type",
            entity_id=leave_type.id,
            actor_id=actor.employee_id,
            new_values={**data.model_dump(mode="json"), "seeded_employees": seeded},
        )
        logger.info(
            "leave type created",
            extra={"leave_type_id": str(leave_type.id), "seeded": seeded},
        )
        return leave_type

    @staticmethod
    async def list_leave_types(
        db: AsyncSession,
        company_id: uuid.UUID,
        *,
        include_inactive: bool = False,
    ) -> Sequence[LeaveType]:
        query = select(LeaveType).where(LeaveType.company_id == company_id)
        if not include_inactive:
            query = query.where(LeaveType.is_active.is_(True))
        result = await db.execute(query.order_by(LeaveType.code))
        return result.scalars().all()

    # ── Submit ──────────────────────────────────────────────────────

    @staticmethod
    async def submit(
        db: AsyncSession,
        actor: Actor,
        data: LeaveRequestCreate,
        *,
        now: Optional[datetime] = None,
    ) -> LeaveRequest:
        """Apply for leave; auto-approved when the type needs no approval."""
        current = as_utc(now) if now else _utcnow()
        employee_id = data.employee_id or actor.employee_id
        ensure_self_or_permission(
            actor, employee_id, "attendance:act_on_behalf",
            "You can only apply for your own leave.",
        )
        ensure_permission(actor, "leave:request")

        employee = await EmployeeService.get_employee(db, employee_id, actor.company_id)
        leave_type = await LeaveBalanceStore.get_leave_type(
            db, data.leave_type_id, employee.company_id,
        )
        await hold_keys(db, _leave_key(employee_id))

        # ── Policy checks ───────────────────────────────────────────
        tz = AttendanceService.company_tz(employee)
        today = local_date(current, tz)
        if data.start_date < today and not leave_type.allow_backdated:
            raise ValidationException(
                {"start_date": [f"{leave_type.name} cannot be applied for past dates."]}
            )
        if leave_type.requires_document and not data.document_url:
            raise ValidationException(
                {"document_url": [f"{leave_type.name} requires a supporting document."]}
            )

        rules = await AttendanceService.resolve_rules(db, employee)
        holidays = await AttendanceService.holiday_dates(
            db, employee.company_id, data.start_date, data.end_date,
        )
        total_days, details = LeaveService._calculate_leave_days(
            data.start_date, data.end_date, rules.working_days, holidays,
        )
        if total_days <= 0:
            raise ValidationException(
                {"dates": ["No leave days found in the selected range "
                           "(all days are weekends or holidays)."]}
            )
        if data.is_half_day:
            total_days = HALF_DAY
        if leave_type.max_days is not None and total_days > leave_type.max_days:
            raise ValidationException(
                {"dates": [f"{leave_type.name} allows at most {leave_type.max_days} day(s) per request."]}
            )

        overlap = await db.execute(
            select(func.count()).select_from(LeaveRequest).where(
                LeaveRequest.employee_id == employee_id,
                LeaveRequest.status.in_([LeaveStatus.pending, LeaveStatus.approved]),
                LeaveRequest.start_date <= data.end_date,
                LeaveRequest.end_date >= data.start_date,
            )
        )
        if overlap.scalar_one() > 0:
            raise ConflictError(
                "dates", None,
                detail="You already have a pending or approved leave request "
                       "overlapping with these dates.",
            )

        await LeaveService._ensure_affordable(
            db, leave_type, employee_id, total_days,
        )

        # ── Create ──────────────────────────────────────────────────
        leave_req = LeaveRequest(
            company_id=employee.company_id,
            employee_id=employee_id,
            leave_type_id=leave_type.id,
            start_date=data.start_date,
            end_date=data.end_date,
            day_details=details,
            total_days=total_days,
            is_half_day=data.is_half_day,
            half_day_type=data.half_day_type,
            reason=data.reason,
            document_url=data.document_url,
            status=LeaveStatus.pending,
            created_at=current,
            updated_at=current,
        )
        leave_req.leave_type = leave_type
        db.add(leave_req)
        await db.flush()

        await create_audit_entry(
            db,
            action="create",
            entity_type="leave_request",
            entity_id=leave_req.id,
            actor_id=actor.employee_id,
            new_values={
                "leave_type": leave_type.code,
                "start_date": data.start_date.isoformat(),
                "end_date": data.end_date.isoformat(),
                "total_days": str(total_days),
                "half_day_type": data.half_day_type.value if data.half_day_type else None,
            },
        )
        await notify_leave_requested(db, leave_req)

        if not leave_type.requires_approval:
            await LeaveService._apply_approval(
                db, leave_req, reviewer_id=None, remarks="Auto-approved", now=current,
            )
            await notify_leave_approved(db, leave_req)

        logger.info(
            "leave requested",
            extra={
                "leave_request_id": str(leave_req.id),
                "employee_id": str(employee_id),
                "status": leave_req.status.value,
            },
        )
        return leave_req

    # ── Approve ─────────────────────────────────────────────────────

    @staticmethod
    async def approve(
        db: AsyncSession,
        actor: Actor,
        request_id: uuid.UUID,
        remarks: Optional[str] = None,
        *,
        now: Optional[datetime] = None,
    ) -> LeaveRequest:
        ensure_permission(actor, "leave:approve", "You are not authorized to approve leave requests.")
        current = as_utc(now) if now else _utcnow()
        leave_req = await LeaveService._lock_request(db, request_id, actor.company_id)
        if actor.is_self(leave_req.employee_id):
            raise Unauthorized("You cannot approve your own leave request.")

        old_status = leave_req.status.value
        LEAVE_WORKFLOW.advance(leave_req.status, LeaveStatus.approved)
        await LeaveService._ensure_affordable(
            db, leave_req.leave_type, leave_req.employee_id, leave_req.total_days,
        )
        await LeaveService._apply_approval(
            db, leave_req, reviewer_id=actor.employee_id, remarks=remarks, now=current,
        )

        await create_audit_entry(
            db,
            action="approve",
            entity_type="leave_request",
            entity_id=leave_req.id,
            actor_id=actor.employee_id,
            old_values={"status": old_status},
            new_values={"status": LeaveStatus.approved.value, "remarks": remarks},
        )
        await notify_leave_approved(db, leave_req)
        logger.info("leave approved", extra={"leave_request_id": str(leave_req.id)})
        return leave_req

    # ── Reject ──────────────────────────────────────────────────────

    @staticmethod
    async def reject(
        db: AsyncSession,
        actor: Actor,
        request_id: uuid.UUID,
        remarks: str,
        *,
        now: Optional[datetime] = None,
    ) -> LeaveRequest:
        """Reject a pending request; the balance is untouched."""
        ensure_permission(actor, "leave:approve", "You are not authorized to reject leave requests.")
        if not (remarks or "").strip():
            raise ValidationException({"remarks": ["A reason is required to reject a leave request."]})
        current = as_utc(now) if now else _utcnow()
        leave_req = await LeaveService._lock_request(db, request_id, actor.company_id)
        if actor.is_self(leave_req.employee_id):
            raise Unauthorized("You cannot reject your own leave request.")

        old_status = leave_req.status.value
        leave_req.status = LEAVE_WORKFLOW.advance(leave_req.status, LeaveStatus.rejected)
        leave_req.reviewed_by = actor.employee_id
        leave_req.reviewed_at = current
        leave_req.review_remarks = remarks.strip()
        leave_req.updated_at = current
        await db.flush()

        await create_audit_entry(
            db,
            action="reject",
            entity_type="leave_request",
            entity_id=leave_req.id,
            actor_id=actor.employee_id,
            old_values={"status": old_status},
            new_values={"status": LeaveStatus.rejected.value, "remarks": leave_req.review_remarks},
        )
        await notify_leave_rejected(db, leave_req)
        return leave_req

    # ── Cancel ──────────────────────────────────────────────────────

    @staticmethod
    async def cancel(
        db: AsyncSession,
        actor: Actor,
        request_id: uuid.UUID,
        reason: Optional[str] = None,
        *,
        now: Optional[datetime] = None,
    ) -> LeaveRequest:
        """Cancel a pending or approved request.

        Cancelling an approved request credits the days back and releases the
        dates from today on; elapsed dates stay ON_LEAVE.
        """
        current = as_utc(now) if now else _utcnow()
        leave_req = await LeaveService._lock_request(db, request_id, actor.company_id)
        ensure_self_or_permission(
            actor, leave_req.employee_id, "leave:approve",
            "You can only cancel your own leave requests.",
        )

        was_approved = leave_req.status == LeaveStatus.approved
        old_status = leave_req.status.value
        leave_req.status = LEAVE_WORKFLOW.advance(leave_req.status, LeaveStatus.cancelled)
        leave_req.cancelled_by = actor.employee_id
        leave_req.cancelled_at = current
        if reason:
            leave_req.review_remarks = reason
        leave_req.updated_at = current
        await db.flush()

        if was_approved:
            await LeaveBalanceStore.adjust_balance(
                db,
                leave_req.employee_id,
                leave_req.leave_type_id,
                leave_req.total_days,
                f"Leave cancelled: {leave_req.id}",
                None,
                source=BalanceAdjustmentSource.leave_credit,
                reference_id=leave_req.id,
            )
            employee = await EmployeeService.get_employee(
                db, leave_req.employee_id, active_only=False,
            )
            today = local_date(current, AttendanceService.company_tz(employee))
            await LeaveService._release_dates(db, leave_req, today, current)

        await create_audit_entry(
            db,
            action="cancel",
            entity_type="leave_request",
            entity_id=leave_req.id,
            actor_id=actor.employee_id,
            old_values={"status": old_status},
            new_values={"status": LeaveStatus.cancelled.value, "reason": reason},
        )
        await notify_leave_cancelled(db, leave_req)
        logger.info(
            "leave cancelled",
            extra={"leave_request_id": str(leave_req.id), "was_approved": was_approved},
        )
        return leave_req

    # ── Reads ───────────────────────────────────────────────────────

    @staticmethod
    async def get_request(
        db: AsyncSession,
        actor: Actor,
        request_id: uuid.UUID,
    ) -> LeaveRequest:
        leave_req = await LeaveService._get_request(db, request_id, actor.company_id)
        ensure_self_or_permission(actor, leave_req.employee_id, "leave:read_all")
        return leave_req

    @staticmethod
    async def list_requests(
        db: AsyncSession,
        actor: Actor,
        params: PaginationParams,
        *,
        employee_id: Optional[uuid.UUID] = None,
        status: Optional[LeaveStatus] = None,
    ) -> PaginatedResponse:
        """Own requests by default; readers with ``leave:read_all`` see everyone's."""
        if employee_id is None and not actor.can("leave:read_all"):
            employee_id = actor.employee_id
        if employee_id is not None:
            ensure_self_or_permission(actor, employee_id, "leave:read_all")

        query = select(LeaveRequest).where(LeaveRequest.company_id == actor.company_id)
        if employee_id is not None:
            query = query.where(LeaveRequest.employee_id == employee_id)
        if status is not None:
            query = query.where(LeaveRequest.status == status)
        query = query.order_by(LeaveRequest.start_date.desc(), LeaveRequest.id)
        return await paginate(db, query, params, transform=LeaveRequestOut.model_validate)
