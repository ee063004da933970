"""Regularization workflow — employee-initiated attendance corrections.

A request proposes a check-in and/or check-out for one past date.  At most one
request per (employee, date) may be pending.  Approval overwrites the proposed
fields on the attendance record and recomputes it; rejection leaves the
record exactly as it was.
"""

from __future__ import annotations

import logging
import uuid
from datetime import date, datetime, timedelta, timezone
from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from hr_ledger.attendance.models import AttendanceRecord
from hr_ledger.attendance.rules import as_utc, local_date
from hr_ledger.attendance.service import AttendanceService, attendance_key
from hr_ledger.auth.guards import ensure_permission, ensure_self_or_permission
from hr_ledger.auth.schemas import Actor
from hr_ledger.common.audit import create_audit_entry
from hr_ledger.common.concurrency import hold_keys, ledger_key
from hr_ledger.common.constants import AttendanceSource, RegularizationStatus
from hr_ledger.common.exceptions import (
    DuplicatePendingRequest,
    InvalidProposal,
    NotFoundException,
    RecordLocked,
    Unauthorized,
    ValidationException,
)
from hr_ledger.common.pagination import PaginatedResponse, PaginationParams, paginate
from hr_ledger.common.workflow import REGULARIZATION_WORKFLOW
from hr_ledger.core.models import Employee
from hr_ledger.core.service import EmployeeService
from hr_ledger.notifications.service import (
    notify_regularization_resolved,
    notify_regularization_submitted,
)
from hr_ledger.regularization.models import RegularizationRequest
from hr_ledger.regularization.schemas import RegularizationOut

logger = logging.getLogger(__name__)


def regularization_key(employee_id: uuid.UUID, day: date) -> str:
    return ledger_key("regularization", employee_id, day.isoformat())


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class RegularizationService:

    # ── Helpers ─────────────────────────────────────────────────────

    @staticmethod
    def _validate_proposal(
        employee: Employee,
        day: date,
        proposed_check_in: Optional[datetime],
        proposed_check_out: Optional[datetime],
        reason: Optional[str],
        now: datetime,
    ) -> None:
        errors: dict[str, list[str]] = {}
        if proposed_check_in is None and proposed_check_out is None:
            errors["proposed_check_in"] = ["Propose a check-in or check-out time."]
        if not (reason or "").strip():
            errors["reason"] = ["Reason is required."]
        if errors:
            raise InvalidProposal(errors)

        tz = AttendanceService.company_tz(employee)
        if day > local_date(now, tz):
            raise InvalidProposal({"date": ["Cannot request a correction for a future date."]})
        if proposed_check_in is not None and local_date(proposed_check_in, tz) != day:
            raise InvalidProposal(
                {"proposed_check_in": ["Proposed check-in must fall on the requested date."]}
            )
        if proposed_check_out is not None and local_date(proposed_check_out, tz) not in (
            day, day + timedelta(days=1),
        ):
            raise InvalidProposal(
                {"proposed_check_out": ["Proposed check-out must fall on the requested date."]}
            )
        if (
            proposed_check_in is not None
            and proposed_check_out is not None
            and as_utc(proposed_check_out) <= as_utc(proposed_check_in)
        ):
            raise InvalidProposal(
                {"proposed_check_out": ["Check-out must be after check-in."]}
            )

    @staticmethod
    async def _get(
        db: AsyncSession,
        request_id: uuid.UUID,
        company_id: uuid.UUID,
        *,
        for_update: bool = False,
    ) -> RegularizationRequest:
        query = select(RegularizationRequest).where(RegularizationRequest.id == request_id)
        if for_update:
            query = query.with_for_update().execution_options(populate_existing=True)
        result = await db.execute(query)
        request = result.scalars().first()
        if request is None or request.company_id != company_id:
            raise NotFoundException("RegularizationRequest", request_id)
        return request

    # ── Submit ──────────────────────────────────────────────────────

    @staticmethod
    async def submit(
        db: AsyncSession,
        actor: Actor,
        employee_id: uuid.UUID,
        day: date,
        proposed_check_in: Optional[datetime],
        proposed_check_out: Optional[datetime],
        reason: str,
        *,
        now: Optional[datetime] = None,
    ) -> RegularizationRequest:
        ensure_self_or_permission(
            actor, employee_id, "attendance:act_on_behalf",
            "You can only request corrections for your own attendance.",
        )
        current = as_utc(now) if now else _utcnow()
        employee = await EmployeeService.get_employee(db, employee_id, actor.company_id)
        RegularizationService._validate_proposal(
            employee, day, proposed_check_in, proposed_check_out, reason, current,
        )

        await hold_keys(db, regularization_key(employee_id, day))
        pending = await db.execute(
            select(RegularizationRequest.id).where(
                RegularizationRequest.employee_id == employee_id,
                RegularizationRequest.date == day,
                RegularizationRequest.status == RegularizationStatus.pending,
            )
        )
        if pending.first() is not None:
            raise DuplicatePendingRequest()

        request = RegularizationRequest(
            company_id=employee.company_id,
            employee_id=employee_id,
            date=day,
            proposed_check_in=as_utc(proposed_check_in) if proposed_check_in else None,
            proposed_check_out=as_utc(proposed_check_out) if proposed_check_out else None,
            reason=reason.strip(),
            status=RegularizationStatus.pending,
            submitted_by=actor.employee_id,
            created_at=current,
        )
        db.add(request)
        await db.flush()

        await create_audit_entry(
            db,
            action="create",
            entity_type="regularization_request",
            entity_id=request.id,
            actor_id=actor.employee_id,
            new_values={
                "date": day.isoformat(),
                "proposed_check_in": request.proposed_check_in.isoformat()
                if request.proposed_check_in else None,
                "proposed_check_out": request.proposed_check_out.isoformat()
                if request.proposed_check_out else None,
            },
        )
        await notify_regularization_submitted(db, request)
        logger.info(
            "regularization submitted",
            extra={"request_id": str(request.id), "employee_id": str(employee_id)},
        )
        return request

    # ── Resolve ─────────────────────────────────────────────────────

    @staticmethod
    async def _apply_correction(
        db: AsyncSession,
        request: RegularizationRequest,
        now: datetime,
    ) -> AttendanceRecord:
        """Overwrite the proposed punches on the day's record and recompute it."""
        employee = await EmployeeService.get_employee(db, request.employee_id, active_only=False)
        record = await AttendanceService._get_record(
            db, request.employee_id, request.date, for_update=True,
        )
        if record is not None and record.is_locked:
            raise RecordLocked()

        rules = await AttendanceService._rules_for_record(db, record, employee)
        if record is None:
            record = AttendanceRecord(
                company_id=request.company_id,
                employee_id=request.employee_id,
                date=request.date,
                shift_id=rules.shift_id,
                created_at=now,
            )
            db.add(record)

        if request.proposed_check_in is not None:
            record.check_in_time = as_utc(request.proposed_check_in)
        if request.proposed_check_out is not None:
            record.check_out_time = as_utc(request.proposed_check_out)
        if (
            record.check_in_time is not None
            and record.check_out_time is not None
            and as_utc(record.check_out_time) <= as_utc(record.check_in_time)
        ):
            raise InvalidProposal(
                {"proposed_check_out": ["Check-out must be after check-in."]}
            )

        record.is_regularized = True
        record.source = AttendanceSource.regularization
        derived = await AttendanceService._derive(
            db, employee, request.date, rules,
            now=now, check_in=record.check_in_time, check_out=record.check_out_time,
        )
        AttendanceService._apply(record, derived, now)
        record.updated_at = now
        await db.flush()
        return record

    @staticmethod
    async def resolve(
        db: AsyncSession,
        actor: Actor,
        request_id: uuid.UUID,
        decision: RegularizationStatus,
        remarks: Optional[str] = None,
        *,
        now: Optional[datetime] = None,
    ) -> RegularizationRequest:
        """Approve or reject a pending request."""
        ensure_permission(
            actor, "attendance:regularize_approve",
            "You are not authorized to resolve correction requests.",
        )
        if decision not in (RegularizationStatus.approved, RegularizationStatus.rejected):
            raise ValidationException({"decision": ["Decision must be approved or rejected."]})
        current = as_utc(now) if now else _utcnow()

        request = await RegularizationService._get(db, request_id, actor.company_id)
        if actor.is_self(request.employee_id):
            raise Unauthorized("You cannot resolve your own correction request.")

        await hold_keys(
            db,
            regularization_key(request.employee_id, request.date),
            attendance_key(request.employee_id, request.date),
        )
        request = await RegularizationService._get(
            db, request_id, actor.company_id, for_update=True,
        )
        old_status = request.status.value
        new_status = REGULARIZATION_WORKFLOW.advance(request.status, decision)

        new_values: dict = {"status": new_status.value, "remarks": remarks}
        if new_status == RegularizationStatus.approved:
            record = await RegularizationService._apply_correction(db, request, current)
            new_values["attendance_status"] = record.status.value if record.status else None

        request.status = new_status
        request.resolved_by = actor.employee_id
        request.resolved_at = current
        request.review_remarks = remarks
        await db.flush()

        await create_audit_entry(
            db,
            action=new_status.value,
            entity_type="regularization_request",
            entity_id=request.id,
            actor_id=actor.employee_id,
            old_values={"status": old_status},
            new_values=new_values,
        )
        await notify_regularization_resolved(db, request)
        logger.info(
            "regularization resolved",
            extra={"request_id": str(request.id), "status": new_status.value},
        )
        return request

    # ── Reads ───────────────────────────────────────────────────────

    @staticmethod
    async def get_request(
        db: AsyncSession,
        actor: Actor,
        request_id: uuid.UUID,
    ) -> RegularizationRequest:
        request = await RegularizationService._get(db, request_id, actor.company_id)
        ensure_self_or_permission(actor, request.employee_id, "attendance:read_all")
        return request

    @staticmethod
    async def list_requests(
        db: AsyncSession,
        actor: Actor,
        params: PaginationParams,
        *,
        employee_id: Optional[uuid.UUID] = None,
        status: Optional[RegularizationStatus] = None,
    ) -> PaginatedResponse:
        if employee_id is None and not actor.can("attendance:read_all"):
            employee_id = actor.employee_id
        if employee_id is not None:
            ensure_self_or_permission(actor, employee_id, "attendance:read_all")

        query = select(RegularizationRequest).where(
            RegularizationRequest.company_id == actor.company_id,
        )
        if employee_id is not None:
            query = query.where(RegularizationRequest.employee_id == employee_id)
        if status is not None:
            query = query.where(RegularizationRequest.status == status)
        query = query.order_by(RegularizationRequest.date.desc(), RegularizationRequest.id)
        return await paginate(db, query, params, transform=RegularizationOut.model_validate)
