"""Leave lifecycle tests — submit, approve, reject, cancel and their effect on
balances and attendance.
"""

from __future__ import annotations

import uuid
from datetime import date, timedelta
from decimal import Decimal

import pytest
from pydantic import ValidationError as PydanticValidationError
from sqlalchemy import select

from hr_ledger.attendance.models import AttendanceRecord
from hr_ledger.attendance.schemas import HolidayCreate
from hr_ledger.attendance.service import AttendanceService
from hr_ledger.common.constants import (
    AttendanceStatus,
    BalanceAdjustmentSource,
    HalfDayType,
    LeaveStatus,
    NotificationType,
    UserRole,
)
from hr_ledger.common.exceptions import (
    AlreadyResolved,
    ConflictError,
    InsufficientBalanceException,
    Unauthorized,
    ValidationException,
)
from hr_ledger.leave.balances import LeaveBalanceStore
from hr_ledger.leave.models import LeaveBalanceAdjustment
from hr_ledger.leave.schemas import LeaveRequestCreate, LeaveTypeCreate
from hr_ledger.leave.service import LeaveService
from hr_ledger.notifications.models import Notification
from tests.conftest import actor_for, at, make_leave_type

MONDAY = date(2026, 3, 2)
NEXT_MONDAY = MONDAY + timedelta(days=7)
NOW = at(MONDAY, 8)


# ── Helpers ─────────────────────────────────────────────────────────


async def _seeded_type(db, company, employee, **kwargs):
    leave_type = await make_leave_type(db, company.id, **kwargs)
    await LeaveBalanceStore.seed_balances(db, employee.id, company.id)
    return leave_type


async def _apply(db, employee, leave_type, start, end, *, now=NOW, **kwargs):
    return await LeaveService.submit(
        db,
        actor_for(employee),
        LeaveRequestCreate(
            leave_type_id=leave_type.id, start_date=start, end_date=end,
            reason="Family function", **kwargs,
        ),
        now=now,
    )


async def _statuses(db, employee_id, start, end) -> dict[date, AttendanceStatus]:
    result = await db.execute(
        select(AttendanceRecord)
        .where(
            AttendanceRecord.employee_id == employee_id,
            AttendanceRecord.date >= start,
            AttendanceRecord.date <= end,
        )
        .execution_options(populate_existing=True)
    )
    return {r.date: r.status for r in result.scalars().all()}


# ═════════════════════════════════════════════════════════════════════
# 1. SUBMIT
# ═════════════════════════════════════════════════════════════════════


async def test_submit_counts_working_days_only(db, company, employee, hr_admin):
    """Weekends and holidays inside the range do not consume balance."""
    leave_type = await _seeded_type(db, company, employee)
    await AttendanceService.create_holiday(
        db, actor_for(hr_admin, UserRole.hr_admin),
        HolidayCreate(date=NEXT_MONDAY + timedelta(days=2), name="Festival"),
    )

    # Mon..next Mon = 8 calendar days, 2 weekend days, 1 holiday
    leave = await _apply(db, employee, leave_type, NEXT_MONDAY, NEXT_MONDAY + timedelta(days=7))

    assert leave.status == LeaveStatus.pending
    assert leave.total_days == Decimal("5")
    assert leave.day_details[(NEXT_MONDAY + timedelta(days=2)).isoformat()] == "holiday"
    assert leave.day_details[(NEXT_MONDAY + timedelta(days=5)).isoformat()] == "weekend"
    # pending requests do not touch the balance
    assert await LeaveBalanceStore.get_balance(db, employee.id, leave_type.id) == Decimal("12")


async def test_submit_emits_leave_requested(db, company, employee):
    leave_type = await _seeded_type(db, company, employee)
    leave = await _apply(db, employee, leave_type, NEXT_MONDAY, NEXT_MONDAY)

    types = (await db.execute(
        select(Notification.type).where(Notification.entity_id == leave.id)
    )).scalars().all()
    assert types == [NotificationType.leave_requested]


async def test_weekend_only_range_rejected(db, company, employee):
    leave_type = await _seeded_type(db, company, employee)
    saturday = NEXT_MONDAY - timedelta(days=2)
    with pytest.raises(ValidationException):
        await _apply(db, employee, leave_type, saturday, saturday + timedelta(days=1))


async def test_overlapping_request_conflicts(db, company, employee):
    leave_type = await _seeded_type(db, company, employee)
    await _apply(db, employee, leave_type, NEXT_MONDAY, NEXT_MONDAY + timedelta(days=2))

    with pytest.raises(ConflictError):
        await _apply(db, employee, leave_type, NEXT_MONDAY + timedelta(days=2), NEXT_MONDAY + timedelta(days=3))


async def test_pending_requests_do_not_reduce_what_can_be_requested(db, company, employee):
    leave_type = await _seeded_type(db, company, employee, default_days=Decimal("6"))
    await _apply(db, employee, leave_type, NEXT_MONDAY, NEXT_MONDAY + timedelta(days=2))

    second = await _apply(
        db, employee, leave_type,
        NEXT_MONDAY + timedelta(days=7), NEXT_MONDAY + timedelta(days=10),
    )

    assert second.total_days == Decimal("4")
    assert second.status == LeaveStatus.pending
    assert await LeaveBalanceStore.get_balance(db, employee.id, leave_type.id) == Decimal("6")


async def test_request_above_current_balance_rejected(db, company, employee):
    leave_type = await _seeded_type(db, company, employee, default_days=Decimal("6"))

    with pytest.raises(InsufficientBalanceException) as exc_info:
        await _apply(db, employee, leave_type, NEXT_MONDAY, NEXT_MONDAY + timedelta(days=8))
    assert exc_info.value.status_code == 422


async def test_negative_balance_allowed_when_not_enforced(db, company, employee):
    leave_type = await _seeded_type(
        db, company, employee, code="LWP", default_days=Decimal("0"), enforce_non_negative=False,
    )
    leave = await _apply(db, employee, leave_type, NEXT_MONDAY, NEXT_MONDAY + timedelta(days=1))
    assert leave.total_days == Decimal("2")


async def test_policy_checks(db, company, employee):
    document_type = await _seeded_type(db, company, employee, code="SL", requires_document=True)
    with pytest.raises(ValidationException):
        await _apply(db, employee, document_type, NEXT_MONDAY, NEXT_MONDAY)

    no_backdate = await _seeded_type(db, company, employee, code="EL", allow_backdated=False)
    with pytest.raises(ValidationException):
        await _apply(db, employee, no_backdate, MONDAY - timedelta(days=7), MONDAY - timedelta(days=7))

    capped = await _seeded_type(db, company, employee, code="ML", max_days=Decimal("2"))
    with pytest.raises(ValidationException):
        await _apply(db, employee, capped, NEXT_MONDAY, NEXT_MONDAY + timedelta(days=2))


async def test_auto_approved_type_debits_immediately(db, company, employee):
    leave_type = await _seeded_type(db, company, employee, code="WFH", requires_approval=False)

    leave = await _apply(db, employee, leave_type, NEXT_MONDAY, NEXT_MONDAY + timedelta(days=1))

    assert leave.status == LeaveStatus.approved
    assert leave.reviewed_by is None
    assert await LeaveBalanceStore.get_balance(db, employee.id, leave_type.id) == Decimal("10")


# ═════════════════════════════════════════════════════════════════════
# 2. APPROVE / REJECT
# ═════════════════════════════════════════════════════════════════════


async def test_approve_debits_and_marks_on_leave(db, company, employee, manager):
    leave_type = await _seeded_type(db, company, employee)
    leave = await _apply(db, employee, leave_type, NEXT_MONDAY, NEXT_MONDAY + timedelta(days=2))

    approved = await LeaveService.approve(
        db, actor_for(manager, UserRole.manager), leave.id, "Enjoy", now=at(MONDAY, 12),
    )

    assert approved.status == LeaveStatus.approved
    assert approved.reviewed_by == manager.id
    assert await LeaveBalanceStore.get_balance(db, employee.id, leave_type.id) == Decimal("9")
    assert await _statuses(db, employee.id, NEXT_MONDAY, NEXT_MONDAY + timedelta(days=6)) == {
        NEXT_MONDAY + timedelta(days=i): AttendanceStatus.on_leave for i in range(3)
    }

    debit = (await db.execute(
        select(LeaveBalanceAdjustment).where(LeaveBalanceAdjustment.reference_id == leave.id)
    )).scalars().one()
    assert debit.delta == Decimal("-3")
    assert debit.source == BalanceAdjustmentSource.leave_debit


async def test_cancel_after_approval_restores_balance(db, company, employee, manager):
    leave_type = await _seeded_type(db, company, employee)
    leave = await _apply(db, employee, leave_type, NEXT_MONDAY, NEXT_MONDAY + timedelta(days=2))
    await LeaveService.approve(db, actor_for(manager, UserRole.manager), leave.id, now=at(MONDAY, 12))

    cancelled = await LeaveService.cancel(
        db, actor_for(employee), leave.id, "Plans changed", now=at(MONDAY + timedelta(days=1), 9),
    )

    assert cancelled.status == LeaveStatus.cancelled
    assert await LeaveBalanceStore.get_balance(db, employee.id, leave_type.id) == Decimal("12")
    assert await _statuses(db, employee.id, NEXT_MONDAY, NEXT_MONDAY + timedelta(days=6)) == {}


async def test_half_day_leave_debits_and_credits_half(db, company, employee, manager):
    leave_type = await _seeded_type(db, company, employee)
    leave = await _apply(
        db, employee, leave_type, NEXT_MONDAY, NEXT_MONDAY,
        is_half_day=True, half_day_type=HalfDayType.second_half,
    )
    assert leave.total_days == Decimal("0.5")
    assert leave.half_day_type == HalfDayType.second_half

    await LeaveService.approve(db, actor_for(manager, UserRole.manager), leave.id, now=at(MONDAY, 12))
    assert await LeaveBalanceStore.get_balance(db, employee.id, leave_type.id) == Decimal("11.5")
    assert await _statuses(db, employee.id, NEXT_MONDAY, NEXT_MONDAY) == {
        NEXT_MONDAY: AttendanceStatus.on_leave,
    }

    await LeaveService.cancel(db, actor_for(employee), leave.id, now=at(MONDAY, 15))
    assert await LeaveBalanceStore.get_balance(db, employee.id, leave_type.id) == Decimal("12")


async def test_half_day_leave_affordable_with_half_a_day_left(db, company, employee):
    leave_type = await _seeded_type(db, company, employee, default_days=Decimal("0.5"))

    leave = await _apply(
        db, employee, leave_type, NEXT_MONDAY, NEXT_MONDAY,
        is_half_day=True, half_day_type=HalfDayType.first_half,
    )
    assert leave.total_days == Decimal("0.5")

    with pytest.raises(InsufficientBalanceException):
        await _apply(db, employee, leave_type, NEXT_MONDAY + timedelta(days=1), NEXT_MONDAY + timedelta(days=1))


@pytest.mark.parametrize(
    "end_offset, half_day_type, is_half_day",
    [
        (1, HalfDayType.first_half, True),
        (0, None, True),
        (0, HalfDayType.first_half, False),
    ],
)
def test_half_day_payload_validation(end_offset, half_day_type, is_half_day):
    with pytest.raises(PydanticValidationError):
        LeaveRequestCreate(
            leave_type_id=uuid.uuid4(),
            start_date=NEXT_MONDAY,
            end_date=NEXT_MONDAY + timedelta(days=end_offset),
            is_half_day=is_half_day,
            half_day_type=half_day_type,
        )


async def test_cancel_mid_leave_keeps_elapsed_days(db, company, employee, manager):
    """Days before the cancellation date stay ON_LEAVE; the rest are released."""
    leave_type = await _seeded_type(db, company, employee)
    leave = await _apply(db, employee, leave_type, NEXT_MONDAY, NEXT_MONDAY + timedelta(days=2))
    await LeaveService.approve(db, actor_for(manager, UserRole.manager), leave.id, now=at(MONDAY, 12))

    await LeaveService.cancel(
        db, actor_for(employee), leave.id, now=at(NEXT_MONDAY + timedelta(days=1), 7),
    )

    statuses = await _statuses(db, employee.id, NEXT_MONDAY, NEXT_MONDAY + timedelta(days=6))
    assert statuses == {NEXT_MONDAY: AttendanceStatus.on_leave}
    derived = await AttendanceService.compute_daily_status(
        db, employee.id, NEXT_MONDAY, now=at(NEXT_MONDAY + timedelta(days=3), 9),
    )
    assert derived.status == AttendanceStatus.on_leave


async def test_approval_rechecks_balance(db, company, employee, manager, hr_admin):
    leave_type = await _seeded_type(db, company, employee, default_days=Decimal("3"))
    leave = await _apply(db, employee, leave_type, NEXT_MONDAY, NEXT_MONDAY + timedelta(days=2))
    await LeaveBalanceStore.adjust_balance(
        db, employee.id, leave_type.id, -1, "Correction of opening balance",
        actor_for(hr_admin, UserRole.hr_admin),
    )

    with pytest.raises(InsufficientBalanceException):
        await LeaveService.approve(db, actor_for(manager, UserRole.manager), leave.id, now=at(MONDAY, 12))


async def test_reject_requires_remarks_and_keeps_balance(db, company, employee, manager):
    leave_type = await _seeded_type(db, company, employee)
    leave = await _apply(db, employee, leave_type, NEXT_MONDAY, NEXT_MONDAY)
    mgr = actor_for(manager, UserRole.manager)

    with pytest.raises(ValidationException):
        await LeaveService.reject(db, mgr, leave.id, "  ", now=at(MONDAY, 12))

    rejected = await LeaveService.reject(db, mgr, leave.id, "Release week", now=at(MONDAY, 12))
    assert rejected.status == LeaveStatus.rejected
    assert rejected.review_remarks == "Release week"
    assert await LeaveBalanceStore.get_balance(db, employee.id, leave_type.id) == Decimal("12")


async def test_cannot_approve_own_request(db, company, manager):
    leave_type = await _seeded_type(db, company, manager)
    leave = await _apply(db, manager, leave_type, NEXT_MONDAY, NEXT_MONDAY)

    with pytest.raises(Unauthorized):
        await LeaveService.approve(db, actor_for(manager, UserRole.manager), leave.id, now=at(MONDAY, 12))


async def test_employee_role_cannot_approve(db, company, employee, manager):
    leave_type = await _seeded_type(db, company, employee)
    leave = await _apply(db, employee, leave_type, NEXT_MONDAY, NEXT_MONDAY)

    with pytest.raises(Unauthorized):
        await LeaveService.approve(db, actor_for(manager), leave.id, now=at(MONDAY, 12))


async def test_approving_twice_raises_already_resolved(db, company, employee, manager):
    leave_type = await _seeded_type(db, company, employee)
    leave = await _apply(db, employee, leave_type, NEXT_MONDAY, NEXT_MONDAY)
    mgr = actor_for(manager, UserRole.manager)
    await LeaveService.approve(db, mgr, leave.id, now=at(MONDAY, 12))

    with pytest.raises(AlreadyResolved):
        await LeaveService.approve(db, mgr, leave.id, now=at(MONDAY, 13))
    assert await LeaveBalanceStore.get_balance(db, employee.id, leave_type.id) == Decimal("11")


async def test_rejected_request_cannot_be_cancelled(db, company, employee, manager):
    leave_type = await _seeded_type(db, company, employee)
    leave = await _apply(db, employee, leave_type, NEXT_MONDAY, NEXT_MONDAY)
    await LeaveService.reject(db, actor_for(manager, UserRole.manager), leave.id, "No cover", now=at(MONDAY, 12))

    with pytest.raises(AlreadyResolved):
        await LeaveService.cancel(db, actor_for(employee), leave.id, now=at(MONDAY, 13))


async def test_only_owner_or_approver_can_cancel(db, company, employee, hr_admin):
    leave_type = await _seeded_type(db, company, employee)
    leave = await _apply(db, employee, leave_type, NEXT_MONDAY, NEXT_MONDAY)

    with pytest.raises(Unauthorized):
        await LeaveService.cancel(db, actor_for(hr_admin), leave.id, now=at(MONDAY, 13))


# ═════════════════════════════════════════════════════════════════════
# 3. LEAVE TYPES
# ═════════════════════════════════════════════════════════════════════


async def test_create_leave_type_seeds_active_employees(db, company, employee, manager, hr_admin):
    leave_type = await LeaveService.create_leave_type(
        db, actor_for(hr_admin, UserRole.hr_admin),
        LeaveTypeCreate(code="pl", name="Privilege Leave", default_days=Decimal("15")),
    )

    assert leave_type.code == "PL"
    for person in (employee, manager, hr_admin):
        assert await LeaveBalanceStore.get_balance(db, person.id, leave_type.id) == Decimal("15")


async def test_duplicate_leave_type_code_conflicts(db, company, hr_admin):
    hr = actor_for(hr_admin, UserRole.hr_admin)
    await LeaveService.create_leave_type(db, hr, LeaveTypeCreate(code="CL", name="Casual"))
    with pytest.raises(ConflictError):
        await LeaveService.create_leave_type(db, hr, LeaveTypeCreate(code="cl", name="Casual again"))
