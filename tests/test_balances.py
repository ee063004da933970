"""Leave balance ledger tests — adjustments, seeding, accrual, concurrency."""

from __future__ import annotations

import asyncio
from decimal import Decimal

import pytest
from sqlalchemy import func, select

from hr_ledger.common.concurrency import run_ledger_write
from hr_ledger.common.constants import BalanceAdjustmentSource, NotificationType, UserRole
from hr_ledger.common.exceptions import NotFoundException, Unauthorized, ValidationException
from hr_ledger.common.pagination import PaginationParams
from hr_ledger.leave.balances import LeaveBalanceStore
from hr_ledger.leave.models import LeaveBalanceAdjustment
from hr_ledger.notifications.models import Notification
from tests.conftest import (
    TestSessionFactory,
    actor_for,
    make_company,
    make_employee,
    make_leave_type,
)


async def _adjustments(db, employee_id, leave_type_id) -> list[LeaveBalanceAdjustment]:
    result = await db.execute(
        select(LeaveBalanceAdjustment).where(
            LeaveBalanceAdjustment.employee_id == employee_id,
            LeaveBalanceAdjustment.leave_type_id == leave_type_id,
        )
    )
    return list(result.scalars().all())


# ═════════════════════════════════════════════════════════════════════
# ADJUST
# ═════════════════════════════════════════════════════════════════════


class TestAdjustBalance:
    """Manual adjustments by HR."""

    async def test_adjust_adds_delta_with_one_audit_row(self, db, company, employee, hr_admin):
        leave_type = await make_leave_type(db, company.id)
        hr = actor_for(hr_admin, UserRole.hr_admin)
        await LeaveBalanceStore.adjust_balance(db, employee.id, leave_type.id, 5, "Opening balance", hr)
        before = (await LeaveBalanceStore.get_balances(db, employee.id))[leave_type.id]
        count_before = len(await _adjustments(db, employee.id, leave_type.id))

        result = await LeaveBalanceStore.adjust_balance(
            db, employee.id, leave_type.id, Decimal("1.5"), "Comp off for release weekend", hr,
        )

        after = (await LeaveBalanceStore.get_balances(db, employee.id))[leave_type.id]
        rows = await _adjustments(db, employee.id, leave_type.id)
        assert result == before + Decimal("1.5")
        assert after == before + Decimal("1.5")
        assert len(rows) == count_before + 1

        latest = max(rows, key=lambda r: r.balance_after)
        assert latest.delta == Decimal("1.5")
        assert latest.reason == "Comp off for release weekend"
        assert latest.source == BalanceAdjustmentSource.manual
        assert latest.actor_id == hr_admin.id

    async def test_negative_adjustment_may_go_below_zero(self, db, company, employee, hr_admin):
        leave_type = await make_leave_type(db, company.id)
        result = await LeaveBalanceStore.adjust_balance(
            db, employee.id, leave_type.id, -2, "Recovered over-used leave",
            actor_for(hr_admin, UserRole.hr_admin),
        )
        assert result == Decimal("-2")

    @pytest.mark.parametrize(
        "delta, reason, field",
        [
            (0, "Nothing to do", "delta"),
            (1, "", "reason"),
            (1, "ok", "reason"),
            ("abc", "Valid reason", "delta"),
        ],
    )
    async def test_invalid_adjustment_rejected(self, db, company, employee, hr_admin, delta, reason, field):
        leave_type = await make_leave_type(db, company.id)
        with pytest.raises(ValidationException) as exc_info:
            await LeaveBalanceStore.adjust_balance(
                db, employee.id, leave_type.id, delta, reason,
                actor_for(hr_admin, UserRole.hr_admin),
            )
        assert field in exc_info.value.errors
        assert await _adjustments(db, employee.id, leave_type.id) == []

    async def test_manager_cannot_adjust(self, db, company, employee, manager):
        leave_type = await make_leave_type(db, company.id)
        with pytest.raises(Unauthorized):
            await LeaveBalanceStore.adjust_balance(
                db, employee.id, leave_type.id, 1, "Goodwill day",
                actor_for(manager, UserRole.manager),
            )

    async def test_unknown_leave_type_not_found(self, db, company, employee, hr_admin):
        other = await make_company(db, name="Other Co")
        foreign_type = await make_leave_type(db, other.id)
        with pytest.raises(NotFoundException):
            await LeaveBalanceStore.adjust_balance(
                db, employee.id, foreign_type.id, 1, "Wrong company",
                actor_for(hr_admin, UserRole.hr_admin),
            )

    async def test_manual_adjustment_emits_event(self, db, company, employee, hr_admin):
        leave_type = await make_leave_type(db, company.id)
        await LeaveBalanceStore.adjust_balance(
            db, employee.id, leave_type.id, 1, "Goodwill day",
            actor_for(hr_admin, UserRole.hr_admin),
        )
        types = (await db.execute(
            select(Notification.type).where(Notification.employee_id == employee.id)
        )).scalars().all()
        assert types == [NotificationType.balance_adjusted]


# ═════════════════════════════════════════════════════════════════════
# READS / SEEDING / ACCRUAL
# ═════════════════════════════════════════════════════════════════════


class TestBalanceReads:

    async def test_unseeded_type_reads_zero(self, db, company, employee):
        leave_type = await make_leave_type(db, company.id)

        assert await LeaveBalanceStore.get_balance(db, employee.id, leave_type.id) == 0
        assert await LeaveBalanceStore.get_balances(db, employee.id) == {leave_type.id: 0}

    async def test_inactive_type_not_listed(self, db, company, employee):
        await make_leave_type(db, company.id, code="OLD", is_active=False)
        assert await LeaveBalanceStore.get_balances(db, employee.id) == {}

    async def test_balance_details_subtract_pending(self, db, company, employee):
        leave_type = await make_leave_type(db, company.id, default_days=Decimal("10"))
        await LeaveBalanceStore.seed_balances(db, employee.id, company.id)

        details = await LeaveBalanceStore.get_balance_details(db, actor_for(employee), employee.id)

        assert len(details) == 1
        assert details[0].leave_type.id == leave_type.id
        assert details[0].balance == Decimal("10")
        assert details[0].available == Decimal("10")

    async def test_employee_cannot_read_others(self, db, company, employee, manager):
        with pytest.raises(Unauthorized):
            await LeaveBalanceStore.get_balance_details(db, actor_for(employee), manager.id)


class TestSeedingAndAccrual:

    async def test_seed_copies_default_days_once(self, db, company, employee):
        casual = await make_leave_type(db, company.id, code="CL", default_days=Decimal("12"))
        sick = await make_leave_type(db, company.id, code="SL", default_days=Decimal("6"))

        seeded = await LeaveBalanceStore.seed_balances(db, employee.id, company.id)
        again = await LeaveBalanceStore.seed_balances(db, employee.id, company.id)

        assert seeded == ["CL", "SL"]
        assert again == []
        balances = await LeaveBalanceStore.get_balances(db, employee.id)
        assert balances == {casual.id: Decimal("12"), sick.id: Decimal("6")}
        rows = await _adjustments(db, employee.id, casual.id)
        assert [r.source for r in rows] == [BalanceAdjustmentSource.seed]

    async def test_seed_leave_type_for_all_employees(self, db, company, employee, manager):
        leave_type = await make_leave_type(db, company.id, default_days=Decimal("3"))

        count = await LeaveBalanceStore.seed_leave_type(db, leave_type)

        assert count == 2
        assert await LeaveBalanceStore.get_balance(db, manager.id, leave_type.id) == Decimal("3")

    async def test_accrue_credits_active_employees(self, db, company, employee, manager, hr_admin):
        leave_type = await make_leave_type(db, company.id)
        await make_employee(db, company.id, first_name="Left", is_active=False)

        credited = await LeaveBalanceStore.accrue(
            db, actor_for(hr_admin, UserRole.hr_admin), company.id, leave_type.id,
            Decimal("1.5"), "March accrual",
        )

        assert credited == 3
        assert await LeaveBalanceStore.get_balance(db, employee.id, leave_type.id) == Decimal("1.5")
        rows = await _adjustments(db, employee.id, leave_type.id)
        assert [r.source for r in rows] == [BalanceAdjustmentSource.accrual]

    async def test_accrue_rejects_negative_days(self, db, company, employee):
        leave_type = await make_leave_type(db, company.id)
        with pytest.raises(ValidationException):
            await LeaveBalanceStore.accrue(db, None, company.id, leave_type.id, -1, "Clawback")

    async def test_list_adjustments_newest_first(self, db, company, employee, hr_admin):
        leave_type = await make_leave_type(db, company.id)
        hr = actor_for(hr_admin, UserRole.hr_admin)
        await LeaveBalanceStore.adjust_balance(db, employee.id, leave_type.id, 2, "First grant", hr)
        await LeaveBalanceStore.adjust_balance(db, employee.id, leave_type.id, 3, "Second grant", hr)

        page = await LeaveBalanceStore.list_adjustments(
            db, hr, employee.id, PaginationParams(page=1, page_size=10),
        )

        assert page.meta.total == 2
        assert {row.reason for row in page.data} == {"First grant", "Second grant"}


# ═════════════════════════════════════════════════════════════════════
# CONCURRENCY
# ═════════════════════════════════════════════════════════════════════


async def test_concurrent_adjustments_both_apply(db, company, employee, hr_admin):
    """+2 and -1 racing on one balance end at before + 1 with two audit rows."""
    leave_type = await make_leave_type(db, company.id)
    hr = actor_for(hr_admin, UserRole.hr_admin)
    await LeaveBalanceStore.adjust_balance(db, employee.id, leave_type.id, 10, "Opening balance", hr)
    await db.commit()

    def _adjust(delta, reason):
        async def _op(session):
            return await LeaveBalanceStore.adjust_balance(
                session, employee.id, leave_type.id, delta, reason, hr,
            )
        return _op

    await asyncio.gather(
        run_ledger_write(TestSessionFactory, _adjust(2, "Comp off credit")),
        run_ledger_write(TestSessionFactory, _adjust(-1, "Half day correction")),
    )

    async with TestSessionFactory() as session:
        balance = await LeaveBalanceStore.get_balance(session, employee.id, leave_type.id)
        count = (await session.execute(
            select(func.count()).select_from(LeaveBalanceAdjustment).where(
                LeaveBalanceAdjustment.employee_id == employee.id,
                LeaveBalanceAdjustment.reason.in_(["Comp off credit", "Half day correction"]),
            )
        )).scalar_one()

    assert balance == Decimal("11")
    assert count == 2
