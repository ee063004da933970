"""Day close tests — planning, per-employee settlement and the full run."""

from __future__ import annotations

from datetime import date, time, timedelta
from zoneinfo import ZoneInfo

import pytest
from sqlalchemy import func, select

from hr_ledger.attendance.day_close import (
    DayCloseCommand,
    default_close_date,
    handle_day_close,
    plan_day_close,
    run_day_close,
)
from hr_ledger.attendance.models import AttendanceRecord
from hr_ledger.attendance.service import AttendanceService
from hr_ledger.common.constants import AttendanceStatus, UserRole
from hr_ledger.common.exceptions import ValidationException
from tests.conftest import TestSessionFactory, actor_for, at, make_employee, make_shift

MONDAY = date(2026, 3, 2)
TUESDAY = MONDAY + timedelta(days=1)
WEDNESDAY = MONDAY + timedelta(days=2)
SATURDAY = date(2026, 3, 7)


async def _status_of(db, employee_id, day):
    result = await db.execute(
        select(AttendanceRecord.status).where(
            AttendanceRecord.employee_id == employee_id,
            AttendanceRecord.date == day,
        )
    )
    return result.scalar_one_or_none()


# ═════════════════════════════════════════════════════════════════════
# PLANNING
# ═════════════════════════════════════════════════════════════════════


async def test_cannot_close_a_day_that_has_not_elapsed(db, company, employee):
    with pytest.raises(ValidationException):
        await plan_day_close(db, company.id, MONDAY, now=at(MONDAY, 23, 59))


async def test_plan_skips_settled_locked_and_inactive(db, company, employee, manager, hr_admin):
    """Only employees whose day is still unsettled get a command."""
    # manager worked a full day: settled
    mgr = actor_for(manager)
    await AttendanceService.record_check_in(db, mgr, manager.id, at(MONDAY, 9), now=at(MONDAY, 9))
    await AttendanceService.record_check_out(db, mgr, manager.id, at(MONDAY, 18), now=at(MONDAY, 18))

    # hr_admin only checked in, then the day was locked
    hr = actor_for(hr_admin, UserRole.hr_admin)
    await AttendanceService.record_check_in(db, hr, hr_admin.id, at(MONDAY, 9), now=at(MONDAY, 9))
    await AttendanceService.lock_records(db, hr, MONDAY, MONDAY, employee_id=hr_admin.id)

    await make_employee(db, company.id, first_name="Gone", is_active=False)

    commands = await plan_day_close(db, company.id, MONDAY, now=at(TUESDAY, 0, 15))

    assert commands == [DayCloseCommand(company_id=company.id, employee_id=employee.id, date=MONDAY)]


async def test_plan_includes_open_check_in(db, company, employee):
    actor = actor_for(employee)
    await AttendanceService.record_check_in(db, actor, employee.id, at(MONDAY, 9), now=at(MONDAY, 9))

    commands = await plan_day_close(db, company.id, MONDAY, now=at(TUESDAY, 0, 15))
    assert [c.employee_id for c in commands] == [employee.id]


async def test_overnight_day_still_pending_is_closed_by_next_run(db, company):
    night = await make_shift(
        db, company.id, code="NGT", start=time(22, 0), end=time(6, 0), is_default=False,
    )
    worker = await make_employee(db, company.id, first_name="Nadia", shift_id=night.id)
    await AttendanceService.record_check_in(
        db, actor_for(worker), worker.id, at(MONDAY, 22), now=at(MONDAY, 22),
    )

    # Shift ends 06:00 Tuesday; the missing check-out cutoff has not passed yet
    for command in await plan_day_close(db, company.id, MONDAY, now=at(TUESDAY, 0, 15)):
        await handle_day_close(db, command, now=at(TUESDAY, 0, 15))
    assert await _status_of(db, worker.id, MONDAY) == AttendanceStatus.pending

    commands = await plan_day_close(db, company.id, TUESDAY, now=at(WEDNESDAY, 0, 15))
    assert commands[0] == DayCloseCommand(company_id=company.id, employee_id=worker.id, date=MONDAY)
    assert [c.date for c in commands[1:]] == [TUESDAY]

    for command in commands:
        await handle_day_close(db, command, now=at(WEDNESDAY, 0, 15))
    assert await _status_of(db, worker.id, MONDAY) == AttendanceStatus.half_day
    assert await _status_of(db, worker.id, TUESDAY) == AttendanceStatus.absent


async def test_locked_pending_day_is_not_planned_again(db, company, employee, hr_admin):
    await AttendanceService.record_check_in(
        db, actor_for(employee), employee.id, at(MONDAY, 9), now=at(MONDAY, 9),
    )
    await AttendanceService.lock_records(
        db, actor_for(hr_admin, UserRole.hr_admin), MONDAY, MONDAY,
    )

    commands = await plan_day_close(db, company.id, TUESDAY, now=at(WEDNESDAY, 0, 15))

    assert MONDAY not in {c.date for c in commands}


def test_default_close_date_is_yesterday_in_company_timezone():
    kolkata = ZoneInfo("Asia/Kolkata")
    # 20:00 UTC Monday is already Tuesday in Kolkata
    assert default_close_date(kolkata, at(MONDAY, 20)) == MONDAY
    assert default_close_date(ZoneInfo("UTC"), at(MONDAY, 20)) == MONDAY - timedelta(days=1)


# ═════════════════════════════════════════════════════════════════════
# SETTLEMENT
# ═════════════════════════════════════════════════════════════════════


async def test_absent_employee_materialized_absent(db, company, employee):
    command = DayCloseCommand(company_id=company.id, employee_id=employee.id, date=MONDAY)

    status = await handle_day_close(db, command, now=at(TUESDAY, 0, 15))

    assert status == AttendanceStatus.absent
    assert await _status_of(db, employee.id, MONDAY) == AttendanceStatus.absent


async def test_missing_check_out_settles_as_half_day(db, company, employee):
    actor = actor_for(employee)
    await AttendanceService.record_check_in(db, actor, employee.id, at(MONDAY, 9), now=at(MONDAY, 9))
    command = DayCloseCommand(company_id=company.id, employee_id=employee.id, date=MONDAY)

    status = await handle_day_close(db, command, now=at(TUESDAY, 0, 15))

    assert status == AttendanceStatus.half_day


async def test_locked_record_left_untouched(db, company, employee, hr_admin):
    actor = actor_for(employee)
    await AttendanceService.record_check_in(db, actor, employee.id, at(MONDAY, 9), now=at(MONDAY, 9))
    await AttendanceService.lock_records(
        db, actor_for(hr_admin, UserRole.hr_admin), MONDAY, MONDAY,
    )
    command = DayCloseCommand(company_id=company.id, employee_id=employee.id, date=MONDAY)

    status = await handle_day_close(db, command, now=at(TUESDAY, 0, 15))

    assert status == AttendanceStatus.pending


# ═════════════════════════════════════════════════════════════════════
# FULL RUN
# ═════════════════════════════════════════════════════════════════════


async def test_run_day_close_settles_company_once(db, company, employee, manager):
    await db.commit()

    result = await run_day_close(TestSessionFactory, company.id, MONDAY, now=at(TUESDAY, 0, 15))

    assert result.date == MONDAY
    assert result.commands == 2
    assert result.materialized == {"absent": 2}

    again = await run_day_close(TestSessionFactory, company.id, MONDAY, now=at(TUESDAY, 0, 30))
    assert again.commands == 0

    async with TestSessionFactory() as session:
        count = (await session.execute(
            select(func.count()).select_from(AttendanceRecord)
        )).scalar_one()
    assert count == 2


async def test_run_day_close_on_weekend_writes_nothing(db, company, employee):
    await db.commit()

    result = await run_day_close(TestSessionFactory, company.id, SATURDAY, now=at(SATURDAY + timedelta(days=1), 1))

    assert result.materialized == {"none": 1}
    async with TestSessionFactory() as session:
        assert await _status_of(session, employee.id, SATURDAY) is None
