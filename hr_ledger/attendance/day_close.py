"""Day close — settle every employee-day of a company once the date is over.

Closing is split into a plan and per-employee commands so that each command
runs in its own unit of work: one contended employee never blocks or rolls
back the rest of the company.
"""

from __future__ import annotations

import logging
import uuid
from collections import Counter
from dataclasses import dataclass
from datetime import date, datetime, timedelta, timezone
from typing import Optional
from zoneinfo import ZoneInfo

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from hr_ledger.attendance.models import AttendanceRecord
from hr_ledger.attendance.rules import as_utc
from hr_ledger.attendance.schemas import DayCloseResult
from hr_ledger.attendance.service import AttendanceService
from hr_ledger.common.concurrency import run_ledger_write
from hr_ledger.common.constants import AttendanceSource, AttendanceStatus
from hr_ledger.common.exceptions import ValidationException
from hr_ledger.config import settings
from hr_ledger.core.models import Employee
from hr_ledger.core.service import CompanyService

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DayCloseCommand:
    company_id: uuid.UUID
    employee_id: uuid.UUID
    date: date


def _ensure_elapsed(day: date, tz: ZoneInfo, now: datetime) -> None:
    if as_utc(now).astimezone(tz).date() <= day:
        raise ValidationException(
            {"date": ["Cannot close a day that has not elapsed yet."]}
        )


def default_close_date(tz: ZoneInfo, now: Optional[datetime] = None) -> date:
    """Yesterday in the company's timezone."""
    current = as_utc(now) if now else datetime.now(timezone.utc)
    return current.astimezone(tz).date() - timedelta(days=1)


async def plan_day_close(
    db: AsyncSession,
    company_id: uuid.UUID,
    day: date,
    *,
    now: Optional[datetime] = None,
) -> list[DayCloseCommand]:
    """One command per active employee whose day is still unsettled.

    A record still PENDING (no punches, or a check-in without check-out) is
    unsettled; locked records are left alone. Earlier dates that were still
    PENDING when they were closed (overnight shifts inside the missing-checkout
    cutoff) are planned again, up to ``DAY_CLOSE_LOOKBACK_DAYS`` back.
    """
    company = await CompanyService.get_company(db, company_id)
    _ensure_elapsed(day, ZoneInfo(company.timezone), now or datetime.now(timezone.utc))

    carried = await db.execute(
        select(AttendanceRecord.employee_id, AttendanceRecord.date)
        .join(Employee, Employee.id == AttendanceRecord.employee_id)
        .where(
            AttendanceRecord.company_id == company_id,
            AttendanceRecord.date < day,
            AttendanceRecord.date >= day - timedelta(days=settings.DAY_CLOSE_LOOKBACK_DAYS),
            AttendanceRecord.status == AttendanceStatus.pending,
            AttendanceRecord.is_locked.is_(False),
            Employee.is_active.is_(True),
        )
        .order_by(AttendanceRecord.date, AttendanceRecord.employee_id)
    )
    commands = [
        DayCloseCommand(company_id=company_id, employee_id=employee_id, date=pending_day)
        for employee_id, pending_day in carried.all()
    ]

    settled = (
        select(AttendanceRecord.employee_id)
        .where(
            AttendanceRecord.company_id == company_id,
            AttendanceRecord.date == day,
            (AttendanceRecord.is_locked.is_(True))
            | (AttendanceRecord.status != AttendanceStatus.pending),
        )
    )
    result = await db.execute(
        select(Employee.id)
        .where(
            Employee.company_id == company_id,
            Employee.is_active.is_(True),
            Employee.id.not_in(settled),
        )
        .order_by(Employee.id)
    )
    commands.extend(
        DayCloseCommand(company_id=company_id, employee_id=employee_id, date=day)
        for employee_id in result.scalars().all()
    )
    return commands


async def handle_day_close(
    db: AsyncSession,
    command: DayCloseCommand,
    *,
    now: Optional[datetime] = None,
) -> Optional[AttendanceStatus]:
    """Materialise one employee-day; returns the stored status (None if no record)."""
    record = await AttendanceService.materialize_daily_status(
        db,
        command.employee_id,
        command.date,
        now=now,
        source=AttendanceSource.day_close,
        skip_locked=True,
    )
    return record.status if record is not None else None


async def run_day_close(
    session_factory: async_sessionmaker,
    company_id: uuid.UUID,
    day: Optional[date] = None,
    *,
    now: Optional[datetime] = None,
) -> DayCloseResult:
    """Plan and execute the close for one company, one command per transaction."""
    current = as_utc(now) if now else datetime.now(timezone.utc)

    async def _plan(db: AsyncSession) -> tuple[date, list[DayCloseCommand]]:
        company = await CompanyService.get_company(db, company_id)
        target = day or default_close_date(ZoneInfo(company.timezone), current)
        return target, await plan_day_close(db, company_id, target, now=current)

    target, commands = await run_ledger_write(session_factory, _plan, label="day-close plan")

    outcomes: Counter[str] = Counter()
    for command in commands:
        async def _handle(db: AsyncSession, command: DayCloseCommand = command) -> Optional[AttendanceStatus]:
            return await handle_day_close(db, command, now=current)

        status = await run_ledger_write(session_factory, _handle, label="day-close")
        outcomes[status.value if status else "none"] += 1

    logger.info(
        "day closed",
        extra={
            "company_id": str(company_id),
            "date": target.isoformat(),
            "commands": len(commands),
            "outcomes": dict(outcomes),
        },
    )
    return DayCloseResult(date=target, commands=len(commands), materialized=dict(outcomes))
