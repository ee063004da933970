#!/usr/bin/env python3
"""Ledger jobs — scheduled day close and leave accrual, plus tenant bootstrap.

Designed to run from cron shortly after midnight in the company timezone:
    15 0 * * *    python scripts/ledger_jobs.py day-close
    0 1 1 * *     python scripts/ledger_jobs.py accrue --company <id> --leave-type <id> --days 1.5 --reason "Monthly accrual"

Usage:
    python scripts/ledger_jobs.py day-close                         # yesterday, every active company
    python scripts/ledger_jobs.py day-close --company <id> --date 2026-03-02
    python scripts/ledger_jobs.py accrue --company <id> --leave-type <id> --days 1.5 --reason "March accrual"
    python scripts/ledger_jobs.py create-company --name "Acme" --timezone Asia/Kolkata

Requires .env at project root (DATABASE_URL, JWT_SECRET).
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys
import uuid
from datetime import date
from decimal import Decimal, InvalidOperation
from pathlib import Path

from dotenv import load_dotenv

PROJECT_ROOT = Path(__file__).resolve().parent.parent
load_dotenv(PROJECT_ROOT / ".env")

from sqlalchemy import select  # noqa: E402

from hr_ledger.attendance.day_close import run_day_close  # noqa: E402
from hr_ledger.common.concurrency import run_ledger_write  # noqa: E402
from hr_ledger.common.exceptions import AppException  # noqa: E402
from hr_ledger.common.logging_utils import setup_logging  # noqa: E402
from hr_ledger.core.models import Company  # noqa: E402
from hr_ledger.core.schemas import CompanyCreate  # noqa: E402
from hr_ledger.core.service import CompanyService  # noqa: E402
from hr_ledger.database import async_session_factory, engine  # noqa: E402
from hr_ledger.leave.balances import LeaveBalanceStore  # noqa: E402

# Register the remaining mappers referenced by relationships
import hr_ledger.notifications.models  # noqa: E402,F401
import hr_ledger.regularization.models  # noqa: E402,F401

logger = logging.getLogger("ledger_jobs")


# ══════════════════════════════════════════════════════════════════════
# Jobs
# ══════════════════════════════════════════════════════════════════════

async def _active_company_ids() -> list[uuid.UUID]:
    async with async_session_factory() as db:
        result = await db.execute(
            select(Company.id).where(Company.is_active.is_(True)).order_by(Company.created_at)
        )
        return list(result.scalars().all())


async def day_close(company_id: uuid.UUID | None, day: date | None) -> int:
    companies = [company_id] if company_id else await _active_company_ids()
    failures = 0
    for cid in companies:
        try:
            result = await run_day_close(async_session_factory, cid, day)
        except AppException as exc:
            failures += 1
            logger.error("day close failed for %s: %s", cid, exc.detail)
            continue
        print(f"  {cid}  {result.date}  commands={result.commands}  {result.materialized}")
    return failures


async def accrue(company_id: uuid.UUID, leave_type_id: uuid.UUID, days: Decimal, reason: str) -> int:
    async def _accrue(db) -> int:
        return await LeaveBalanceStore.accrue(db, None, company_id, leave_type_id, days, reason)

    credited = await run_ledger_write(async_session_factory, _accrue, label="accrual job")
    print(f"  credited {days} day(s) to {credited} employee(s)")
    return 0


async def create_company(name: str, tz: str) -> int:
    async def _create(db) -> uuid.UUID:
        company = await CompanyService.create_company(db, CompanyCreate(name=name, timezone=tz))
        return company.id

    company_id = await run_ledger_write(async_session_factory, _create, label="create company")
    print(f"  company {company_id}")
    return 0


# ══════════════════════════════════════════════════════════════════════
# CLI
# ══════════════════════════════════════════════════════════════════════

def _decimal(value: str) -> Decimal:
    try:
        return Decimal(value)
    except InvalidOperation:
        raise argparse.ArgumentTypeError(f"not a number: {value!r}")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="HR ledger scheduled jobs",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    sub = parser.add_subparsers(dest="command", required=True)

    close = sub.add_parser("day-close", help="Settle attendance for an elapsed date")
    close.add_argument("--company", type=uuid.UUID, help="Company id (default: all active)")
    close.add_argument("--date", type=date.fromisoformat, help="Date to close (default: yesterday)")

    acc = sub.add_parser("accrue", help="Credit leave days to every active employee")
    acc.add_argument("--company", type=uuid.UUID, required=True)
    acc.add_argument("--leave-type", type=uuid.UUID, required=True)
    acc.add_argument("--days", type=_decimal, required=True)
    acc.add_argument("--reason", type=str, required=True)

    comp = sub.add_parser("create-company", help="Create a tenant")
    comp.add_argument("--name", type=str, required=True)
    comp.add_argument("--timezone", type=str, default="UTC")

    return parser


async def _run(args: argparse.Namespace) -> int:
    try:
        if args.command == "day-close":
            return await day_close(args.company, args.date)
        if args.command == "accrue":
            return await accrue(args.company, args.leave_type, args.days, args.reason)
        return await create_company(args.name, args.timezone)
    except AppException as exc:
        logger.error("%s failed: %s", args.command, exc.detail)
        return 1
    finally:
        await engine.dispose()


def main() -> None:
    args = build_parser().parse_args()
    setup_logging()
    sys.exit(1 if asyncio.run(_run(args)) else 0)


if __name__ == "__main__":
    main()
