"""Leave Balance Store — per-employee keyed ledger of remaining leave days.

Every mutation goes through ``_apply_delta``: the balance row is changed by a
single ``UPDATE … SET balance = balance + :delta`` and exactly one
``LeaveBalanceAdjustment`` is appended in the same transaction.  No floor or
ceiling is applied here; callers that need a non-negative balance check it
before calling.

A leave type the employee has no row for reads as 0.  Default days are copied
in explicitly (as ``seed`` adjustments) at onboarding and when a new leave
type is created, so the stored balance is always the sum of the deltas.
"""

from __future__ import annotations

import logging
import uuid
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation
from typing import Optional, Sequence, Union

from sqlalchemy import func, select, update
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.ext.asyncio import AsyncSession

from hr_ledger.auth.guards import ensure_permission, ensure_self_or_permission
from hr_ledger.auth.schemas import Actor
from hr_ledger.common.concurrency import hold_keys, ledger_key
from hr_ledger.common.constants import BalanceAdjustmentSource, LeaveStatus
from hr_ledger.common.exceptions import NotFoundException, ValidationException
from hr_ledger.common.pagination import PaginatedResponse, PaginationParams, paginate
from hr_ledger.config import settings
from hr_ledger.core.models import Employee
from hr_ledger.leave.models import (
    LeaveBalance,
    LeaveBalanceAdjustment,
    LeaveRequest,
    LeaveType,
)
from hr_ledger.leave.schemas import (
    BalanceAdjustmentOut,
    LeaveBalanceOut,
    LeaveTypeBrief,
)
from hr_ledger.notifications.service import notify_balance_adjusted

logger = logging.getLogger(__name__)

ZERO = Decimal("0")


def _to_decimal(value: Union[Decimal, int, float, str]) -> Decimal:
    try:
        return Decimal(str(value))
    except (InvalidOperation, ValueError):
        raise ValidationException({"delta": ["Adjustment must be a number."]})


class LeaveBalanceStore:
    """Atomic balance reads and adjustments."""

    # ── Validation / lookups ────────────────────────────────────────

    @staticmethod
    def _validate(delta: Union[Decimal, int, float, str], reason: Optional[str]) -> tuple[Decimal, str]:
        errors: dict[str, list[str]] = {}
        amount = _to_decimal(delta)
        if amount == ZERO:
            errors["delta"] = ["Adjustment must be non-zero."]
        text = (reason or "").strip()
        if not text:
            errors["reason"] = ["Reason is required."]
        elif len(text) < settings.BALANCE_REASON_MIN_LENGTH:
            errors["reason"] = [
                f"Reason must be at least {settings.BALANCE_REASON_MIN_LENGTH} characters."
            ]
        if errors:
            raise ValidationException(errors)
        return amount, text

    @staticmethod
    async def _get_employee(
        db: AsyncSession,
        employee_id: uuid.UUID,
        company_id: Optional[uuid.UUID],
    ) -> Employee:
        employee = await db.get(Employee, employee_id)
        if employee is None or (company_id is not None and employee.company_id != company_id):
            raise NotFoundException("Employee", employee_id)
        return employee

    @staticmethod
    async def get_leave_type(
        db: AsyncSession,
        leave_type_id: uuid.UUID,
        company_id: uuid.UUID,
        *,
        active_only: bool = True,
    ) -> LeaveType:
        """Leave type of *company_id*; other companies' types are not found."""
        leave_type = await db.get(LeaveType, leave_type_id)
        if leave_type is None or leave_type.company_id != company_id:
            raise NotFoundException("LeaveType", leave_type_id)
        if active_only and not leave_type.is_active:
            raise ValidationException({"leave_type_id": ["Leave type is inactive."]})
        return leave_type

    # ── Core write path ─────────────────────────────────────────────

    @staticmethod
    async def _ensure_row(
        db: AsyncSession,
        employee_id: uuid.UUID,
        leave_type_id: uuid.UUID,
    ) -> None:
        """Insert a zero balance row unless one exists; never raises on a race."""
        dialect = db.get_bind().dialect.name
        insert = postgresql.insert if dialect == "postgresql" else sqlite.insert
        stmt = (
            insert(LeaveBalance)
            .values(
                id=uuid.uuid4(),
                employee_id=employee_id,
                leave_type_id=leave_type_id,
                balance=ZERO,
                updated_at=datetime.now(timezone.utc),
            )
            .on_conflict_do_nothing(index_elements=["employee_id", "leave_type_id"])
        )
        await db.execute(stmt)

    @staticmethod
    async def _apply_delta(
        db: AsyncSession,
        *,
        employee_id: uuid.UUID,
        leave_type_id: uuid.UUID,
        delta: Decimal,
        reason: str,
        source: BalanceAdjustmentSource,
        reference_id: Optional[uuid.UUID] = None,
        actor_id: Optional[uuid.UUID] = None,
    ) -> LeaveBalanceAdjustment:
        await hold_keys(db, ledger_key("balance", employee_id, leave_type_id))
        await LeaveBalanceStore._ensure_row(db, employee_id, leave_type_id)

        now = datetime.now(timezone.utc)
        key = (
            LeaveBalance.employee_id == employee_id,
            LeaveBalance.leave_type_id == leave_type_id,
        )
        await db.execute(
            update(LeaveBalance)
            .where(*key)
            .values(balance=LeaveBalance.balance + delta, updated_at=now)
            .execution_options(synchronize_session=False)
        )
        new_balance = (
            await db.execute(select(LeaveBalance.balance).where(*key))
        ).scalar_one()

        adjustment = LeaveBalanceAdjustment(
            employee_id=employee_id,
            leave_type_id=leave_type_id,
            delta=delta,
            balance_after=new_balance,
            reason=reason,
            source=source,
            reference_id=reference_id,
            actor_id=actor_id,
            created_at=now,
        )
        db.add(adjustment)
        await db.flush()

        logger.info(
            "leave balance adjusted",
            extra={
                "employee_id": str(employee_id),
                "leave_type_id": str(leave_type_id),
                "delta": str(delta),
                "balance": str(new_balance),
                "source": source.value,
            },
        )
        return adjustment

    # ── Public operations ───────────────────────────────────────────

    @staticmethod
    async def adjust_balance(
        db: AsyncSession,
        employee_id: uuid.UUID,
        leave_type_id: uuid.UUID,
        delta: Union[Decimal, int, float, str],
        reason: str,
        actor: Optional[Actor],
        *,
        source: BalanceAdjustmentSource = BalanceAdjustmentSource.manual,
        reference_id: Optional[uuid.UUID] = None,
    ) -> Decimal:
        """Add *delta* days to the employee's balance and return the new balance.

        ``actor=None`` marks a system-originated write (leave lifecycle,
        accrual job); a manual adjustment by a person needs
        ``leave:adjust_balance``.
        """
        amount, text = LeaveBalanceStore._validate(delta, reason)
        if actor is not None and source == BalanceAdjustmentSource.manual:
            ensure_permission(
                actor, "leave:adjust_balance",
                "Only HR administrators can adjust leave balances.",
            )

        employee = await LeaveBalanceStore._get_employee(
            db, employee_id, actor.company_id if actor else None,
        )
        await LeaveBalanceStore.get_leave_type(db, leave_type_id, employee.company_id)

        adjustment = await LeaveBalanceStore._apply_delta(
            db,
            employee_id=employee_id,
            leave_type_id=leave_type_id,
            delta=amount,
            reason=text,
            source=source,
            reference_id=reference_id,
            actor_id=actor.employee_id if actor else None,
        )
        if source == BalanceAdjustmentSource.manual:
            await notify_balance_adjusted(db, adjustment, employee.company_id)
        return adjustment.balance_after

    @staticmethod
    async def get_balance(
        db: AsyncSession,
        employee_id: uuid.UUID,
        leave_type_id: uuid.UUID,
    ) -> Decimal:
        result = await db.execute(
            select(LeaveBalance.balance).where(
                LeaveBalance.employee_id == employee_id,
                LeaveBalance.leave_type_id == leave_type_id,
            )
        )
        value = result.scalar_one_or_none()
        return ZERO if value is None else value

    @staticmethod
    async def get_balances(
        db: AsyncSession,
        employee_id: uuid.UUID,
        company_id: Optional[uuid.UUID] = None,
    ) -> dict[uuid.UUID, Decimal]:
        """Snapshot of every active company leave type; unseeded types read 0."""
        employee = await LeaveBalanceStore._get_employee(db, employee_id, company_id)
        types = await db.execute(
            select(LeaveType.id).where(
                LeaveType.company_id == employee.company_id,
                LeaveType.is_active.is_(True),
            )
        )
        balances = {type_id: ZERO for type_id in types.scalars().all()}

        rows = await db.execute(
            select(LeaveBalance.leave_type_id, LeaveBalance.balance).where(
                LeaveBalance.employee_id == employee_id,
                LeaveBalance.leave_type_id.in_(list(balances)),
            )
        )
        for leave_type_id, balance in rows.all():
            balances[leave_type_id] = balance
        return balances

    @staticmethod
    async def pending_days(
        db: AsyncSession,
        employee_id: uuid.UUID,
        leave_type_id: Optional[uuid.UUID] = None,
    ) -> dict[uuid.UUID, Decimal]:
        """Days tied up in pending requests, per leave type."""
        query = (
            select(LeaveRequest.leave_type_id, func.sum(LeaveRequest.total_days))
            .where(
                LeaveRequest.employee_id == employee_id,
                LeaveRequest.status == LeaveStatus.pending,
            )
            .group_by(LeaveRequest.leave_type_id)
        )
        if leave_type_id is not None:
            query = query.where(LeaveRequest.leave_type_id == leave_type_id)
        rows = await db.execute(query)
        return {lt: Decimal(str(total or 0)) for lt, total in rows.all()}

    @staticmethod
    async def get_balance_details(
        db: AsyncSession,
        actor: Actor,
        employee_id: uuid.UUID,
    ) -> list[LeaveBalanceOut]:
        ensure_self_or_permission(actor, employee_id, "leave:read_all")
        balances = await LeaveBalanceStore.get_balances(db, employee_id, actor.company_id)
        pending = await LeaveBalanceStore.pending_days(db, employee_id)

        types = await db.execute(
            select(LeaveType)
            .where(LeaveType.id.in_(list(balances)))
            .order_by(LeaveType.code)
        )
        out = []
        for leave_type in types.scalars().all():
            balance = balances[leave_type.id]
            pending_days = pending.get(leave_type.id, ZERO)
            out.append(
                LeaveBalanceOut(
                    employee_id=employee_id,
                    leave_type=LeaveTypeBrief.model_validate(leave_type),
                    balance=balance,
                    pending=pending_days,
                    available=balance - pending_days,
                )
            )
        return out

    # ── Seeding / accrual ───────────────────────────────────────────

    @staticmethod
    async def _seed_one(
        db: AsyncSession,
        employee_id: uuid.UUID,
        leave_type: LeaveType,
        actor_id: Optional[uuid.UUID],
    ) -> bool:
        await hold_keys(db, ledger_key("balance", employee_id, leave_type.id))
        exists = await db.execute(
            select(LeaveBalance.id).where(
                LeaveBalance.employee_id == employee_id,
                LeaveBalance.leave_type_id == leave_type.id,
            )
        )
        if exists.first() is not None:
            return False
        if leave_type.default_days:
            await LeaveBalanceStore._apply_delta(
                db,
                employee_id=employee_id,
                leave_type_id=leave_type.id,
                delta=Decimal(str(leave_type.default_days)),
                reason=f"Initial allocation: {leave_type.code}",
                source=BalanceAdjustmentSource.seed,
                actor_id=actor_id,
            )
        else:
            await LeaveBalanceStore._ensure_row(db, employee_id, leave_type.id)
        return True

    @staticmethod
    async def seed_balances(
        db: AsyncSession,
        employee_id: uuid.UUID,
        company_id: uuid.UUID,
        *,
        actor_id: Optional[uuid.UUID] = None,
    ) -> list[str]:
        """Copy default days of every active leave type in; returns seeded codes."""
        result = await db.execute(
            select(LeaveType)
            .where(LeaveType.company_id == company_id, LeaveType.is_active.is_(True))
            .order_by(LeaveType.code)
        )
        seeded = []
        for leave_type in result.scalars().all():
            if await LeaveBalanceStore._seed_one(db, employee_id, leave_type, actor_id):
                seeded.append(leave_type.code)
        return seeded

    @staticmethod
    async def seed_leave_type(
        db: AsyncSession,
        leave_type: LeaveType,
        *,
        actor_id: Optional[uuid.UUID] = None,
    ) -> int:
        """Seed a newly added leave type for every active employee."""
        result = await db.execute(
            select(Employee.id)
            .where(Employee.company_id == leave_type.company_id, Employee.is_active.is_(True))
            .order_by(Employee.id)
        )
        count = 0
        for employee_id in result.scalars().all():
            if await LeaveBalanceStore._seed_one(db, employee_id, leave_type, actor_id):
                count += 1
        return count

    @staticmethod
    async def accrue(
        db: AsyncSession,
        actor: Optional[Actor],
        company_id: uuid.UUID,
        leave_type_id: uuid.UUID,
        days: Union[Decimal, int, float, str],
        reason: str,
    ) -> int:
        """Credit *days* to every active employee; returns how many were credited."""
        if actor is not None:
            ensure_permission(actor, "leave:adjust_balance")
        amount, text = LeaveBalanceStore._validate(days, reason)
        if amount < ZERO:
            raise ValidationException({"days": ["Accrual must be positive."]})
        await LeaveBalanceStore.get_leave_type(db, leave_type_id, company_id)

        result = await db.execute(
            select(Employee.id)
            .where(Employee.company_id == company_id, Employee.is_active.is_(True))
            .order_by(Employee.id)
        )
        employee_ids: Sequence[uuid.UUID] = result.scalars().all()
        for employee_id in employee_ids:
            await LeaveBalanceStore._apply_delta(
                db,
                employee_id=employee_id,
                leave_type_id=leave_type_id,
                delta=amount,
                reason=text,
                source=BalanceAdjustmentSource.accrual,
                actor_id=actor.employee_id if actor else None,
            )
        logger.info(
            "accrual applied",
            extra={"leave_type_id": str(leave_type_id), "employees": len(employee_ids)},
        )
        return len(employee_ids)

    @staticmethod
    async def list_adjustments(
        db: AsyncSession,
        actor: Actor,
        employee_id: uuid.UUID,
        params: PaginationParams,
        *,
        leave_type_id: Optional[uuid.UUID] = None,
    ) -> PaginatedResponse:
        ensure_self_or_permission(actor, employee_id, "leave:read_all")
        await LeaveBalanceStore._get_employee(db, employee_id, actor.company_id)

        query = select(LeaveBalanceAdjustment).where(
            LeaveBalanceAdjustment.employee_id == employee_id,
        )
        if leave_type_id is not None:
            query = query.where(LeaveBalanceAdjustment.leave_type_id == leave_type_id)
        query = query.order_by(LeaveBalanceAdjustment.created_at.desc())
        return await paginate(db, query, params, transform=BalanceAdjustmentOut.model_validate)
