"""Core service — companies and the employee lifecycle.

Onboarding seeds the new employee's leave balances with every active leave
type's default days; deactivation keeps all history.
"""

from __future__ import annotations

import logging
import uuid
from datetime import datetime, timezone
from typing import Optional, Sequence
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from hr_ledger.attendance.models import Shift
from hr_ledger.auth.guards import ensure_permission
from hr_ledger.auth.schemas import Actor
from hr_ledger.common.audit import create_audit_entry
from hr_ledger.common.exceptions import (
    ConflictError,
    InvalidStateException,
    NotFoundException,
    ValidationException,
)
from hr_ledger.core.models import Company, Employee
from hr_ledger.core.schemas import CompanyCreate, EmployeeCreate
from hr_ledger.leave.balances import LeaveBalanceStore

logger = logging.getLogger(__name__)


def _validate_timezone(name: str) -> None:
    try:
        ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError):
        raise ValidationException({"timezone": [f"Unknown timezone '{name}'."]})


class CompanyService:

    @staticmethod
    async def create_company(db: AsyncSession, data: CompanyCreate) -> Company:
        _validate_timezone(data.timezone)
        company = Company(name=data.name, timezone=data.timezone, is_active=True)
        db.add(company)
        await db.flush()
        logger.info("company created", extra={"company_id": str(company.id)})
        return company

    @staticmethod
    async def get_company(db: AsyncSession, company_id: uuid.UUID) -> Company:
        company = await db.get(Company, company_id)
        if company is None:
            raise NotFoundException("Company", company_id)
        return company


class EmployeeService:

    @staticmethod
    async def get_employee(
        db: AsyncSession,
        employee_id: uuid.UUID,
        company_id: Optional[uuid.UUID] = None,
        *,
        active_only: bool = True,
    ) -> Employee:
        """Load an employee with company and shift.

        Employees of another company are reported as not found.
        """
        result = await db.execute(
            select(Employee)
            .where(Employee.id == employee_id)
            .options(selectinload(Employee.company), selectinload(Employee.shift))
        )
        employee = result.scalars().first()
        if employee is None or (company_id is not None and employee.company_id != company_id):
            raise NotFoundException("Employee", employee_id)
        if active_only and not employee.is_active:
            raise InvalidStateException("Employee is deactivated.", state="inactive")
        return employee

    @staticmethod
    async def list_employees(
        db: AsyncSession,
        company_id: uuid.UUID,
        *,
        include_inactive: bool = False,
    ) -> Sequence[Employee]:
        query = select(Employee).where(Employee.company_id == company_id)
        if not include_inactive:
            query = query.where(Employee.is_active.is_(True))
        result = await db.execute(query.order_by(Employee.employee_code))
        return result.scalars().all()

    @staticmethod
    async def onboard(
        db: AsyncSession,
        actor: Optional[Actor],
        company_id: uuid.UUID,
        data: EmployeeCreate,
    ) -> Employee:
        """Create an employee and seed their leave balances."""
        if actor is not None:
            ensure_permission(actor, "employee:manage")

        duplicate = await db.execute(
            select(Employee.id).where(
                Employee.company_id == company_id,
                Employee.employee_code == data.employee_code,
            )
        )
        if duplicate.first() is not None:
            raise ConflictError("employee_code", data.employee_code)

        if data.shift_id is not None:
            await EmployeeService._get_shift(db, company_id, data.shift_id)

        employee = Employee(
            company_id=company_id,
            employee_code=data.employee_code,
            first_name=data.first_name,
            last_name=data.last_name,
            email=data.email,
            department=data.department,
            shift_id=data.shift_id,
            is_active=True,
        )
        db.add(employee)
        await db.flush()

        seeded = await LeaveBalanceStore.seed_balances(
            db, employee.id, company_id,
            actor_id=actor.employee_id if actor else None,
        )

        await create_audit_entry(
            db,
            action="create",
            entity_type="employee",
            entity_id=employee.id,
            actor_id=actor.employee_id if actor else None,
            new_values={"employee_code": data.employee_code, "seeded_types": seeded},
        )
        logger.info(
            "employee onboarded",
            extra={"employee_id": str(employee.id), "company_id": str(company_id)},
        )
        return await EmployeeService.get_employee(db, employee.id)

    @staticmethod
    async def assign_shift(
        db: AsyncSession,
        actor: Actor,
        employee_id: uuid.UUID,
        shift_id: Optional[uuid.UUID],
    ) -> Employee:
        """Point the employee at a shift; existing records keep their own shift."""
        ensure_permission(actor, "employee:manage")
        employee = await EmployeeService.get_employee(db, employee_id, actor.company_id)
        if shift_id is not None:
            await EmployeeService._get_shift(db, actor.company_id, shift_id)

        old_shift = employee.shift_id
        employee.shift_id = shift_id
        employee.updated_at = datetime.now(timezone.utc)
        await db.flush()

        await create_audit_entry(
            db,
            action="assign_shift",
            entity_type="employee",
            entity_id=employee.id,
            actor_id=actor.employee_id,
            old_values={"shift_id": old_shift},
            new_values={"shift_id": shift_id},
        )
        db.expire(employee, ["shift"])
        return await EmployeeService.get_employee(db, employee.id)

    @staticmethod
    async def deactivate(
        db: AsyncSession,
        actor: Actor,
        employee_id: uuid.UUID,
    ) -> Employee:
        ensure_permission(actor, "employee:manage")
        employee = await EmployeeService.get_employee(db, employee_id, actor.company_id)
        now = datetime.now(timezone.utc)
        employee.is_active = False
        employee.deactivated_at = now
        employee.updated_at = now
        await db.flush()

        await create_audit_entry(
            db,
            action="deactivate",
            entity_type="employee",
            entity_id=employee.id,
            actor_id=actor.employee_id,
        )
        logger.info("employee deactivated", extra={"employee_id": str(employee.id)})
        return employee

    @staticmethod
    async def _get_shift(db: AsyncSession, company_id: uuid.UUID, shift_id: uuid.UUID) -> Shift:
        shift = await db.get(Shift, shift_id)
        if shift is None or shift.company_id != company_id:
            raise NotFoundException("Shift", shift_id)
        if not shift.is_active:
            raise ValidationException({"shift_id": ["Shift is inactive."]})
        return shift
