"""Core router — company profile and the employee lifecycle.

Mutations run inside ``run_ledger_write`` so onboarding (employee row, seeded
balances, audit entry) commits or rolls back as one unit.
"""


import uuid

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from hr_ledger.auth.dependencies import get_current_actor, require_permission
from hr_ledger.auth.guards import ensure_self_or_permission
from hr_ledger.auth.schemas import Actor
from hr_ledger.common.concurrency import run_ledger_write
from hr_ledger.core.schemas import (
    CompanyOut,
    EmployeeCreate,
    EmployeeOut,
    ShiftAssignRequest,
)
from hr_ledger.core.service import CompanyService, EmployeeService
from hr_ledger.database import get_db, get_session_factory

employees_router = APIRouter(prefix="", tags=["employees"])
companies_router = APIRouter(prefix="", tags=["companies"])


# ── GET /companies/me ───────────────────────────────────────────────

@companies_router.get("/me", response_model=CompanyOut)
async def my_company(
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db),
):
    return await CompanyService.get_company(db, actor.company_id)


# ── GET /employees ──────────────────────────────────────────────────

@employees_router.get("", response_model=list[EmployeeOut])
async def list_employees(
    include_inactive: bool = Query(False),
    actor: Actor = Depends(require_permission("attendance:read_all")),
    db: AsyncSession = Depends(get_db),
):
    return await EmployeeService.list_employees(
        db, actor.company_id, include_inactive=include_inactive,
    )


# ── POST /employees ─────────────────────────────────────────────────

@employees_router.post("", response_model=EmployeeOut, status_code=201)
async def onboard_employee(
    body: EmployeeCreate,
    actor: Actor = Depends(require_permission("employee:manage")),
    session_factory: async_sessionmaker = Depends(get_session_factory),
):
    """Create an employee and seed their leave balances."""

    async def _onboard(db: AsyncSession) -> EmployeeOut:
        employee = await EmployeeService.onboard(db, actor, actor.company_id, body)
        return EmployeeOut.model_validate(employee)

    return await run_ledger_write(session_factory, _onboard, label="onboard employee")


# ── GET /employees/{id} ─────────────────────────────────────────────

@employees_router.get("/{employee_id}", response_model=EmployeeOut)
async def get_employee(
    employee_id: uuid.UUID,
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db),
):
    ensure_self_or_permission(actor, employee_id, "attendance:read_all")
    return await EmployeeService.get_employee(
        db, employee_id, actor.company_id, active_only=False,
    )


# ── PUT /employees/{id}/shift ───────────────────────────────────────

@employees_router.put("/{employee_id}/shift", response_model=EmployeeOut)
async def assign_shift(
    employee_id: uuid.UUID,
    body: ShiftAssignRequest,
    actor: Actor = Depends(require_permission("employee:manage")),
    session_factory: async_sessionmaker = Depends(get_session_factory),
):
    async def _assign(db: AsyncSession) -> EmployeeOut:
        employee = await EmployeeService.assign_shift(db, actor, employee_id, body.shift_id)
        return EmployeeOut.model_validate(employee)

    return await run_ledger_write(session_factory, _assign, label="assign shift")


# ── POST /employees/{id}/deactivate ─────────────────────────────────

@employees_router.post("/{employee_id}/deactivate", response_model=EmployeeOut)
async def deactivate_employee(
    employee_id: uuid.UUID,
    actor: Actor = Depends(require_permission("employee:manage")),
    session_factory: async_sessionmaker = Depends(get_session_factory),
):
    async def _deactivate(db: AsyncSession) -> EmployeeOut:
        employee = await EmployeeService.deactivate(db, actor, employee_id)
        return EmployeeOut.model_validate(employee)

    return await run_ledger_write(session_factory, _deactivate, label="deactivate employee")
