"""Company and employee lifecycle tests — onboarding seeds balances,
shift assignment, deactivation."""

from __future__ import annotations

from decimal import Decimal

import pytest

from hr_ledger.common.audit import entity_history
from hr_ledger.common.constants import UserRole
from hr_ledger.common.exceptions import (
    ConflictError,
    InvalidStateException,
    NotFoundException,
    Unauthorized,
    ValidationException,
)
from hr_ledger.core.schemas import CompanyCreate, EmployeeCreate
from hr_ledger.core.service import CompanyService, EmployeeService
from hr_ledger.leave.balances import LeaveBalanceStore
from tests.conftest import actor_for, auth_header, make_company, make_leave_type, make_shift


def _new_hire(code: str = "AC-900", **overrides) -> EmployeeCreate:
    data = {
        "employee_code": code,
        "first_name": "Nila",
        "last_name": "Rao",
        "email": f"{code.lower()}@acme.io",
    }
    data.update(overrides)
    return EmployeeCreate(**data)


# ── Companies ───────────────────────────────────────────────────────


async def test_create_company_validates_timezone(db):
    company = await CompanyService.create_company(
        db, CompanyCreate(name="Kolkata Works", timezone="Asia/Kolkata"),
    )
    assert company.timezone == "Asia/Kolkata"

    with pytest.raises(ValidationException) as exc_info:
        await CompanyService.create_company(db, CompanyCreate(name="Nowhere", timezone="Mars/Base"))
    assert "timezone" in exc_info.value.errors


# ── Onboarding ──────────────────────────────────────────────────────


async def test_onboard_seeds_default_balances(db, company, hr_admin):
    casual = await make_leave_type(db, company.id, code="CL", default_days=Decimal("12"))
    sick = await make_leave_type(db, company.id, code="SL", default_days=Decimal("6"))

    hire = await EmployeeService.onboard(
        db, actor_for(hr_admin, UserRole.hr_admin), company.id, _new_hire(),
    )

    assert hire.is_active is True
    balances = await LeaveBalanceStore.get_balances(db, hire.id)
    assert balances == {casual.id: Decimal("12"), sick.id: Decimal("6")}

    [audit] = await entity_history(db, "employee", hire.id)
    assert audit.action == "create"
    assert audit.new_values["seeded_types"] == ["CL", "SL"]


async def test_onboard_requires_employee_manage(db, company, manager):
    with pytest.raises(Unauthorized):
        await EmployeeService.onboard(
            db, actor_for(manager, UserRole.manager), company.id, _new_hire(),
        )


async def test_duplicate_employee_code_conflicts(db, company, hr_admin):
    hr = actor_for(hr_admin, UserRole.hr_admin)
    await EmployeeService.onboard(db, hr, company.id, _new_hire("AC-901"))

    with pytest.raises(ConflictError):
        await EmployeeService.onboard(
            db, hr, company.id, _new_hire("AC-901", email="other@acme.io"),
        )


async def test_onboard_rejects_foreign_shift(db, company, hr_admin):
    other = await make_company(db, name="Other Co")
    foreign = await make_shift(db, other.id, code="NGT")

    with pytest.raises(NotFoundException):
        await EmployeeService.onboard(
            db, actor_for(hr_admin, UserRole.hr_admin), company.id,
            _new_hire(shift_id=foreign.id),
        )


# ── Shift assignment / deactivation ─────────────────────────────────


async def test_assign_shift(db, company, employee, hr_admin):
    night = await make_shift(db, company.id, code="NGT", is_default=False)

    updated = await EmployeeService.assign_shift(
        db, actor_for(hr_admin, UserRole.hr_admin), employee.id, night.id,
    )

    assert updated.shift_id == night.id
    assert updated.shift.code == "NGT"

    history = await entity_history(db, "employee", employee.id)
    assert history[-1].old_values == {"shift_id": None}
    assert history[-1].new_values == {"shift_id": str(night.id)}


async def test_deactivated_employee_is_hidden(db, company, employee, hr_admin):
    hr = actor_for(hr_admin, UserRole.hr_admin)
    await EmployeeService.deactivate(db, hr, employee.id)

    with pytest.raises(InvalidStateException):
        await EmployeeService.get_employee(db, employee.id, company.id)

    listed = await EmployeeService.list_employees(db, company.id)
    assert employee.id not in {e.id for e in listed}
    everyone = await EmployeeService.list_employees(db, company.id, include_inactive=True)
    assert employee.id in {e.id for e in everyone}


async def test_other_company_employee_not_found(db, company, hr_admin):
    other = await make_company(db, name="Other Co")

    with pytest.raises(NotFoundException):
        await EmployeeService.get_employee(db, hr_admin.id, other.id)


# ── HTTP ────────────────────────────────────────────────────────────


async def test_onboard_endpoint(client, db, company, hr_admin):
    await make_leave_type(db, company.id, default_days=Decimal("10"))
    await db.commit()

    resp = await client.post(
        "/api/v1/employees",
        json={
            "employee_code": "AC-950",
            "first_name": "Dev",
            "email": "dev@acme.io",
        },
        headers=auth_header(hr_admin.id, UserRole.hr_admin),
    )
    assert resp.status_code == 201
    hire_id = resp.json()["id"]

    balances = await client.get(
        "/api/v1/leave/balances",
        params={"employee_id": hire_id},
        headers=auth_header(hr_admin.id, UserRole.hr_admin),
    )
    assert [Decimal(b["balance"]) for b in balances.json()] == [Decimal("10")]
