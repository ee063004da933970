"""Auth tests — bearer token validation, actor resolution, permissions."""

from __future__ import annotations

import uuid
from datetime import datetime, timedelta, timezone

import pytest
from fastapi import Depends
from jose import jwt
from pydantic import ValidationError

from hr_ledger.auth.dependencies import require_permission
from hr_ledger.auth.guards import ensure_permission, ensure_self_or_permission
from hr_ledger.auth.schemas import Actor
from hr_ledger.common.constants import PERMISSIONS, UserRole
from hr_ledger.common.exceptions import Unauthorized
from hr_ledger.config import settings
from tests.conftest import auth_header


def _token(**claims) -> dict[str, str]:
    payload = {
        "type": "access",
        "exp": datetime.now(timezone.utc) + timedelta(hours=1),
        **claims,
    }
    secret = payload.pop("secret", settings.JWT_SECRET)
    token = jwt.encode(payload, secret, algorithm=settings.JWT_ALGORITHM)
    return {"Authorization": f"Bearer {token}"}


# ── Token validation ────────────────────────────────────────────────


async def test_valid_token_resolves_company(client, db, company, employee):
    await db.commit()

    resp = await client.get("/api/v1/companies/me", headers=auth_header(employee.id))

    assert resp.status_code == 200
    assert resp.json()["id"] == str(company.id)


@pytest.mark.parametrize(
    "claims, detail",
    [
        ({"type": "refresh"}, "Invalid token type."),
        ({"sub": "not-a-uuid"}, "Invalid token subject."),
        ({"secret": "some-other-secret"}, "Invalid token."),
    ],
)
async def test_bad_tokens_rejected(client, db, employee, claims, detail):
    await db.commit()
    claims = {"sub": str(employee.id), "role": "employee", **claims}

    resp = await client.get("/api/v1/companies/me", headers=_token(**claims))

    assert resp.status_code == 401
    assert resp.json()["detail"] == detail


async def test_non_bearer_header_rejected(client):
    resp = await client.get("/api/v1/companies/me", headers={"Authorization": "Basic abc"})
    assert resp.status_code == 401


async def test_unknown_employee_rejected(client):
    resp = await client.get("/api/v1/companies/me", headers=auth_header(uuid.uuid4()))
    assert resp.status_code == 401


async def test_unknown_role_falls_back_to_employee(client, db, employee):
    await db.commit()
    headers = _token(sub=str(employee.id), role="superuser")

    resp = await client.post(
        "/api/v1/attendance/lock",
        json={"from_date": "2026-03-02", "to_date": "2026-03-02"},
        headers=headers,
    )
    assert resp.status_code == 403


# ── Permission dependency ───────────────────────────────────────────


async def test_permission_dependency_blocks_low_role(app, client, db, employee):
    """A temporary route guarded by leave:configure rejects a manager token."""

    @app.get("/api/v1/test-configure-only")
    async def _configure_only(actor: Actor = Depends(require_permission("leave:configure"))):
        return {"role": actor.role.value}

    await db.commit()

    denied = await client.get(
        "/api/v1/test-configure-only", headers=auth_header(employee.id, UserRole.manager),
    )
    assert denied.status_code == 403
    assert "leave:configure" in denied.json()["detail"]

    allowed = await client.get(
        "/api/v1/test-configure-only", headers=auth_header(employee.id, UserRole.hr_admin),
    )
    assert allowed.status_code == 200
    assert allowed.json() == {"role": "hr_admin"}


# ── Permission table and guards ─────────────────────────────────────


def test_roles_are_cumulative():
    employee = set(PERMISSIONS[UserRole.employee])
    manager = set(PERMISSIONS[UserRole.manager])
    hr_admin = set(PERMISSIONS[UserRole.hr_admin])

    assert employee < manager < hr_admin
    assert set(PERMISSIONS[UserRole.system_admin]) >= hr_admin
    assert "leave:approve" in manager
    assert "leave:adjust_balance" not in manager


def test_guards():
    me = Actor(employee_id=uuid.uuid4(), company_id=uuid.uuid4())
    other = uuid.uuid4()

    ensure_self_or_permission(me, me.employee_id, "attendance:act_on_behalf")
    with pytest.raises(Unauthorized):
        ensure_self_or_permission(me, other, "attendance:act_on_behalf")
    with pytest.raises(Unauthorized) as exc_info:
        ensure_permission(me, "leave:approve", "Managers only.")
    assert exc_info.value.detail == "Managers only."

    hr = me.model_copy(update={"role": UserRole.hr_admin})
    ensure_self_or_permission(hr, other, "attendance:act_on_behalf")


def test_actor_is_immutable():
    actor = Actor(employee_id=uuid.uuid4(), company_id=uuid.uuid4())
    with pytest.raises(ValidationError):
        actor.role = UserRole.hr_admin  # type: ignore[misc]
