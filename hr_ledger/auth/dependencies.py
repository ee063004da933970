"""Auth dependencies — JWT validation, RBAC enforcement.

Tokens are issued by the identity service; this module only verifies them
and resolves the caller into an ``Actor``.
"""

from __future__ import annotations

import uuid
from typing import Callable

from fastapi import Depends, Request
from fastapi.exceptions import HTTPException
from jose import ExpiredSignatureError, JWTError, jwt
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from hr_ledger.auth.schemas import Actor
from hr_ledger.common.constants import UserRole
from hr_ledger.common.exceptions import ForbiddenException
from hr_ledger.config import settings
from hr_ledger.core.models import Employee
from hr_ledger.database import get_db

def _extract_bearer(request: Request) -> str:
    """Extract Bearer token from Authorization header."""
    auth_header = request.headers.get("Authorization")
    if not auth_header or not auth_header.startswith("Bearer "):
        raise HTTPException(status_code=401, detail="Missing or invalid Authorization header.")
    return auth_header[7:]


# ── Core dependency ─────────────────────────────────────────────────

async def get_current_actor(
    request: Request,
    db: AsyncSession = Depends(get_db),
) -> Actor:
    """Validate the JWT and return the caller as an ``Actor``."""
    token = _extract_bearer(request)

    try:
        payload = jwt.decode(
            token,
            settings.JWT_SECRET,
            algorithms=[settings.JWT_ALGORITHM],
        )
    except ExpiredSignatureError:
        raise HTTPException(status_code=401, detail="Token has expired.")
    except JWTError:
        raise HTTPException(status_code=401, detail="Invalid token.")

    if payload.get("type") != "access":
        raise HTTPException(status_code=401, detail="Invalid token type.")

    try:
        employee_id = uuid.UUID(payload["sub"])
    except (KeyError, ValueError):
        raise HTTPException(status_code=401, detail="Invalid token subject.")

    result = await db.execute(
        select(Employee.company_id).where(
            Employee.id == employee_id, Employee.is_active.is_(True),
        )
    )
    company_id = result.scalar_one_or_none()
    if company_id is None:
        raise HTTPException(status_code=401, detail="User account is inactive or not found.")

    try:
        role = UserRole(payload.get("role", UserRole.employee.value))
    except ValueError:
        role = UserRole.employee
    request.state.user_role = role

    return Actor(employee_id=employee_id, company_id=company_id, role=role)


# ── Permission-based dependency ─────────────────────────────────────

def require_permission(permission: str) -> Callable:
    """Return a FastAPI dependency that enforces a specific permission string."""

    async def _check(actor: Actor = Depends(get_current_actor)) -> Actor:
        if not actor.can(permission):
            raise ForbiddenException(
                detail=f"Permission '{permission}' is not granted to role '{actor.role.value}'.",
            )
        return actor

    return _check
