"""Capability checks used inside services.

Routers authenticate; services still verify capability because the same
operations are reachable from jobs and other services.
"""

from __future__ import annotations

import uuid
from typing import Optional

from hr_ledger.auth.schemas import Actor
from hr_ledger.common.exceptions import Unauthorized


def ensure_permission(actor: Actor, permission: str, detail: Optional[str] = None) -> None:
    if not actor.can(permission):
        raise Unauthorized(
            detail or f"Permission '{permission}' is not granted to role '{actor.role.value}'."
        )


def ensure_self_or_permission(
    actor: Actor,
    employee_id: uuid.UUID,
    permission: str,
    detail: Optional[str] = None,
) -> None:
    """Allow the employee themself, or anyone holding *permission*."""
    if actor.is_self(employee_id) or actor.can(permission):
        return
    raise Unauthorized(detail or "You can only act on your own records.")
