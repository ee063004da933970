"""Auth schemas — the authenticated caller as seen by ledger services."""

from __future__ import annotations

import uuid

from pydantic import BaseModel, ConfigDict

from hr_ledger.common.constants import PERMISSIONS, UserRole


class Actor(BaseModel):
    """Identity and capabilities of whoever is invoking a ledger operation."""

    model_config = ConfigDict(frozen=True)

    employee_id: uuid.UUID
    company_id: uuid.UUID
    role: UserRole = UserRole.employee

    def can(self, permission: str) -> bool:
        return permission in PERMISSIONS.get(self.role, [])

    def is_self(self, employee_id: uuid.UUID) -> bool:
        return self.employee_id == employee_id
