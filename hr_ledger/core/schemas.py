"""Core Pydantic v2 schemas — companies and employees."""

from __future__ import annotations

import uuid
from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, EmailStr, Field

from hr_ledger.config import settings


class CompanyCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=150)
    timezone: str = Field(default_factory=lambda: settings.DEFAULT_TIMEZONE, max_length=50)


class CompanyOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    name: str
    timezone: str
    is_active: bool


class EmployeeCreate(BaseModel):
    employee_code: str = Field(..., min_length=1, max_length=20)
    first_name: str = Field(..., min_length=1, max_length=100)
    last_name: Optional[str] = Field(None, max_length=100)
    email: EmailStr
    department: Optional[str] = Field(None, max_length=150)
    shift_id: Optional[uuid.UUID] = None


class EmployeeBrief(BaseModel):
    """Minimal employee info embedded in other responses."""

    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    employee_code: str
    display_name: str


class EmployeeOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    company_id: uuid.UUID
    employee_code: str
    first_name: str
    last_name: Optional[str] = None
    display_name: str
    email: str
    department: Optional[str] = None
    shift_id: Optional[uuid.UUID] = None
    is_active: bool
    deactivated_at: Optional[datetime] = None


class ShiftAssignRequest(BaseModel):
    shift_id: Optional[uuid.UUID] = Field(
        None, description="Shift to assign; null falls back to the company default",
    )
