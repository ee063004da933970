"""Leave Pydantic v2 schemas — request / response validation.

Naming conventions:
  - *Create / *Request  → request bodies (write)
  - *Out                → response bodies (read)
  - *Brief              → compact embedded representations
"""

from __future__ import annotations

import uuid
from datetime import date, datetime
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from hr_ledger.common.constants import (
    BalanceAdjustmentSource,
    HalfDayType,
    LeaveStatus,
    MAX_LEAVE_RANGE_DAYS,
)


# ═════════════════════════════════════════════════════════════════════
# Embedded / shared
# ═════════════════════════════════════════════════════════════════════


class LeaveTypeBrief(BaseModel):
    """Minimal leave type info embedded in leave responses."""

    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    code: str
    name: str
    is_paid: bool = True


# ═════════════════════════════════════════════════════════════════════
# Leave Type
# ═════════════════════════════════════════════════════════════════════


class LeaveTypeCreate(BaseModel):
    code: str = Field(..., min_length=1, max_length=10)
    name: str = Field(..., min_length=1, max_length=100)
    default_days: Decimal = Field(Decimal("0"), ge=0, max_digits=7, decimal_places=2)
    color: Optional[str] = Field(None, pattern=r"^#[0-9A-Fa-f]{6}$")
    is_paid: bool = True
    requires_document: bool = False
    requires_approval: bool = True
    max_days: Optional[Decimal] = Field(None, gt=0, max_digits=7, decimal_places=2)
    enforce_non_negative: bool = True
    allow_backdated: bool = False

    @field_validator("code")
    @classmethod
    def upper_code(cls, v: str) -> str:
        return v.strip().upper()


class LeaveTypeOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    code: str
    name: str
    default_days: Decimal
    color: Optional[str] = None
    is_paid: bool
    requires_document: bool
    requires_approval: bool
    max_days: Optional[Decimal] = None
    enforce_non_negative: bool
    allow_backdated: bool
    is_active: bool


# ═════════════════════════════════════════════════════════════════════
# Balances
# ═════════════════════════════════════════════════════════════════════


class LeaveBalanceOut(BaseModel):
    """Balance for a single leave type with computed pending/available."""

    employee_id: uuid.UUID
    leave_type: LeaveTypeBrief
    balance: Decimal
    pending: Decimal = Decimal("0")
    available: Decimal = Decimal("0")


class BalanceAdjustRequest(BaseModel):
    """Manual HR adjustment; positive credits, negative debits."""

    employee_id: uuid.UUID
    leave_type_id: uuid.UUID
    delta: Decimal = Field(..., max_digits=7, decimal_places=2)
    reason: str = Field(..., max_length=500)


class BalanceAdjustResult(BaseModel):
    employee_id: uuid.UUID
    leave_type_id: uuid.UUID
    balance: Decimal


class BalanceAdjustmentOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    employee_id: uuid.UUID
    leave_type_id: uuid.UUID
    delta: Decimal
    balance_after: Decimal
    reason: str
    source: BalanceAdjustmentSource
    reference_id: Optional[uuid.UUID] = None
    actor_id: Optional[uuid.UUID] = None
    created_at: datetime


class AccrualRequest(BaseModel):
    leave_type_id: uuid.UUID
    days: Decimal = Field(..., gt=0, max_digits=7, decimal_places=2)
    reason: str = Field(..., max_length=500)


class AccrualResult(BaseModel):
    leave_type_id: uuid.UUID
    employees: int


# ═════════════════════════════════════════════════════════════════════
# Leave Request
# ═════════════════════════════════════════════════════════════════════


class LeaveRequestCreate(BaseModel):
    """Payload for applying a leave request.

    ``employee_id`` is only honoured for HR applying on someone's behalf.
    """

    leave_type_id: uuid.UUID
    start_date: date = Field(..., description="Leave start date (inclusive)")
    end_date: date = Field(..., description="Leave end date (inclusive)")
    reason: Optional[str] = Field(None, max_length=1000)
    document_url: Optional[str] = Field(None, max_length=500)
    employee_id: Optional[uuid.UUID] = None
    is_half_day: bool = False
    half_day_type: Optional[HalfDayType] = None

    @model_validator(mode="after")
    def validate_dates(self) -> "LeaveRequestCreate":
        if self.start_date > self.end_date:
            raise ValueError("start_date must be on or before end_date.")
        if (self.end_date - self.start_date).days >= MAX_LEAVE_RANGE_DAYS:
            raise ValueError(
                f"Leave request cannot span more than {MAX_LEAVE_RANGE_DAYS} days."
            )
        if self.is_half_day:
            if self.start_date != self.end_date:
                raise ValueError("A half-day leave must start and end on the same date.")
            if self.half_day_type is None:
                raise ValueError("half_day_type is required for a half-day leave.")
        elif self.half_day_type is not None:
            raise ValueError("half_day_type is only allowed on a half-day leave.")
        return self


class LeaveRequestOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    employee_id: uuid.UUID
    leave_type_id: uuid.UUID
    start_date: date
    end_date: date
    day_details: dict
    total_days: Decimal
    is_half_day: bool = False
    half_day_type: Optional[HalfDayType] = None
    reason: Optional[str] = None
    document_url: Optional[str] = None
    status: LeaveStatus
    reviewed_by: Optional[uuid.UUID] = None
    reviewed_at: Optional[datetime] = None
    review_remarks: Optional[str] = None
    cancelled_by: Optional[uuid.UUID] = None
    cancelled_at: Optional[datetime] = None
    created_at: Optional[datetime] = None

    leave_type: Optional[LeaveTypeBrief] = None


class LeaveApproveRequest(BaseModel):
    remarks: Optional[str] = Field(None, max_length=500)


class LeaveRejectRequest(BaseModel):
    remarks: str = Field(..., min_length=1, max_length=500)


class LeaveCancelRequest(BaseModel):
    reason: Optional[str] = Field(None, max_length=500)
