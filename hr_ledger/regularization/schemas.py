"""Regularization Pydantic v2 schemas."""

from __future__ import annotations

import uuid
from datetime import date, datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from hr_ledger.common.constants import RegularizationStatus


class RegularizationCreate(BaseModel):
    """Correction request.  Blank reasons and empty proposals are rejected by
    the service with a specific message rather than a generic 422."""

    date: date
    proposed_check_in: Optional[datetime] = None
    proposed_check_out: Optional[datetime] = None
    reason: str = Field("", max_length=1000)
    employee_id: Optional[uuid.UUID] = None


class RegularizationResolve(BaseModel):
    decision: RegularizationStatus
    remarks: Optional[str] = Field(None, max_length=500)


class RegularizationOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    employee_id: uuid.UUID
    date: date
    proposed_check_in: Optional[datetime] = None
    proposed_check_out: Optional[datetime] = None
    reason: str
    status: RegularizationStatus
    submitted_by: Optional[uuid.UUID] = None
    resolved_by: Optional[uuid.UUID] = None
    resolved_at: Optional[datetime] = None
    review_remarks: Optional[str] = None
    created_at: Optional[datetime] = None
