"""Attendance Pydantic v2 schemas — request / response validation.

Naming conventions:
  - *Create / *Request  → request bodies (write)
  - *Out / *Result      → response bodies (read)
"""

from __future__ import annotations

import uuid
from datetime import date, datetime, time
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from hr_ledger.common.constants import (
    AttendanceSource,
    AttendanceStatus,
    HolidayType,
)


# ═════════════════════════════════════════════════════════════════════
# Punches
# ═════════════════════════════════════════════════════════════════════


class Location(BaseModel):
    """Where a punch happened, as reported by the client."""

    latitude: float = Field(..., ge=-90, le=90)
    longitude: float = Field(..., ge=-180, le=180)
    address: Optional[str] = Field(None, max_length=500)


class PunchRequest(BaseModel):
    """Body for check-in / check-out.

    ``employee_id`` and ``timestamp`` are only honoured for callers allowed to
    act on another employee's behalf; self-service punches use server time.
    """

    location: Optional[Location] = None
    employee_id: Optional[uuid.UUID] = None
    timestamp: Optional[datetime] = None


class AttendanceRecordOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    employee_id: uuid.UUID
    date: date
    shift_id: Optional[uuid.UUID] = None
    check_in_time: Optional[datetime] = None
    check_out_time: Optional[datetime] = None
    check_in_location: Optional[dict] = None
    check_out_location: Optional[dict] = None
    late_minutes: int = 0
    early_leaving_minutes: int = 0
    total_work_minutes: int = 0
    overtime_minutes: int = 0
    status: AttendanceStatus
    source: AttendanceSource
    is_regularized: bool = False
    is_locked: bool = False


class AttendanceDayOut(BaseModel):
    """Derived view of one employee-day (nothing is persisted)."""

    employee_id: uuid.UUID
    date: date
    record_id: Optional[uuid.UUID] = None
    shift_id: Optional[uuid.UUID] = None
    check_in_time: Optional[datetime] = None
    check_out_time: Optional[datetime] = None
    late_minutes: int = 0
    early_leaving_minutes: int = 0
    total_work_minutes: int = 0
    overtime_minutes: int = 0
    status: Optional[AttendanceStatus] = None
    is_holiday: bool = False
    on_leave: bool = False
    expected: bool = True


class AttendanceListResponse(BaseModel):
    data: list[AttendanceRecordOut]
    total: int


# ═════════════════════════════════════════════════════════════════════
# Day close / lock
# ═════════════════════════════════════════════════════════════════════


class DayCloseRequest(BaseModel):
    business_date: Optional[date] = Field(
        None, description="Defaults to yesterday in the company timezone",
    )


class DayCloseResult(BaseModel):
    date: date
    commands: int
    materialized: dict[str, int] = Field(default_factory=dict)


class LockRequest(BaseModel):
    from_date: date
    to_date: date
    employee_id: Optional[uuid.UUID] = None

    @model_validator(mode="after")
    def validate_range(self) -> "LockRequest":
        if self.from_date > self.to_date:
            raise ValueError("from_date must be on or before to_date.")
        return self


class LockResult(BaseModel):
    locked: int


# ═════════════════════════════════════════════════════════════════════
# Shift
# ═════════════════════════════════════════════════════════════════════


class ShiftCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    code: str = Field(..., min_length=1, max_length=20)
    start_time: time
    end_time: time
    break_minutes: int = Field(60, ge=0, le=720)
    grace_minutes: int = Field(15, ge=0, le=240)
    half_day_minutes: int = Field(240, ge=0)
    full_day_minutes: int = Field(480, ge=1)
    working_days: list[int] = Field(default_factory=lambda: [0, 1, 2, 3, 4])
    is_default: bool = False

    @field_validator("working_days")
    @classmethod
    def validate_working_days(cls, v: list[int]) -> list[int]:
        if any(d < 0 or d > 6 for d in v):
            raise ValueError("working_days must contain weekday numbers 0 (Mon) to 6 (Sun).")
        return sorted(set(v))

    @model_validator(mode="after")
    def validate_thresholds(self) -> "ShiftCreate":
        if self.half_day_minutes > self.full_day_minutes:
            raise ValueError("half_day_minutes cannot exceed full_day_minutes.")
        return self


class ShiftUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=100)
    start_time: Optional[time] = None
    end_time: Optional[time] = None
    break_minutes: Optional[int] = Field(None, ge=0, le=720)
    grace_minutes: Optional[int] = Field(None, ge=0, le=240)
    half_day_minutes: Optional[int] = Field(None, ge=0)
    full_day_minutes: Optional[int] = Field(None, ge=1)
    working_days: Optional[list[int]] = None
    is_default: Optional[bool] = None
    is_active: Optional[bool] = None

    @field_validator("working_days")
    @classmethod
    def validate_working_days(cls, v: Optional[list[int]]) -> Optional[list[int]]:
        if v is not None and any(d < 0 or d > 6 for d in v):
            raise ValueError("working_days must contain weekday numbers 0 (Mon) to 6 (Sun).")
        return sorted(set(v)) if v is not None else v


class ShiftOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    name: str
    code: str
    start_time: time
    end_time: time
    break_minutes: int
    grace_minutes: int
    half_day_minutes: int
    full_day_minutes: int
    working_days: list[int]
    is_default: bool
    is_active: bool


# ═════════════════════════════════════════════════════════════════════
# Holiday
# ═════════════════════════════════════════════════════════════════════


class HolidayCreate(BaseModel):
    date: date
    name: str = Field(..., min_length=1, max_length=200)
    type: HolidayType = HolidayType.national


class HolidayOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    date: date
    name: str
    type: HolidayType
