"""Attendance ORM models: Shift, Holiday, AttendanceRecord.

SQLAlchemy 2.0 async-compatible models with Mapped[] annotations.
Check-in/out instants are stored in UTC; the calendar ``date`` of a record is
the local date in the company's timezone.
"""

from __future__ import annotations

import uuid
from datetime import date, datetime, time
from typing import Optional

import sqlalchemy as sa
from sqlalchemy.dialects.postgresql import JSONB, UUID
from sqlalchemy.orm import Mapped, mapped_column, relationship

from hr_ledger.common.constants import (
    AttendanceSource,
    AttendanceStatus,
    HolidayType,
)
from hr_ledger.database import Base


# ═════════════════════════════════════════════════════════════════════
# Shift
# ═════════════════════════════════════════════════════════════════════


class Shift(Base):
    """Company-scoped shift: hours, grace, break, thresholds and working days."""

    __tablename__ = "shifts"
    __table_args__ = (
        sa.UniqueConstraint("company_id", "code", name="uq_shift_code_company"),
        sa.Index(
            "uq_shift_default_per_company",
            "company_id",
            unique=True,
            postgresql_where=sa.text("is_default"),
            sqlite_where=sa.text("is_default = 1"),
        ),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4,
    )
    company_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), sa.ForeignKey("companies.id"), nullable=False,
    )
    name: Mapped[str] = mapped_column(sa.String(100), nullable=False)
    code: Mapped[str] = mapped_column(sa.String(20), nullable=False)
    start_time: Mapped[time] = mapped_column(sa.Time, nullable=False)
    end_time: Mapped[time] = mapped_column(sa.Time, nullable=False)
    break_minutes: Mapped[int] = mapped_column(sa.Integer, default=60, nullable=False)
    grace_minutes: Mapped[int] = mapped_column(sa.Integer, default=15, nullable=False)
    half_day_minutes: Mapped[int] = mapped_column(sa.Integer, default=240, nullable=False)
    full_day_minutes: Mapped[int] = mapped_column(sa.Integer, default=480, nullable=False)
    # Python weekday numbers, Monday=0 … Sunday=6
    working_days: Mapped[list] = mapped_column(
        JSONB, nullable=False, default=lambda: [0, 1, 2, 3, 4],
    )
    is_default: Mapped[bool] = mapped_column(sa.Boolean, default=False, nullable=False)
    is_active: Mapped[bool] = mapped_column(sa.Boolean, default=True, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), server_default=sa.func.now(),
    )
    updated_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), server_default=sa.func.now(),
    )

    def __repr__(self) -> str:
        return f"<Shift {self.code} {self.start_time}-{self.end_time}>"


# ═════════════════════════════════════════════════════════════════════
# Holiday
# ═════════════════════════════════════════════════════════════════════


class Holiday(Base):
    """Company holiday; at most one per (company, date)."""

    __tablename__ = "holidays"
    __table_args__ = (
        sa.UniqueConstraint("company_id", "date", name="uq_holiday_company_date"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4,
    )
    company_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), sa.ForeignKey("companies.id"), nullable=False,
    )
    date: Mapped[date] = mapped_column(sa.Date, nullable=False)
    name: Mapped[str] = mapped_column(sa.String(200), nullable=False)
    type: Mapped[HolidayType] = mapped_column(
        sa.Enum(HolidayType, name="holiday_type"),
        nullable=False,
        default=HolidayType.national,
    )
    created_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), server_default=sa.func.now(),
    )

    def __repr__(self) -> str:
        return f"<Holiday {self.date} {self.name!r}>"


# ═════════════════════════════════════════════════════════════════════
# Attendance Record
# ═════════════════════════════════════════════════════════════════════


class AttendanceRecord(Base):
    """One row per employee per calendar date."""

    __tablename__ = "attendance_records"
    __table_args__ = (
        sa.UniqueConstraint("employee_id", "date", name="uq_attendance_employee_date"),
        sa.Index("ix_attendance_company_date", "company_id", "date"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4,
    )
    company_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), sa.ForeignKey("companies.id"), nullable=False,
    )
    employee_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), sa.ForeignKey("employees.id"), nullable=False,
    )
    date: Mapped[date] = mapped_column(sa.Date, nullable=False)
    shift_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUID(as_uuid=True), sa.ForeignKey("shifts.id"),
    )
    check_in_time: Mapped[Optional[datetime]] = mapped_column(sa.DateTime(timezone=True))
    check_out_time: Mapped[Optional[datetime]] = mapped_column(sa.DateTime(timezone=True))
    check_in_location: Mapped[Optional[dict]] = mapped_column(JSONB)
    check_out_location: Mapped[Optional[dict]] = mapped_column(JSONB)
    late_minutes: Mapped[int] = mapped_column(sa.Integer, default=0, nullable=False)
    early_leaving_minutes: Mapped[int] = mapped_column(sa.Integer, default=0, nullable=False)
    total_work_minutes: Mapped[int] = mapped_column(sa.Integer, default=0, nullable=False)
    overtime_minutes: Mapped[int] = mapped_column(sa.Integer, default=0, nullable=False)
    status: Mapped[AttendanceStatus] = mapped_column(
        sa.Enum(AttendanceStatus, name="attendance_status"),
        nullable=False,
        default=AttendanceStatus.pending,
    )
    source: Mapped[AttendanceSource] = mapped_column(
        sa.Enum(AttendanceSource, name="attendance_source"),
        nullable=False,
        default=AttendanceSource.check_in,
    )
    is_regularized: Mapped[bool] = mapped_column(sa.Boolean, default=False, nullable=False)
    is_locked: Mapped[bool] = mapped_column(sa.Boolean, default=False, nullable=False)
    locked_at: Mapped[Optional[datetime]] = mapped_column(sa.DateTime(timezone=True))
    locked_by: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUID(as_uuid=True), sa.ForeignKey("employees.id"),
    )
    created_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), server_default=sa.func.now(),
    )
    updated_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), server_default=sa.func.now(),
    )

    shift: Mapped[Optional[Shift]] = relationship(foreign_keys=[shift_id])

    def __repr__(self) -> str:
        return f"<AttendanceRecord {self.employee_id} {self.date} {self.status}>"
