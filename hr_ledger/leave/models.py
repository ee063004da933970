"""Leave ORM models: LeaveType, LeaveBalance, LeaveBalanceAdjustment, LeaveRequest."""

from __future__ import annotations

import uuid
from datetime import date, datetime
from decimal import Decimal
from typing import Optional

import sqlalchemy as sa
from sqlalchemy.dialects.postgresql import JSONB, UUID
from sqlalchemy.orm import Mapped, mapped_column, relationship

from hr_ledger.common.constants import BalanceAdjustmentSource, HalfDayType, LeaveStatus
from hr_ledger.core.models import Employee
from hr_ledger.database import Base


class LeaveType(Base):
    __tablename__ = "leave_types"
    __table_args__ = (
        sa.UniqueConstraint("company_id", "code", name="uq_leave_type_code_company"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
    )
    company_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), sa.ForeignKey("companies.id"), nullable=False
    )
    code: Mapped[str] = mapped_column(sa.String(10), nullable=False)
    name: Mapped[str] = mapped_column(sa.String(100), nullable=False)
    default_days: Mapped[Decimal] = mapped_column(
        sa.Numeric(7, 2), default=Decimal("0"), nullable=False
    )
    color: Mapped[Optional[str]] = mapped_column(sa.String(7))
    is_paid: Mapped[bool] = mapped_column(sa.Boolean, default=True, nullable=False)
    requires_document: Mapped[bool] = mapped_column(sa.Boolean, default=False, nullable=False)
    requires_approval: Mapped[bool] = mapped_column(sa.Boolean, default=True, nullable=False)
    max_days: Mapped[Optional[Decimal]] = mapped_column(sa.Numeric(7, 2))
    enforce_non_negative: Mapped[bool] = mapped_column(
        sa.Boolean, default=True, nullable=False
    )
    allow_backdated: Mapped[bool] = mapped_column(sa.Boolean, default=False, nullable=False)
    is_active: Mapped[bool] = mapped_column(sa.Boolean, default=True, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), server_default=sa.func.now()
    )

    balances: Mapped[list[LeaveBalance]] = relationship(back_populates="leave_type")


class LeaveBalance(Base):
    """Running total per (employee, leave type); written only by the balance store."""

    __tablename__ = "leave_balances"
    __table_args__ = (
        sa.UniqueConstraint("employee_id", "leave_type_id", name="uq_leave_balance"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
    )
    employee_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), sa.ForeignKey("employees.id"), nullable=False
    )
    leave_type_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), sa.ForeignKey("leave_types.id"), nullable=False
    )
    balance: Mapped[Decimal] = mapped_column(
        sa.Numeric(7, 2), default=Decimal("0"), nullable=False
    )
    updated_at: Mapped[Optional[datetime]] = mapped_column(sa.DateTime(timezone=True))

    employee: Mapped[Employee] = relationship(back_populates="leave_balances")
    leave_type: Mapped[LeaveType] = relationship(back_populates="balances")


class LeaveBalanceAdjustment(Base):
    """Append-only audit row; one per balance mutation."""

    __tablename__ = "leave_balance_adjustments"
    __table_args__ = (
        sa.CheckConstraint("delta <> 0", name="ck_adjustment_nonzero"),
        sa.Index("ix_adjustment_employee_type", "employee_id", "leave_type_id"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
    )
    employee_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), sa.ForeignKey("employees.id"), nullable=False
    )
    leave_type_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), sa.ForeignKey("leave_types.id"), nullable=False
    )
    delta: Mapped[Decimal] = mapped_column(sa.Numeric(7, 2), nullable=False)
    balance_after: Mapped[Decimal] = mapped_column(sa.Numeric(7, 2), nullable=False)
    reason: Mapped[str] = mapped_column(sa.Text, nullable=False)
    source: Mapped[BalanceAdjustmentSource] = mapped_column(
        sa.Enum(BalanceAdjustmentSource, name="balance_adjustment_source"),
        nullable=False,
        default=BalanceAdjustmentSource.manual,
    )
    reference_id: Mapped[Optional[uuid.UUID]] = mapped_column(UUID(as_uuid=True))
    actor_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUID(as_uuid=True), sa.ForeignKey("employees.id")
    )
    created_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), nullable=False
    )


class LeaveRequest(Base):
    __tablename__ = "leave_requests"
    __table_args__ = (
        sa.Index("ix_leave_requests_employee_dates", "employee_id", "start_date", "end_date"),
        sa.Index("ix_leave_requests_company_status", "company_id", "status"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
    )
    company_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), sa.ForeignKey("companies.id"), nullable=False
    )
    employee_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), sa.ForeignKey("employees.id"), nullable=False
    )
    leave_type_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), sa.ForeignKey("leave_types.id"), nullable=False
    )
    start_date: Mapped[date] = mapped_column(sa.Date, nullable=False)
    end_date: Mapped[date] = mapped_column(sa.Date, nullable=False)
    # {"2026-03-02": "working", "2026-03-07": "weekend", ...}
    day_details: Mapped[dict] = mapped_column(JSONB, nullable=False, default=dict)
    total_days: Mapped[Decimal] = mapped_column(sa.Numeric(7, 2), nullable=False)
    is_half_day: Mapped[bool] = mapped_column(sa.Boolean, nullable=False, default=False)
    half_day_type: Mapped[Optional[HalfDayType]] = mapped_column(
        sa.Enum(HalfDayType, name="half_day_type")
    )
    reason: Mapped[Optional[str]] = mapped_column(sa.Text)
    document_url: Mapped[Optional[str]] = mapped_column(sa.String(500))
    status: Mapped[LeaveStatus] = mapped_column(
        sa.Enum(LeaveStatus, name="leave_status"),
        nullable=False,
        default=LeaveStatus.pending,
    )
    reviewed_by: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUID(as_uuid=True), sa.ForeignKey("employees.id")
    )
    reviewed_at: Mapped[Optional[datetime]] = mapped_column(sa.DateTime(timezone=True))
    review_remarks: Mapped[Optional[str]] = mapped_column(sa.Text)
    cancelled_by: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUID(as_uuid=True), sa.ForeignKey("employees.id")
    )
    cancelled_at: Mapped[Optional[datetime]] = mapped_column(sa.DateTime(timezone=True))
    created_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), server_default=sa.func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), server_default=sa.func.now()
    )

    leave_type: Mapped[LeaveType] = relationship(lazy="selectin")

    @property
    def working_dates(self) -> list[date]:
        """Dates in range that consume balance (and get marked ON_LEAVE)."""
        return sorted(
            date.fromisoformat(d)
            for d, kind in (self.day_details or {}).items()
            if kind == "working"
        )
