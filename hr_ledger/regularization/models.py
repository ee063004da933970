"""Regularization ORM model — employee-initiated attendance corrections."""

from __future__ import annotations

import uuid
from datetime import date, datetime
from typing import Optional

import sqlalchemy as sa
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column

from hr_ledger.common.constants import RegularizationStatus
from hr_ledger.database import Base


class RegularizationRequest(Base):
    """Proposed check-in and/or check-out for one (employee, date)."""

    __tablename__ = "regularization_requests"
    __table_args__ = (
        # At most one pending request per employee per day
        sa.Index(
            "uq_regularization_pending_employee_date",
            "employee_id",
            "date",
            unique=True,
            postgresql_where=sa.text("status = 'pending'"),
            sqlite_where=sa.text("status = 'pending'"),
        ),
        sa.Index("ix_regularization_company_status", "company_id", "status"),
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
    proposed_check_in: Mapped[Optional[datetime]] = mapped_column(sa.DateTime(timezone=True))
    proposed_check_out: Mapped[Optional[datetime]] = mapped_column(sa.DateTime(timezone=True))
    reason: Mapped[str] = mapped_column(sa.Text, nullable=False)
    status: Mapped[RegularizationStatus] = mapped_column(
        sa.Enum(RegularizationStatus, name="regularization_status"),
        nullable=False,
        default=RegularizationStatus.pending,
    )
    submitted_by: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUID(as_uuid=True), sa.ForeignKey("employees.id"),
    )
    resolved_by: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUID(as_uuid=True), sa.ForeignKey("employees.id"),
    )
    resolved_at: Mapped[Optional[datetime]] = mapped_column(sa.DateTime(timezone=True))
    review_remarks: Mapped[Optional[str]] = mapped_column(sa.Text)
    created_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), server_default=sa.func.now(),
    )

    def __repr__(self) -> str:
        return f"<RegularizationRequest {self.employee_id} {self.date} {self.status}>"
