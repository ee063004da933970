"""Append-only audit trail for ledger mutations.

Every write path (punches, regularization decisions, leave transitions,
configuration changes) records one row in the same transaction as the change
itself. Values are stored as JSON; UUIDs, dates and Decimals are encoded to
strings on the way in so callers can pass domain values directly.
"""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from typing import Any, Optional, Sequence

from pydantic_core import to_jsonable_python
from sqlalchemy import Column, DateTime, ForeignKey, Index, String, select
from sqlalchemy.dialects.postgresql import JSONB, UUID
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import Mapped, mapped_column

from hr_ledger.database import Base


class AuditTrail(Base):
    __tablename__ = "audit_trail"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
    )
    # NULL for scheduled jobs (day close, accrual)
    actor_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("employees.id"),
        nullable=True,
    )
    action: Mapped[str] = mapped_column(String(50), nullable=False)
    entity_type: Mapped[str] = mapped_column(String(50), nullable=False)
    entity_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), nullable=False)
    old_values = Column(JSONB, nullable=True)
    new_values = Column(JSONB, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    __table_args__ = (
        Index("ix_audit_trail_actor_id", "actor_id"),
        Index("ix_audit_trail_entity", "entity_type", "entity_id"),
        Index("ix_audit_trail_created_at", "created_at"),
    )

    def __repr__(self) -> str:
        return f"<AuditTrail {self.action} {self.entity_type}/{self.entity_id}>"


def _encode(values: Optional[dict[str, Any]]) -> Optional[dict[str, Any]]:
    if values is None:
        return None
    return to_jsonable_python(values)


async def create_audit_entry(
    session: AsyncSession,
    *,
    action: str,
    entity_type: str,
    entity_id: uuid.UUID,
    actor_id: Optional[uuid.UUID] = None,
    old_values: Optional[dict[str, Any]] = None,
    new_values: Optional[dict[str, Any]] = None,
    at: Optional[datetime] = None,
) -> AuditTrail:
    """Add and flush one audit row.

    *action* is a short verb (``check_in``, ``approve``, ``lock`` ...);
    *entity_type* the table-level noun (``attendance_record``, ``leave_request``).
    """
    entry = AuditTrail(
        actor_id=actor_id,
        action=action,
        entity_type=entity_type,
        entity_id=entity_id,
        old_values=_encode(old_values),
        new_values=_encode(new_values),
        created_at=at or datetime.now(timezone.utc),
    )
    session.add(entry)
    await session.flush()
    return entry


async def entity_history(
    session: AsyncSession,
    entity_type: str,
    entity_id: uuid.UUID,
) -> Sequence[AuditTrail]:
    """Audit rows of one entity, oldest first."""
    result = await session.execute(
        select(AuditTrail)
        .where(AuditTrail.entity_type == entity_type, AuditTrail.entity_id == entity_id)
        .order_by(AuditTrail.created_at, AuditTrail.id)
    )
    return result.scalars().all()
