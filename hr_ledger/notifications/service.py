"""Notification outbox service — record ledger events, feed the dispatcher.

Ledger services call the ``notify_*`` helpers inside their own transaction,
so an event exists if and only if the mutation that caused it committed.
"""

from __future__ import annotations

import logging
import uuid
from datetime import datetime, timezone
from typing import Optional, Sequence

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from hr_ledger.common.constants import NotificationType
from hr_ledger.common.exceptions import NotFoundException
from hr_ledger.common.pagination import PaginatedResponse, PaginationParams, paginate
from hr_ledger.notifications.models import Notification
from hr_ledger.notifications.schemas import NotificationOut

logger = logging.getLogger(__name__)


class NotificationService:
    """Async CRUD over the outbox."""

    @staticmethod
    async def emit(
        db: AsyncSession,
        *,
        company_id: uuid.UUID,
        employee_id: uuid.UUID,
        type: NotificationType,
        title: str,
        message: str,
        entity_type: Optional[str] = None,
        entity_id: Optional[uuid.UUID] = None,
    ) -> Notification:
        """Append one event row and flush."""
        notification = Notification(
            company_id=company_id,
            employee_id=employee_id,
            type=type,
            title=title,
            message=message,
            entity_type=entity_type,
            entity_id=entity_id,
            created_at=datetime.now(timezone.utc),
        )
        db.add(notification)
        await db.flush()
        logger.info(
            "ledger event %s", type.value,
            extra={"employee_id": str(employee_id), "reference_id": str(entity_id)},
        )
        return notification

    @staticmethod
    async def list_for_employee(
        db: AsyncSession,
        employee_id: uuid.UUID,
        params: PaginationParams,
    ) -> PaginatedResponse:
        query = (
            select(Notification)
            .where(Notification.employee_id == employee_id)
            .order_by(Notification.created_at.desc())
        )
        return await paginate(db, query, params, transform=NotificationOut.model_validate)

    @staticmethod
    async def list_pending(
        db: AsyncSession,
        company_id: uuid.UUID,
        *,
        limit: int = 100,
    ) -> Sequence[Notification]:
        """Oldest undispatched events first, for the dispatcher to drain."""
        result = await db.execute(
            select(Notification)
            .where(
                Notification.company_id == company_id,
                Notification.is_dispatched.is_(False),
            )
            .order_by(Notification.created_at.asc())
            .limit(limit)
        )
        return result.scalars().all()

    @staticmethod
    async def mark_dispatched(
        db: AsyncSession,
        company_id: uuid.UUID,
        notification_ids: Sequence[uuid.UUID],
    ) -> int:
        """Acknowledge delivery; already-dispatched ids are ignored."""
        if not notification_ids:
            return 0
        result = await db.execute(
            update(Notification)
            .where(
                Notification.company_id == company_id,
                Notification.id.in_(list(notification_ids)),
                Notification.is_dispatched.is_(False),
            )
            .values(is_dispatched=True, dispatched_at=datetime.now(timezone.utc))
            .execution_options(synchronize_session=False)
        )
        await db.flush()
        return result.rowcount  # type: ignore[return-value]

    @staticmethod
    async def get(
        db: AsyncSession,
        company_id: uuid.UUID,
        notification_id: uuid.UUID,
    ) -> Notification:
        result = await db.execute(
            select(Notification).where(
                Notification.id == notification_id,
                Notification.company_id == company_id,
            )
        )
        notification = result.scalars().first()
        if notification is None:
            raise NotFoundException("Notification", notification_id)
        return notification


# ── Cross-module helper dispatchers ─────────────────────────────────
# Imported by the attendance, regularization and leave services.
# They accept the ORM object directly to avoid tight schema coupling.


async def notify_regularization_submitted(db: AsyncSession, request) -> Notification:
    """Tell reviewers a correction request is waiting."""
    return await NotificationService.emit(
        db,
        company_id=request.company_id,
        employee_id=request.employee_id,
        type=NotificationType.regularization_submitted,
        title="Attendance Correction Requested",
        message=f"A correction request for {request.date} needs review.",
        entity_type="regularization_request",
        entity_id=request.id,
    )


async def notify_regularization_resolved(db: AsyncSession, request) -> Notification:
    """Tell the employee how their correction request was resolved."""
    outcome = request.status.value
    message = f"Your attendance correction for {request.date} was {outcome}."
    if request.review_remarks:
        message += f" Remarks: {request.review_remarks}"
    return await NotificationService.emit(
        db,
        company_id=request.company_id,
        employee_id=request.employee_id,
        type=NotificationType.regularization_resolved,
        title=f"Correction Request {outcome.capitalize()}",
        message=message,
        entity_type="regularization_request",
        entity_id=request.id,
    )


async def notify_leave_requested(db: AsyncSession, leave_request) -> Notification:
    return await NotificationService.emit(
        db,
        company_id=leave_request.company_id,
        employee_id=leave_request.employee_id,
        type=NotificationType.leave_requested,
        title="New Leave Request",
        message=(
            f"A leave request from {leave_request.start_date} to "
            f"{leave_request.end_date} ({leave_request.total_days} day(s)) "
            f"requires approval."
        ),
        entity_type="leave_request",
        entity_id=leave_request.id,
    )


async def notify_leave_approved(db: AsyncSession, leave_request) -> Notification:
    return await NotificationService.emit(
        db,
        company_id=leave_request.company_id,
        employee_id=leave_request.employee_id,
        type=NotificationType.leave_approved,
        title="Leave Request Approved",
        message=(
            f"Your leave request from {leave_request.start_date} to "
            f"{leave_request.end_date} has been approved."
        ),
        entity_type="leave_request",
        entity_id=leave_request.id,
    )


async def notify_leave_rejected(db: AsyncSession, leave_request) -> Notification:
    return await NotificationService.emit(
        db,
        company_id=leave_request.company_id,
        employee_id=leave_request.employee_id,
        type=NotificationType.leave_rejected,
        title="Leave Request Rejected",
        message=(
            f"Your leave request from {leave_request.start_date} to "
            f"{leave_request.end_date} was rejected. "
            f"Reason: {leave_request.review_remarks}"
        ),
        entity_type="leave_request",
        entity_id=leave_request.id,
    )


async def notify_leave_cancelled(db: AsyncSession, leave_request) -> Notification:
    return await NotificationService.emit(
        db,
        company_id=leave_request.company_id,
        employee_id=leave_request.employee_id,
        type=NotificationType.leave_cancelled,
        title="Leave Request Cancelled",
        message=(
            f"The leave request from {leave_request.start_date} to "
            f"{leave_request.end_date} was cancelled."
        ),
        entity_type="leave_request",
        entity_id=leave_request.id,
    )


async def notify_balance_adjusted(db: AsyncSession, adjustment, company_id: uuid.UUID) -> Notification:
    return await NotificationService.emit(
        db,
        company_id=company_id,
        employee_id=adjustment.employee_id,
        type=NotificationType.balance_adjusted,
        title="Leave Balance Adjusted",
        message=(
            f"Your leave balance changed by {adjustment.delta:+} day(s) "
            f"to {adjustment.balance_after}. Reason: {adjustment.reason}"
        ),
        entity_type="leave_balance_adjustment",
        entity_id=adjustment.id,
    )
