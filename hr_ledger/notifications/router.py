"""Notification endpoints — own feed, and the outbox for the dispatcher."""


import uuid

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from hr_ledger.auth.dependencies import get_current_actor, require_permission
from hr_ledger.auth.schemas import Actor
from hr_ledger.common.concurrency import run_ledger_write
from hr_ledger.common.pagination import PaginationParams
from hr_ledger.database import get_db, get_session_factory
from hr_ledger.notifications.schemas import LedgerEvent, NotificationListResponse
from hr_ledger.notifications.service import NotificationService

router = APIRouter(prefix="", tags=["notifications"])


# ── GET / — caller's own events ─────────────────────────────────────

@router.get("", response_model=NotificationListResponse)
async def list_notifications(
    pagination: PaginationParams = Depends(),
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db),
):
    return await NotificationService.list_for_employee(db, actor.employee_id, pagination)


# ── GET /pending — undispatched outbox ──────────────────────────────
# NOTE: registered before /{notification_id}/dispatched so "pending" is
# never parsed as a UUID.

@router.get("/pending", response_model=list[LedgerEvent])
async def pending_events(
    limit: int = Query(100, ge=1, le=500),
    actor: Actor = Depends(require_permission("notification:dispatch")),
    db: AsyncSession = Depends(get_db),
):
    """Oldest undispatched events of the caller's company."""
    rows = await NotificationService.list_pending(db, actor.company_id, limit=limit)
    return [LedgerEvent.model_validate(row) for row in rows]


# ── POST /{id}/dispatched — acknowledge delivery ────────────────────

@router.post("/{notification_id}/dispatched")
async def mark_dispatched(
    notification_id: uuid.UUID,
    actor: Actor = Depends(require_permission("notification:dispatch")),
    session_factory: async_sessionmaker = Depends(get_session_factory),
):
    async def _mark(db: AsyncSession) -> int:
        await NotificationService.get(db, actor.company_id, notification_id)
        return await NotificationService.mark_dispatched(db, actor.company_id, [notification_id])

    dispatched = await run_ledger_write(session_factory, _mark, label="mark dispatched")
    return {"data": {"dispatched": dispatched}}
