"""Regularization router — submit, list, inspect and resolve correction requests."""


import uuid
from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from hr_ledger.auth.dependencies import get_current_actor, require_permission
from hr_ledger.auth.schemas import Actor
from hr_ledger.common.concurrency import run_ledger_write
from hr_ledger.common.constants import RegularizationStatus
from hr_ledger.common.pagination import PaginationParams
from hr_ledger.database import get_db, get_session_factory
from hr_ledger.regularization.schemas import (
    RegularizationCreate,
    RegularizationOut,
    RegularizationResolve,
)
from hr_ledger.regularization.service import RegularizationService

router = APIRouter(prefix="", tags=["regularization"])


# ── POST / ──────────────────────────────────────────────────────────

@router.post("", response_model=RegularizationOut, status_code=201)
async def submit_regularization(
    body: RegularizationCreate,
    actor: Actor = Depends(get_current_actor),
    session_factory: async_sessionmaker = Depends(get_session_factory),
):
    """Request a correction to a past attendance day."""

    async def _submit(db: AsyncSession) -> RegularizationOut:
        request = await RegularizationService.submit(
            db,
            actor,
            body.employee_id or actor.employee_id,
            body.date,
            body.proposed_check_in,
            body.proposed_check_out,
            body.reason,
        )
        return RegularizationOut.model_validate(request)

    return await run_ledger_write(session_factory, _submit, label="submit regularization")


# ── GET / ───────────────────────────────────────────────────────────

@router.get("")
async def list_regularizations(
    employee_id: Optional[uuid.UUID] = Query(None),
    status: Optional[RegularizationStatus] = Query(None),
    pagination: PaginationParams = Depends(),
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db),
):
    return await RegularizationService.list_requests(
        db, actor, pagination, employee_id=employee_id, status=status,
    )


# ── GET /{id} ───────────────────────────────────────────────────────

@router.get("/{request_id}", response_model=RegularizationOut)
async def get_regularization(
    request_id: uuid.UUID,
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db),
):
    return await RegularizationService.get_request(db, actor, request_id)


# ── POST /{id}/resolve ──────────────────────────────────────────────

@router.post("/{request_id}/resolve", response_model=RegularizationOut)
async def resolve_regularization(
    request_id: uuid.UUID,
    body: RegularizationResolve,
    actor: Actor = Depends(require_permission("attendance:regularize_approve")),
    session_factory: async_sessionmaker = Depends(get_session_factory),
):
    """Approve (apply the proposed times) or reject a pending request."""

    async def _resolve(db: AsyncSession) -> RegularizationOut:
        request = await RegularizationService.resolve(
            db, actor, request_id, body.decision, body.remarks,
        )
        return RegularizationOut.model_validate(request)

    return await run_ledger_write(session_factory, _resolve, label="resolve regularization")
