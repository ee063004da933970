"""Leave router — leave types, balances, adjustments and the request lifecycle.

All endpoints require authentication.  Balance adjustments and accruals need
``leave:adjust_balance``; approve/reject need ``leave:approve``.
"""


import uuid
from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from hr_ledger.auth.dependencies import get_current_actor, require_permission
from hr_ledger.auth.schemas import Actor
from hr_ledger.common.concurrency import run_ledger_write
from hr_ledger.common.constants import LeaveStatus
from hr_ledger.common.pagination import PaginationParams
from hr_ledger.database import get_db, get_session_factory
from hr_ledger.leave.balances import LeaveBalanceStore
from hr_ledger.leave.schemas import (
    AccrualRequest,
    AccrualResult,
    BalanceAdjustRequest,
    BalanceAdjustResult,
    LeaveApproveRequest,
    LeaveBalanceOut,
    LeaveCancelRequest,
    LeaveRejectRequest,
    LeaveRequestCreate,
    LeaveRequestOut,
    LeaveTypeCreate,
    LeaveTypeOut,
)
from hr_ledger.leave.service import LeaveService

router = APIRouter(prefix="", tags=["leave"])


# ═════════════════════════════════════════════════════════════════════
# Leave types
# ═════════════════════════════════════════════════════════════════════

@router.get("/types", response_model=list[LeaveTypeOut])
async def list_leave_types(
    include_inactive: bool = Query(False),
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db),
):
    return await LeaveService.list_leave_types(
        db, actor.company_id, include_inactive=include_inactive,
    )


@router.post("/types", response_model=LeaveTypeOut, status_code=201)
async def create_leave_type(
    body: LeaveTypeCreate,
    actor: Actor = Depends(require_permission("leave:configure")),
    session_factory: async_sessionmaker = Depends(get_session_factory),
):
    """Create a leave type; every active employee is seeded with its default days."""

    async def _create(db: AsyncSession) -> LeaveTypeOut:
        return LeaveTypeOut.model_validate(await LeaveService.create_leave_type(db, actor, body))

    return await run_ledger_write(session_factory, _create, label="create leave type")


# ═════════════════════════════════════════════════════════════════════
# Balances
# ═════════════════════════════════════════════════════════════════════

@router.get("/balances", response_model=list[LeaveBalanceOut])
async def get_balances(
    employee_id: Optional[uuid.UUID] = Query(None),
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db),
):
    return await LeaveBalanceStore.get_balance_details(
        db, actor, employee_id or actor.employee_id,
    )


@router.post("/balances/adjust", response_model=BalanceAdjustResult)
async def adjust_balance(
    body: BalanceAdjustRequest,
    actor: Actor = Depends(require_permission("leave:adjust_balance")),
    session_factory: async_sessionmaker = Depends(get_session_factory),
):
    """Manual credit (positive) or debit (negative) with a mandatory reason."""

    async def _adjust(db: AsyncSession) -> BalanceAdjustResult:
        balance = await LeaveBalanceStore.adjust_balance(
            db, body.employee_id, body.leave_type_id, body.delta, body.reason, actor,
        )
        return BalanceAdjustResult(
            employee_id=body.employee_id, leave_type_id=body.leave_type_id, balance=balance,
        )

    return await run_ledger_write(session_factory, _adjust, label="adjust balance")


@router.get("/balances/adjustments")
async def list_adjustments(
    employee_id: Optional[uuid.UUID] = Query(None),
    leave_type_id: Optional[uuid.UUID] = Query(None),
    pagination: PaginationParams = Depends(),
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db),
):
    return await LeaveBalanceStore.list_adjustments(
        db, actor, employee_id or actor.employee_id, pagination, leave_type_id=leave_type_id,
    )


@router.post("/balances/accrue", response_model=AccrualResult)
async def accrue(
    body: AccrualRequest,
    actor: Actor = Depends(require_permission("leave:adjust_balance")),
    session_factory: async_sessionmaker = Depends(get_session_factory),
):
    async def _accrue(db: AsyncSession) -> AccrualResult:
        count = await LeaveBalanceStore.accrue(
            db, actor, actor.company_id, body.leave_type_id, body.days, body.reason,
        )
        return AccrualResult(leave_type_id=body.leave_type_id, employees=count)

    return await run_ledger_write(session_factory, _accrue, label="accrue")


# ═════════════════════════════════════════════════════════════════════
# Requests
# ═════════════════════════════════════════════════════════════════════

@router.post("/requests", response_model=LeaveRequestOut, status_code=201)
async def apply_leave(
    body: LeaveRequestCreate,
    actor: Actor = Depends(get_current_actor),
    session_factory: async_sessionmaker = Depends(get_session_factory),
):
    """Apply for leave. Validates policy, overlap and balance."""

    async def _apply(db: AsyncSession) -> LeaveRequestOut:
        return LeaveRequestOut.model_validate(await LeaveService.submit(db, actor, body))

    return await run_ledger_write(session_factory, _apply, label="apply leave")


@router.get("/requests")
async def list_leave_requests(
    employee_id: Optional[uuid.UUID] = Query(None),
    status: Optional[LeaveStatus] = Query(None),
    pagination: PaginationParams = Depends(),
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db),
):
    return await LeaveService.list_requests(
        db, actor, pagination, employee_id=employee_id, status=status,
    )


@router.get("/requests/{request_id}", response_model=LeaveRequestOut)
async def get_leave_request(
    request_id: uuid.UUID,
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db),
):
    return await LeaveService.get_request(db, actor, request_id)


@router.post("/requests/{request_id}/approve", response_model=LeaveRequestOut)
async def approve_leave(
    request_id: uuid.UUID,
    body: LeaveApproveRequest,
    actor: Actor = Depends(require_permission("leave:approve")),
    session_factory: async_sessionmaker = Depends(get_session_factory),
):
    """Approve a pending request. Debits the balance and marks the days ON_LEAVE."""

    async def _approve(db: AsyncSession) -> LeaveRequestOut:
        return LeaveRequestOut.model_validate(
            await LeaveService.approve(db, actor, request_id, body.remarks)
        )

    return await run_ledger_write(session_factory, _approve, label="approve leave")


@router.post("/requests/{request_id}/reject", response_model=LeaveRequestOut)
async def reject_leave(
    request_id: uuid.UUID,
    body: LeaveRejectRequest,
    actor: Actor = Depends(require_permission("leave:approve")),
    session_factory: async_sessionmaker = Depends(get_session_factory),
):
    async def _reject(db: AsyncSession) -> LeaveRequestOut:
        return LeaveRequestOut.model_validate(
            await LeaveService.reject(db, actor, request_id, body.remarks)
        )

    return await run_ledger_write(session_factory, _reject, label="reject leave")


@router.post("/requests/{request_id}/cancel", response_model=LeaveRequestOut)
async def cancel_leave(
    request_id: uuid.UUID,
    body: LeaveCancelRequest,
    actor: Actor = Depends(get_current_actor),
    session_factory: async_sessionmaker = Depends(get_session_factory),
):
    """Cancel a pending or approved request. Approved days are credited back."""

    async def _cancel(db: AsyncSession) -> LeaveRequestOut:
        return LeaveRequestOut.model_validate(
            await LeaveService.cancel(db, actor, request_id, body.reason)
        )

    return await run_ledger_write(session_factory, _cancel, label="cancel leave")
