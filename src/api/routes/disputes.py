"""
Dispute API Routes
==================

Party endpoints:

  POST /api/v1/disputes                 -- Open a dispute on a contract
  GET  /api/v1/disputes/{dispute_id}    -- Dispute detail (parties, admin)

Admin endpoints (``admin_router``):

  GET  /api/v1/admin/disputes                          -- List, filter by status/priority
  PUT  /api/v1/admin/disputes/{dispute_id}/assign      -- Assign to an admin
  PUT  /api/v1/admin/disputes/{dispute_id}/priority    -- Change priority
  PUT  /api/v1/admin/disputes/{dispute_id}/request-info -- Ask the parties for details
  POST /api/v1/admin/disputes/{dispute_id}/resolve     -- Resolve and settle the escrow
"""

from __future__ import annotations

import logging
import uuid
from typing import Optional

from fastapi import APIRouter, Query, status
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from src.api.deps import AdminUser, CurrentUser, DBSession, Gateway, Notifier
from src.api.errors import to_http
from src.api.schemas.dispute import (
    AssignDisputeRequest,
    DisputeResponse,
    OpenDisputeRequest,
    RequestInfoRequest,
    ResolveDisputeRequest,
    UpdatePriorityRequest,
)
from src.core.exceptions import DoersError
from src.models import Contract, Dispute, DisputePriority, DisputeStatus, Payment
from src.services import disputeService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/disputes", tags=["Disputes"])
admin_router = APIRouter(prefix="/admin/disputes", tags=["Admin"])


async def _status_of(db: AsyncSession, dispute_id: uuid.UUID) -> Optional[str]:
    result = await db.execute(select(Dispute.status).where(Dispute.id == dispute_id))
    return result.scalar_one_or_none()


async def _after_commit(
    db: AsyncSession,
    notifier,
    dispute: Dispute,
    previous: Optional[str],
    actor_id: uuid.UUID,
    payment_previous: Optional[str] = None,
) -> None:
    await notifier.dispute_updated(dispute, previous, actor_id)
    contract = await db.get(Contract, dispute.contract_id)
    if contract is not None:
        await notifier.contract_updated(contract, actor_id)
    if dispute.payment_id is not None:
        payment = await db.get(Payment, dispute.payment_id)
        if payment is not None and payment.status != payment_previous:
            await notifier.payment_updated(payment, payment_previous, actor_id)


async def _payment_status(db: AsyncSession, dispute_id: uuid.UUID) -> Optional[str]:
    result = await db.execute(
        select(Payment.status)
        .join(Dispute, Dispute.payment_id == Payment.id)
        .where(Dispute.id == dispute_id)
    )
    return result.scalar_one_or_none()


# ---------------------------------------------------------------------------
# Party endpoints
# ---------------------------------------------------------------------------

@router.post(
    "",
    response_model=DisputeResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Open a dispute",
    description=(
        "A contract party opens a dispute. The contract's escrow payment is "
        "frozen until an admin resolves it."
    ),
)
async def open_dispute(
    body: OpenDisputeRequest,
    db: DBSession,
    current_user: CurrentUser,
    notifier: Notifier,
) -> DisputeResponse:
    try:
        dispute = await disputeService.open_dispute(
            db,
            contract_id=body.contract_id,
            user_id=current_user.id,
            reason=body.reason,
            description=body.description,
            category=body.category,
            payment_id=body.payment_id,
        )
    except DoersError as exc:
        raise to_http(exc)
    await db.commit()

    payment_previous = None
    if dispute.payment_id is not None:
        payment = await db.get(Payment, dispute.payment_id)
        payment_previous = payment.status_before_dispute if payment else None
    await _after_commit(db, notifier, dispute, None, current_user.id, payment_previous)
    return DisputeResponse.model_validate(dispute)


@router.get(
    "/{dispute_id}",
    response_model=DisputeResponse,
    summary="Get a dispute",
)
async def get_dispute(
    dispute_id: uuid.UUID,
    db: DBSession,
    current_user: CurrentUser,
) -> DisputeResponse:
    try:
        dispute = await disputeService.get_dispute(db, dispute_id, current_user)
    except DoersError as exc:
        raise to_http(exc)
    return DisputeResponse.model_validate(dispute)


# ---------------------------------------------------------------------------
# Admin endpoints
# ---------------------------------------------------------------------------

@admin_router.get(
    "",
    response_model=list[DisputeResponse],
    summary="List disputes",
)
async def list_disputes(
    db: DBSession,
    admin: AdminUser,
    dispute_status: Optional[DisputeStatus] = Query(default=None, alias="status"),
    priority: Optional[DisputePriority] = Query(default=None),
) -> list[DisputeResponse]:
    disputes = await disputeService.list_disputes(db, status=dispute_status, priority=priority)
    return [DisputeResponse.model_validate(d) for d in disputes]


@admin_router.put(
    "/{dispute_id}/assign",
    response_model=DisputeResponse,
    summary="Assign a dispute",
)
async def assign_dispute(
    dispute_id: uuid.UUID,
    body: AssignDisputeRequest,
    db: DBSession,
    admin: AdminUser,
    notifier: Notifier,
) -> DisputeResponse:
    previous = await _status_of(db, dispute_id)
    try:
        dispute = await disputeService.assign_dispute(
            db, dispute_id, admin.id, body.assignee_id or admin.id
        )
    except DoersError as exc:
        raise to_http(exc)
    await db.commit()

    await notifier.dispute_updated(dispute, previous, admin.id)
    return DisputeResponse.model_validate(dispute)


@admin_router.put(
    "/{dispute_id}/priority",
    response_model=DisputeResponse,
    summary="Change a dispute's priority",
)
async def update_priority(
    dispute_id: uuid.UUID,
    body: UpdatePriorityRequest,
    db: DBSession,
    admin: AdminUser,
    notifier: Notifier,
) -> DisputeResponse:
    previous = await _status_of(db, dispute_id)
    try:
        dispute = await disputeService.update_priority(db, dispute_id, admin.id, body.priority)
    except DoersError as exc:
        raise to_http(exc)
    await db.commit()

    await notifier.dispute_updated(dispute, previous, admin.id)
    return DisputeResponse.model_validate(dispute)


@admin_router.put(
    "/{dispute_id}/request-info",
    response_model=DisputeResponse,
    summary="Request more information from the parties",
)
async def request_more_info(
    dispute_id: uuid.UUID,
    body: RequestInfoRequest,
    db: DBSession,
    admin: AdminUser,
    notifier: Notifier,
) -> DisputeResponse:
    previous = await _status_of(db, dispute_id)
    try:
        dispute = await disputeService.request_more_info(db, dispute_id, admin.id, body.note)
    except DoersError as exc:
        raise to_http(exc)
    await db.commit()

    await notifier.dispute_updated(dispute, previous, admin.id)
    return DisputeResponse.model_validate(dispute)


@admin_router.post(
    "/{dispute_id}/resolve",
    response_model=DisputeResponse,
    summary="Resolve a dispute",
    description=(
        "``full_release`` pays the doer, ``full_refund`` returns the funds "
        "to the client, ``partial_refund`` splits them (``refund_amount`` "
        "goes back to the client) and ``no_action`` unfreezes the payment."
    ),
)
async def resolve_dispute(
    dispute_id: uuid.UUID,
    body: ResolveDisputeRequest,
    db: DBSession,
    admin: AdminUser,
    gateway: Gateway,
    notifier: Notifier,
) -> DisputeResponse:
    previous = await _status_of(db, dispute_id)
    payment_previous = await _payment_status(db, dispute_id)
    try:
        dispute = await disputeService.resolve_dispute(
            db,
            dispute_id,
            admin.id,
            resolution=body.resolution,
            resolution_type=body.resolution_type,
            gateway=gateway,
            refund_amount=body.refund_amount,
        )
    except DoersError as exc:
        raise to_http(exc)
    await db.commit()

    await _after_commit(db, notifier, dispute, previous, admin.id, payment_previous)
    return DisputeResponse.model_validate(dispute)
