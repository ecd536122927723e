"""
Proposal API Routes
===================

REST endpoints for the proposal lifecycle on marketplace jobs.

  POST   /api/v1/proposals                     -- Submit a proposal
  GET    /api/v1/proposals                     -- Proposals the caller sent/received
  GET    /api/v1/proposals/job/{job_id}        -- All proposals for a job (owner)
  GET    /api/v1/proposals/{proposal_id}       -- Proposal detail
  PUT    /api/v1/proposals/{proposal_id}/approve   -- Approve, creating a contract
  PUT    /api/v1/proposals/{proposal_id}/reject    -- Reject
  PUT    /api/v1/proposals/{proposal_id}/withdraw  -- Withdraw (author)
  DELETE /api/v1/proposals/{proposal_id}       -- Delete a pending proposal (author)
"""

from __future__ import annotations

import logging
import uuid
from typing import Literal, Optional

from fastapi import APIRouter, Query, status

from src.api.deps import CurrentUser, DBSession, Notifier
from src.api.errors import to_http
from src.api.schemas.contract import ContractResponse
from src.api.schemas.proposal import (
    ApprovalResponse,
    ApproveProposalRequest,
    CreateProposalRequest,
    ProposalResponse,
    RejectProposalRequest,
    WithdrawProposalRequest,
)
from src.core.exceptions import DoersError
from src.models import Job, ProposalStatus, User
from src.services import proposalService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/proposals", tags=["Proposals"])


# ---------------------------------------------------------------------------
# POST /proposals
# ---------------------------------------------------------------------------

@router.post(
    "",
    response_model=ProposalResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Submit a proposal for a job",
    description=(
        "A doer bids on an open job. One proposal per doer per job; the "
        "job's client is notified."
    ),
)
async def create_proposal(
    body: CreateProposalRequest,
    db: DBSession,
    current_user: CurrentUser,
    notifier: Notifier,
) -> ProposalResponse:
    try:
        proposal = await proposalService.create_proposal(
            db=db,
            job_id=body.job_id,
            freelancer_id=current_user.id,
            cover_letter=body.cover_letter,
            proposed_price=body.proposed_price,
            estimated_duration=body.estimated_duration,
            is_counter_offer=body.is_counter_offer,
        )
    except DoersError as exc:
        raise to_http(exc)
    await db.commit()

    job = await db.get(Job, proposal.job_id)
    client = await db.get(User, proposal.client_id)
    await notifier.proposal_created(proposal, job, client)
    return ProposalResponse.model_validate(proposal)


# ---------------------------------------------------------------------------
# GET /proposals
# ---------------------------------------------------------------------------

@router.get(
    "",
    response_model=list[ProposalResponse],
    summary="List the caller's proposals",
)
async def list_proposals(
    db: DBSession,
    current_user: CurrentUser,
    type: Optional[Literal["sent", "received"]] = Query(default=None),
    proposal_status: Optional[ProposalStatus] = Query(default=None, alias="status"),
) -> list[ProposalResponse]:
    try:
        proposals = await proposalService.list_proposals_for_user(
            db, current_user.id, kind=type, status=proposal_status
        )
    except DoersError as exc:
        raise to_http(exc)
    return [ProposalResponse.model_validate(p) for p in proposals]


@router.get(
    "/job/{job_id}",
    response_model=list[ProposalResponse],
    summary="List all proposals for a job",
)
async def list_job_proposals(
    job_id: uuid.UUID,
    db: DBSession,
    current_user: CurrentUser,
) -> list[ProposalResponse]:
    try:
        proposals = await proposalService.list_proposals_for_job(db, job_id, current_user.id)
    except DoersError as exc:
        raise to_http(exc)
    return [ProposalResponse.model_validate(p) for p in proposals]


@router.get(
    "/{proposal_id}",
    response_model=ProposalResponse,
    summary="Get a proposal",
)
async def get_proposal(
    proposal_id: uuid.UUID,
    db: DBSession,
    current_user: CurrentUser,
) -> ProposalResponse:
    try:
        proposal = await proposalService.get_proposal(db, proposal_id, current_user.id)
    except DoersError as exc:
        raise to_http(exc)
    return ProposalResponse.model_validate(proposal)


# ---------------------------------------------------------------------------
# PUT /proposals/{proposal_id}/approve
# ---------------------------------------------------------------------------

@router.put(
    "/{proposal_id}/approve",
    response_model=ApprovalResponse,
    summary="Approve a proposal",
    description=(
        "The job's client approves a pending proposal. The doer joins the "
        "job's selected workers with an allocation (defaulting to the bid) "
        "and a contract is created. When the job becomes fully staffed the "
        "remaining pending proposals are rejected automatically."
    ),
)
async def approve_proposal(
    proposal_id: uuid.UUID,
    body: ApproveProposalRequest,
    db: DBSession,
    current_user: CurrentUser,
    notifier: Notifier,
) -> ApprovalResponse:
    try:
        result = await proposalService.approve_proposal(
            db=db,
            proposal_id=proposal_id,
            client_id=current_user.id,
            allocated_amount=body.allocated_amount,
        )
    except DoersError as exc:
        raise to_http(exc)
    await db.commit()

    doer = await db.get(User, result.proposal.freelancer_id)
    await notifier.proposal_approved(
        result.proposal, result.job, result.contract, result.rejected, doer
    )

    return ApprovalResponse(
        proposal=ProposalResponse.model_validate(result.proposal),
        contract=ContractResponse.model_validate(result.contract),
        job_status=result.job.status,
        job_full=result.job_full,
        allocated_total=result.job.allocated_total,
        remaining_budget=result.job.remaining_budget,
        rejected_proposal_ids=result.rejected_ids,
    )


# ---------------------------------------------------------------------------
# PUT /proposals/{proposal_id}/reject, /withdraw
# ---------------------------------------------------------------------------

@router.put(
    "/{proposal_id}/reject",
    response_model=ProposalResponse,
    summary="Reject a proposal",
)
async def reject_proposal(
    proposal_id: uuid.UUID,
    body: RejectProposalRequest,
    db: DBSession,
    current_user: CurrentUser,
    notifier: Notifier,
) -> ProposalResponse:
    try:
        proposal = await proposalService.reject_proposal(
            db, proposal_id, current_user.id, reason=body.reason
        )
    except DoersError as exc:
        raise to_http(exc)
    await db.commit()

    await notifier.proposal_closed(proposal, "proposal:rejected", current_user.id)
    return ProposalResponse.model_validate(proposal)


@router.put(
    "/{proposal_id}/withdraw",
    response_model=ProposalResponse,
    summary="Withdraw a proposal",
)
async def withdraw_proposal(
    proposal_id: uuid.UUID,
    body: WithdrawProposalRequest,
    db: DBSession,
    current_user: CurrentUser,
    notifier: Notifier,
) -> ProposalResponse:
    try:
        proposal = await proposalService.withdraw_proposal(
            db, proposal_id, current_user.id, reason=body.reason
        )
    except DoersError as exc:
        raise to_http(exc)
    await db.commit()

    await notifier.proposal_closed(proposal, "proposal:withdrawn", current_user.id)
    return ProposalResponse.model_validate(proposal)


# ---------------------------------------------------------------------------
# DELETE /proposals/{proposal_id}
# ---------------------------------------------------------------------------

@router.delete(
    "/{proposal_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Delete a pending proposal",
)
async def delete_proposal(
    proposal_id: uuid.UUID,
    db: DBSession,
    current_user: CurrentUser,
) -> None:
    try:
        await proposalService.delete_proposal(db, proposal_id, current_user.id)
    except DoersError as exc:
        raise to_http(exc)
