"""
Proposal Service
================

Handles the proposal lifecycle for marketplace jobs:
- Doers submit proposals (bids) on open jobs
- Clients approve or reject them; doers may withdraw or delete their own
- Approval turns a proposal into a contract and updates the job's worker
  allocation ledger

Approval validates every precondition before touching any row, then applies
the proposal, job and contract changes in the caller's transaction.  The job
row is read ``FOR UPDATE`` and carries a version column, so two concurrent
approvals for the last worker slot cannot both commit.

All functions flush but never commit; the API layer owns the transaction.
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Optional

from sqlalchemy import or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from src.core.config import settings
from src.core.exceptions import (
    AllocationExceedsBudget,
    AuthorizationError,
    BelowMinimumContractAmount,
    DuplicateProposal,
    JobFullyStaffed,
    JobNotOpen,
    NotFoundError,
    ProposalNotPending,
    ValidationError,
    WorkerAlreadySelected,
)
from src.models import (
    Contract,
    ContractStatus,
    Job,
    JobStatus,
    NotificationType,
    Proposal,
    ProposalStatus,
)
from src.models.base import as_utc, utcnow
from src.services import chatService
from src.services.allocationService import (
    build_allocation,
    get_job_for_update,
    is_fully_staffed,
    recompute_totals,
    remaining_budget,
)
from src.services.contractService import (
    compute_pricing,
    generate_pairing_code,
    percentage_of,
    to_money,
)
from src.services.notificationService import record_notification

logger = logging.getLogger(__name__)

AUTO_REJECT_REASON = "Another proposal was approved"


@dataclass
class ApprovalResult:
    """Everything an approval touched, for the response and the notifier."""
    proposal: Proposal
    job: Job
    contract: Contract
    rejected: list[Proposal] = field(default_factory=list)
    job_full: bool = False

    @property
    def rejected_ids(self) -> list[uuid.UUID]:
        return [p.id for p in self.rejected]


# ---------------------------------------------------------------------------
# Internal helpers
# ---------------------------------------------------------------------------

async def _get_proposal(
    db: AsyncSession,
    proposal_id: uuid.UUID,
    *,
    for_update: bool = False,
) -> Proposal:
    stmt = select(Proposal).where(Proposal.id == proposal_id)
    if for_update:
        stmt = stmt.with_for_update()
    result = await db.execute(stmt)
    proposal = result.scalar_one_or_none()
    if proposal is None:
        raise NotFoundError(f"Proposal {proposal_id} not found")
    return proposal


def _ensure_pending(proposal: Proposal) -> None:
    if proposal.status != ProposalStatus.PENDING:
        raise ProposalNotPending(
            f"Proposal {proposal.id} is not pending (current: {proposal.status})"
        )


async def _reject_other_pending(
    db: AsyncSession,
    job_id: uuid.UUID,
    approved_id: uuid.UUID,
    now: datetime,
) -> list[Proposal]:
    result = await db.execute(
        select(Proposal)
        .where(
            Proposal.job_id == job_id,
            Proposal.id != approved_id,
            Proposal.status == ProposalStatus.PENDING.value,
        )
        .with_for_update()
    )
    rejected = list(result.scalars().all())
    for other in rejected:
        other.status = ProposalStatus.REJECTED.value
        other.rejection_reason = AUTO_REJECT_REASON
        other.responded_at = now
    return rejected


# ---------------------------------------------------------------------------
# Public service functions
# ---------------------------------------------------------------------------

async def create_proposal(
    db: AsyncSession,
    job_id: uuid.UUID,
    freelancer_id: uuid.UUID,
    cover_letter: str,
    proposed_price: Decimal,
    estimated_duration: int,
    is_counter_offer: bool = False,
) -> Proposal:
    """A doer bids on an open job.

    Raises:
        NotFoundError: The job does not exist.
        JobNotOpen: The job is not accepting proposals.
        ValidationError: The doer owns the job, or the bid is malformed.
        DuplicateProposal: The doer already has a proposal on this job.
    """
    result = await db.execute(select(Job).where(Job.id == job_id))
    job = result.scalar_one_or_none()
    if job is None:
        raise NotFoundError(f"Job {job_id} not found")
    if job.status != JobStatus.OPEN:
        raise JobNotOpen(f"Job {job_id} is not open for proposals (current: {job.status})")
    if job.client_id == freelancer_id:
        raise ValidationError("You cannot submit a proposal on your own job")
    if estimated_duration < 1:
        raise ValidationError("Estimated duration must be at least one day")
    if proposed_price <= 0:
        raise ValidationError("Proposed price must be positive")

    existing = await db.execute(
        select(Proposal.id).where(
            Proposal.job_id == job_id,
            Proposal.freelancer_id == freelancer_id,
        )
    )
    if existing.first() is not None:
        raise DuplicateProposal("You already submitted a proposal for this job")

    proposal = Proposal(
        job_id=job_id,
        freelancer_id=freelancer_id,
        client_id=job.client_id,
        cover_letter=cover_letter,
        proposed_price=to_money(proposed_price),
        estimated_duration=estimated_duration,
        is_counter_offer=is_counter_offer,
        status=ProposalStatus.PENDING.value,
    )
    db.add(proposal)
    await db.flush()

    await record_notification(
        db,
        job.client_id,
        NotificationType.PROPOSAL_RECEIVED,
        "New proposal",
        f"You received a new proposal for \"{job.title}\"",
        related_model="Proposal",
        related_id=proposal.id,
        data={"job_id": str(job.id), "proposed_price": str(proposal.proposed_price)},
    )

    logger.info(
        "Proposal created: job=%s, proposal=%s, freelancer=%s, price=%s",
        job_id,
        proposal.id,
        freelancer_id,
        proposal.proposed_price,
    )
    return proposal


async def approve_proposal(
    db: AsyncSession,
    proposal_id: uuid.UUID,
    client_id: uuid.UUID,
    allocated_amount: Optional[Decimal] = None,
    now: Optional[datetime] = None,
) -> ApprovalResult:
    """Client approves a pending proposal and a contract is created.

    The allocation defaults to the proposal's bid.  Preconditions are
    checked in this order, before anything is modified:

    1. caller is the proposal's client         -> AuthorizationError
    2. proposal is pending                     -> ProposalNotPending
    3. job has a free worker slot              -> JobFullyStaffed
    4. doer is not already selected            -> WorkerAlreadySelected
    5. job is open                             -> JobNotOpen
    6. allocation fits the remaining budget    -> AllocationExceedsBudget
    7. allocation meets the contract minimum   -> BelowMinimumContractAmount

    Then, in order: the proposal is approved; the doer is appended to the
    job's selected workers (and becomes its doer if it had none); an
    allocation entry is appended and totals recomputed; if the job is now
    full, other pending proposals are rejected and, when the start date
    has passed, the job moves to ``in_progress``; finally the contract is
    created with its pairing code.
    """
    now = now or utcnow()

    proposal = await _get_proposal(db, proposal_id, for_update=True)
    if proposal.client_id != client_id:
        raise AuthorizationError("Only the job's client can approve this proposal")
    _ensure_pending(proposal)

    job = await get_job_for_update(db, proposal.job_id)
    if is_fully_staffed(job):
        raise JobFullyStaffed(
            f"Job {job.id} already has {job.max_workers} worker(s) selected"
        )
    freelancer = str(proposal.freelancer_id)
    if freelancer in (job.selected_workers or []):
        raise WorkerAlreadySelected("This worker is already selected for the job")
    if job.status != JobStatus.OPEN:
        raise JobNotOpen(f"Job {job.id} is not open (current: {job.status})")

    amount = to_money(allocated_amount if allocated_amount is not None else proposal.proposed_price)
    available = remaining_budget(job)
    if amount > available:
        raise AllocationExceedsBudget(
            f"Allocated amount {amount} exceeds the remaining budget {available}"
        )
    if amount < settings.minimum_contract_amount:
        raise BelowMinimumContractAmount(
            f"Minimum contract amount is {settings.minimum_contract_amount}"
        )

    # -- All checks passed; apply the changes --------------------------------

    proposal.status = ProposalStatus.APPROVED.value
    proposal.responded_at = now

    job.selected_workers = [*(job.selected_workers or []), freelancer]
    if job.doer_id is None:
        job.doer_id = proposal.freelancer_id
    job.worker_allocations = [
        *(job.worker_allocations or []),
        build_allocation(freelancer, amount, job.price, now),
    ]
    recompute_totals(job)

    rejected: list[Proposal] = []
    job_full = is_fully_staffed(job)
    if job_full:
        rejected = await _reject_other_pending(db, job.id, proposal.id, now)
        start = as_utc(job.start_date)
        if start is not None and start <= now:
            # Checked open above, so the job can start
            job.status = JobStatus.IN_PROGRESS.value

    commission, total = compute_pricing(amount)
    contract = Contract(
        job_id=job.id,
        proposal_id=proposal.id,
        client_id=job.client_id,
        doer_id=proposal.freelancer_id,
        price=amount,
        commission=commission,
        total_price=total,
        allocated_amount=amount,
        percentage_of_budget=percentage_of(amount, job.price),
        start_date=now,
        end_date=now + timedelta(days=proposal.estimated_duration),
        status=ContractStatus.PENDING.value,
        price_modification_history=[],
    )
    generate_pairing_code(contract, now)
    db.add(contract)
    await db.flush()

    await chatService.ensure_group_conversation(db, job)

    await record_notification(
        db,
        proposal.freelancer_id,
        NotificationType.PROPOSAL_APPROVED,
        "Proposal approved",
        f"Your proposal for \"{job.title}\" was approved",
        related_model="Contract",
        related_id=contract.id,
        data={"job_id": str(job.id), "contract_id": str(contract.id)},
    )
    for other in rejected:
        await record_notification(
            db,
            other.freelancer_id,
            NotificationType.PROPOSAL_REJECTED,
            "Proposal rejected",
            AUTO_REJECT_REASON,
            related_model="Proposal",
            related_id=other.id,
            data={"job_id": str(job.id)},
        )

    logger.info(
        "Proposal approved: proposal=%s, job=%s, amount=%s, contract=%s, "
        "job_full=%s, auto_rejected=%d",
        proposal.id,
        job.id,
        amount,
        contract.id,
        job_full,
        len(rejected),
    )
    return ApprovalResult(
        proposal=proposal,
        job=job,
        contract=contract,
        rejected=rejected,
        job_full=job_full,
    )


async def reject_proposal(
    db: AsyncSession,
    proposal_id: uuid.UUID,
    client_id: uuid.UUID,
    reason: Optional[str] = None,
) -> Proposal:
    """Client rejects a pending proposal."""
    proposal = await _get_proposal(db, proposal_id, for_update=True)
    if proposal.client_id != client_id:
        raise AuthorizationError("Only the job's client can reject this proposal")
    _ensure_pending(proposal)

    proposal.status = ProposalStatus.REJECTED.value
    proposal.rejection_reason = reason
    proposal.responded_at = utcnow()
    await db.flush()

    await record_notification(
        db,
        proposal.freelancer_id,
        NotificationType.PROPOSAL_REJECTED,
        "Proposal rejected",
        reason or "Your proposal was not selected",
        related_model="Proposal",
        related_id=proposal.id,
        data={"job_id": str(proposal.job_id)},
    )

    logger.info("Proposal rejected: proposal=%s, job=%s", proposal.id, proposal.job_id)
    return proposal


async def withdraw_proposal(
    db: AsyncSession,
    proposal_id: uuid.UUID,
    freelancer_id: uuid.UUID,
    reason: Optional[str] = None,
) -> Proposal:
    """Doer withdraws their own pending proposal."""
    proposal = await _get_proposal(db, proposal_id, for_update=True)
    if proposal.freelancer_id != freelancer_id:
        raise AuthorizationError("Only the proposal's author can withdraw it")
    _ensure_pending(proposal)

    proposal.status = ProposalStatus.WITHDRAWN.value
    proposal.withdrawn_reason = reason
    proposal.responded_at = utcnow()
    await db.flush()

    await record_notification(
        db,
        proposal.client_id,
        NotificationType.PROPOSAL_WITHDRAWN,
        "Proposal withdrawn",
        reason or "A doer withdrew their proposal",
        related_model="Proposal",
        related_id=proposal.id,
        data={"job_id": str(proposal.job_id)},
    )

    logger.info("Proposal withdrawn: proposal=%s, job=%s", proposal.id, proposal.job_id)
    return proposal


async def delete_proposal(
    db: AsyncSession,
    proposal_id: uuid.UUID,
    freelancer_id: uuid.UUID,
) -> None:
    """Doer deletes their own proposal while it is still pending."""
    proposal = await _get_proposal(db, proposal_id, for_update=True)
    if proposal.freelancer_id != freelancer_id:
        raise AuthorizationError("Only the proposal's author can delete it")
    _ensure_pending(proposal)

    await db.delete(proposal)
    await db.flush()
    logger.info("Proposal deleted: proposal=%s, job=%s", proposal_id, proposal.job_id)


async def get_proposal(
    db: AsyncSession,
    proposal_id: uuid.UUID,
    user_id: uuid.UUID,
) -> Proposal:
    proposal = await _get_proposal(db, proposal_id)
    if user_id not in (proposal.freelancer_id, proposal.client_id):
        raise AuthorizationError("You are not a party to this proposal")
    return proposal


async def list_proposals_for_user(
    db: AsyncSession,
    user_id: uuid.UUID,
    kind: Optional[str] = None,
    status: Optional[ProposalStatus] = None,
) -> list[Proposal]:
    """List proposals the user sent, received, or both, newest first.

    Args:
        kind: ``"sent"``, ``"received"`` or None for both.
        status: Optional status filter.
    """
    if kind == "sent":
        condition = Proposal.freelancer_id == user_id
    elif kind == "received":
        condition = Proposal.client_id == user_id
    elif kind is None:
        condition = or_(Proposal.freelancer_id == user_id, Proposal.client_id == user_id)
    else:
        raise ValidationError(f"Unknown proposal type '{kind}'")

    stmt = select(Proposal).where(condition)
    if status is not None:
        stmt = stmt.where(Proposal.status == ProposalStatus(status).value)
    result = await db.execute(stmt.order_by(Proposal.created_at.desc()))
    return list(result.scalars().all())


async def list_proposals_for_job(
    db: AsyncSession,
    job_id: uuid.UUID,
    client_id: uuid.UUID,
) -> list[Proposal]:
    """List all proposals for a job, newest first.  Job owner only."""
    job = await db.get(Job, job_id)
    if job is None:
        raise NotFoundError(f"Job {job_id} not found")
    if job.client_id != client_id:
        raise AuthorizationError("Only the job's client can list its proposals")

    result = await db.execute(
        select(Proposal)
        .where(Proposal.job_id == job_id)
        .order_by(Proposal.created_at.desc())
    )
    return list(result.scalars().all())
