"""
Worker Allocation Service
=========================

Budget accounting for jobs whose total price is split across several
workers.  The per-worker split lives in ``Job.worker_allocations``; after
every change ``recompute_totals`` restores::

    allocated_total == sum(a["allocated_amount"] for a in worker_allocations)
    allocated_total <= price
    remaining_budget == price - allocated_total

Allocation entries are stored as JSON, so amounts are kept as decimal
strings.  Lists are always rebuilt and reassigned, never mutated in place,
so SQLAlchemy sees the change.
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from decimal import ROUND_DOWN, Decimal
from typing import Any, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from src.core.config import settings
from src.core.exceptions import (
    AllocationExceedsBudget,
    AuthorizationError,
    BelowMinimumContractAmount,
    NotFoundError,
    ValidationError,
)
from src.models import Contract, ContractStatus, Job
from src.models.base import utcnow
from src.services.contractService import (
    CENT,
    ensure_unfunded,
    get_active_contract_for_worker,
    percentage_of,
    reprice_contract,
    to_money,
)

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Pure helpers
# ---------------------------------------------------------------------------

def allocation_amount(entry: dict[str, Any]) -> Decimal:
    return Decimal(str(entry["allocated_amount"]))


def remaining_budget(job: Job) -> Decimal:
    return to_money(job.price) - to_money(job.allocated_total or 0)


def build_allocation(
    worker_id: uuid.UUID | str,
    amount: Decimal,
    job_price: Decimal,
    now: Optional[datetime] = None,
) -> dict[str, Any]:
    amount = to_money(amount)
    return {
        "worker_id": str(worker_id),
        "allocated_amount": str(amount),
        "percentage": float(percentage_of(amount, job_price)),
        "allocated_at": (now or utcnow()).isoformat(),
    }


def recompute_totals(job: Job) -> None:
    """Recompute ``allocated_total`` and ``remaining_budget`` from the
    allocation list.

    Raises:
        AllocationExceedsBudget: The allocations add up to more than the
            job's price.
    """
    total = sum(
        (allocation_amount(a) for a in job.worker_allocations or []),
        Decimal("0"),
    )
    price = to_money(job.price)
    if total > price:
        raise AllocationExceedsBudget(
            f"Allocated total {total} exceeds job budget {price}"
        )
    job.allocated_total = to_money(total)
    job.remaining_budget = price - job.allocated_total


def is_fully_staffed(job: Job) -> bool:
    return len(job.selected_workers or []) >= (job.max_workers or 1)


def find_allocation(job: Job, worker_id: uuid.UUID | str) -> Optional[dict[str, Any]]:
    wid = str(worker_id)
    for entry in job.worker_allocations or []:
        if entry.get("worker_id") == wid:
            return entry
    return None


def split_evenly(amount: Decimal, parts: int) -> list[Decimal]:
    """Split ``amount`` into ``parts`` cent-exact shares that sum to it.

    Leftover cents go to the first shares.
    """
    if parts <= 0:
        return []
    amount = to_money(amount)
    base = (amount / parts).quantize(CENT, rounding=ROUND_DOWN)
    shares = [base] * parts
    leftover = int((amount - base * parts) / CENT)
    for i in range(leftover):
        shares[i] += CENT
    return shares


# ---------------------------------------------------------------------------
# Results
# ---------------------------------------------------------------------------

@dataclass
class AllocationUpdate:
    job: Job
    repriced_contracts: list[Contract] = field(default_factory=list)


@dataclass
class WorkerRemoval:
    job: Job
    worker_id: uuid.UUID
    removed_amount: Decimal
    redistributed_amount: Decimal
    cancelled_contract: Optional[Contract] = None
    repriced_contracts: list[Contract] = field(default_factory=list)


# ---------------------------------------------------------------------------
# Service operations
# ---------------------------------------------------------------------------

async def get_job_for_update(db: AsyncSession, job_id: uuid.UUID) -> Job:
    """Load a job with a row lock held until the transaction ends."""
    result = await db.execute(
        select(Job).where(Job.id == job_id).with_for_update()
    )
    job = result.scalar_one_or_none()
    if job is None:
        raise NotFoundError(f"Job {job_id} not found")
    return job


async def get_worker_allocations(
    db: AsyncSession,
    job_id: uuid.UUID,
    client_id: uuid.UUID,
) -> Job:
    result = await db.execute(select(Job).where(Job.id == job_id))
    job = result.scalar_one_or_none()
    if job is None:
        raise NotFoundError(f"Job {job_id} not found")
    if job.client_id != client_id:
        raise AuthorizationError("Only the job's client can view its allocations")
    return job


async def update_worker_allocations(
    db: AsyncSession,
    job_id: uuid.UUID,
    client_id: uuid.UUID,
    allocations: list[tuple[uuid.UUID, Decimal]],
) -> AllocationUpdate:
    """Replace a job's allocation list and re-price the affected contracts.

    Every entry must name a selected worker and carry at least the minimum
    contract amount; the total may not exceed the job's price.  A contract
    with an open escrow payment cannot change price (``ContractFunded``).
    Validation completes before anything is modified.
    """
    job = await get_job_for_update(db, job_id)
    if job.client_id != client_id:
        raise AuthorizationError("Only the job's client can modify allocations")

    selected = set(job.selected_workers or [])
    minimum = settings.minimum_contract_amount
    seen: set[str] = set()
    total = Decimal("0")
    for worker_id, amount in allocations:
        wid = str(worker_id)
        if wid not in selected:
            raise ValidationError(
                f"Worker {worker_id} is not selected for this job",
                code="worker_not_selected",
            )
        if wid in seen:
            raise ValidationError(
                f"Worker {worker_id} appears more than once",
                code="duplicate_allocation",
            )
        seen.add(wid)
        if amount < minimum:
            raise BelowMinimumContractAmount(
                f"Minimum amount per worker is {minimum}"
            )
        total += to_money(amount)

    price = to_money(job.price)
    if total > price:
        raise AllocationExceedsBudget(
            f"Allocations total {total} exceeds job budget {price}"
        )

    # A funded contract keeps its price; its hold was placed for that total
    affected: list[tuple[Contract, Decimal]] = []
    for worker_id, amount in allocations:
        contract = await get_active_contract_for_worker(db, job.id, worker_id)
        if contract is None:
            continue
        if to_money(amount) != to_money(contract.price):
            await ensure_unfunded(db, contract, "reprice")
        affected.append((contract, amount))

    now = utcnow()
    job.worker_allocations = [
        build_allocation(worker_id, amount, price, now) for worker_id, amount in allocations
    ]
    recompute_totals(job)

    update = AllocationUpdate(job=job)
    for contract, amount in affected:
        reprice_contract(
            contract,
            amount,
            price,
            modified_by=client_id,
            reason="Budget allocation adjusted by client",
            now=now,
        )
        update.repriced_contracts.append(contract)

    await db.flush()
    logger.info(
        "Worker allocations updated: job=%s, workers=%d, allocated=%s, remaining=%s",
        job.id,
        len(allocations),
        job.allocated_total,
        job.remaining_budget,
    )
    return update


async def remove_worker(
    db: AsyncSession,
    job_id: uuid.UUID,
    client_id: uuid.UUID,
    worker_id: uuid.UUID,
    redistribute: bool = False,
) -> WorkerRemoval:
    """Remove a worker from a job and cancel their contract.

    With ``redistribute`` the removed worker's allocation is split evenly
    across the remaining workers (and their contracts re-priced); otherwise
    it returns to the job's remaining budget.  Contracts with an open escrow
    payment are neither cancelled nor re-priced; the payment has to be
    refunded first.
    """
    job = await get_job_for_update(db, job_id)
    if job.client_id != client_id:
        raise AuthorizationError("Only the job's client can remove workers")

    wid = str(worker_id)
    if wid not in (job.selected_workers or []):
        raise ValidationError(
            "This worker is not assigned to the job",
            code="worker_not_selected",
        )

    entry = find_allocation(job, wid)
    removed_amount = allocation_amount(entry) if entry else Decimal("0.00")
    remaining_allocations = [
        a for a in (job.worker_allocations or []) if a.get("worker_id") != wid
    ]
    redistributing = bool(redistribute and remaining_allocations and removed_amount > 0)

    cancelled = await get_active_contract_for_worker(db, job.id, worker_id)
    if cancelled is not None:
        await ensure_unfunded(db, cancelled, "cancel")

    repriced: list[Contract] = []
    if redistributing:
        for allocation in remaining_allocations:
            contract = await get_active_contract_for_worker(
                db, job.id, uuid.UUID(allocation["worker_id"])
            )
            if contract is None:
                continue
            await ensure_unfunded(db, contract, "reprice")
            repriced.append(contract)

    remaining_workers = [w for w in job.selected_workers if w != wid]
    job.selected_workers = remaining_workers
    if job.doer_id == worker_id:
        job.doer_id = uuid.UUID(remaining_workers[0]) if remaining_workers else None

    now = utcnow()
    price = to_money(job.price)
    removal = WorkerRemoval(
        job=job,
        worker_id=worker_id,
        removed_amount=removed_amount,
        redistributed_amount=Decimal("0.00"),
    )

    if redistributing:
        shares = split_evenly(removed_amount, len(remaining_allocations))
        rebuilt = []
        for allocation, share in zip(remaining_allocations, shares):
            new_amount = allocation_amount(allocation) + share
            rebuilt.append(build_allocation(allocation["worker_id"], new_amount, price, now))
        remaining_allocations = rebuilt
        removal.redistributed_amount = removed_amount

    job.worker_allocations = remaining_allocations
    recompute_totals(job)

    for contract in repriced:
        allocation = find_allocation(job, contract.doer_id)
        reprice_contract(
            contract,
            allocation_amount(allocation),
            price,
            modified_by=client_id,
            reason="Redistributed after a worker was removed",
            now=now,
        )
        removal.repriced_contracts.append(contract)

    if cancelled is not None:
        cancelled.status = ContractStatus.CANCELLED.value
        cancelled.cancellation_reason = "Removed from the job by the client"
        removal.cancelled_contract = cancelled

    await db.flush()
    logger.info(
        "Worker removed: job=%s, worker=%s, amount=%s, redistributed=%s",
        job.id,
        worker_id,
        removed_amount,
        removal.redistributed_amount,
    )
    return removal
