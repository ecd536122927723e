"""
Job Worker-Allocation API Routes
================================

Budget split endpoints for multi-worker jobs.

  GET    /api/v1/jobs/{job_id}/worker-allocations        -- Current split (client)
  PUT    /api/v1/jobs/{job_id}/worker-allocations        -- Replace the split (client)
  DELETE /api/v1/jobs/{job_id}/workers/{worker_id}       -- Remove a worker (client)
"""

from __future__ import annotations

import logging
import uuid
from decimal import Decimal

from fastapi import APIRouter, Query

from src.api.deps import CurrentUser, DBSession, Notifier
from src.api.errors import to_http
from src.api.schemas.contract import ContractResponse
from src.api.schemas.job import (
    RemoveWorkerResponse,
    UpdateAllocationsRequest,
    WorkerAllocationOut,
    WorkerAllocationsResponse,
)
from src.core.exceptions import DoersError
from src.models import Contract, Job
from src.services import allocationService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/jobs", tags=["Jobs"])


def _allocations_response(
    job: Job,
    repriced: list[Contract] | None = None,
) -> WorkerAllocationsResponse:
    return WorkerAllocationsResponse(
        job_id=job.id,
        status=job.status,
        price=job.price,
        max_workers=job.max_workers,
        selected_workers=[uuid.UUID(w) for w in job.selected_workers or []],
        allocations=[
            WorkerAllocationOut(
                worker_id=uuid.UUID(a["worker_id"]),
                allocated_amount=Decimal(str(a["allocated_amount"])),
                percentage=a.get("percentage", 0.0),
                allocated_at=a.get("allocated_at"),
            )
            for a in job.worker_allocations or []
        ],
        allocated_total=job.allocated_total,
        remaining_budget=allocationService.remaining_budget(job),
        repriced_contracts=[ContractResponse.model_validate(c) for c in repriced or []],
    )


# ---------------------------------------------------------------------------
# GET /jobs/{job_id}/worker-allocations
# ---------------------------------------------------------------------------

@router.get(
    "/{job_id}/worker-allocations",
    response_model=WorkerAllocationsResponse,
    summary="Get a job's worker allocations",
)
async def get_worker_allocations(
    job_id: uuid.UUID,
    db: DBSession,
    current_user: CurrentUser,
) -> WorkerAllocationsResponse:
    try:
        job = await allocationService.get_worker_allocations(db, job_id, current_user.id)
    except DoersError as exc:
        raise to_http(exc)
    return _allocations_response(job)


# ---------------------------------------------------------------------------
# PUT /jobs/{job_id}/worker-allocations
# ---------------------------------------------------------------------------

@router.put(
    "/{job_id}/worker-allocations",
    response_model=WorkerAllocationsResponse,
    summary="Replace a job's worker allocations",
    description=(
        "Each entry must reference a selected worker and be at least the "
        "minimum contract amount; the total cannot exceed the job price. "
        "Affected contracts are re-priced."
    ),
)
async def update_worker_allocations(
    job_id: uuid.UUID,
    body: UpdateAllocationsRequest,
    db: DBSession,
    current_user: CurrentUser,
    notifier: Notifier,
) -> WorkerAllocationsResponse:
    try:
        update = await allocationService.update_worker_allocations(
            db,
            job_id,
            current_user.id,
            [(a.worker_id, a.allocated_amount) for a in body.allocations],
        )
    except DoersError as exc:
        raise to_http(exc)
    await db.commit()

    await notifier.job_updated(update.job, update.repriced_contracts, current_user.id)
    return _allocations_response(update.job, update.repriced_contracts)


# ---------------------------------------------------------------------------
# DELETE /jobs/{job_id}/workers/{worker_id}
# ---------------------------------------------------------------------------

@router.delete(
    "/{job_id}/workers/{worker_id}",
    response_model=RemoveWorkerResponse,
    summary="Remove a worker from a job",
    description=(
        "Cancels the worker's contract. With ``redistribute=true`` the "
        "removed allocation is split evenly across the remaining workers; "
        "otherwise it returns to the job's remaining budget."
    ),
)
async def remove_worker(
    job_id: uuid.UUID,
    worker_id: uuid.UUID,
    db: DBSession,
    current_user: CurrentUser,
    notifier: Notifier,
    redistribute: bool = Query(default=False),
) -> RemoveWorkerResponse:
    try:
        removal = await allocationService.remove_worker(
            db, job_id, current_user.id, worker_id, redistribute=redistribute
        )
    except DoersError as exc:
        raise to_http(exc)
    await db.commit()

    touched = list(removal.repriced_contracts)
    if removal.cancelled_contract is not None:
        touched.append(removal.cancelled_contract)
    await notifier.job_updated(removal.job, touched, current_user.id)

    return RemoveWorkerResponse(
        job_id=removal.job.id,
        worker_id=removal.worker_id,
        removed_amount=removal.removed_amount,
        redistributed_amount=removal.redistributed_amount,
        allocated_total=removal.job.allocated_total,
        remaining_budget=allocationService.remaining_budget(removal.job),
        cancelled_contract_id=(
            removal.cancelled_contract.id if removal.cancelled_contract else None
        ),
    )
