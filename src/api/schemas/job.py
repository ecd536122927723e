"""
Pydantic v2 schemas for the job worker-allocation endpoints.

All monetary amounts are decimal values in the job's currency.
"""

from __future__ import annotations

import uuid
from datetime import datetime
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, Field

from src.api.schemas.contract import ContractResponse


class WorkerAllocationIn(BaseModel):
    worker_id: uuid.UUID
    allocated_amount: Decimal = Field(gt=0, max_digits=12, decimal_places=2)


class UpdateAllocationsRequest(BaseModel):
    """Replacement allocation list for a job."""

    allocations: list[WorkerAllocationIn] = Field(min_length=1)


class WorkerAllocationOut(BaseModel):
    worker_id: uuid.UUID
    allocated_amount: Decimal
    percentage: float
    allocated_at: Optional[datetime] = None


class WorkerAllocationsResponse(BaseModel):
    job_id: uuid.UUID
    status: str
    price: Decimal
    max_workers: int
    selected_workers: list[uuid.UUID]
    allocations: list[WorkerAllocationOut]
    allocated_total: Decimal
    remaining_budget: Decimal
    repriced_contracts: list[ContractResponse] = Field(default_factory=list)


class RemoveWorkerResponse(BaseModel):
    job_id: uuid.UUID
    worker_id: uuid.UUID
    removed_amount: Decimal
    redistributed_amount: Decimal
    allocated_total: Decimal
    remaining_budget: Decimal
    cancelled_contract_id: Optional[uuid.UUID] = None
