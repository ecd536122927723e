"""
Pydantic v2 schemas for the Proposals API.

Covers:
- Create proposal requests (a doer bidding on an open job)
- Approve / reject / withdraw requests
- Proposal and approval response objects
"""

from __future__ import annotations

import uuid
from datetime import datetime
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from src.api.schemas.contract import ContractResponse


# ---------------------------------------------------------------------------
# Request schemas
# ---------------------------------------------------------------------------

class CreateProposalRequest(BaseModel):
    """Request body for submitting a proposal on a job."""

    job_id: uuid.UUID = Field(description="UUID of the job to bid on")
    cover_letter: str = Field(min_length=1, max_length=5000)
    proposed_price: Decimal = Field(
        gt=0,
        max_digits=12,
        decimal_places=2,
        description="Amount the doer asks for the work",
    )
    estimated_duration: int = Field(ge=1, description="Estimated duration in days")
    is_counter_offer: bool = False


class ApproveProposalRequest(BaseModel):
    """Request body for approving a proposal.

    ``allocated_amount`` defaults to the proposed price.
    """

    allocated_amount: Optional[Decimal] = Field(
        default=None,
        gt=0,
        max_digits=12,
        decimal_places=2,
    )


class RejectProposalRequest(BaseModel):
    reason: Optional[str] = Field(default=None, max_length=2000)


class WithdrawProposalRequest(BaseModel):
    reason: Optional[str] = Field(default=None, max_length=2000)


# ---------------------------------------------------------------------------
# Response schemas
# ---------------------------------------------------------------------------

class ProposalResponse(BaseModel):
    """Proposal response object."""

    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    job_id: uuid.UUID
    freelancer_id: uuid.UUID
    client_id: uuid.UUID
    cover_letter: str
    proposed_price: Decimal
    estimated_duration: int
    is_counter_offer: bool
    status: str
    rejection_reason: Optional[str] = None
    withdrawn_reason: Optional[str] = None
    responded_at: Optional[datetime] = None
    created_at: datetime


class ApprovalResponse(BaseModel):
    """Result of approving a proposal."""

    proposal: ProposalResponse
    contract: ContractResponse
    job_status: str
    job_full: bool
    allocated_total: Decimal
    remaining_budget: Decimal
    rejected_proposal_ids: list[uuid.UUID] = Field(default_factory=list)
