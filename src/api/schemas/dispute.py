"""
Pydantic v2 schemas for the Disputes API (party and admin endpoints).
"""

from __future__ import annotations

import uuid
from datetime import datetime
from decimal import Decimal
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field

from src.models.dispute import DisputeCategory, DisputePriority, ResolutionType


class OpenDisputeRequest(BaseModel):
    contract_id: uuid.UUID
    payment_id: Optional[uuid.UUID] = None
    reason: str = Field(min_length=1, max_length=255)
    description: str = Field(min_length=1, max_length=5000)
    category: DisputeCategory = DisputeCategory.OTHER


class AssignDisputeRequest(BaseModel):
    assignee_id: Optional[uuid.UUID] = Field(
        default=None,
        description="Admin to assign; defaults to the caller",
    )


class UpdatePriorityRequest(BaseModel):
    priority: DisputePriority


class RequestInfoRequest(BaseModel):
    note: str = Field(min_length=1, max_length=2000)


class ResolveDisputeRequest(BaseModel):
    resolution: str = Field(min_length=1, max_length=5000)
    resolution_type: ResolutionType
    refund_amount: Optional[Decimal] = Field(
        default=None,
        max_digits=12,
        decimal_places=2,
        description="Required for partial_refund",
    )


class DisputeResponse(BaseModel):
    """Dispute response object."""

    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    contract_id: uuid.UUID
    payment_id: Optional[uuid.UUID] = None
    initiated_by: uuid.UUID
    against: uuid.UUID
    reason: str
    detailed_description: str
    category: str
    priority: str
    status: str
    assigned_to: Optional[uuid.UUID] = None
    resolution: Optional[str] = None
    resolution_type: Optional[str] = None
    refund_amount: Optional[Decimal] = None
    resolved_by: Optional[uuid.UUID] = None
    resolved_at: Optional[datetime] = None
    logs: list[dict[str, Any]] = Field(default_factory=list)
    created_at: datetime
