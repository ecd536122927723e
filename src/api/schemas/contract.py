"""
Pydantic v2 schemas for contracts: pairing, terms and the response object.
"""

from __future__ import annotations

import uuid
from datetime import datetime
from decimal import Decimal
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field


class ConfirmPairingRequest(BaseModel):
    code: str = Field(min_length=6, max_length=6, pattern=r"^\d{6}$")


class ContractResponse(BaseModel):
    """Contract response object.

    The pairing code itself is never returned here; the doer receives it
    by email when the proposal is approved.
    """

    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    job_id: uuid.UUID
    proposal_id: Optional[uuid.UUID] = None
    client_id: uuid.UUID
    doer_id: uuid.UUID
    price: Decimal
    commission: Decimal
    total_price: Decimal
    allocated_amount: Optional[Decimal] = None
    percentage_of_budget: Optional[Decimal] = None
    original_price: Optional[Decimal] = None
    price_modification_history: list[dict[str, Any]] = Field(default_factory=list)
    start_date: datetime
    end_date: datetime
    status: str
    cancellation_reason: Optional[str] = None
    pairing_expiry: Optional[datetime] = None
    client_confirmed_pairing: bool
    doer_confirmed_pairing: bool
    terms_accepted: bool
    terms_accepted_by_client: bool
    terms_accepted_by_doer: bool


class PairingResponse(BaseModel):
    contract_id: uuid.UUID
    client_confirmed: bool
    doer_confirmed: bool
    both_confirmed: bool
