"""
Pydantic v2 schemas for the escrow Payments API
===============================================

Request and response schemas for:
- Funding a contract (escrow hold) and authorising a pending hold
- Delivery and bilateral confirmation
- Admin release and refund
"""

from __future__ import annotations

import uuid
from datetime import datetime
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


class FundContractRequest(BaseModel):
    payment_method_id: Optional[str] = Field(
        default=None,
        description="Provider payment method to authorise the hold against",
    )


class RefundRequest(BaseModel):
    reason: str = Field(min_length=1, max_length=2000)


class PaymentResponse(BaseModel):
    """Escrow payment response object."""

    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    contract_id: Optional[uuid.UUID] = None
    payer_id: uuid.UUID
    recipient_id: Optional[uuid.UUID] = None
    amount: Decimal
    currency: str
    platform_fee: Decimal
    worker_payment_amount: Decimal
    refunded_amount: Optional[Decimal] = None
    payment_type: str
    status: str
    is_escrow: bool
    payer_confirmed: bool
    payer_confirmed_at: Optional[datetime] = None
    recipient_confirmed: bool
    recipient_confirmed_at: Optional[datetime] = None
    dispute_id: Optional[uuid.UUID] = None
    refund_reason: Optional[str] = None
    refunded_at: Optional[datetime] = None
    escrow_released_at: Optional[datetime] = None
    created_at: datetime


class FundingResponse(PaymentResponse):
    """Payment returned by funding and hold authorisation.

    ``client_secret`` is set while the payment is still ``pending``: the
    client confirms the hold with it, then calls ``/authorize``.
    """

    held: bool
    client_secret: Optional[str] = None


class ConfirmationResponse(BaseModel):
    payment: PaymentResponse
    both_confirmed: bool
    released: bool
