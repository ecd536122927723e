"""
Escrow Payment API Routes
=========================

  POST /api/v1/payments/contracts/{contract_id}/fund  -- Client funds a contract
  POST /api/v1/payments/{payment_id}/authorize        -- Client completes a pending hold
  GET  /api/v1/payments/{payment_id}                  -- Payment detail (parties, admin)
  POST /api/v1/payments/{payment_id}/deliver          -- Doer reports the work done
  POST /api/v1/payments/{payment_id}/confirm          -- Party confirms completion
  POST /api/v1/payments/{payment_id}/release          -- Admin releases the escrow
  POST /api/v1/payments/{payment_id}/refund           -- Admin refunds the payer
"""

from __future__ import annotations

import logging
import uuid
from typing import Optional

from fastapi import APIRouter, status
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from src.api.deps import AdminUser, CurrentUser, DBSession, Gateway, Notifier
from src.api.errors import to_http
from src.api.schemas.payment import (
    ConfirmationResponse,
    FundContractRequest,
    FundingResponse,
    PaymentResponse,
    RefundRequest,
)
from src.core.exceptions import DoersError
from src.models import Contract, Payment, PaymentStatus
from src.services import escrowService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/payments", tags=["Payments"])


async def _status_of(db: AsyncSession, payment_id: uuid.UUID) -> Optional[str]:
    result = await db.execute(select(Payment.status).where(Payment.id == payment_id))
    return result.scalar_one_or_none()


async def _notify_contract(db: AsyncSession, notifier, payment: Payment, actor_id: uuid.UUID) -> None:
    if payment.contract_id is None:
        return
    contract = await db.get(Contract, payment.contract_id)
    if contract is not None:
        await notifier.contract_updated(contract, actor_id)


def _funding_response(result: escrowService.FundingResult) -> FundingResponse:
    payment = PaymentResponse.model_validate(result.payment)
    return FundingResponse(
        **payment.model_dump(),
        held=result.held,
        client_secret=result.client_secret,
    )


# ---------------------------------------------------------------------------
# POST /payments/contracts/{contract_id}/fund
# ---------------------------------------------------------------------------

@router.post(
    "/contracts/{contract_id}/fund",
    response_model=FundingResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Fund a contract into escrow",
    description=(
        "Authorises a hold for the contract total (price plus platform "
        "commission). The funds are captured only when the escrow is released. "
        "If the provider needs the client to confirm the hold, the payment "
        "stays pending and the response carries its client secret."
    ),
)
async def fund_contract(
    contract_id: uuid.UUID,
    body: FundContractRequest,
    db: DBSession,
    current_user: CurrentUser,
    gateway: Gateway,
    notifier: Notifier,
) -> FundingResponse:
    try:
        result = await escrowService.fund_contract(
            db, contract_id, current_user.id, gateway, body.payment_method_id
        )
    except DoersError as exc:
        raise to_http(exc)
    await db.commit()

    await notifier.payment_updated(result.payment, None, current_user.id)
    if result.held:
        await _notify_contract(db, notifier, result.payment, current_user.id)
    return _funding_response(result)


@router.post(
    "/{payment_id}/authorize",
    response_model=FundingResponse,
    summary="Complete a pending escrow hold",
    description=(
        "Called after the client confirmed the hold with its client secret. "
        "Moves the payment into escrow once the provider reports the funds held."
    ),
)
async def authorize_hold(
    payment_id: uuid.UUID,
    db: DBSession,
    current_user: CurrentUser,
    gateway: Gateway,
    notifier: Notifier,
) -> FundingResponse:
    try:
        result = await escrowService.authorize_hold(db, payment_id, current_user.id, gateway)
    except DoersError as exc:
        raise to_http(exc)
    await db.commit()

    if result.held:
        await notifier.payment_updated(result.payment, PaymentStatus.PENDING.value, current_user.id)
        await _notify_contract(db, notifier, result.payment, current_user.id)
    return _funding_response(result)


# ---------------------------------------------------------------------------
# GET /payments/{payment_id}
# ---------------------------------------------------------------------------

@router.get(
    "/{payment_id}",
    response_model=PaymentResponse,
    summary="Get an escrow payment",
)
async def get_payment(
    payment_id: uuid.UUID,
    db: DBSession,
    current_user: CurrentUser,
) -> PaymentResponse:
    try:
        payment = await escrowService.get_payment(db, payment_id, current_user)
    except DoersError as exc:
        raise to_http(exc)
    return PaymentResponse.model_validate(payment)


# ---------------------------------------------------------------------------
# Delivery and confirmation
# ---------------------------------------------------------------------------

@router.post(
    "/{payment_id}/deliver",
    response_model=ConfirmationResponse,
    summary="Mark the work as delivered",
    description="Counts as the doer's confirmation; the client must confirm to release.",
)
async def mark_delivered(
    payment_id: uuid.UUID,
    db: DBSession,
    current_user: CurrentUser,
    gateway: Gateway,
    notifier: Notifier,
) -> ConfirmationResponse:
    previous = await _status_of(db, payment_id)
    try:
        result = await escrowService.mark_work_delivered(
            db, payment_id, current_user.id, gateway
        )
    except DoersError as exc:
        raise to_http(exc)
    await db.commit()

    await notifier.payment_updated(result.payment, previous, current_user.id)
    if result.released:
        await _notify_contract(db, notifier, result.payment, current_user.id)
    return ConfirmationResponse(
        payment=PaymentResponse.model_validate(result.payment),
        both_confirmed=result.both_confirmed,
        released=result.released,
    )


@router.post(
    "/{payment_id}/confirm",
    response_model=ConfirmationResponse,
    summary="Confirm the work was completed",
    description=(
        "Records the caller's confirmation. When both the payer and the "
        "recipient have confirmed, the escrow is released. Confirming twice "
        "has no further effect."
    ),
)
async def confirm_payment(
    payment_id: uuid.UUID,
    db: DBSession,
    current_user: CurrentUser,
    gateway: Gateway,
    notifier: Notifier,
) -> ConfirmationResponse:
    previous = await _status_of(db, payment_id)
    try:
        result = await escrowService.confirm_payment(db, payment_id, current_user.id, gateway)
    except DoersError as exc:
        raise to_http(exc)
    await db.commit()

    await notifier.payment_updated(result.payment, previous, current_user.id)
    if result.released:
        await _notify_contract(db, notifier, result.payment, current_user.id)
    return ConfirmationResponse(
        payment=PaymentResponse.model_validate(result.payment),
        both_confirmed=result.both_confirmed,
        released=result.released,
    )


# ---------------------------------------------------------------------------
# Admin release / refund
# ---------------------------------------------------------------------------

@router.post(
    "/{payment_id}/release",
    response_model=PaymentResponse,
    summary="Release an escrow (admin)",
)
async def release_escrow(
    payment_id: uuid.UUID,
    db: DBSession,
    admin: AdminUser,
    gateway: Gateway,
    notifier: Notifier,
) -> PaymentResponse:
    previous = await _status_of(db, payment_id)
    try:
        payment = await escrowService.release_escrow(db, payment_id, admin.id, gateway)
    except DoersError as exc:
        raise to_http(exc)
    await db.commit()

    await notifier.payment_updated(payment, previous, admin.id)
    await _notify_contract(db, notifier, payment, admin.id)
    return PaymentResponse.model_validate(payment)


@router.post(
    "/{payment_id}/refund",
    response_model=PaymentResponse,
    summary="Refund an escrow payment (admin)",
)
async def refund_payment(
    payment_id: uuid.UUID,
    body: RefundRequest,
    db: DBSession,
    admin: AdminUser,
    gateway: Gateway,
    notifier: Notifier,
) -> PaymentResponse:
    previous = await _status_of(db, payment_id)
    try:
        payment = await escrowService.refund_payment(
            db, payment_id, body.reason, admin.id, gateway
        )
    except DoersError as exc:
        raise to_http(exc)
    await db.commit()

    await notifier.payment_updated(payment, previous, admin.id)
    await _notify_contract(db, notifier, payment, admin.id)
    return PaymentResponse.model_validate(payment)
