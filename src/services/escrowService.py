"""
Escrow Service
==============

Persistence, locking and provider calls around the ``Payment`` escrow state
machine.  The transitions themselves live on the model
(``Payment.confirm_payment``, ``release_escrow``, ``process_refund``); this
module loads the row ``FOR UPDATE``, applies the transition, moves the
money through the injected gateway and keeps the contract status in step.

Lifecycle of a contract payment::

    fund_contract        pending -> held_escrow         (hold authorised)
    authorize_hold       pending -> held_escrow         (client confirmed the hold)
    mark_work_delivered  held_escrow -> awaiting_confirmation
    confirm_payment      both parties confirmed -> completed (hold captured)
    release_escrow       admin release -> completed
    refund_payment       admin refund -> refunded

A gateway failure raises ``PaymentProviderError``; the caller's transaction
is rolled back so the database never records a move the provider refused.
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Any, Optional, Protocol

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from src.core.config import settings
from src.core.exceptions import (
    AlreadyRefunded,
    AuthorizationError,
    InvalidOperation,
    NotFoundError,
    PaymentDisputed,
    PaymentProviderError,
)
from src.models import (
    Contract,
    ContractStatus,
    NotificationType,
    Payment,
    PaymentStatus,
    PaymentType,
    User,
)
from src.models.base import utcnow
from src.services.contractService import get_contract
from src.services.notificationService import record_notification

logger = logging.getLogger(__name__)


class EscrowGateway(Protocol):
    async def hold(
        self,
        payment_id: uuid.UUID,
        contract_id: uuid.UUID,
        amount: Decimal,
        currency: str,
        payment_method_id: Optional[str] = None,
    ) -> Any: ...

    async def retrieve_hold(self, reference: str) -> Any: ...

    async def capture(self, reference: str, amount: Optional[Decimal] = None) -> Any: ...

    async def refund(
        self,
        reference: str,
        amount: Optional[Decimal] = None,
        reason: str = "",
    ) -> Any: ...


# Provider status of a hold that has the funds reserved
HOLD_AUTHORISED = "requires_capture"


@dataclass
class FundingResult:
    payment: Payment
    held: bool
    client_secret: Optional[str] = None


@dataclass
class ConfirmationResult:
    payment: Payment
    both_confirmed: bool
    released: bool


# ---------------------------------------------------------------------------
# Internal helpers
# ---------------------------------------------------------------------------

async def _get_payment_for_update(db: AsyncSession, payment_id: uuid.UUID) -> Payment:
    result = await db.execute(
        select(Payment).where(Payment.id == payment_id).with_for_update()
    )
    payment = result.scalar_one_or_none()
    if payment is None:
        raise NotFoundError(f"Payment {payment_id} not found")
    return payment


async def _mark_held(
    db: AsyncSession,
    payment: Payment,
    contract: Contract,
    reference: str,
) -> None:
    payment.hold_in_escrow(reference)
    if contract.status in (ContractStatus.PENDING, ContractStatus.ACCEPTED):
        contract.status = ContractStatus.IN_PROGRESS.value
    await db.flush()

    await record_notification(
        db,
        contract.doer_id,
        NotificationType.PAYMENT_HELD,
        "Contract funded",
        f"The client placed {contract.price} in escrow for your contract",
        related_model="Payment",
        related_id=payment.id,
        data={"contract_id": str(contract.id)},
    )
    logger.info(
        "Escrow held: contract=%s, payment=%s, amount=%s, reference=%s",
        contract.id,
        payment.id,
        payment.amount,
        reference,
    )


async def _complete_contract(db: AsyncSession, payment: Payment) -> Optional[Contract]:
    if payment.contract_id is None:
        return None
    contract = await get_contract(db, payment.contract_id, for_update=True)
    contract.status = ContractStatus.COMPLETED.value
    return contract


async def capture_release(
    db: AsyncSession,
    payment: Payment,
    gateway: EscrowGateway,
    amount: Optional[Decimal] = None,
) -> Optional[Contract]:
    """Capture a just-released hold and complete the contract.

    ``amount`` captures less than the full hold (partial dispute refunds).
    """
    if payment.provider_reference:
        await gateway.capture(payment.provider_reference, amount)
    contract = await _complete_contract(db, payment)
    if payment.recipient_id is not None:
        await record_notification(
            db,
            payment.recipient_id,
            NotificationType.PAYMENT_RELEASED,
            "Payment released",
            f"The escrow payment of {payment.worker_payment_amount} has been released",
            related_model="Payment",
            related_id=payment.id,
            data={"contract_id": str(payment.contract_id) if payment.contract_id else None},
        )
    return contract


# ---------------------------------------------------------------------------
# Public service functions
# ---------------------------------------------------------------------------

async def fund_contract(
    db: AsyncSession,
    contract_id: uuid.UUID,
    payer_id: uuid.UUID,
    gateway: EscrowGateway,
    payment_method_id: Optional[str] = None,
) -> FundingResult:
    """Client funds a contract; the total is held in escrow.

    With a saved ``payment_method_id`` the provider usually authorises the
    hold at once.  Otherwise the payment stays ``pending`` and the result
    carries the ``client_secret`` the client confirms the hold with, after
    which ``authorize_hold`` moves the payment into escrow.

    Raises:
        AuthorizationError: ``payer_id`` is not the contract's client.
        InvalidOperation: The contract is closed or already funded.
        PaymentProviderError: The provider refused the hold.
    """
    contract = await get_contract(db, contract_id, for_update=True)
    if contract.client_id != payer_id:
        raise AuthorizationError("Only the contract's client can fund it")
    if not contract.is_active():
        raise InvalidOperation(f"Cannot fund a contract in status '{contract.status}'")

    existing = await db.execute(
        select(Payment.id).where(
            Payment.contract_id == contract.id,
            Payment.is_escrow.is_(True),
            Payment.status != PaymentStatus.REFUNDED.value,
        )
    )
    if existing.first() is not None:
        raise InvalidOperation("Contract is already funded")

    payment = Payment(
        contract_id=contract.id,
        payer_id=contract.client_id,
        recipient_id=contract.doer_id,
        amount=contract.total_price,
        currency=settings.default_currency,
        platform_fee=contract.commission,
        worker_payment_amount=contract.price,
        payment_type=PaymentType.CONTRACT_PAYMENT.value,
        payment_method="stripe",
        description=f"Escrow for contract {contract.id}",
        status=PaymentStatus.PENDING.value,
        is_escrow=True,
        payer_confirmed=False,
        recipient_confirmed=False,
    )
    db.add(payment)
    await db.flush()

    hold = await gateway.hold(
        payment.id,
        contract.id,
        payment.amount,
        payment.currency,
        payment_method_id,
    )
    if hold.status == HOLD_AUTHORISED:
        await _mark_held(db, payment, contract, hold.reference)
        return FundingResult(payment=payment, held=True)

    payment.provider_reference = hold.reference
    await db.flush()
    logger.info(
        "Escrow hold awaiting client authorisation: contract=%s, payment=%s, status=%s",
        contract.id,
        payment.id,
        hold.status,
    )
    return FundingResult(
        payment=payment,
        held=False,
        client_secret=hold.client_secret,
    )


async def authorize_hold(
    db: AsyncSession,
    payment_id: uuid.UUID,
    payer_id: uuid.UUID,
    gateway: EscrowGateway,
) -> FundingResult:
    """Check a pending hold with the provider after the client confirmed it.

    The payment moves into escrow once the provider reports the funds as
    held; until then it stays ``pending`` and the client secret is returned
    again.

    Raises:
        AuthorizationError: ``payer_id`` is not the payer.
        InvalidOperation: The payment is not awaiting authorisation, or its
            contract was closed in the meantime.
    """
    payment = await _get_payment_for_update(db, payment_id)
    if payment.payer_id != payer_id:
        raise AuthorizationError("Only the payer can authorise this hold")
    if payment.status != PaymentStatus.PENDING or not payment.provider_reference:
        raise InvalidOperation(
            f"Payment is not awaiting authorisation (status: {payment.status})"
        )
    contract = await get_contract(db, payment.contract_id, for_update=True)
    if not contract.is_active():
        raise InvalidOperation(f"Cannot fund a contract in status '{contract.status}'")

    hold = await gateway.retrieve_hold(payment.provider_reference)
    if hold.status != HOLD_AUTHORISED:
        logger.info(
            "Escrow hold still unauthorised: payment=%s, status=%s",
            payment.id,
            hold.status,
        )
        return FundingResult(
            payment=payment,
            held=False,
            client_secret=hold.client_secret,
        )

    await _mark_held(db, payment, contract, hold.reference)
    return FundingResult(payment=payment, held=True)


async def mark_work_delivered(
    db: AsyncSession,
    payment_id: uuid.UUID,
    user_id: uuid.UUID,
    gateway: EscrowGateway,
    now: Optional[datetime] = None,
) -> ConfirmationResult:
    """The doer reports the work as done, which also counts as their
    confirmation.  If the client already confirmed, the escrow releases."""
    payment = await _get_payment_for_update(db, payment_id)
    if payment.recipient_id != user_id:
        raise AuthorizationError("Only the payment's recipient can mark work delivered")
    if payment.is_disputed():
        raise PaymentDisputed("Payment is frozen by an open dispute")
    payment.mark_delivered()
    return await _confirm(db, payment, user_id, gateway, now)


async def confirm_payment(
    db: AsyncSession,
    payment_id: uuid.UUID,
    user_id: uuid.UUID,
    gateway: EscrowGateway,
    now: Optional[datetime] = None,
) -> ConfirmationResult:
    """Record a party's confirmation; the second one releases the escrow.

    Confirming twice is a no-op: the flag is never cleared and the hold is
    captured only once.
    """
    payment = await _get_payment_for_update(db, payment_id)
    if user_id not in (payment.payer_id, payment.recipient_id):
        raise AuthorizationError("Only the payer or recipient can confirm a payment")
    return await _confirm(db, payment, user_id, gateway, now)


async def _confirm(
    db: AsyncSession,
    payment: Payment,
    user_id: uuid.UUID,
    gateway: EscrowGateway,
    now: Optional[datetime],
) -> ConfirmationResult:
    already_released = payment.escrow_released_at is not None
    both = payment.confirm_payment(user_id, now)
    released = not already_released and payment.escrow_released_at is not None

    if released:
        await capture_release(db, payment, gateway)
    await db.flush()

    logger.info(
        "Payment confirmed: payment=%s, user=%s, both=%s, released=%s",
        payment.id,
        user_id,
        both,
        released,
    )
    return ConfirmationResult(payment=payment, both_confirmed=both, released=released)


async def release_escrow(
    db: AsyncSession,
    payment_id: uuid.UUID,
    released_by: uuid.UUID,
    gateway: EscrowGateway,
) -> Payment:
    """Admin releases an escrow without waiting for both confirmations."""
    payment = await _get_payment_for_update(db, payment_id)
    if payment.is_disputed():
        raise PaymentDisputed("Payment is disputed; resolve the dispute instead")
    payment.release_escrow(released_by=released_by)
    await capture_release(db, payment, gateway)
    await db.flush()

    logger.info("Escrow released: payment=%s, by=%s", payment.id, released_by)
    return payment


async def refund_payment(
    db: AsyncSession,
    payment_id: uuid.UUID,
    reason: str,
    refunded_by: uuid.UUID,
    gateway: EscrowGateway,
) -> Payment:
    """Admin refunds an escrow payment to the payer.

    Raises:
        AlreadyRefunded: The payment was refunded before; nothing changes.
        PaymentDisputed: The payment is frozen by a dispute.
        InvalidOperation: The payment was already released.
    """
    payment = await _get_payment_for_update(db, payment_id)
    if payment.is_refunded():
        raise AlreadyRefunded("Payment has already been refunded")
    if payment.is_disputed():
        raise PaymentDisputed("Payment is disputed; resolve the dispute instead")

    await apply_refund(db, payment, reason, refunded_by, gateway)
    await db.flush()
    logger.info("Payment refunded: payment=%s, by=%s", payment.id, refunded_by)
    return payment


async def apply_refund(
    db: AsyncSession,
    payment: Payment,
    reason: str,
    refunded_by: uuid.UUID,
    gateway: EscrowGateway,
) -> None:
    """Refund the full payment and cancel its contract."""
    payment.process_refund(reason, refunded_by)
    if payment.provider_reference:
        await gateway.refund(payment.provider_reference, reason=reason)

    if payment.contract_id is not None:
        contract = await get_contract(db, payment.contract_id, for_update=True)
        contract.status = ContractStatus.CANCELLED.value
        contract.cancellation_reason = reason

    await record_notification(
        db,
        payment.payer_id,
        NotificationType.PAYMENT_REFUNDED,
        "Payment refunded",
        f"Your payment of {payment.amount} has been refunded",
        related_model="Payment",
        related_id=payment.id,
        data={"reason": reason},
    )


async def auto_release_stale_escrows(
    db: AsyncSession,
    gateway: EscrowGateway,
    now: Optional[datetime] = None,
) -> list[Payment]:
    """Release escrows the doer confirmed long ago and the client never
    answered.  Each payment is released in its own savepoint so one
    provider failure does not block the rest."""
    now = now or utcnow()
    cutoff = now - timedelta(days=settings.escrow_auto_release_days)

    result = await db.execute(
        select(Payment)
        .where(
            Payment.is_escrow.is_(True),
            Payment.status == PaymentStatus.AWAITING_CONFIRMATION.value,
            Payment.recipient_confirmed.is_(True),
            Payment.recipient_confirmed_at <= cutoff,
            Payment.dispute_id.is_(None),
            Payment.escrow_released_at.is_(None),
        )
        .order_by(Payment.recipient_confirmed_at)
        .with_for_update(skip_locked=True)
    )
    candidates = list(result.scalars().all())

    released: list[Payment] = []
    for payment in candidates:
        # A rolled-back savepoint expires the row; read the id up front
        payment_id = payment.id
        try:
            async with db.begin_nested():
                payment.release_escrow(released_by=None, now=now)
                await capture_release(db, payment, gateway)
        except PaymentProviderError:
            logger.warning("Auto-release capture failed: payment=%s", payment_id)
            continue
        released.append(payment)
        logger.info("Escrow auto-released: payment=%s", payment_id)

    logger.info(
        "Auto-release run: candidates=%d, released=%d",
        len(candidates),
        len(released),
    )
    return released


async def get_payment(db: AsyncSession, payment_id: uuid.UUID, user: User) -> Payment:
    payment = await db.get(Payment, payment_id)
    if payment is None:
        raise NotFoundError(f"Payment {payment_id} not found")
    if not user.role_admin and user.id not in (payment.payer_id, payment.recipient_id):
        raise AuthorizationError("You are not a party to this payment")
    return payment
