"""
Dispute Service
===============

Opening and administering disputes on contracts.

Opening a dispute freezes the contract's escrow payment
(``Payment.mark_as_disputed``) so it can neither auto-release nor be
completed by the parties.  Admins triage the dispute (assign, prioritise,
request more information) and resolve it with one of four outcomes:

  full_release    escrow released to the doer, contract completed
  full_refund     escrow refunded to the client, contract cancelled
  partial_refund  part of the hold returned to the client, the rest
                  released to the doer, contract completed
  no_action       payment unfrozen back to its pre-dispute state

Every action appends an entry to the dispute's audit log.  Resolved and
cancelled disputes are terminal.
"""

from __future__ import annotations

import logging
import uuid
from decimal import Decimal
from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from src.core.exceptions import (
    AuthorizationError,
    DisputeAlreadyResolved,
    InvalidOperation,
    NotFoundError,
    ValidationError,
)
from src.models import (
    ContractStatus,
    Dispute,
    DisputeCategory,
    DisputePriority,
    DisputeStatus,
    NotificationType,
    Payment,
    PaymentStatus,
    ResolutionType,
    User,
)
from src.models.base import utcnow
from src.models.dispute import RESOLVED_STATUSES
from src.services.contractService import get_contract, to_money
from src.services.escrowService import EscrowGateway, apply_refund, capture_release
from src.services.notificationService import record_notification

logger = logging.getLogger(__name__)

_CLOSING_STATUS = {
    ResolutionType.FULL_RELEASE: DisputeStatus.RESOLVED_RELEASED,
    ResolutionType.FULL_REFUND: DisputeStatus.RESOLVED_REFUNDED,
    ResolutionType.PARTIAL_REFUND: DisputeStatus.RESOLVED_PARTIAL,
    ResolutionType.NO_ACTION: DisputeStatus.CANCELLED,
}


# ---------------------------------------------------------------------------
# Internal helpers
# ---------------------------------------------------------------------------

async def _get_dispute_for_update(db: AsyncSession, dispute_id: uuid.UUID) -> Dispute:
    result = await db.execute(
        select(Dispute).where(Dispute.id == dispute_id).with_for_update()
    )
    dispute = result.scalar_one_or_none()
    if dispute is None:
        raise NotFoundError(f"Dispute {dispute_id} not found")
    return dispute


def _ensure_unresolved(dispute: Dispute) -> None:
    if dispute.is_resolved():
        raise DisputeAlreadyResolved(
            f"Dispute {dispute.id} is already closed (status: {dispute.status})"
        )


async def _find_escrow_payment(
    db: AsyncSession,
    contract_id: uuid.UUID,
    payment_id: Optional[uuid.UUID],
) -> Optional[Payment]:
    stmt = select(Payment).where(Payment.contract_id == contract_id)
    if payment_id is not None:
        stmt = stmt.where(Payment.id == payment_id)
    else:
        stmt = stmt.where(
            Payment.is_escrow.is_(True),
            Payment.status.in_(
                [
                    PaymentStatus.PENDING.value,
                    PaymentStatus.HELD_ESCROW.value,
                    PaymentStatus.AWAITING_CONFIRMATION.value,
                ]
            ),
        ).order_by(Payment.created_at.desc())
    result = await db.execute(stmt.with_for_update())
    payment = result.scalars().first()
    if payment is None and payment_id is not None:
        raise NotFoundError(f"Payment {payment_id} not found for this contract")
    return payment


async def _notify_parties(db: AsyncSession, dispute: Dispute, title: str, message: str) -> None:
    for party in (dispute.initiated_by, dispute.against):
        await record_notification(
            db,
            party,
            NotificationType.DISPUTE_RESOLVED if dispute.is_resolved() else NotificationType.DISPUTE_OPENED,
            title,
            message,
            related_model="Dispute",
            related_id=dispute.id,
            data={"contract_id": str(dispute.contract_id), "status": dispute.status},
        )


# ---------------------------------------------------------------------------
# Parties
# ---------------------------------------------------------------------------

async def open_dispute(
    db: AsyncSession,
    contract_id: uuid.UUID,
    user_id: uuid.UUID,
    reason: str,
    description: str,
    category: DisputeCategory = DisputeCategory.OTHER,
    payment_id: Optional[uuid.UUID] = None,
) -> Dispute:
    """A contract party opens a dispute and freezes the escrow payment.

    Raises:
        NotFoundError: Unknown contract (or payment, when given).
        AuthorizationError: ``user_id`` is not a party to the contract.
        InvalidOperation: The contract already has an unresolved dispute,
            or the payment is already released or refunded.
    """
    contract = await get_contract(db, contract_id, for_update=True)
    if not contract.is_party(user_id):
        raise AuthorizationError("Only contract parties can open a dispute")

    open_disputes = await db.execute(
        select(Dispute.id).where(
            Dispute.contract_id == contract.id,
            Dispute.status.notin_([s.value for s in RESOLVED_STATUSES]),
        )
    )
    if open_disputes.first() is not None:
        raise InvalidOperation("This contract already has an open dispute")

    payment = await _find_escrow_payment(db, contract.id, payment_id)
    against = contract.doer_id if user_id == contract.client_id else contract.client_id

    dispute = Dispute(
        contract_id=contract.id,
        payment_id=payment.id if payment else None,
        initiated_by=user_id,
        against=against,
        reason=reason,
        detailed_description=description,
        category=DisputeCategory(category).value,
        priority=DisputePriority.MEDIUM.value,
        status=DisputeStatus.OPEN.value,
        logs=[],
    )
    db.add(dispute)
    await db.flush()

    if payment is not None:
        payment.mark_as_disputed(user_id, reason, dispute.id)
    contract.status = ContractStatus.DISPUTED.value
    dispute.add_log("dispute_created", user_id, reason)
    await db.flush()

    await _notify_parties(db, dispute, "Dispute opened", reason)

    logger.info(
        "Dispute opened: dispute=%s, contract=%s, payment=%s, by=%s",
        dispute.id,
        contract.id,
        dispute.payment_id,
        user_id,
    )
    return dispute


async def get_dispute(db: AsyncSession, dispute_id: uuid.UUID, user: User) -> Dispute:
    dispute = await db.get(Dispute, dispute_id)
    if dispute is None:
        raise NotFoundError(f"Dispute {dispute_id} not found")
    if not user.role_admin and user.id not in (dispute.initiated_by, dispute.against):
        raise AuthorizationError("You are not a party to this dispute")
    return dispute


# ---------------------------------------------------------------------------
# Admin triage
# ---------------------------------------------------------------------------

async def list_disputes(
    db: AsyncSession,
    status: Optional[DisputeStatus] = None,
    priority: Optional[DisputePriority] = None,
) -> list[Dispute]:
    stmt = select(Dispute)
    if status is not None:
        stmt = stmt.where(Dispute.status == DisputeStatus(status).value)
    if priority is not None:
        stmt = stmt.where(Dispute.priority == DisputePriority(priority).value)
    result = await db.execute(stmt.order_by(Dispute.created_at.desc()))
    return list(result.scalars().all())


async def assign_dispute(
    db: AsyncSession,
    dispute_id: uuid.UUID,
    admin_id: uuid.UUID,
    assignee_id: uuid.UUID,
) -> Dispute:
    dispute = await _get_dispute_for_update(db, dispute_id)
    _ensure_unresolved(dispute)

    dispute.assigned_to = assignee_id
    dispute.assigned_at = utcnow()
    dispute.status = DisputeStatus.IN_REVIEW.value
    dispute.add_log("dispute_assigned", admin_id, f"Assigned to {assignee_id}")
    await db.flush()

    logger.info("Dispute assigned: dispute=%s, assignee=%s", dispute.id, assignee_id)
    return dispute


async def update_priority(
    db: AsyncSession,
    dispute_id: uuid.UUID,
    admin_id: uuid.UUID,
    priority: DisputePriority,
) -> Dispute:
    dispute = await _get_dispute_for_update(db, dispute_id)
    _ensure_unresolved(dispute)

    old = dispute.priority
    dispute.priority = DisputePriority(priority).value
    dispute.add_log("priority_updated", admin_id, f"Priority changed from {old} to {dispute.priority}")
    await db.flush()
    return dispute


async def request_more_info(
    db: AsyncSession,
    dispute_id: uuid.UUID,
    admin_id: uuid.UUID,
    note: str,
) -> Dispute:
    dispute = await _get_dispute_for_update(db, dispute_id)
    _ensure_unresolved(dispute)

    dispute.status = DisputeStatus.AWAITING_INFO.value
    dispute.add_log("info_requested", admin_id, note)
    await db.flush()

    await _notify_parties(db, dispute, "More information requested", note)
    return dispute


# ---------------------------------------------------------------------------
# Resolution
# ---------------------------------------------------------------------------

async def resolve_dispute(
    db: AsyncSession,
    dispute_id: uuid.UUID,
    admin_id: uuid.UUID,
    resolution: str,
    resolution_type: ResolutionType,
    gateway: EscrowGateway,
    refund_amount: Optional[Decimal] = None,
) -> Dispute:
    """Close a dispute and move the frozen funds accordingly.

    Raises:
        DisputeAlreadyResolved: The dispute is already closed.
        ValidationError: ``partial_refund`` without a valid amount.
        InvalidOperation: A money-moving resolution with no frozen payment.
        PaymentProviderError: The provider refused the capture or refund.
    """
    resolution_type = ResolutionType(resolution_type)
    dispute = await _get_dispute_for_update(db, dispute_id)
    _ensure_unresolved(dispute)

    contract = await get_contract(db, dispute.contract_id, for_update=True)
    payment: Optional[Payment] = None
    if dispute.payment_id is not None:
        result = await db.execute(
            select(Payment).where(Payment.id == dispute.payment_id).with_for_update()
        )
        payment = result.scalar_one_or_none()

    if resolution_type == ResolutionType.PARTIAL_REFUND:
        if refund_amount is None or refund_amount <= 0:
            raise ValidationError("A positive refund amount is required for a partial refund")
        refund_amount = to_money(refund_amount)
        if refund_amount > to_money(contract.price):
            raise ValidationError(
                f"Refund amount {refund_amount} exceeds the contract price {contract.price}"
            )

    moves_money = resolution_type != ResolutionType.NO_ACTION
    if moves_money and (payment is None or payment.status != PaymentStatus.DISPUTED):
        raise InvalidOperation("Dispute has no frozen payment to settle")

    # Claim the dispute before any money moves: a concurrent resolution of
    # the same dispute fails the version check on this flush
    now = utcnow()
    dispute.status = _CLOSING_STATUS[resolution_type].value
    dispute.resolution = resolution
    dispute.resolution_type = resolution_type.value
    dispute.resolved_by = admin_id
    dispute.resolved_at = now
    await db.flush()

    if resolution_type == ResolutionType.FULL_RELEASE:
        payment.resolve_release(admin_id, now)
        await capture_release(db, payment, gateway)
        log_action, details = "dispute_resolved_release", "Funds released to the doer"

    elif resolution_type == ResolutionType.FULL_REFUND:
        await apply_refund(db, payment, resolution, admin_id, gateway)
        log_action, details = "dispute_resolved_refund", "Funds refunded to the client"

    elif resolution_type == ResolutionType.PARTIAL_REFUND:
        payment.resolve_partial_refund(refund_amount, resolution, admin_id, now)
        # Capturing less than the hold returns the difference to the client
        await capture_release(db, payment, gateway, amount=payment.amount - refund_amount)
        dispute.refund_amount = refund_amount
        log_action, details = "dispute_resolved_partial", f"Partial refund of {refund_amount}"

    else:
        if payment is not None and payment.status == PaymentStatus.DISPUTED:
            payment.lift_dispute()
        if contract.status == ContractStatus.DISPUTED:
            contract.status = ContractStatus.IN_PROGRESS.value
        log_action, details = "dispute_cancelled", resolution

    dispute.add_log(log_action, admin_id, details)
    await db.flush()

    await _notify_parties(db, dispute, "Dispute resolved", resolution)

    logger.info(
        "Dispute resolved: dispute=%s, type=%s, payment=%s, refund=%s",
        dispute.id,
        resolution_type.value,
        payment.id if payment else None,
        refund_amount,
    )
    return dispute
