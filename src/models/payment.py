"""
SQLAlchemy model for payments, the escrow ledger.

A contract payment is created ``pending``, moves to ``held_escrow`` once the
provider authorises the hold, optionally to ``awaiting_confirmation`` when
the doer reports delivery, and is released to ``completed`` after both
parties confirm (or an admin releases it).  Any open payment may be frozen
as ``disputed`` or refunded; ``completed`` and ``refunded`` are terminal.
Status changes go through ``_move_to``, which checks
``paymentStateManager.VALID_TRANSITIONS``.

The transition methods on the model are synchronous and perform no I/O so
they can be exercised directly in unit tests.  Persistence, row locking and
provider calls happen in ``src.services.escrowService``.
"""

import enum
import uuid
from datetime import datetime
from decimal import Decimal
from typing import Optional

from sqlalchemy import Boolean, DateTime, ForeignKey, Integer, Numeric, String, Text
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column

from src.core.exceptions import AlreadyRefunded, InvalidOperation

from .base import Base, TimestampMixin, UUIDPrimaryKeyMixin, utcnow


class PaymentStatus(str, enum.Enum):
    PENDING = "pending"
    HELD_ESCROW = "held_escrow"
    AWAITING_CONFIRMATION = "awaiting_confirmation"
    COMPLETED = "completed"
    DISPUTED = "disputed"
    REFUNDED = "refunded"


class PaymentType(str, enum.Enum):
    CONTRACT_PAYMENT = "contract_payment"
    ESCROW_DEPOSIT = "escrow_deposit"
    MEMBERSHIP = "membership"
    PUBLICATION = "publication"


ESCROW_STATUSES = (PaymentStatus.HELD_ESCROW, PaymentStatus.AWAITING_CONFIRMATION)


class Payment(UUIDPrimaryKeyMixin, TimestampMixin, Base):
    __tablename__ = "payments"

    contract_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("contracts.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    )
    payer_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("users.id"), nullable=False, index=True
    )
    # Null for non-contract payments (memberships, job publication)
    recipient_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUID(as_uuid=True), ForeignKey("users.id"), nullable=True, index=True
    )

    amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    currency: Mapped[str] = mapped_column(String(10), nullable=False, default="ARS")
    platform_fee: Mapped[Decimal] = mapped_column(
        Numeric(12, 2), nullable=False, default=Decimal("0")
    )
    worker_payment_amount: Mapped[Decimal] = mapped_column(
        Numeric(12, 2), nullable=False, default=Decimal("0")
    )
    refunded_amount: Mapped[Optional[Decimal]] = mapped_column(
        Numeric(12, 2), nullable=True
    )

    payment_type: Mapped[str] = mapped_column(
        String(30), nullable=False, default=PaymentType.CONTRACT_PAYMENT.value
    )
    payment_method: Mapped[str] = mapped_column(String(30), nullable=False)
    provider_reference: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    status: Mapped[str] = mapped_column(
        String(30), nullable=False, default=PaymentStatus.PENDING.value, index=True
    )
    is_escrow: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    # Bilateral confirmation
    payer_confirmed: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    payer_confirmed_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    recipient_confirmed: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    recipient_confirmed_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    # Dispute freeze
    dispute_id: Mapped[Optional[uuid.UUID]] = mapped_column(UUID(as_uuid=True), nullable=True)
    dispute_reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    disputed_by: Mapped[Optional[uuid.UUID]] = mapped_column(UUID(as_uuid=True), nullable=True)
    disputed_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    status_before_dispute: Mapped[Optional[str]] = mapped_column(String(30), nullable=True)

    # Refund
    refund_reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    refunded_by: Mapped[Optional[uuid.UUID]] = mapped_column(UUID(as_uuid=True), nullable=True)
    refunded_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    # Release
    escrow_released_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    escrow_released_by: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUID(as_uuid=True), nullable=True
    )

    version: Mapped[int] = mapped_column(Integer, nullable=False)

    __mapper_args__ = {"version_id_col": version}

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def is_both_parties_confirmed(self) -> bool:
        return bool(self.payer_confirmed and self.recipient_confirmed)

    def is_in_escrow(self) -> bool:
        return (
            bool(self.is_escrow)
            and self.status in ESCROW_STATUSES
            and self.escrow_released_at is None
        )

    def is_disputed(self) -> bool:
        # dispute_id is checked too in case status drifted
        return self.status == PaymentStatus.DISPUTED or self.dispute_id is not None

    def is_refunded(self) -> bool:
        return self.status == PaymentStatus.REFUNDED

    def can_be_released(self) -> bool:
        return (
            self.is_in_escrow()
            and self.is_both_parties_confirmed()
            and not self.is_disputed()
        )

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    def _move_to(self, new_status: PaymentStatus) -> None:
        """Every status change goes through the escrow transition table."""
        from src.services import paymentStateManager

        result = paymentStateManager.validate_transition(self.status, new_status)
        if not result.allowed:
            raise InvalidOperation(result.reason or "Invalid payment transition")
        self.status = PaymentStatus(new_status).value

    def hold_in_escrow(self, reference: str) -> None:
        """The provider authorised a hold for the full amount."""
        self._move_to(PaymentStatus.HELD_ESCROW)
        self.provider_reference = reference

    def mark_delivered(self) -> None:
        self._move_to(PaymentStatus.AWAITING_CONFIRMATION)

    def confirm_payment(self, user_id: uuid.UUID, now: Optional[datetime] = None) -> bool:
        """Record a party's confirmation that the work was completed.

        Returns False when ``user_id`` is neither the payer nor the
        recipient.  Otherwise returns True only when both parties have now
        confirmed.  The first time both confirmations are present on an
        undisputed escrow the funds are released; repeated calls never
        clear a flag and never release twice.
        """
        now = now or utcnow()

        if user_id == self.payer_id:
            if not self.payer_confirmed:
                self.payer_confirmed = True
                self.payer_confirmed_at = now
        elif self.recipient_id is not None and user_id == self.recipient_id:
            if not self.recipient_confirmed:
                self.recipient_confirmed = True
                self.recipient_confirmed_at = now
        else:
            return False

        if not self.is_both_parties_confirmed():
            return False

        if self.can_be_released():
            self.release_escrow(released_by=user_id, now=now)
        return True

    def release_escrow(
        self,
        released_by: Optional[uuid.UUID] = None,
        now: Optional[datetime] = None,
    ) -> None:
        if not self.is_in_escrow():
            raise InvalidOperation("Payment is not in escrow")
        self._move_to(PaymentStatus.COMPLETED)
        self.escrow_released_at = now or utcnow()
        self.escrow_released_by = released_by

    def mark_as_disputed(
        self,
        user_id: uuid.UUID,
        reason: str,
        dispute_id: Optional[uuid.UUID] = None,
        now: Optional[datetime] = None,
    ) -> None:
        from src.services import paymentStateManager

        if paymentStateManager.is_terminal(self.status):
            raise InvalidOperation(
                f"Cannot dispute a payment in status '{self.status}'"
            )
        if self.status != PaymentStatus.DISPUTED:
            previous = self.status
            self._move_to(PaymentStatus.DISPUTED)
            self.status_before_dispute = previous
        self.dispute_id = dispute_id
        self.dispute_reason = reason
        self.disputed_by = user_id
        self.disputed_at = now or utcnow()

    def lift_dispute(self) -> None:
        """Unfreeze a disputed payment back to its pre-dispute status."""
        if self.status != PaymentStatus.DISPUTED:
            raise InvalidOperation("Payment is not disputed")
        self._move_to(self.status_before_dispute or PaymentStatus.HELD_ESCROW)
        self.status_before_dispute = None
        self.dispute_id = None

    def process_refund(
        self,
        reason: str,
        refunded_by: Optional[uuid.UUID] = None,
        now: Optional[datetime] = None,
    ) -> None:
        if self.is_refunded():
            raise AlreadyRefunded("Payment has already been refunded")
        if self.status == PaymentStatus.COMPLETED:
            raise InvalidOperation("Cannot refund a completed payment")
        self._move_to(PaymentStatus.REFUNDED)
        self.refund_reason = reason
        self.refunded_by = refunded_by
        self.refunded_at = now or utcnow()
        self.refunded_amount = self.amount

    def resolve_release(
        self,
        released_by: uuid.UUID,
        now: Optional[datetime] = None,
    ) -> None:
        """Complete a disputed escrow in the recipient's favour."""
        if self.status != PaymentStatus.DISPUTED:
            raise InvalidOperation("Payment is not disputed")
        if self.status_before_dispute not in ESCROW_STATUSES or self.escrow_released_at:
            raise InvalidOperation("Payment was never held in escrow")
        self._move_to(PaymentStatus.COMPLETED)
        self.status_before_dispute = None
        self.dispute_id = None
        self.escrow_released_at = now or utcnow()
        self.escrow_released_by = released_by

    def resolve_partial_refund(
        self,
        amount: Decimal,
        reason: str,
        resolved_by: uuid.UUID,
        now: Optional[datetime] = None,
    ) -> None:
        """Refund ``amount`` to the payer and release the remainder."""
        now = now or utcnow()
        self.resolve_release(resolved_by, now)
        self.refunded_amount = amount
        self.refund_reason = reason
        self.refunded_by = resolved_by
        self.refunded_at = now

    def __repr__(self) -> str:
        return (
            f"<Payment(id={self.id}, amount={self.amount}, "
            f"status={self.status}, escrow={self.is_escrow})>"
        )
