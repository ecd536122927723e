"""
Payment State Manager
=====================

Transition table for escrow payments.  Every status change on ``Payment``
goes through ``Payment._move_to``, which consults this table.

State machine overview::

    pending --> held_escrow --> awaiting_confirmation --> completed
                     |                                      ^
                     +--------------------------------------+

    any non-terminal status --> disputed --> refunded | completed
    any non-terminal status --> refunded
    disputed --> (status before the dispute)

``completed`` and ``refunded`` are terminal.  A ``pending`` payment holds
no money until the provider authorises the hold, so it cannot be released;
it can still be frozen by a dispute or cancelled by a refund.  A disputed
payment completes only if it was held in escrow before the dispute.
"""

from __future__ import annotations

from dataclasses import dataclass

from src.models.payment import PaymentStatus


@dataclass(frozen=True)
class TransitionResult:
    """Result of a transition validation attempt."""
    allowed: bool
    reason: str | None = None


VALID_TRANSITIONS: dict[PaymentStatus, set[PaymentStatus]] = {
    PaymentStatus.PENDING: {
        PaymentStatus.HELD_ESCROW,
        PaymentStatus.DISPUTED,
        PaymentStatus.REFUNDED,
    },
    PaymentStatus.HELD_ESCROW: {
        PaymentStatus.AWAITING_CONFIRMATION,
        PaymentStatus.COMPLETED,
        PaymentStatus.DISPUTED,
        PaymentStatus.REFUNDED,
    },
    PaymentStatus.AWAITING_CONFIRMATION: {
        PaymentStatus.COMPLETED,
        PaymentStatus.DISPUTED,
        PaymentStatus.REFUNDED,
    },
    PaymentStatus.DISPUTED: {
        PaymentStatus.REFUNDED,
        PaymentStatus.COMPLETED,
        PaymentStatus.PENDING,
        PaymentStatus.HELD_ESCROW,
        PaymentStatus.AWAITING_CONFIRMATION,
    },
    # Terminal states
    PaymentStatus.COMPLETED: set(),
    PaymentStatus.REFUNDED: set(),
}


def validate_transition(
    current_status: PaymentStatus,
    new_status: PaymentStatus,
) -> TransitionResult:
    """Validate whether a payment status transition is allowed."""
    current_status = PaymentStatus(current_status)
    new_status = PaymentStatus(new_status)

    allowed_targets = VALID_TRANSITIONS.get(current_status, set())
    if new_status not in allowed_targets:
        return TransitionResult(
            allowed=False,
            reason=(
                f"Invalid payment transition: '{current_status.value}' -> "
                f"'{new_status.value}'. Allowed transitions from "
                f"'{current_status.value}': "
                f"{', '.join(s.value for s in sorted(allowed_targets, key=lambda s: s.value)) or 'none'}."
            ),
        )
    return TransitionResult(allowed=True)


def is_terminal(status: PaymentStatus) -> bool:
    return not VALID_TRANSITIONS.get(PaymentStatus(status))
