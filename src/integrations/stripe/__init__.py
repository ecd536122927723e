"""
Stripe Integration Module
=========================

Usage::

    from src.integrations.stripe import StripeEscrowGateway

    gateway = StripeEscrowGateway()
    hold = await gateway.hold(payment.id, contract.id, Decimal("8800"), "ars")
"""

from .escrowGateway import (
    CaptureResult,
    HoldResult,
    RefundResult,
    StripeEscrowGateway,
)

__all__ = [
    "CaptureResult",
    "HoldResult",
    "RefundResult",
    "StripeEscrowGateway",
]
