"""
Stripe Escrow Gateway
=====================

Holds, captures and refunds contract funds through Stripe.

Escrow is implemented with manual-capture PaymentIntents: funding a contract
authorises the full contract total on the client's card without moving it
(``requires_capture``).  Without a saved payment method the intent waits for
the client to confirm it with its ``client_secret``; ``retrieve_hold`` reads
the outcome.  Releasing the escrow captures it; a refund before
release cancels the hold and a refund after capture issues a Stripe Refund.

Amounts are handled as ``Decimal`` in the platform and converted to the
smallest currency unit only at this boundary.
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from decimal import Decimal
from typing import Optional

import stripe

from src.core.config import settings
from src.core.exceptions import PaymentProviderError

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Response dataclasses
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class HoldResult:
    """Result of authorising an escrow hold."""
    reference: str
    status: str
    client_secret: Optional[str] = None


@dataclass(frozen=True)
class CaptureResult:
    reference: str
    status: str
    amount_captured: int


@dataclass(frozen=True)
class RefundResult:
    id: str
    status: str
    amount: int


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def to_minor_units(amount: Decimal) -> int:
    return int((Decimal(amount) * 100).to_integral_value())


def _handle_stripe_error(exc: stripe.StripeError) -> PaymentProviderError:
    """Convert a Stripe SDK exception into a PaymentProviderError."""
    error_body = getattr(exc, "error", None)

    code = getattr(error_body, "code", None) if error_body else None
    error_type = getattr(error_body, "type", None) if error_body else None

    logger.error(
        "Stripe API error: %s (code=%s, type=%s)",
        str(exc),
        code,
        error_type,
    )

    return PaymentProviderError(
        str(exc),
        provider_error_code=code,
        provider_error_type=error_type,
    )


# ---------------------------------------------------------------------------
# Gateway
# ---------------------------------------------------------------------------

class StripeEscrowGateway:
    """Escrow operations against the Stripe API."""

    def __init__(self, api_key: str | None = None) -> None:
        stripe.api_key = api_key if api_key is not None else settings.stripe_secret_key
        stripe.api_version = settings.stripe_api_version

    async def hold(
        self,
        payment_id: uuid.UUID,
        contract_id: uuid.UUID,
        amount: Decimal,
        currency: str,
        payment_method_id: Optional[str] = None,
    ) -> HoldResult:
        """Authorise ``amount`` without capturing it.

        Raises:
            PaymentProviderError: If the Stripe API call fails.
        """
        params: dict = {
            "amount": to_minor_units(amount),
            "currency": currency.lower(),
            "capture_method": "manual",
            "metadata": {
                "payment_id": str(payment_id),
                "contract_id": str(contract_id),
                "platform": "doers",
            },
        }
        if payment_method_id:
            params["payment_method"] = payment_method_id
            params["confirm"] = True
            params["automatic_payment_methods"] = {"enabled": True, "allow_redirects": "never"}
        else:
            params["automatic_payment_methods"] = {"enabled": True}

        try:
            intent = stripe.PaymentIntent.create(**params)
        except stripe.StripeError as exc:
            raise _handle_stripe_error(exc) from exc

        logger.info(
            "Escrow hold created: intent=%s, payment=%s, amount=%s %s, status=%s",
            intent.id,
            payment_id,
            amount,
            currency,
            intent.status,
        )
        return HoldResult(
            reference=intent.id,
            status=intent.status,
            client_secret=intent.client_secret,
        )

    async def retrieve_hold(self, reference: str) -> HoldResult:
        """Re-read a hold after the client confirmed it with its
        ``client_secret``.  ``requires_capture`` means the funds are held."""
        try:
            intent = stripe.PaymentIntent.retrieve(reference)
        except stripe.StripeError as exc:
            raise _handle_stripe_error(exc) from exc

        logger.info("Escrow hold retrieved: intent=%s, status=%s", intent.id, intent.status)
        return HoldResult(
            reference=intent.id,
            status=intent.status,
            client_secret=intent.client_secret,
        )

    async def capture(self, reference: str, amount: Optional[Decimal] = None) -> CaptureResult:
        """Capture a held PaymentIntent, optionally for less than the hold."""
        params: dict = {}
        if amount is not None:
            params["amount_to_capture"] = to_minor_units(amount)
        try:
            intent = stripe.PaymentIntent.capture(reference, **params)
        except stripe.StripeError as exc:
            raise _handle_stripe_error(exc) from exc

        logger.info(
            "Escrow captured: intent=%s, amount=%d, status=%s",
            intent.id,
            intent.amount_received,
            intent.status,
        )
        return CaptureResult(
            reference=intent.id,
            status=intent.status,
            amount_captured=intent.amount_received,
        )

    async def refund(
        self,
        reference: str,
        amount: Optional[Decimal] = None,
        reason: str = "",
    ) -> RefundResult:
        """Return funds to the payer.

        An uncaptured hold is cancelled outright; a captured charge is
        refunded in full or for ``amount``.
        """
        try:
            intent = stripe.PaymentIntent.retrieve(reference)
            if intent.status == "requires_capture" and amount is None:
                cancelled = stripe.PaymentIntent.cancel(
                    reference, cancellation_reason="requested_by_customer"
                )
                logger.info("Escrow hold cancelled: intent=%s", reference)
                return RefundResult(id=cancelled.id, status=cancelled.status, amount=cancelled.amount)

            params: dict = {
                "payment_intent": reference,
                "metadata": {
                    "reason": reason[:500] if reason else "",
                    "platform": "doers",
                },
            }
            if amount is not None:
                params["amount"] = to_minor_units(amount)
            refund = stripe.Refund.create(**params)
        except stripe.StripeError as exc:
            raise _handle_stripe_error(exc) from exc

        logger.info(
            "Refund created: id=%s, payment_intent=%s, amount=%d, status=%s",
            refund.id,
            reference,
            refund.amount,
            refund.status,
        )
        return RefundResult(id=refund.id, status=refund.status, amount=refund.amount)
