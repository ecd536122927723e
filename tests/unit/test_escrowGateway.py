"""
Unit tests for the Stripe escrow gateway.

The Stripe SDK is patched; these tests check the parameters we send and
how SDK errors are translated.
"""

import uuid
from decimal import Decimal
from types import SimpleNamespace
from unittest.mock import patch

import pytest
import stripe

from src.core.exceptions import PaymentProviderError
from src.integrations.stripe.escrowGateway import StripeEscrowGateway, to_minor_units


pytestmark = pytest.mark.asyncio


def _intent(**overrides):
    values = dict(
        id="pi_123",
        status="requires_capture",
        client_secret="pi_123_secret",
        amount=880000,
        amount_received=0,
    )
    values.update(overrides)
    return SimpleNamespace(**values)


def _declined() -> stripe.StripeError:
    exc = stripe.StripeError("Your card was declined.")
    exc.error = SimpleNamespace(code="card_declined", type="card_error")
    return exc


class TestMinorUnits:

    async def test_converts_decimal_amounts(self):
        assert to_minor_units(Decimal("8800.00")) == 880000
        assert to_minor_units(Decimal("12.345")) == 1234


class TestHold:

    async def test_manual_capture_intent(self):
        payment_id, contract_id = uuid.uuid4(), uuid.uuid4()
        with patch.object(stripe.PaymentIntent, "create", return_value=_intent()) as create:
            result = await StripeEscrowGateway(api_key="sk_test").hold(
                payment_id, contract_id, Decimal("8800.00"), "ARS"
            )

        params = create.call_args.kwargs
        assert params["amount"] == 880000
        assert params["currency"] == "ars"
        assert params["capture_method"] == "manual"
        assert params["metadata"]["contract_id"] == str(contract_id)
        assert "confirm" not in params
        assert result.reference == "pi_123"
        assert result.status == "requires_capture"

    async def test_payment_method_confirms_immediately(self):
        with patch.object(stripe.PaymentIntent, "create", return_value=_intent()) as create:
            await StripeEscrowGateway(api_key="sk_test").hold(
                uuid.uuid4(), uuid.uuid4(), Decimal("100"), "ars", "pm_card_visa"
            )

        params = create.call_args.kwargs
        assert params["payment_method"] == "pm_card_visa"
        assert params["confirm"] is True

    async def test_unconfirmed_intent_returns_client_secret(self):
        pending = _intent(status="requires_payment_method")
        with patch.object(stripe.PaymentIntent, "create", return_value=pending):
            result = await StripeEscrowGateway(api_key="sk_test").hold(
                uuid.uuid4(), uuid.uuid4(), Decimal("100"), "ars"
            )

        assert result.status == "requires_payment_method"
        assert result.client_secret == "pi_123_secret"

    async def test_retrieve_reports_current_status(self):
        with patch.object(stripe.PaymentIntent, "retrieve", return_value=_intent()) as retrieve:
            result = await StripeEscrowGateway(api_key="sk_test").retrieve_hold("pi_123")

        retrieve.assert_called_once_with("pi_123")
        assert result.status == "requires_capture"
        assert result.reference == "pi_123"

    async def test_declined_card_raises_provider_error(self):
        with patch.object(stripe.PaymentIntent, "create", side_effect=_declined()):
            with pytest.raises(PaymentProviderError) as exc_info:
                await StripeEscrowGateway(api_key="sk_test").hold(
                    uuid.uuid4(), uuid.uuid4(), Decimal("100"), "ars"
                )

        assert exc_info.value.provider_error_code == "card_declined"
        assert exc_info.value.provider_error_type == "card_error"


class TestCapture:

    async def test_full_capture(self):
        captured = _intent(status="succeeded", amount_received=880000)
        with patch.object(stripe.PaymentIntent, "capture", return_value=captured) as capture:
            result = await StripeEscrowGateway(api_key="sk_test").capture("pi_123")

        capture.assert_called_once_with("pi_123")
        assert result.amount_captured == 880000

    async def test_partial_capture(self):
        captured = _intent(status="succeeded", amount_received=580000)
        with patch.object(stripe.PaymentIntent, "capture", return_value=captured) as capture:
            await StripeEscrowGateway(api_key="sk_test").capture("pi_123", Decimal("5800.00"))

        capture.assert_called_once_with("pi_123", amount_to_capture=580000)


class TestRefund:

    async def test_uncaptured_hold_is_cancelled(self):
        cancelled = _intent(status="canceled")
        with patch.object(stripe.PaymentIntent, "retrieve", return_value=_intent()), \
                patch.object(stripe.PaymentIntent, "cancel", return_value=cancelled) as cancel, \
                patch.object(stripe.Refund, "create") as refund_create:
            result = await StripeEscrowGateway(api_key="sk_test").refund("pi_123", reason="Cancelled")

        cancel.assert_called_once()
        refund_create.assert_not_called()
        assert result.status == "canceled"

    async def test_captured_charge_is_refunded(self):
        refund = SimpleNamespace(id="re_1", status="succeeded", amount=880000)
        with patch.object(stripe.PaymentIntent, "retrieve", return_value=_intent(status="succeeded")), \
                patch.object(stripe.Refund, "create", return_value=refund) as refund_create:
            result = await StripeEscrowGateway(api_key="sk_test").refund("pi_123", reason="Dispute")

        params = refund_create.call_args.kwargs
        assert params["payment_intent"] == "pi_123"
        assert params["metadata"]["reason"] == "Dispute"
        assert "amount" not in params
        assert result.id == "re_1"
