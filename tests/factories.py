"""
Builders for transient ORM instances and mock query results used by the
unit tests.
"""

import uuid
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from types import SimpleNamespace
from unittest.mock import MagicMock

from src.core.exceptions import PaymentProviderError
from src.models.contract import Contract, ContractStatus
from src.models.job import Job, JobStatus
from src.models.payment import Payment, PaymentStatus, PaymentType
from src.models.proposal import Proposal, ProposalStatus


NOW = datetime(2026, 3, 2, 12, 0, tzinfo=timezone.utc)


def scalar_result(value) -> MagicMock:
    """A mock ``Result`` whose ``scalar_one_or_none()`` returns ``value``."""
    result = MagicMock()
    result.scalar_one_or_none.return_value = value
    result.scalars.return_value.all.return_value = [] if value is None else [value]
    result.scalars.return_value.first.return_value = value
    result.first.return_value = None if value is None else (value,)
    return result


def list_result(values: list) -> MagicMock:
    result = MagicMock()
    result.scalars.return_value.all.return_value = list(values)
    result.scalars.return_value.first.return_value = values[0] if values else None
    result.first.return_value = (values[0],) if values else None
    return result


def make_job(client_id: uuid.UUID, **overrides) -> Job:
    values = dict(
        id=uuid.uuid4(),
        title="Paint the living room",
        client_id=client_id,
        doer_id=None,
        price=Decimal("10000.00"),
        currency="ARS",
        status=JobStatus.OPEN.value,
        start_date=NOW - timedelta(days=1),
        max_workers=1,
        selected_workers=[],
        worker_allocations=[],
        allocated_total=Decimal("0.00"),
        remaining_budget=Decimal("10000.00"),
        version=1,
    )
    values.update(overrides)
    return Job(**values)


def make_proposal(job: Job, freelancer_id: uuid.UUID, **overrides) -> Proposal:
    values = dict(
        id=uuid.uuid4(),
        job_id=job.id,
        freelancer_id=freelancer_id,
        client_id=job.client_id,
        cover_letter="I can do it this week.",
        proposed_price=Decimal("8000.00"),
        estimated_duration=3,
        is_counter_offer=False,
        status=ProposalStatus.PENDING.value,
    )
    values.update(overrides)
    return Proposal(**values)


def make_contract(client_id: uuid.UUID, doer_id: uuid.UUID, **overrides) -> Contract:
    values = dict(
        id=uuid.uuid4(),
        job_id=uuid.uuid4(),
        client_id=client_id,
        doer_id=doer_id,
        price=Decimal("8000.00"),
        commission=Decimal("800.00"),
        total_price=Decimal("8800.00"),
        allocated_amount=Decimal("8000.00"),
        percentage_of_budget=Decimal("80.00"),
        price_modification_history=[],
        start_date=NOW,
        end_date=NOW + timedelta(days=3),
        status=ContractStatus.PENDING.value,
        client_confirmed_pairing=False,
        doer_confirmed_pairing=False,
        terms_accepted=False,
        terms_accepted_by_client=False,
        terms_accepted_by_doer=False,
    )
    values.update(overrides)
    return Contract(**values)


def make_payment(payer_id: uuid.UUID, recipient_id: uuid.UUID, **overrides) -> Payment:
    values = dict(
        id=uuid.uuid4(),
        contract_id=uuid.uuid4(),
        payer_id=payer_id,
        recipient_id=recipient_id,
        amount=Decimal("8800.00"),
        currency="ARS",
        platform_fee=Decimal("800.00"),
        worker_payment_amount=Decimal("8000.00"),
        payment_type=PaymentType.CONTRACT_PAYMENT.value,
        payment_method="stripe",
        provider_reference="pi_test_123",
        status=PaymentStatus.HELD_ESCROW.value,
        is_escrow=True,
        payer_confirmed=False,
        recipient_confirmed=False,
    )
    values.update(overrides)
    return Payment(**values)



class FakeGateway:
    """Records escrow gateway calls.

    ``hold_status`` is what a new hold reports (``requires_capture`` means
    authorised); ``authorized_status`` is what ``retrieve_hold`` reports
    afterwards.  ``fail_capture`` makes every capture raise and
    ``fail_references`` only the listed ones.
    """

    def __init__(
        self,
        fail_capture: bool = False,
        hold_status: str = "requires_capture",
        fail_references=(),
    ) -> None:
        self.fail_capture = fail_capture
        self.fail_references = set(fail_references)
        self.hold_status = hold_status
        self.authorized_status = "requires_capture"
        self.holds: list[tuple] = []
        self.retrieved: list[str] = []
        self.captures: list[tuple] = []
        self.refunds: list[tuple] = []

    async def hold(self, payment_id, contract_id, amount, currency, payment_method_id=None):
        self.holds.append((payment_id, contract_id, amount, currency))
        reference = f"pi_fake_{len(self.holds)}"
        return SimpleNamespace(
            reference=reference,
            status=self.hold_status,
            client_secret=f"{reference}_secret",
        )

    async def retrieve_hold(self, reference):
        self.retrieved.append(reference)
        return SimpleNamespace(
            reference=reference,
            status=self.authorized_status,
            client_secret=f"{reference}_secret",
        )

    async def capture(self, reference, amount=None):
        if self.fail_capture or reference in self.fail_references:
            raise PaymentProviderError("Your card was declined.", provider_error_code="card_declined")
        self.captures.append((reference, amount))
        return SimpleNamespace(reference=reference)

    async def refund(self, reference, amount=None, reason=""):
        self.refunds.append((reference, amount, reason))
        return SimpleNamespace(reference=f"re_fake_{len(self.refunds)}")


class FakeBroadcaster:
    """Records Socket.IO emissions as ``(room, event, data)`` tuples."""

    def __init__(self, fail: bool = False) -> None:
        self.fail = fail
        self.emitted: list[tuple[str, str, dict]] = []

    async def _emit(self, room: str, event: str, data: dict) -> None:
        if self.fail:
            raise ConnectionError("socket server unavailable")
        self.emitted.append((room, event, data))

    async def to_user(self, user_id, event, data):
        await self._emit(f"user_{user_id}", event, data)

    async def to_job(self, job_id, event, data):
        await self._emit(f"job_{job_id}", event, data)

    async def to_dashboard(self, event, data):
        await self._emit("admin_dashboard", event, data)

    def events(self, room: str | None = None) -> list[str]:
        return [e for r, e, _ in self.emitted if room is None or r == room]


class FakeMailer:
    def __init__(self, fail: bool = False) -> None:
        self.fail = fail
        self.sent: list[tuple[str, str]] = []

    async def send(self, to_email, subject, html):
        if self.fail:
            raise TimeoutError("mail relay timed out")
        self.sent.append((to_email, subject))


class FakeCache:
    def __init__(self) -> None:
        self.evicted: list[str] = []

    async def delete_pattern(self, pattern):
        self.evicted.append(pattern)
        return 0
