"""
Unit tests for the notification layer: savepoint-isolated in-app records
and the best-effort post-commit notifier.
"""

import uuid
from unittest.mock import MagicMock

import pytest
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm.exc import StaleDataError

from src.core.config import settings
from src.models.notification import NotificationType
from src.services.notificationService import (
    Collaborators,
    MarketplaceNotifier,
    record_notification,
)
from tests.factories import (
    FakeBroadcaster,
    FakeCache,
    FakeMailer,
    make_contract,
    make_proposal,
)


pytestmark = pytest.mark.asyncio


def _notifier(broadcaster=None, mailer=None, cache=None) -> MarketplaceNotifier:
    return MarketplaceNotifier(
        Collaborators(
            broadcaster=broadcaster or FakeBroadcaster(),
            mailer=mailer or FakeMailer(),
            cache=cache or FakeCache(),
        )
    )


class TestRecordNotification:

    async def test_added_inside_savepoint(self, mock_db, sample_doer):
        savepoint = MagicMock()
        savepoint.__aenter__.return_value = None
        savepoint.__aexit__.return_value = False
        mock_db.begin_nested = MagicMock(return_value=savepoint)

        notification = await record_notification(
            mock_db,
            sample_doer.id,
            NotificationType.PROPOSAL_APPROVED,
            "Proposal approved",
            "Your proposal was approved",
            related_model="Contract",
            related_id=uuid.uuid4(),
        )

        assert notification is not None
        assert notification.read is False
        mock_db.add.assert_called_once_with(notification)

    async def test_failed_insert_is_swallowed(self, mock_db, sample_doer):
        mock_db.begin_nested = MagicMock(
            side_effect=OperationalError("INSERT", {}, Exception("disk full"))
        )

        notification = await record_notification(
            mock_db,
            sample_doer.id,
            NotificationType.PAYMENT_RELEASED,
            "Payment released",
            "Funds released",
        )

        assert notification is None

    async def test_version_conflict_in_caller_changes_propagates(self, mock_db, sample_doer):
        mock_db.flush.side_effect = StaleDataError("jobs: 0 rows matched")
        mock_db.begin_nested = MagicMock()

        with pytest.raises(StaleDataError):
            await record_notification(
                mock_db,
                sample_doer.id,
                NotificationType.PROPOSAL_APPROVED,
                "Proposal approved",
                "Your proposal was approved",
            )
        mock_db.begin_nested.assert_not_called()


class TestMarketplaceNotifier:

    async def test_proposal_approved_fans_out(self, sample_job, sample_proposal, sample_contract, sample_doer):
        broadcaster, mailer, cache = FakeBroadcaster(), FakeMailer(), FakeCache()
        other = make_proposal(sample_job, uuid.uuid4())
        sample_contract.client_id = sample_job.client_id
        sample_contract.doer_id = sample_proposal.freelancer_id

        await _notifier(broadcaster, mailer, cache).proposal_approved(
            sample_proposal, sample_job, sample_contract, [other], doer=sample_doer
        )

        doer_room = f"user_{sample_proposal.freelancer_id}"
        assert "proposal:approved" in broadcaster.events(doer_room)
        assert "contract:created" in broadcaster.events(doer_room)
        assert "contract:created" in broadcaster.events(f"user_{sample_job.client_id}")
        assert broadcaster.events(f"job_{sample_job.id}") == ["job:updated"]
        assert broadcaster.events(f"user_{other.freelancer_id}") == ["proposal:rejected"]
        assert "admin:contract:created" in broadcaster.events("admin_dashboard")
        assert mailer.sent == [(sample_doer.email, f"Your proposal for \"{sample_job.title}\" was approved")]
        assert cache.evicted == [settings.job_cache_pattern]

    async def test_failures_never_propagate(self, sample_job, sample_proposal, sample_contract, sample_doer):
        cache = FakeCache()
        notifier = _notifier(FakeBroadcaster(fail=True), FakeMailer(fail=True), cache)

        await notifier.proposal_approved(
            sample_proposal, sample_job, sample_contract, [], doer=sample_doer
        )

        assert cache.evicted == [settings.job_cache_pattern]

    async def test_payment_updated_reaches_both_parties(self, escrow_payment):
        broadcaster = FakeBroadcaster()

        await _notifier(broadcaster).payment_updated(escrow_payment, "held_escrow")

        for party in (escrow_payment.payer_id, escrow_payment.recipient_id):
            room = f"user_{party}"
            assert broadcaster.events(room) == ["payment:updated", "dashboard:refresh"]
        payload = next(d for r, e, d in broadcaster.emitted if e == "payment:updated")
        assert payload["entity_id"] == str(escrow_payment.id)

    async def test_contract_updated(self, sample_client, sample_doer):
        broadcaster = FakeBroadcaster()
        contract = make_contract(sample_client.id, sample_doer.id)

        await _notifier(broadcaster).contract_updated(contract, sample_client.id)

        assert broadcaster.events(f"user_{sample_doer.id}") == ["contract:updated", "dashboard:refresh"]
        assert broadcaster.events("admin_dashboard") == ["admin:contract:updated"]
