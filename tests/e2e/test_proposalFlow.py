"""
E2E: Proposal lifecycle.

Tests the full flow from bid to contract:
- Doer submits a proposal on an open job; duplicates are rejected
- Client approves: contract priced with the platform commission, job staffed
- Budget and minimum-amount checks leave the job untouched on failure
- Filling the last slot rejects the other pending proposals
- Reject, withdraw and delete of pending proposals
- Real-time events fire only after the transaction commits
"""

from __future__ import annotations

import uuid

import pytest
from httpx import AsyncClient

from src.models.job import Job
from src.models.proposal import Proposal
from tests.e2e.conftest import (
    CLIENT,
    CLIENT_USER_ID,
    DOER,
    DOER_USER_ID,
    JOB_ID,
    SECOND_DOER,
    SECOND_DOER_USER_ID,
    TEAM_JOB_ID,
    approve,
    load,
    submit_proposal,
)


pytestmark = pytest.mark.asyncio


class TestSubmitProposal:
    """Doers bid on open jobs."""

    async def test_submit_returns_201(self, client: AsyncClient, broadcaster):
        body = await submit_proposal(client, DOER)

        assert body["status"] == "pending"
        assert body["freelancer_id"] == str(DOER_USER_ID)
        assert body["client_id"] == str(CLIENT_USER_ID)
        assert body["proposed_price"] == "8000.00"
        assert "proposal:created" in broadcaster.events(f"user_{CLIENT_USER_ID}")

    async def test_seeded_jobs_keep_their_ids(self, session_factory):
        for job_id in (JOB_ID, TEAM_JOB_ID):
            job = await load(session_factory, Job, job_id)
            assert job.id == job_id
            assert job.version >= 1

    async def test_duplicate_proposal_rejected(self, client: AsyncClient):
        await submit_proposal(client, DOER)

        resp = await client.post(
            "/api/v1/proposals",
            json={
                "job_id": str(JOB_ID),
                "cover_letter": "Again",
                "proposed_price": "7000",
                "estimated_duration": 2,
            },
            headers=DOER,
        )
        assert resp.status_code == 400
        assert resp.json()["detail"]["code"] == "duplicate_proposal"

    async def test_client_cannot_bid_on_own_job(self, client: AsyncClient):
        resp = await client.post(
            "/api/v1/proposals",
            json={
                "job_id": str(JOB_ID),
                "cover_letter": "Me",
                "proposed_price": "7000",
                "estimated_duration": 2,
            },
            headers=CLIENT,
        )
        assert resp.status_code == 400
        assert resp.json()["detail"]["code"] == "validation_error"

    async def test_unknown_job_is_404(self, client: AsyncClient):
        resp = await client.post(
            "/api/v1/proposals",
            json={
                "job_id": str(uuid.uuid4()),
                "cover_letter": "Hi",
                "proposed_price": "7000",
                "estimated_duration": 2,
            },
            headers=DOER,
        )
        assert resp.status_code == 404

    async def test_requires_authentication(self, client: AsyncClient):
        resp = await client.get("/api/v1/proposals")
        assert resp.status_code in (401, 403)

    async def test_list_sent_and_received(self, client: AsyncClient):
        await submit_proposal(client, DOER)

        sent = await client.get("/api/v1/proposals", params={"type": "sent"}, headers=DOER)
        received = await client.get(
            "/api/v1/proposals", params={"type": "received"}, headers=CLIENT
        )
        assert len(sent.json()) == 1
        assert len(received.json()) == 1

        by_job = await client.get(f"/api/v1/proposals/job/{JOB_ID}", headers=DOER)
        assert by_job.status_code == 403


class TestApproveProposal:
    """Client approves a bid and a contract is created."""

    async def test_approval_creates_priced_contract(
        self, client: AsyncClient, session_factory, broadcaster, mailer, cache
    ):
        proposal = await submit_proposal(client, DOER)

        resp = await approve(client, proposal["id"])

        assert resp.status_code == 200, resp.text
        body = resp.json()
        assert body["proposal"]["status"] == "approved"
        contract = body["contract"]
        assert contract["price"] == "8000.00"
        assert contract["commission"] == "800.00"
        assert contract["total_price"] == "8800.00"
        assert contract["status"] == "pending"
        assert "pairing_code" not in contract
        assert body["job_full"] is True
        assert body["job_status"] == "in_progress"
        assert body["allocated_total"] == "8000.00"
        assert body["remaining_budget"] == "2000.00"

        job = await load(session_factory, Job, JOB_ID)
        assert job.selected_workers == [str(DOER_USER_ID)]
        assert job.doer_id == DOER_USER_ID
        assert job.version > 1

        assert "contract:created" in broadcaster.events(f"user_{DOER_USER_ID}")
        assert "job:updated" in broadcaster.events(f"job_{JOB_ID}")
        assert mailer.sent and mailer.sent[0][0] == "doer@test.doers.ar"
        assert cache.evicted == ["jobs:*"]

    async def test_allocation_over_budget_leaves_job_untouched(
        self, client: AsyncClient, session_factory, broadcaster
    ):
        proposal = await submit_proposal(client, DOER)
        emitted_before = len(broadcaster.emitted)

        resp = await approve(client, proposal["id"], "12000")

        assert resp.status_code == 400
        assert resp.json()["detail"]["code"] == "allocation_exceeds_budget"
        job = await load(session_factory, Job, JOB_ID)
        assert job.selected_workers == []
        assert job.status == "open"
        stored = await load(session_factory, Proposal, uuid.UUID(proposal["id"]))
        assert stored.status == "pending"
        assert len(broadcaster.emitted) == emitted_before

    async def test_allocation_below_minimum(self, client: AsyncClient):
        proposal = await submit_proposal(client, DOER, price="3000")

        resp = await approve(client, proposal["id"])

        assert resp.status_code == 400
        assert resp.json()["detail"]["code"] == "below_minimum_contract_amount"

    async def test_last_slot_rejects_other_proposals(self, client: AsyncClient, broadcaster):
        first = await submit_proposal(client, DOER)
        second = await submit_proposal(client, SECOND_DOER, price="7500")

        resp = await approve(client, first["id"])

        assert resp.json()["rejected_proposal_ids"] == [second["id"]]
        other = await client.get(f"/api/v1/proposals/{second['id']}", headers=SECOND_DOER)
        assert other.json()["status"] == "rejected"
        assert other.json()["rejection_reason"] == "Another proposal was approved"
        assert "proposal:rejected" in broadcaster.events(f"user_{SECOND_DOER_USER_ID}")

        late = await approve(client, second["id"])
        assert late.status_code == 400
        assert late.json()["detail"]["code"] == "proposal_not_pending"

    async def test_team_job_stays_open_until_full(self, client: AsyncClient):
        first = await submit_proposal(client, DOER, job_id=TEAM_JOB_ID, price="10000")
        second = await submit_proposal(client, SECOND_DOER, job_id=TEAM_JOB_ID, price="9000")

        resp = await approve(client, first["id"])
        body = resp.json()
        assert body["job_full"] is False
        assert body["job_status"] == "open"
        assert body["remaining_budget"] == "10000.00"

        resp = await approve(client, second["id"])
        body = resp.json()
        assert body["job_full"] is True
        # start date is in the future, so the job waits for it
        assert body["job_status"] == "open"
        assert body["allocated_total"] == "19000.00"

    async def test_doer_cannot_approve(self, client: AsyncClient):
        proposal = await submit_proposal(client, DOER)

        resp = await client.put(
            f"/api/v1/proposals/{proposal['id']}/approve", json={}, headers=DOER
        )
        assert resp.status_code == 403


class TestRejectWithdrawDelete:

    async def test_reject(self, client: AsyncClient, broadcaster):
        proposal = await submit_proposal(client, DOER)

        resp = await client.put(
            f"/api/v1/proposals/{proposal['id']}/reject",
            json={"reason": "Budget changed"},
            headers=CLIENT,
        )
        assert resp.status_code == 200
        assert resp.json()["status"] == "rejected"
        assert "proposal:rejected" in broadcaster.events(f"user_{DOER_USER_ID}")

        again = await client.put(
            f"/api/v1/proposals/{proposal['id']}/reject", json={}, headers=CLIENT
        )
        assert again.status_code == 400

    async def test_withdraw(self, client: AsyncClient, broadcaster):
        proposal = await submit_proposal(client, DOER)

        resp = await client.put(
            f"/api/v1/proposals/{proposal['id']}/withdraw",
            json={"reason": "Got sick"},
            headers=DOER,
        )
        assert resp.status_code == 200
        assert resp.json()["withdrawn_reason"] == "Got sick"
        assert "proposal:withdrawn" in broadcaster.events(f"user_{CLIENT_USER_ID}")

    async def test_delete_pending(self, client: AsyncClient):
        proposal = await submit_proposal(client, DOER)

        resp = await client.delete(f"/api/v1/proposals/{proposal['id']}", headers=DOER)
        assert resp.status_code == 204

        gone = await client.get(f"/api/v1/proposals/{proposal['id']}", headers=DOER)
        assert gone.status_code == 404
