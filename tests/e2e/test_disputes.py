"""
E2E: Disputes.

- A contract party opens a dispute; the escrow payment is frozen
- Admins list, assign, prioritise and request more information
- Each resolution type settles the frozen funds
- Resolved disputes are terminal
"""

from __future__ import annotations

import uuid
from decimal import Decimal

import pytest
from httpx import AsyncClient

from src.models.contract import Contract
from src.models.payment import Payment
from tests.e2e.conftest import (
    ADMIN,
    ADMIN_USER_ID,
    CLIENT,
    CLIENT_USER_ID,
    DOER,
    DOER_USER_ID,
    SECOND_DOER,
    funded_contract,
    load,
)


pytestmark = pytest.mark.asyncio


async def _open(client: AsyncClient, contract_id: str, headers=CLIENT) -> dict:
    resp = await client.post(
        "/api/v1/disputes",
        json={
            "contract_id": contract_id,
            "reason": "Work not finished",
            "description": "Only one coat of paint was applied.",
            "category": "incomplete_work",
        },
        headers=headers,
    )
    assert resp.status_code == 201, resp.text
    return resp.json()


async def _resolve(client: AsyncClient, dispute_id: str, resolution_type: str, **extra):
    return await client.post(
        f"/api/v1/admin/disputes/{dispute_id}/resolve",
        json={"resolution": "Reviewed evidence", "resolution_type": resolution_type, **extra},
        headers=ADMIN,
    )


class TestOpenDispute:

    async def test_open_freezes_payment(self, client: AsyncClient, session_factory, broadcaster):
        contract, payment = await funded_contract(client)

        dispute = await _open(client, contract["id"])

        assert dispute["status"] == "open"
        assert dispute["priority"] == "medium"
        assert dispute["initiated_by"] == str(CLIENT_USER_ID)
        assert dispute["against"] == str(DOER_USER_ID)
        assert dispute["payment_id"] == payment["id"]
        assert dispute["logs"][0]["action"] == "dispute_created"

        stored = await load(session_factory, Payment, uuid.UUID(payment["id"]))
        assert stored.status == "disputed"
        assert stored.status_before_dispute == "held_escrow"
        contract_row = await load(session_factory, Contract, uuid.UUID(contract["id"]))
        assert contract_row.status == "disputed"
        assert "dispute:created" in broadcaster.events(f"user_{DOER_USER_ID}")

    async def test_frozen_payment_cannot_be_confirmed_or_released(self, client: AsyncClient, gateway):
        contract, payment = await funded_contract(client)
        await _open(client, contract["id"])

        delivered = await client.post(f"/api/v1/payments/{payment['id']}/deliver", headers=DOER)
        assert delivered.status_code == 400
        assert delivered.json()["detail"]["code"] == "payment_disputed"

        released = await client.post(f"/api/v1/payments/{payment['id']}/release", headers=ADMIN)
        assert released.status_code == 400
        assert released.json()["detail"]["code"] == "payment_disputed"
        assert gateway.captures == []

    async def test_second_open_dispute_rejected(self, client: AsyncClient):
        contract, _ = await funded_contract(client)
        await _open(client, contract["id"])

        resp = await client.post(
            "/api/v1/disputes",
            json={"contract_id": contract["id"], "reason": "Again", "description": "Again"},
            headers=DOER,
        )
        assert resp.status_code == 400
        assert resp.json()["detail"]["code"] == "invalid_operation"

    async def test_outsider_cannot_open_or_view(self, client: AsyncClient):
        contract, _ = await funded_contract(client)

        resp = await client.post(
            "/api/v1/disputes",
            json={"contract_id": contract["id"], "reason": "Hi", "description": "Hi"},
            headers=SECOND_DOER,
        )
        assert resp.status_code == 403

        dispute = await _open(client, contract["id"])
        resp = await client.get(f"/api/v1/disputes/{dispute['id']}", headers=SECOND_DOER)
        assert resp.status_code == 403


class TestAdminTriage:

    async def test_list_assign_prioritise_request_info(self, client: AsyncClient):
        contract, _ = await funded_contract(client)
        dispute = await _open(client, contract["id"])
        base = f"/api/v1/admin/disputes/{dispute['id']}"

        listed = await client.get("/api/v1/admin/disputes", params={"status": "open"}, headers=ADMIN)
        assert [d["id"] for d in listed.json()] == [dispute["id"]]

        assigned = await client.put(f"{base}/assign", json={}, headers=ADMIN)
        assert assigned.json()["status"] == "in_review"
        assert assigned.json()["assigned_to"] == str(ADMIN_USER_ID)

        prioritised = await client.put(f"{base}/priority", json={"priority": "urgent"}, headers=ADMIN)
        assert prioritised.json()["priority"] == "urgent"

        info = await client.put(
            f"{base}/request-info", json={"note": "Please upload photos"}, headers=ADMIN
        )
        body = info.json()
        assert body["status"] == "awaiting_info"
        assert [log["action"] for log in body["logs"]] == [
            "dispute_created",
            "dispute_assigned",
            "priority_updated",
            "info_requested",
        ]

        urgent = await client.get(
            "/api/v1/admin/disputes", params={"priority": "urgent"}, headers=ADMIN
        )
        assert len(urgent.json()) == 1

    async def test_admin_endpoints_require_admin(self, client: AsyncClient):
        contract, _ = await funded_contract(client)
        dispute = await _open(client, contract["id"])

        resp = await client.get("/api/v1/admin/disputes", headers=CLIENT)
        assert resp.status_code == 403
        resp = await client.post(
            f"/api/v1/admin/disputes/{dispute['id']}/resolve",
            json={"resolution": "Mine", "resolution_type": "full_refund"},
            headers=CLIENT,
        )
        assert resp.status_code == 403


class TestResolution:

    async def test_full_release(self, client: AsyncClient, gateway, session_factory):
        contract, payment = await funded_contract(client)
        dispute = await _open(client, contract["id"])

        resp = await _resolve(client, dispute["id"], "full_release")

        assert resp.status_code == 200, resp.text
        assert resp.json()["status"] == "resolved_released"
        assert resp.json()["resolved_by"] == str(ADMIN_USER_ID)
        assert gateway.captures == [("pi_fake_1", None)]
        stored = await load(session_factory, Payment, uuid.UUID(payment["id"]))
        assert stored.status == "completed"
        contract_row = await load(session_factory, Contract, uuid.UUID(contract["id"]))
        assert contract_row.status == "completed"

    async def test_full_refund(self, client: AsyncClient, gateway, session_factory):
        contract, payment = await funded_contract(client)
        dispute = await _open(client, contract["id"])

        resp = await _resolve(client, dispute["id"], "full_refund")

        assert resp.json()["status"] == "resolved_refunded"
        assert len(gateway.refunds) == 1
        stored = await load(session_factory, Payment, uuid.UUID(payment["id"]))
        assert stored.status == "refunded"
        contract_row = await load(session_factory, Contract, uuid.UUID(contract["id"]))
        assert contract_row.status == "cancelled"

    async def test_partial_refund_captures_the_rest(self, client: AsyncClient, gateway, session_factory):
        contract, payment = await funded_contract(client)
        dispute = await _open(client, contract["id"])

        resp = await _resolve(client, dispute["id"], "partial_refund", refund_amount="3000")

        assert resp.status_code == 200, resp.text
        assert resp.json()["status"] == "resolved_partial"
        assert resp.json()["refund_amount"] == "3000.00"
        assert gateway.captures == [("pi_fake_1", Decimal("5800.00"))]
        stored = await load(session_factory, Payment, uuid.UUID(payment["id"]))
        assert stored.status == "completed"
        assert stored.refunded_amount == Decimal("3000.00")

    async def test_partial_refund_above_price_changes_nothing(
        self, client: AsyncClient, gateway, session_factory
    ):
        contract, payment = await funded_contract(client)
        dispute = await _open(client, contract["id"])

        resp = await _resolve(client, dispute["id"], "partial_refund", refund_amount="9000")

        assert resp.status_code == 400
        assert resp.json()["detail"]["code"] == "validation_error"
        assert gateway.captures == []
        stored = await load(session_factory, Payment, uuid.UUID(payment["id"]))
        assert stored.status == "disputed"

    async def test_no_action_unfreezes_payment(self, client: AsyncClient, session_factory):
        contract, payment = await funded_contract(client)
        dispute = await _open(client, contract["id"])

        resp = await _resolve(client, dispute["id"], "no_action")

        assert resp.json()["status"] == "cancelled"
        stored = await load(session_factory, Payment, uuid.UUID(payment["id"]))
        assert stored.status == "held_escrow"
        assert stored.dispute_id is None
        contract_row = await load(session_factory, Contract, uuid.UUID(contract["id"]))
        assert contract_row.status == "in_progress"

    async def test_resolving_twice_rejected(self, client: AsyncClient, gateway):
        contract, _ = await funded_contract(client)
        dispute = await _open(client, contract["id"])
        await _resolve(client, dispute["id"], "full_release")

        again = await _resolve(client, dispute["id"], "full_refund")

        assert again.status_code == 400
        assert again.json()["detail"]["code"] == "dispute_already_resolved"
        assert gateway.refunds == []

        assign = await client.put(
            f"/api/v1/admin/disputes/{dispute['id']}/assign", json={}, headers=ADMIN
        )
        assert assign.status_code == 400
