"""
Marketplace Event Payloads
==========================

Builders for the real-time events the marketplace emits over Socket.IO.
Each builder returns a standardised payload dict and logs the emission so
the event stream can be reconstructed from the logs.

Events emitted:
  - proposal:created / proposal:approved / proposal:rejected / proposal:withdrawn
  - contract:created / contract:updated
  - job:updated
  - payment:updated
  - dispute:created / dispute:updated
  - dashboard:refresh
  - notification:new
"""

from __future__ import annotations

import logging
import uuid
from typing import Any, Optional

from src.models import Contract, Dispute, Job, Payment, Proposal
from src.models.base import utcnow

logger = logging.getLogger(__name__)


def _str(value: Any) -> Optional[str]:
    return str(value) if value is not None else None


def _build_event(
    event_type: str,
    entity_id: uuid.UUID,
    *,
    data: dict[str, Any] | None = None,
    actor_id: uuid.UUID | None = None,
) -> dict[str, Any]:
    """Construct a standardised event payload."""
    event = {
        "event_type": event_type,
        "entity_id": str(entity_id),
        "actor_id": _str(actor_id),
        "timestamp": utcnow().isoformat(),
        "data": data or {},
    }
    logger.info("Event emitted: %s for %s", event_type, entity_id)
    return event


def proposal_event(
    event_type: str,
    proposal: Proposal,
    actor_id: uuid.UUID | None = None,
) -> dict[str, Any]:
    return _build_event(
        event_type,
        proposal.id,
        actor_id=actor_id,
        data={
            "proposal_id": str(proposal.id),
            "job_id": str(proposal.job_id),
            "freelancer_id": str(proposal.freelancer_id),
            "client_id": str(proposal.client_id),
            "status": proposal.status,
            "proposed_price": str(proposal.proposed_price),
            "reason": proposal.rejection_reason or proposal.withdrawn_reason,
        },
    )


def contract_event(
    event_type: str,
    contract: Contract,
    actor_id: uuid.UUID | None = None,
) -> dict[str, Any]:
    return _build_event(
        event_type,
        contract.id,
        actor_id=actor_id,
        data={
            "contract_id": str(contract.id),
            "job_id": str(contract.job_id),
            "client_id": str(contract.client_id),
            "doer_id": str(contract.doer_id),
            "status": contract.status,
            "price": str(contract.price),
            "commission": str(contract.commission),
            "total_price": str(contract.total_price),
        },
    )


def job_updated(job: Job, actor_id: uuid.UUID | None = None) -> dict[str, Any]:
    return _build_event(
        "job:updated",
        job.id,
        actor_id=actor_id,
        data={
            "job_id": str(job.id),
            "status": job.status,
            "selected_workers": list(job.selected_workers or []),
            "max_workers": job.max_workers,
            "allocated_total": str(job.allocated_total),
            "remaining_budget": _str(job.remaining_budget),
        },
    )


def payment_updated(
    payment: Payment,
    previous_status: str | None,
    actor_id: uuid.UUID | None = None,
) -> dict[str, Any]:
    return _build_event(
        "payment:updated",
        payment.id,
        actor_id=actor_id,
        data={
            "payment_id": str(payment.id),
            "contract_id": _str(payment.contract_id),
            "previous_status": previous_status,
            "status": payment.status,
            "amount": str(payment.amount),
        },
    )


def dispute_event(
    event_type: str,
    dispute: Dispute,
    previous_status: str | None = None,
    actor_id: uuid.UUID | None = None,
) -> dict[str, Any]:
    return _build_event(
        event_type,
        dispute.id,
        actor_id=actor_id,
        data={
            "dispute_id": str(dispute.id),
            "contract_id": str(dispute.contract_id),
            "previous_status": previous_status,
            "status": dispute.status,
            "priority": dispute.priority,
            "resolution_type": dispute.resolution_type,
        },
    )


def dashboard_refresh(user_id: uuid.UUID | str) -> dict[str, Any]:
    return {"user_id": str(user_id), "timestamp": utcnow().isoformat()}
