"""
Notification Service
====================

Orchestration layer between the marketplace services and the outbound
collaborators: the Socket.IO broadcaster, the email sender and the job
listing cache.

Two halves:

  1. ``record_notification`` persists an in-app ``Notification`` inside a
     SAVEPOINT of the caller's transaction.  A failed insert rolls back the
     savepoint only, never the state transition that triggered it.
  2. ``MarketplaceNotifier`` fires the real-time, email and cache side
     effects *after* the transaction has committed.  Every call is
     best-effort: failures are logged and swallowed.

The collaborators are plain protocols bundled in ``Collaborators`` and
injected through a FastAPI dependency, so tests swap in fakes.
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Awaitable, Optional, Protocol

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from src.core.config import settings
from src.events import marketplaceEvents as events
from src.models import (
    Contract,
    Dispute,
    Job,
    Notification,
    NotificationType,
    Payment,
    Proposal,
    User,
)

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Collaborator protocols
# ---------------------------------------------------------------------------

class Broadcaster(Protocol):
    async def to_user(self, user_id: str, event: str, data: dict[str, Any]) -> None: ...

    async def to_job(self, job_id: str, event: str, data: dict[str, Any]) -> None: ...

    async def to_dashboard(self, event: str, data: dict[str, Any]) -> None: ...


class Mailer(Protocol):
    async def send(self, to_email: str, subject: str, html: str) -> None: ...


class Cache(Protocol):
    async def delete_pattern(self, pattern: str) -> int: ...


@dataclass
class Collaborators:
    broadcaster: Broadcaster
    mailer: Mailer
    cache: Cache


# ---------------------------------------------------------------------------
# Persisted notifications
# ---------------------------------------------------------------------------

async def record_notification(
    db: AsyncSession,
    recipient_id: uuid.UUID,
    notification_type: NotificationType,
    title: str,
    message: str,
    *,
    related_model: str | None = None,
    related_id: uuid.UUID | None = None,
    data: dict[str, Any] | None = None,
) -> Optional[Notification]:
    """Persist an in-app notification inside a savepoint.

    Returns the record, or None when the insert failed (the failure is
    logged and the outer transaction is left untouched).
    """
    notification = Notification(
        recipient_id=recipient_id,
        notification_type=notification_type.value,
        title=title,
        message=message,
        related_model=related_model,
        related_id=related_id,
        data_json=data,
        read=False,
    )
    # Pending caller changes are flushed outside the savepoint so a version
    # conflict reaches the caller instead of being logged here
    await db.flush()
    try:
        async with db.begin_nested():
            db.add(notification)
    except SQLAlchemyError:
        logger.exception(
            "Failed to store notification: recipient=%s, type=%s",
            recipient_id,
            notification_type.value,
        )
        return None
    return notification


def _format_amount(amount: Decimal, currency: str | None = None) -> str:
    return f"${amount:,.2f} {currency or settings.default_currency}"


# ---------------------------------------------------------------------------
# Post-commit side effects
# ---------------------------------------------------------------------------

class MarketplaceNotifier:
    """Fires real-time, email and cache side effects for committed changes."""

    def __init__(self, collaborators: Collaborators) -> None:
        self.broadcaster = collaborators.broadcaster
        self.mailer = collaborators.mailer
        self.cache = collaborators.cache

    async def _safe(self, label: str, awaitable: Awaitable[Any]) -> None:
        try:
            await awaitable
        except Exception:
            logger.exception("Best-effort side effect failed: %s", label)

    async def _refresh_dashboards(self, *user_ids: uuid.UUID | str | None) -> None:
        for user_id in user_ids:
            if user_id is None:
                continue
            await self._safe(
                "dashboard:refresh",
                self.broadcaster.to_user(
                    str(user_id), "dashboard:refresh", events.dashboard_refresh(user_id)
                ),
            )

    async def invalidate_job_listings(self) -> None:
        await self._safe(
            "cache eviction",
            self.cache.delete_pattern(settings.job_cache_pattern),
        )

    async def _email(self, user: Optional[User], subject: str, html: str) -> None:
        if user is None or not user.email:
            return
        await self._safe(f"email to {user.email}", self.mailer.send(user.email, subject, html))

    # -- Proposals ---------------------------------------------------------

    async def proposal_created(
        self,
        proposal: Proposal,
        job: Job,
        client: Optional[User] = None,
    ) -> None:
        payload = events.proposal_event("proposal:created", proposal, proposal.freelancer_id)
        await self._safe(
            "proposal:created",
            self.broadcaster.to_user(str(proposal.client_id), "proposal:created", payload),
        )
        await self._safe("admin:proposal:created", self.broadcaster.to_dashboard("admin:proposal:created", payload))
        await self._email(
            client,
            f"New proposal for \"{job.title}\"",
            (
                f"<p>You received a new proposal of "
                f"{_format_amount(proposal.proposed_price, job.currency)} "
                f"for <strong>{job.title}</strong>.</p>"
            ),
        )
        await self._refresh_dashboards(proposal.client_id, proposal.freelancer_id)

    async def proposal_approved(
        self,
        proposal: Proposal,
        job: Job,
        contract: Contract,
        rejected: list[Proposal],
        doer: Optional[User] = None,
    ) -> None:
        approved = events.proposal_event("proposal:approved", proposal, proposal.client_id)
        await self._safe(
            "proposal:approved",
            self.broadcaster.to_user(str(proposal.freelancer_id), "proposal:approved", approved),
        )
        created = events.contract_event("contract:created", contract, proposal.client_id)
        for party in (contract.client_id, contract.doer_id):
            await self._safe(
                "contract:created",
                self.broadcaster.to_user(str(party), "contract:created", created),
            )
        await self._safe("admin:contract:created", self.broadcaster.to_dashboard("admin:contract:created", created))
        await self._safe(
            "job:updated",
            self.broadcaster.to_job(str(job.id), "job:updated", events.job_updated(job, proposal.client_id)),
        )
        for other in rejected:
            payload = events.proposal_event("proposal:rejected", other, proposal.client_id)
            await self._safe(
                "proposal:rejected",
                self.broadcaster.to_user(str(other.freelancer_id), "proposal:rejected", payload),
            )
        await self._email(
            doer,
            f"Your proposal for \"{job.title}\" was approved",
            (
                f"<p>Your proposal was approved. Contract amount: "
                f"{_format_amount(contract.price, job.currency)}.</p>"
                f"<p>Pairing code: <strong>{contract.pairing_code}</strong></p>"
            ),
        )
        await self.invalidate_job_listings()
        await self._refresh_dashboards(contract.client_id, contract.doer_id)

    async def proposal_closed(self, proposal: Proposal, event_type: str, actor_id: uuid.UUID) -> None:
        """Rejection (tell the freelancer) or withdrawal (tell the client)."""
        payload = events.proposal_event(event_type, proposal, actor_id)
        recipient = (
            proposal.client_id if actor_id == proposal.freelancer_id else proposal.freelancer_id
        )
        await self._safe(event_type, self.broadcaster.to_user(str(recipient), event_type, payload))
        await self._refresh_dashboards(proposal.client_id, proposal.freelancer_id)

    # -- Jobs and contracts ------------------------------------------------

    async def job_updated(self, job: Job, contracts: list[Contract], actor_id: uuid.UUID) -> None:
        await self._safe(
            "job:updated",
            self.broadcaster.to_job(str(job.id), "job:updated", events.job_updated(job, actor_id)),
        )
        for contract in contracts:
            await self.contract_updated(contract, actor_id)
        await self.invalidate_job_listings()

    async def contract_updated(self, contract: Contract, actor_id: uuid.UUID | None = None) -> None:
        payload = events.contract_event("contract:updated", contract, actor_id)
        for party in (contract.client_id, contract.doer_id):
            await self._safe(
                "contract:updated",
                self.broadcaster.to_user(str(party), "contract:updated", payload),
            )
        await self._safe(
            "admin:contract:updated",
            self.broadcaster.to_dashboard("admin:contract:updated", payload),
        )
        await self._refresh_dashboards(contract.client_id, contract.doer_id)

    # -- Payments and disputes ---------------------------------------------

    async def payment_updated(
        self,
        payment: Payment,
        previous_status: str | None,
        actor_id: uuid.UUID | None = None,
    ) -> None:
        payload = events.payment_updated(payment, previous_status, actor_id)
        for party in (payment.payer_id, payment.recipient_id):
            if party is None:
                continue
            await self._safe(
                "payment:updated",
                self.broadcaster.to_user(str(party), "payment:updated", payload),
            )
        await self._safe(
            "admin:payment:updated",
            self.broadcaster.to_dashboard("admin:payment:updated", payload),
        )
        await self._refresh_dashboards(payment.payer_id, payment.recipient_id)

    async def dispute_updated(
        self,
        dispute: Dispute,
        previous_status: str | None,
        actor_id: uuid.UUID | None = None,
    ) -> None:
        event_type = "dispute:created" if previous_status is None else "dispute:updated"
        payload = events.dispute_event(event_type, dispute, previous_status, actor_id)
        for party in (dispute.initiated_by, dispute.against):
            await self._safe(
                event_type,
                self.broadcaster.to_user(str(party), event_type, payload),
            )
        await self._safe(
            f"admin:{event_type}",
            self.broadcaster.to_dashboard(f"admin:{event_type}", payload),
        )
