"""
Escrow Auto-Release -- Scheduled Job.

Releases escrow payments whose doer reported the work delivered more than
``escrow_auto_release_days`` ago while the client never confirmed or
disputed.  Disputed payments are never touched.

Intended to run periodically (hourly is plenty) via cron or a similar
scheduler::

    python -m src.jobs.escrowAutoRelease
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession

from src.models import Payment, PaymentStatus
from src.services.escrowService import EscrowGateway, auto_release_stale_escrows
from src.services.notificationService import MarketplaceNotifier

logger = logging.getLogger(__name__)


async def run_escrow_auto_release(
    db: AsyncSession,
    gateway: EscrowGateway,
    notifier: Optional[MarketplaceNotifier] = None,
    now: Optional[datetime] = None,
) -> list[Payment]:
    """Release stale escrows, commit, then notify the parties.

    Args:
        db: Async database session.
        gateway: Escrow provider used to capture the holds.
        notifier: Optional post-commit notifier.
        now: Optional clock override (for testing).

    Returns:
        The payments that were released.
    """
    released = await auto_release_stale_escrows(db, gateway, now=now)
    await db.commit()

    if notifier is not None:
        for payment in released:
            await notifier.payment_updated(
                payment, PaymentStatus.AWAITING_CONFIRMATION.value
            )
    return released


# ---------------------------------------------------------------------------
# CLI entry point (for manual runs / simple cron)
# ---------------------------------------------------------------------------

async def _cli_main() -> None:
    """Entry point for running the auto-release from the command line.

    Creates its own database session via the application session factory.
    """
    from src.api.deps import async_session_factory, get_collaborators, get_escrow_gateway

    notifier = MarketplaceNotifier(get_collaborators())
    async with async_session_factory() as session:
        try:
            released = await run_escrow_auto_release(session, get_escrow_gateway(), notifier)
            logger.info("Escrow auto-release completed: released=%d", len(released))
        except Exception:
            await session.rollback()
            logger.exception("Escrow auto-release failed")
            raise
        finally:
            await session.close()

    from src.services.cacheService import close_redis

    await close_redis()


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO)
    asyncio.run(_cli_main())
