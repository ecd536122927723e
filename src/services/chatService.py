"""
Chat Service
============

Keeps the job's group conversation in step with its selected workers.

Business rules:
  - A job with a single worker uses the direct client/doer conversation
    owned by the chat application; nothing is created here.
  - Once a job has more than one selected worker, exactly one group
    conversation exists for it, with the client and every selected worker
    as participants.  Participants are added, never removed, so removed
    workers keep their history.
"""

from __future__ import annotations

import logging
from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from src.models import Conversation, Job

logger = logging.getLogger(__name__)


async def ensure_group_conversation(db: AsyncSession, job: Job) -> Optional[Conversation]:
    """Create or extend the job's group conversation.

    Returns the conversation, or None when the job has at most one worker.
    """
    workers = list(job.selected_workers or [])
    if len(workers) <= 1:
        return None

    wanted = [str(job.client_id), *workers]

    result = await db.execute(
        select(Conversation).where(
            Conversation.job_id == job.id,
            Conversation.is_group.is_(True),
        )
    )
    conversation = result.scalars().first()

    if conversation is None:
        conversation = Conversation(
            job_id=job.id,
            participant_ids=wanted,
            is_group=True,
            title=f"Team: {job.title}",
        )
        db.add(conversation)
        await db.flush()
        logger.info(
            "Group conversation created: job=%s, participants=%d",
            job.id,
            len(wanted),
        )
        return conversation

    current = list(conversation.participant_ids or [])
    missing = [p for p in wanted if p not in current]
    if missing:
        conversation.participant_ids = current + missing
        await db.flush()
        logger.info(
            "Group conversation extended: job=%s, added=%d",
            job.id,
            len(missing),
        )
    return conversation
