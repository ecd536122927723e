"""
SQLAlchemy model for job conversations.

Messages themselves are handled by the chat application; the marketplace
core only makes sure a group conversation exists once a job has more than
one selected worker.
"""

from __future__ import annotations

import uuid
from typing import Any, Optional

from sqlalchemy import Boolean, ForeignKey, String
from sqlalchemy.dialects.postgresql import JSONB, UUID
from sqlalchemy.orm import Mapped, mapped_column

from .base import Base, TimestampMixin, UUIDPrimaryKeyMixin


class Conversation(UUIDPrimaryKeyMixin, TimestampMixin, Base):
    __tablename__ = "conversations"

    job_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("jobs.id", ondelete="CASCADE"),
        nullable=True,
        index=True,
    )
    # user ids as strings
    participant_ids: Mapped[Any] = mapped_column(JSONB, nullable=False, default=list)
    is_group: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    title: Mapped[Optional[str]] = mapped_column(String(200), nullable=True)

    def __repr__(self) -> str:
        return (
            f"<Conversation(id={self.id}, job={self.job_id}, "
            f"group={self.is_group}, participants={len(self.participant_ids or [])})>"
        )
