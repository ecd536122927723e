"""
SQLAlchemy model for proposals.

A proposal is a doer's bid on an open job.  It starts ``pending`` and ends
in exactly one of ``approved``, ``rejected`` or ``withdrawn``; there are no
transitions out of those.
"""

import enum
import uuid
from datetime import datetime
from decimal import Decimal
from typing import Optional

from sqlalchemy import (
    Boolean,
    DateTime,
    ForeignKey,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column, relationship

from .base import Base, TimestampMixin, UUIDPrimaryKeyMixin


class ProposalStatus(str, enum.Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"
    WITHDRAWN = "withdrawn"


class Proposal(UUIDPrimaryKeyMixin, TimestampMixin, Base):
    __tablename__ = "proposals"

    job_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("jobs.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    freelancer_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("users.id"),
        nullable=False,
    )
    client_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("users.id"),
        nullable=False,
    )

    cover_letter: Mapped[str] = mapped_column(Text, nullable=False)
    proposed_price: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    estimated_duration: Mapped[int] = mapped_column(Integer, nullable=False)  # days
    is_counter_offer: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=ProposalStatus.PENDING.value
    )
    rejection_reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    withdrawn_reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    responded_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    # Relationships
    job: Mapped["Job"] = relationship("Job", back_populates="proposals")

    __table_args__ = (
        UniqueConstraint("job_id", "freelancer_id", name="uq_proposals_job_freelancer"),
    )

    @property
    def is_pending(self) -> bool:
        return self.status == ProposalStatus.PENDING

    def __repr__(self) -> str:
        return (
            f"<Proposal(id={self.id}, job={self.job_id}, "
            f"price={self.proposed_price}, status={self.status})>"
        )
