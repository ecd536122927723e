"""
SQLAlchemy model for jobs.

A job is posted by a client with a total budget (``price``) that may be
split across up to ``max_workers`` doers.  The per-worker split lives in the
``worker_allocations`` JSON array; ``allocated_total`` and
``remaining_budget`` are denormalised totals kept in step with it by
``src.services.allocationService``.
"""

import enum
import uuid
from datetime import datetime
from decimal import Decimal
from typing import Any, Optional

from sqlalchemy import DateTime, ForeignKey, Integer, Numeric, String, Text
from sqlalchemy.dialects.postgresql import JSONB, UUID
from sqlalchemy.orm import Mapped, mapped_column, relationship

from .base import Base, TimestampMixin, UUIDPrimaryKeyMixin


class JobStatus(str, enum.Enum):
    DRAFT = "draft"
    PENDING_PAYMENT = "pending_payment"   # waiting for the publication payment
    OPEN = "open"                         # accepting proposals
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class Job(UUIDPrimaryKeyMixin, TimestampMixin, Base):
    __tablename__ = "jobs"

    title: Mapped[str] = mapped_column(String(200), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    # Parties
    client_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("users.id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
    )
    doer_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("users.id", ondelete="SET NULL"),
        nullable=True,
    )

    # Budget
    price: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    currency: Mapped[str] = mapped_column(String(10), nullable=False, default="ARS")

    status: Mapped[str] = mapped_column(
        String(30), nullable=False, default=JobStatus.DRAFT.value, index=True
    )

    # Scheduling
    start_date: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    end_date: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    # Team / worker allocation
    max_workers: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    # list of worker user ids as strings
    selected_workers: Mapped[Any] = mapped_column(JSONB, nullable=False, default=list)
    # list of {worker_id, allocated_amount, percentage, allocated_at}
    worker_allocations: Mapped[Any] = mapped_column(JSONB, nullable=False, default=list)
    allocated_total: Mapped[Decimal] = mapped_column(
        Numeric(12, 2), nullable=False, default=Decimal("0")
    )
    remaining_budget: Mapped[Optional[Decimal]] = mapped_column(
        Numeric(12, 2), nullable=True
    )

    # Optimistic concurrency guard for allocation races
    version: Mapped[int] = mapped_column(Integer, nullable=False)

    cancelled_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    cancellation_reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    # Relationships
    proposals: Mapped[list["Proposal"]] = relationship(
        "Proposal", back_populates="job", cascade="all, delete-orphan"
    )
    contracts: Mapped[list["Contract"]] = relationship(
        "Contract", back_populates="job"
    )

    __mapper_args__ = {"version_id_col": version}

    def __repr__(self) -> str:
        return (
            f"<Job(id={self.id}, status={self.status}, price={self.price}, "
            f"workers={len(self.selected_workers or [])}/{self.max_workers})>"
        )
