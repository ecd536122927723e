"""
SQLAlchemy model for contracts.

Exactly one contract exists per approved proposal.  ``price`` is the
worker's allocated share of the job budget (not necessarily the job's
total price); ``commission`` and ``total_price`` are always derived from it
through ``src.services.contractService.compute_pricing``.
"""

import enum
import uuid
from datetime import datetime
from decimal import Decimal
from typing import Any, Optional

from sqlalchemy import Boolean, DateTime, ForeignKey, Numeric, String, Text
from sqlalchemy.dialects.postgresql import JSONB, UUID
from sqlalchemy.orm import Mapped, mapped_column, relationship

from .base import Base, TimestampMixin, UUIDPrimaryKeyMixin


class ContractStatus(str, enum.Enum):
    PENDING = "pending"
    ACCEPTED = "accepted"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    DISPUTED = "disputed"


class Contract(UUIDPrimaryKeyMixin, TimestampMixin, Base):
    __tablename__ = "contracts"

    job_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("jobs.id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
    )
    proposal_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("proposals.id", ondelete="SET NULL"),
        nullable=True,
        unique=True,
    )
    client_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("users.id"), nullable=False
    )
    doer_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("users.id"), nullable=False, index=True
    )

    # Pricing (derived: commission = price * rate, total = price + commission)
    price: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    commission: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    total_price: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    allocated_amount: Mapped[Optional[Decimal]] = mapped_column(
        Numeric(12, 2), nullable=True
    )
    percentage_of_budget: Mapped[Optional[Decimal]] = mapped_column(
        Numeric(5, 2), nullable=True
    )
    original_price: Mapped[Optional[Decimal]] = mapped_column(
        Numeric(12, 2), nullable=True
    )
    price_modification_history: Mapped[Any] = mapped_column(
        JSONB, nullable=False, default=list
    )

    start_date: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    end_date: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=ContractStatus.PENDING.value
    )
    cancellation_reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    # In-person handshake verification
    pairing_code: Mapped[Optional[str]] = mapped_column(String(6), nullable=True, unique=True)
    pairing_generated_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    pairing_expiry: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    client_confirmed_pairing: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    doer_confirmed_pairing: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    # Terms
    terms_accepted: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    terms_accepted_by_client: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    terms_accepted_by_doer: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    # Relationships
    job: Mapped["Job"] = relationship("Job", back_populates="contracts")

    def is_party(self, user_id: uuid.UUID) -> bool:
        return user_id in (self.client_id, self.doer_id)

    def is_active(self) -> bool:
        return self.status not in (ContractStatus.CANCELLED, ContractStatus.COMPLETED)

    def __repr__(self) -> str:
        return (
            f"<Contract(id={self.id}, job={self.job_id}, doer={self.doer_id}, "
            f"price={self.price}, status={self.status})>"
        )
