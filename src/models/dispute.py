"""
SQLAlchemy model for disputes.

A dispute freezes a contract's escrow payment until an admin resolves it.
The ``resolved_*`` statuses and ``cancelled`` are terminal.  Every action on
a dispute is appended to the ``logs`` JSON array as an audit trail.
"""

import enum
import uuid
from datetime import datetime
from decimal import Decimal
from typing import Any, Optional

from sqlalchemy import DateTime, ForeignKey, Integer, Numeric, String, Text
from sqlalchemy.dialects.postgresql import JSONB, UUID
from sqlalchemy.orm import Mapped, mapped_column

from .base import Base, TimestampMixin, UUIDPrimaryKeyMixin, utcnow


class DisputeStatus(str, enum.Enum):
    OPEN = "open"
    IN_REVIEW = "in_review"
    AWAITING_INFO = "awaiting_info"
    RESOLVED_RELEASED = "resolved_released"
    RESOLVED_REFUNDED = "resolved_refunded"
    RESOLVED_PARTIAL = "resolved_partial"
    CANCELLED = "cancelled"


class DisputePriority(str, enum.Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    URGENT = "urgent"


class DisputeCategory(str, enum.Enum):
    SERVICE_NOT_DELIVERED = "service_not_delivered"
    INCOMPLETE_WORK = "incomplete_work"
    QUALITY_ISSUES = "quality_issues"
    PAYMENT_ISSUES = "payment_issues"
    BREACH_OF_CONTRACT = "breach_of_contract"
    OTHER = "other"


class ResolutionType(str, enum.Enum):
    FULL_RELEASE = "full_release"
    FULL_REFUND = "full_refund"
    PARTIAL_REFUND = "partial_refund"
    NO_ACTION = "no_action"


RESOLVED_STATUSES = (
    DisputeStatus.RESOLVED_RELEASED,
    DisputeStatus.RESOLVED_REFUNDED,
    DisputeStatus.RESOLVED_PARTIAL,
    DisputeStatus.CANCELLED,
)


class Dispute(UUIDPrimaryKeyMixin, TimestampMixin, Base):
    __tablename__ = "disputes"

    contract_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("contracts.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    payment_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("payments.id", ondelete="SET NULL"),
        nullable=True,
    )
    initiated_by: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("users.id"), nullable=False
    )
    against: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("users.id"), nullable=False
    )

    reason: Mapped[str] = mapped_column(String(255), nullable=False)
    detailed_description: Mapped[str] = mapped_column(Text, nullable=False)
    category: Mapped[str] = mapped_column(
        String(40), nullable=False, default=DisputeCategory.OTHER.value
    )
    priority: Mapped[str] = mapped_column(
        String(10), nullable=False, default=DisputePriority.MEDIUM.value
    )
    status: Mapped[str] = mapped_column(
        String(30), nullable=False, default=DisputeStatus.OPEN.value, index=True
    )

    assigned_to: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUID(as_uuid=True), ForeignKey("users.id"), nullable=True
    )
    assigned_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    resolution: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    resolution_type: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)
    refund_amount: Mapped[Optional[Decimal]] = mapped_column(Numeric(12, 2), nullable=True)
    resolved_by: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUID(as_uuid=True), ForeignKey("users.id"), nullable=True
    )
    resolved_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    # list of {action, performed_by, timestamp, details}
    logs: Mapped[Any] = mapped_column(JSONB, nullable=False, default=list)

    version: Mapped[int] = mapped_column(Integer, nullable=False)

    __mapper_args__ = {"version_id_col": version}

    def is_resolved(self) -> bool:
        return self.status in RESOLVED_STATUSES

    def add_log(self, action: str, performed_by: uuid.UUID, details: str) -> None:
        entry = {
            "action": action,
            "performed_by": str(performed_by),
            "timestamp": utcnow().isoformat(),
            "details": details,
        }
        # Reassign so the JSON column is flagged dirty
        self.logs = [*(self.logs or []), entry]

    def __repr__(self) -> str:
        return (
            f"<Dispute(id={self.id}, contract={self.contract_id}, "
            f"status={self.status}, priority={self.priority})>"
        )
