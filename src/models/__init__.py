"""
Doers SQLAlchemy Models
=============================

Central import point for all ORM models. Import ``Base`` from here for
Alembic auto-generation and for the ``create_all`` convenience in tests.

Usage::

    from src.models import Base, Job, Proposal, Contract, Payment
"""

# -- Base & Mixins --
from .base import Base, TimestampMixin, UUIDPrimaryKeyMixin

# -- Users --
from .user import User, UserStatus

# -- Jobs --
from .job import Job, JobStatus

# -- Proposals --
from .proposal import Proposal, ProposalStatus

# -- Contracts --
from .contract import Contract, ContractStatus

# -- Payments --
from .payment import Payment, PaymentStatus, PaymentType

# -- Disputes --
from .dispute import (
    Dispute,
    DisputeCategory,
    DisputePriority,
    DisputeStatus,
    ResolutionType,
)

# -- Notifications --
from .notification import Notification, NotificationType

# -- Conversations --
from .conversation import Conversation

__all__ = [
    # Base
    "Base",
    "TimestampMixin",
    "UUIDPrimaryKeyMixin",
    # Users
    "User",
    "UserStatus",
    # Jobs
    "Job",
    "JobStatus",
    # Proposals
    "Proposal",
    "ProposalStatus",
    # Contracts
    "Contract",
    "ContractStatus",
    # Payments
    "Payment",
    "PaymentStatus",
    "PaymentType",
    # Disputes
    "Dispute",
    "DisputeStatus",
    "DisputePriority",
    "DisputeCategory",
    "ResolutionType",
    # Notifications
    "Notification",
    "NotificationType",
    # Conversations
    "Conversation",
]
