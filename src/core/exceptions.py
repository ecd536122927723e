"""
Domain exceptions for the Doers backend.

Services raise these; the API layer maps each family onto an HTTP status
(see ``src.api.errors``).  Every exception carries a human-readable
``message`` and a stable machine ``code`` that clients can switch on.
"""

from __future__ import annotations


class DoersError(Exception):
    """Base class for all domain errors."""

    code: str = "doers_error"

    def __init__(self, message: str, code: str | None = None) -> None:
        super().__init__(message)
        self.message = message
        if code is not None:
            self.code = code

    def __repr__(self) -> str:
        return f"{type(self).__name__}(message={self.message!r}, code={self.code!r})"


# ---------------------------------------------------------------------------
# Error families
# ---------------------------------------------------------------------------

class NotFoundError(DoersError):
    code = "not_found"


class AuthorizationError(DoersError):
    code = "forbidden"


class ValidationError(DoersError):
    code = "validation_error"


class StateConflictError(DoersError):
    """The entity is not in a status that allows the requested transition."""

    code = "state_conflict"


class ConcurrentModificationError(DoersError):
    code = "concurrent_modification"


class PaymentProviderError(DoersError):
    """Raised when the payment provider rejects an escrow operation.

    Attributes:
        provider_error_code: The provider's error code, if available.
        provider_error_type: The provider's error type, if available.
    """

    code = "payment_provider_error"

    def __init__(
        self,
        message: str,
        provider_error_code: str | None = None,
        provider_error_type: str | None = None,
    ) -> None:
        super().__init__(message)
        self.provider_error_code = provider_error_code
        self.provider_error_type = provider_error_type


# ---------------------------------------------------------------------------
# Proposal / contract conflicts
# ---------------------------------------------------------------------------

class ProposalNotPending(StateConflictError):
    code = "proposal_not_pending"


class DuplicateProposal(StateConflictError):
    code = "duplicate_proposal"


class JobNotOpen(StateConflictError):
    code = "job_not_open"


class JobFullyStaffed(StateConflictError):
    code = "job_fully_staffed"


class WorkerAlreadySelected(StateConflictError):
    code = "worker_already_selected"


class AllocationExceedsBudget(StateConflictError):
    code = "allocation_exceeds_budget"


class BelowMinimumContractAmount(StateConflictError):
    code = "below_minimum_contract_amount"


# ---------------------------------------------------------------------------
# Payment / dispute conflicts
# ---------------------------------------------------------------------------

class InvalidOperation(StateConflictError):
    code = "invalid_operation"


class AlreadyRefunded(StateConflictError):
    code = "already_refunded"


class PaymentDisputed(StateConflictError):
    code = "payment_disputed"


class DisputeAlreadyResolved(StateConflictError):
    code = "dispute_already_resolved"


class ContractFunded(StateConflictError):
    code = "contract_funded"
