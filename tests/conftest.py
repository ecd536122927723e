"""
Shared pytest fixtures for Doers backend unit tests.

Provides mock database sessions and sample domain objects built from the
production ORM models without requiring a live database connection.
"""

import uuid
from unittest.mock import AsyncMock, MagicMock

import pytest

from src.models.contract import Contract
from src.models.job import Job
from src.models.payment import Payment
from src.models.proposal import Proposal
from src.models.user import User, UserStatus
from tests.factories import make_contract, make_job, make_payment, make_proposal


# ---------------------------------------------------------------------------
# Database session mock
# ---------------------------------------------------------------------------


@pytest.fixture
def mock_db() -> AsyncMock:
    """Async mock of ``AsyncSession``.

    Provides a mock that supports ``db.execute()``, ``db.add()``,
    ``db.flush()``, and ``db.commit()`` out of the box.  Individual tests
    can configure ``mock_db.execute.side_effect`` to control query results.
    """
    session = AsyncMock()
    session.add = MagicMock()
    session.flush = AsyncMock()
    session.commit = AsyncMock()
    session.rollback = AsyncMock()
    return session


# ---------------------------------------------------------------------------
# User fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def sample_client() -> User:
    """An active client."""
    user = MagicMock(spec=User)
    user.id = uuid.uuid4()
    user.email = "client@example.com"
    user.name = "Ana Client"
    user.role_client = True
    user.role_doer = False
    user.role_admin = False
    user.role = "client"
    user.status = UserStatus.ACTIVE.value
    return user


@pytest.fixture
def sample_doer() -> User:
    """An active doer."""
    user = MagicMock(spec=User)
    user.id = uuid.uuid4()
    user.email = "doer@example.com"
    user.name = "Diego Doer"
    user.role_client = False
    user.role_doer = True
    user.role_admin = False
    user.role = "doer"
    user.status = UserStatus.ACTIVE.value
    return user


# ---------------------------------------------------------------------------
# Domain fixtures (real transient ORM instances)
# ---------------------------------------------------------------------------


@pytest.fixture
def sample_job(sample_client: User) -> Job:
    return make_job(sample_client.id)


@pytest.fixture
def sample_proposal(sample_job: Job, sample_doer: User) -> Proposal:
    return make_proposal(sample_job, sample_doer.id)


@pytest.fixture
def sample_contract(sample_client: User, sample_doer: User) -> Contract:
    return make_contract(sample_client.id, sample_doer.id)


@pytest.fixture
def escrow_payment(sample_client: User, sample_doer: User) -> Payment:
    return make_payment(sample_client.id, sample_doer.id)
