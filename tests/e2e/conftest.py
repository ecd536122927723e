"""
E2E test fixtures for the Doers backend.

Provides:
- An in-process FastAPI test app with the marketplace routes registered
- httpx AsyncClient wired via ASGI transport (no network needed)
- An in-memory SQLite database, recreated for every test
- Seed data: a client, two doers, an admin and an open job
- Recording fakes for the broadcaster, mailer, cache and escrow gateway

Each request gets its own session from the test session factory, so the
route -> service -> DB flow commits and rolls back exactly as in production.
"""

from __future__ import annotations

import uuid
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Any, AsyncGenerator

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy import event
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.ext.asyncio import (
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.ext.compiler import compiles
from sqlalchemy.pool import StaticPool

from src.models.base import Base
from tests.factories import FakeBroadcaster, FakeCache, FakeGateway, FakeMailer


@compiles(JSONB, "sqlite")
def compile_jsonb_sqlite(type_, compiler, **kw):
    return "JSON"


# ---------------------------------------------------------------------------
# Test IDs (stable across tests so cross-references work)
# ---------------------------------------------------------------------------

CLIENT_USER_ID = uuid.UUID("aaaaaaaa-aaaa-aaaa-aaaa-aaaaaaaaaaaa")
DOER_USER_ID = uuid.UUID("bbbbbbbb-bbbb-bbbb-bbbb-bbbbbbbbbbbb")
SECOND_DOER_USER_ID = uuid.UUID("cccccccc-cccc-cccc-cccc-cccccccccccc")
ADMIN_USER_ID = uuid.UUID("dddddddd-dddd-dddd-dddd-dddddddddddd")

# Ids need a hex letter: SQLite gives an all-digit UUID column value numeric
# affinity and hands it back as a float.
JOB_ID = uuid.UUID("a1b2c3d4-0000-4000-8000-00000000000a")
TEAM_JOB_ID = uuid.UUID("a1b2c3d4-0000-4000-8000-00000000000b")


# ---------------------------------------------------------------------------
# Async engine + session factory (in-memory SQLite)
# ---------------------------------------------------------------------------

TEST_DB_URL = "sqlite+aiosqlite://"


@pytest_asyncio.fixture
async def session_factory() -> AsyncGenerator[async_sessionmaker[AsyncSession], None]:
    """A fresh in-memory database per test, shared by every request."""
    engine = create_async_engine(
        TEST_DB_URL,
        echo=False,
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )

    # pysqlite's implicit transactions break SAVEPOINT; take over BEGIN
    @event.listens_for(engine.sync_engine, "connect")
    def _on_connect(dbapi_conn, _):
        dbapi_conn.isolation_level = None
        cursor = dbapi_conn.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    @event.listens_for(engine.sync_engine, "begin")
    def _on_begin(conn):
        conn.exec_driver_sql("BEGIN")

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    factory = async_sessionmaker(bind=engine, class_=AsyncSession, expire_on_commit=False)
    async with factory() as session:
        await _seed_data(session)
        await session.commit()

    yield factory

    await engine.dispose()


async def load(factory, model, entity_id):
    """Read a row in a short-lived session.

    The test database is a single shared connection, so no session may stay
    open across API calls.
    """
    async with factory() as session:
        return await session.get(model, entity_id)


# ---------------------------------------------------------------------------
# Seed data
# ---------------------------------------------------------------------------

async def _seed_data(db: AsyncSession) -> None:
    """Insert minimum seed data for E2E tests."""
    from src.models.job import Job, JobStatus
    from src.models.user import User, UserStatus

    now = datetime.now(timezone.utc)

    client_user = User(
        id=CLIENT_USER_ID,
        email="client@test.doers.ar",
        name="Ana Client",
        role_client=True,
        role_doer=False,
        role_admin=False,
        status=UserStatus.ACTIVE.value,
    )
    doer_user = User(
        id=DOER_USER_ID,
        email="doer@test.doers.ar",
        name="Diego Doer",
        role_client=False,
        role_doer=True,
        role_admin=False,
        status=UserStatus.ACTIVE.value,
    )
    second_doer = User(
        id=SECOND_DOER_USER_ID,
        email="doer2@test.doers.ar",
        name="Sofia Doer",
        role_client=False,
        role_doer=True,
        role_admin=False,
        status=UserStatus.ACTIVE.value,
    )
    admin_user = User(
        id=ADMIN_USER_ID,
        email="admin@test.doers.ar",
        name="Admin",
        role_client=False,
        role_doer=False,
        role_admin=True,
        status=UserStatus.ACTIVE.value,
    )
    db.add_all([client_user, doer_user, second_doer, admin_user])
    await db.flush()

    job = Job(
        id=JOB_ID,
        title="Paint the living room",
        description="Two coats, walls only",
        client_id=CLIENT_USER_ID,
        price=Decimal("10000.00"),
        currency="ARS",
        status=JobStatus.OPEN.value,
        start_date=now - timedelta(days=1),
        end_date=now + timedelta(days=7),
        max_workers=1,
        selected_workers=[],
        worker_allocations=[],
        allocated_total=Decimal("0.00"),
        remaining_budget=Decimal("10000.00"),
    )
    team_job = Job(
        id=TEAM_JOB_ID,
        title="Move office furniture",
        description="Two workers needed",
        client_id=CLIENT_USER_ID,
        price=Decimal("20000.00"),
        currency="ARS",
        status=JobStatus.OPEN.value,
        start_date=now + timedelta(days=3),
        end_date=now + timedelta(days=4),
        max_workers=2,
        selected_workers=[],
        worker_allocations=[],
        allocated_total=Decimal("0.00"),
        remaining_budget=Decimal("20000.00"),
    )
    db.add_all([job, team_job])
    await db.flush()


# ---------------------------------------------------------------------------
# Collaborator fakes
# ---------------------------------------------------------------------------

@pytest.fixture
def broadcaster() -> FakeBroadcaster:
    return FakeBroadcaster()


@pytest.fixture
def mailer() -> FakeMailer:
    return FakeMailer()


@pytest.fixture
def cache() -> FakeCache:
    return FakeCache()


@pytest.fixture
def gateway() -> FakeGateway:
    return FakeGateway()


# ---------------------------------------------------------------------------
# FastAPI test application
# ---------------------------------------------------------------------------

def _create_test_app(factory, collaborators, gateway):
    """Build a FastAPI app with the marketplace routes registered and the
    DB, collaborator and gateway dependencies overridden."""
    from fastapi import FastAPI

    from src.api.deps import get_collaborators, get_db, get_escrow_gateway
    from src.api.errors import register_exception_handlers
    from src.api.routes import contracts, disputes, jobs, payments, proposals

    app = FastAPI(title="Doers Test")
    register_exception_handlers(app)

    async def _override_get_db():
        async with factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    app.dependency_overrides[get_db] = _override_get_db
    app.dependency_overrides[get_collaborators] = lambda: collaborators
    app.dependency_overrides[get_escrow_gateway] = lambda: gateway

    for router in (
        proposals.router,
        jobs.router,
        contracts.router,
        payments.router,
        disputes.router,
        disputes.admin_router,
    ):
        app.include_router(router, prefix="/api/v1")

    return app


@pytest_asyncio.fixture
async def client(
    session_factory, broadcaster, mailer, cache, gateway
) -> AsyncGenerator[AsyncClient, None]:
    """httpx AsyncClient connected to the test app via ASGI transport."""
    from src.services.notificationService import Collaborators

    collaborators = Collaborators(broadcaster=broadcaster, mailer=mailer, cache=cache)
    app = _create_test_app(session_factory, collaborators, gateway)
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac


# ---------------------------------------------------------------------------
# Auth helpers
# ---------------------------------------------------------------------------

def auth_headers(user_id: uuid.UUID, role: str = "client") -> dict[str, str]:
    """Bearer headers for a seeded user."""
    from types import SimpleNamespace

    from src.services.auth_service import create_access_token

    token, _ = create_access_token(SimpleNamespace(id=user_id, role=role))
    return {"Authorization": f"Bearer {token}"}


CLIENT = auth_headers(CLIENT_USER_ID)
DOER = auth_headers(DOER_USER_ID, "doer")
SECOND_DOER = auth_headers(SECOND_DOER_USER_ID, "doer")
ADMIN = auth_headers(ADMIN_USER_ID, "admin")


# ---------------------------------------------------------------------------
# Flow helpers
# ---------------------------------------------------------------------------

async def submit_proposal(
    client: AsyncClient,
    headers: dict[str, str],
    *,
    job_id: uuid.UUID = JOB_ID,
    price: str = "8000.00",
    duration: int = 3,
) -> dict[str, Any]:
    """POST /api/v1/proposals and return the response JSON."""
    resp = await client.post(
        "/api/v1/proposals",
        json={
            "job_id": str(job_id),
            "cover_letter": "I can start tomorrow.",
            "proposed_price": price,
            "estimated_duration": duration,
        },
        headers=headers,
    )
    assert resp.status_code == 201, resp.text
    return resp.json()


async def approve(
    client: AsyncClient,
    proposal_id: str,
    allocated_amount: str | None = None,
):
    body = {} if allocated_amount is None else {"allocated_amount": allocated_amount}
    return await client.put(
        f"/api/v1/proposals/{proposal_id}/approve", json=body, headers=CLIENT
    )


async def create_contract(client: AsyncClient) -> dict[str, Any]:
    """Doer bids 8000 on the seeded job and the client approves it."""
    proposal = await submit_proposal(client, DOER)
    resp = await approve(client, proposal["id"])
    assert resp.status_code == 200, resp.text
    return resp.json()["contract"]


async def fund(client: AsyncClient, contract_id: str) -> dict[str, Any]:
    resp = await client.post(
        f"/api/v1/payments/contracts/{contract_id}/fund", json={}, headers=CLIENT
    )
    assert resp.status_code == 201, resp.text
    return resp.json()


async def funded_contract(client: AsyncClient) -> tuple[dict[str, Any], dict[str, Any]]:
    contract = await create_contract(client)
    payment = await fund(client, contract["id"])
    return contract, payment
