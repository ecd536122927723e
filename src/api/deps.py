"""
Shared FastAPI dependencies for the Doers backend.

Provides the async database session dependency used by all route handlers,
authentication dependencies for extracting the current user from JWT
Bearer tokens, and the injected collaborators (broadcaster, mailer, cache,
escrow gateway) so tests can replace them with fakes.
"""

from __future__ import annotations

from collections.abc import AsyncGenerator
from typing import Annotated

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from src.core.config import settings
from src.models.user import User
from src.services.escrowService import EscrowGateway
from src.services.notificationService import Collaborators, MarketplaceNotifier

# ---------------------------------------------------------------------------
# Async engine & session factory
# ---------------------------------------------------------------------------
# The engine is created once at module import time.  The session factory
# produces lightweight ``AsyncSession`` instances that are scoped to a single
# request via the ``get_db`` dependency below.
# ---------------------------------------------------------------------------

engine = create_async_engine(
    settings.database_url,
    echo=settings.sql_echo,
    pool_size=settings.db_pool_size,
    max_overflow=settings.db_max_overflow,
    pool_pre_ping=True,
)

async_session_factory = async_sessionmaker(
    bind=engine,
    class_=AsyncSession,
    expire_on_commit=False,
)


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """Yield an async database session scoped to one request.

    Route handlers that fire post-commit side effects call
    ``await db.commit()`` themselves before notifying; the commit here
    covers everything else.  Any exception rolls the whole request back.
    """
    async with async_session_factory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise
        finally:
            await session.close()


DBSession = Annotated[AsyncSession, Depends(get_db)]


# ---------------------------------------------------------------------------
# Authentication dependencies
# ---------------------------------------------------------------------------

_bearer_scheme = HTTPBearer(auto_error=True)


async def get_current_user(
    credentials: Annotated[HTTPAuthorizationCredentials, Depends(_bearer_scheme)],
    db: DBSession,
) -> User:
    """Extract and validate a Bearer token from the Authorization header.

    Raises 401 if the token is missing, expired, or belongs to an inactive
    account.
    """
    from src.services import auth_service

    try:
        user = await auth_service.get_current_user(db, credentials.credentials)
    except ValueError as exc:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=str(exc),
            headers={"WWW-Authenticate": "Bearer"},
        )
    return user


async def get_admin_user(
    user: Annotated[User, Depends(get_current_user)],
) -> User:
    if not user.role_admin:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail={"code": "forbidden", "message": "Admin access required"},
        )
    return user


CurrentUser = Annotated[User, Depends(get_current_user)]
AdminUser = Annotated[User, Depends(get_admin_user)]


# ---------------------------------------------------------------------------
# Collaborators
# ---------------------------------------------------------------------------

def get_collaborators() -> Collaborators:
    from src.integrations.email import HttpMailer
    from src.realtime.broadcaster import SocketBroadcaster
    from src.services.cacheService import RedisCache

    return Collaborators(
        broadcaster=SocketBroadcaster(),
        mailer=HttpMailer(),
        cache=RedisCache(),
    )


def get_notifier(
    collaborators: Annotated[Collaborators, Depends(get_collaborators)],
) -> MarketplaceNotifier:
    return MarketplaceNotifier(collaborators)


def get_escrow_gateway() -> EscrowGateway:
    from src.integrations.stripe import StripeEscrowGateway

    return StripeEscrowGateway()


Notifier = Annotated[MarketplaceNotifier, Depends(get_notifier)]
Gateway = Annotated[EscrowGateway, Depends(get_escrow_gateway)]
