"""FastAPI dependencies for dependency injection."""

from collections.abc import AsyncGenerator
from typing import Annotated
from uuid import UUID

from fastapi import Depends, Header, HTTPException, Request, status
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from billing_engine.config import Settings, get_settings
from billing_engine.database import get_session_factory
from billing_engine.events import AuditEmitter


def get_db_session_factory() -> async_sessionmaker[AsyncSession]:
    """Get the session factory (invoice generation opens its own sessions)."""
    return get_session_factory()


async def get_db_session(
    factory: Annotated[async_sessionmaker[AsyncSession], Depends(get_db_session_factory)],
) -> AsyncGenerator[AsyncSession, None]:
    """Get database session dependency."""
    async with factory() as session:
        yield session


async def get_actor_id(x_actor_id: Annotated[str | None, Header()] = None) -> UUID | None:
    """Extract the optional acting user from header; recorded on audit events only."""
    if not x_actor_id:
        return None
    try:
        return UUID(x_actor_id)
    except ValueError:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Invalid X-Actor-ID format",
        )


def get_emitter(request: Request) -> AuditEmitter:
    """Application-wide audit emitter."""
    return request.app.state.emitter


def get_app_settings() -> Settings:
    return get_settings()


# Type aliases for cleaner dependency injection
DbSession = Annotated[AsyncSession, Depends(get_db_session)]
SessionFactory = Annotated[async_sessionmaker[AsyncSession], Depends(get_db_session_factory)]
ActorId = Annotated[UUID | None, Depends(get_actor_id)]
Emitter = Annotated[AuditEmitter, Depends(get_emitter)]
AppSettings = Annotated[Settings, Depends(get_app_settings)]
