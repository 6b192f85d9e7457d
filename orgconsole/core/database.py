"""
Database connection and session management.

Row-level policies on PostgreSQL read the caller from ``app.current_user_id``.
The caller bound to a session is re-applied at the start of every
transaction, so it survives the intermediate commits some operations make.
"""

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
import uuid

from sqlalchemy import event, text
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlmodel import SQLModel

from orgconsole.core.config import get_settings

settings = get_settings()

engine = create_async_engine(
    settings.database_url,
    echo=settings.debug,
    future=True,
)

async_session_factory = sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
)

_SET_CALLER = text("SELECT set_config('app.current_user_id', :user_id, true)")


@event.listens_for(Session, "after_begin")
def _apply_caller(session, transaction, connection):
    caller = session.info.get("caller_id")
    if caller is not None and connection.dialect.name == "postgresql":
        connection.execute(_SET_CALLER, {"user_id": str(caller)})


async def bind_caller(session: AsyncSession, user_id: uuid.UUID) -> None:
    """Attach the authenticated caller to the session for row-level policies."""
    session.info["caller_id"] = user_id
    if session.in_transaction() and session.bind.dialect.name == "postgresql":
        await session.execute(_SET_CALLER, {"user_id": str(user_id)})


async def init_db():
    """Create all tables (development only, production uses migrations)."""
    async with engine.begin() as conn:
        await conn.run_sync(SQLModel.metadata.create_all)


async def get_session() -> AsyncGenerator[AsyncSession, None]:
    """FastAPI dependency for database sessions."""
    async with async_session_factory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


@asynccontextmanager
async def get_session_context():
    """Context manager for use outside of FastAPI request lifecycle."""
    async with async_session_factory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise
