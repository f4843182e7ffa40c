"""Async SQLAlchemy engine and session factory management."""

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import (
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from oauthkit.core.errors import storage_unavailable
from oauthkit.core.settings import DatabaseSettings

SessionFactory = async_sessionmaker[AsyncSession]


class _EngineHolder:
    """Lazy singleton for the async session factory."""

    factory: SessionFactory | None = None


_holder = _EngineHolder()


def get_session_factory() -> SessionFactory:
    """Lazily create the session factory from DatabaseSettings."""
    if _holder.factory is None:
        db = DatabaseSettings()
        engine = create_async_engine(
            db.async_url,
            pool_size=db.pool_size,
            max_overflow=db.max_overflow,
        )
        _holder.factory = async_sessionmaker(
            engine,
            class_=AsyncSession,
            expire_on_commit=False,
        )
    return _holder.factory


@asynccontextmanager
async def transaction(factory: SessionFactory) -> AsyncIterator[AsyncSession]:
    """Yield a session inside one transaction.

    Database faults surface as StorageUnavailable. Constraint violations
    are left to the caller, which knows whether a conflict is expected.
    """
    try:
        async with factory() as session, session.begin():
            yield session
    except IntegrityError:
        raise
    except SQLAlchemyError as exc:
        raise storage_unavailable(f"database_error:{type(exc).__name__}") from exc
