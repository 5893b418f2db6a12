"""Database connection, session management and transaction helpers."""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable
from typing import Any, Protocol, TypeVar

from sqlalchemy.engine import Result
from sqlalchemy.exc import DBAPIError
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.sql.base import Executable

from expense_tracker.config import settings
from expense_tracker.models import Base

logger = logging.getLogger(__name__)

T = TypeVar("T")

# PostgreSQL serialization_failure and deadlock_detected
RETRYABLE_SQLSTATES = frozenset({"40001", "40P01"})


class QueryContext(Protocol):
    """Read-only capability: indexed lookups and point reads."""

    async def execute(self, statement: Executable, *args: Any, **kwargs: Any) -> Result[Any]: ...

    async def get(self, entity: Any, ident: Any, **kwargs: Any) -> Any: ...


class MutationContext(QueryContext, Protocol):
    """Read-write capability: everything in QueryContext plus writes."""

    def add(self, instance: object, _warn: bool = True) -> None: ...

    async def delete(self, instance: object) -> None: ...

    async def flush(self, objects: Any = None) -> None: ...


def create_engine(url: str | None = None) -> AsyncEngine:
    """Create an async engine using configured isolation level."""
    return create_async_engine(
        url or settings.database_url,
        echo=settings.database_echo,
        isolation_level=settings.database_isolation_level,
    )


engine = create_engine()

async_session_factory = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
)


async def init_db(bind: AsyncEngine | None = None) -> None:
    """Initialize database tables."""
    async with (bind or engine).begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


def is_serialization_failure(exc: DBAPIError) -> bool:
    """Whether the database aborted the transaction and it may be replayed."""
    orig = exc.orig
    code = getattr(orig, "sqlstate", None) or getattr(orig, "pgcode", None)
    return code in RETRYABLE_SQLSTATES


async def run_in_transaction(
    operation: Callable[[AsyncSession], Awaitable[T]],
    *,
    session_factory: async_sessionmaker[AsyncSession] | None = None,
    attempts: int | None = None,
) -> T:
    """Run operation in its own session and commit it.

    Serialization conflicts are replayed with a fresh session, so operation
    must be safe to execute more than once. Any other error rolls back and
    propagates.
    """
    factory = session_factory or async_session_factory
    max_attempts = attempts or settings.transaction_retry_attempts

    attempt = 1
    while True:
        async with factory() as session:
            try:
                result = await operation(session)
                await session.commit()
                return result
            except DBAPIError as exc:
                await session.rollback()
                if not is_serialization_failure(exc) or attempt >= max_attempts:
                    raise
                logger.info(
                    "Serialization conflict, retrying transaction (attempt %d/%d)",
                    attempt,
                    max_attempts,
                )
        attempt += 1
