"""Per-user transaction helpers: upserts, user row locking, transient retry."""

from __future__ import annotations

import asyncio
import functools
import logging
from collections.abc import Awaitable, Callable
from datetime import datetime, timezone
from typing import Any, ParamSpec, TypeVar

from sqlalchemy import select
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.exc import DBAPIError, OperationalError
from sqlalchemy.ext.asyncio import AsyncSession

from bookpost.config import get_settings
from bookpost.db.models import User
from bookpost.errors import TransientError

logger = logging.getLogger(__name__)

P = ParamSpec("P")
T = TypeVar("T")

# serialization_failure, deadlock_detected, lock_not_available
_TRANSIENT_SQLSTATES = frozenset({"40001", "40P01", "55P03"})
# SQLite reports contention only through the message text.
_TRANSIENT_MESSAGES = ("database is locked", "database table is locked", "database is busy")


def insert_for(db: AsyncSession, model: type[Any]) -> Any:  # noqa: ANN401
    """Dialect-specific INSERT supporting ON CONFLICT for the bound engine."""
    if db.get_bind().dialect.name == "postgresql":
        return pg_insert(model)
    return sqlite_insert(model)


async def lock_user(db: AsyncSession, user_id: int, now: datetime | None = None) -> User:
    """Create the user mirror row if needed and lock it for this transaction.

    Every write for one user funnels through this row lock, so a single
    logical update (one heartbeat, one end) is serialised per user while
    different users never wait on each other.
    """
    if now is None:
        now = datetime.now(timezone.utc)
    stmt = insert_for(db, User).values(id=user_id, created_at=now)
    await db.execute(stmt.on_conflict_do_nothing(index_elements=["id"]))
    result = await db.execute(
        select(User).where(User.id == user_id).with_for_update().execution_options(populate_existing=True)
    )
    return result.scalar_one()


def _is_transient(exc: DBAPIError) -> bool:
    """Lock, deadlock and serialization failures only; schema or syntax errors are not retried."""
    sqlstate = getattr(exc.orig, "sqlstate", None) or getattr(exc.orig, "pgcode", None)
    if sqlstate in _TRANSIENT_SQLSTATES:
        return True
    if isinstance(exc, OperationalError):
        message = str(exc.orig).lower()
        return any(marker in message for marker in _TRANSIENT_MESSAGES)
    return False


def retry_transient(func: Callable[P, Awaitable[T]]) -> Callable[P, Awaitable[T]]:
    """Retry a per-user transaction on storage contention with bounded backoff.

    The wrapped coroutine must take the ``AsyncSession`` as its first
    argument and own its commit. After the last attempt the failure is
    surfaced as ``TransientError``.
    """

    @functools.wraps(func)
    async def wrapper(*args: P.args, **kwargs: P.kwargs) -> T:
        db: AsyncSession = args[0]  # type: ignore[assignment]
        settings = get_settings()
        attempts = max(1, settings.transient_retry_attempts)
        for attempt in range(1, attempts + 1):
            try:
                return await func(*args, **kwargs)
            except DBAPIError as exc:
                if not _is_transient(exc):
                    raise
                await db.rollback()
                if attempt == attempts:
                    logger.error("%s: storage contention after %d attempts", func.__name__, attempts)
                    raise TransientError("Storage is busy, please retry") from exc
                delay = settings.transient_retry_base_delay_seconds * (2 ** (attempt - 1))
                logger.warning(
                    "%s: transient storage error (attempt %d/%d), retrying in %.2fs",
                    func.__name__, attempt, attempts, delay,
                )
                await asyncio.sleep(delay)
        raise AssertionError("unreachable")

    return wrapper
