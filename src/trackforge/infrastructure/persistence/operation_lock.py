"""Durable TTL lock backed by the ``operation_locks`` table.

Hey future me - acquisition is ONE statement:

    INSERT INTO operation_locks (key, owner, expires_at) VALUES (...)
    ON CONFLICT (key) DO UPDATE SET owner = excluded.owner, expires_at = excluded.expires_at
    WHERE operation_locks.expires_at <= :now
    RETURNING owner

- no row for the key            -> INSERT happens, RETURNING gives our token
- row exists but expired        -> UPDATE happens, RETURNING gives our token
- row exists and is still live  -> WHERE is false, nothing is written, no row returned

There's no SELECT-then-INSERT window, so two callers can never both get True.
Each acquire uses a fresh random owner token; release only deletes the row if it still
carries that token, so a slow caller whose lock expired can't release somebody else's.

One instance is shared by every ingestion and the sweeper, so tokens are kept per
acquisition (a list per key), tagged with the asyncio task that took them. A release
uses the calling task's oldest token, else the oldest token for the key. An expired
holder releasing late therefore spends its own dead token and never the successor's.
"""

import asyncio
import logging
import secrets
import time
from collections.abc import Callable
from contextlib import AbstractAsyncContextManager
from typing import Any

from sqlalchemy import delete
from sqlalchemy.ext.asyncio import AsyncSession

from trackforge.domain.ports import IOperationLock

from .models import OperationLockModel
from .retry import with_db_retry
from .upsert import dialect_insert

logger = logging.getLogger(__name__)

SessionScope = Callable[[], AbstractAsyncContextManager[AsyncSession]]


def _current_task() -> "asyncio.Task[Any] | None":
    try:
        return asyncio.current_task()
    except RuntimeError:
        return None


class DatabaseOperationLock(IOperationLock):
    """Lock primitive shared by every process that uses the same database."""

    def __init__(
        self,
        session_scope: SessionScope,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._session_scope = session_scope
        self._clock = clock
        self._owned: dict[str, list[tuple[asyncio.Task[Any] | None, str]]] = {}

    @with_db_retry(max_attempts=5)
    async def acquire(self, key: str, ttl_seconds: int) -> bool:
        """Try to take the lock for ``ttl_seconds``.

        Returns:
            True if this call now holds the lock, False if a live lock exists
        """
        now = self._clock()
        token = secrets.token_hex(16)

        async with self._session_scope() as session:
            stmt = dialect_insert(session, OperationLockModel).values(
                key=key, owner=token, expires_at=now + ttl_seconds
            )
            stmt = stmt.on_conflict_do_update(
                index_elements=[OperationLockModel.key],
                set_={
                    "owner": stmt.excluded.owner,
                    "expires_at": stmt.excluded.expires_at,
                },
                where=OperationLockModel.expires_at <= now,
            ).returning(OperationLockModel.owner)
            result = await session.execute(stmt)
            owner = result.scalar_one_or_none()

        acquired = owner == token
        if acquired:
            self._owned.setdefault(key, []).append((_current_task(), token))
            logger.debug("Acquired lock %s (ttl=%ss)", key, ttl_seconds)
        else:
            logger.debug("Lock %s is held by another caller", key)
        return acquired

    async def release(self, key: str) -> None:
        """Release the lock. Releasing a missing or expired lock is a no-op."""
        await self._delete(key, self._take_token(key))

    def _take_token(self, key: str) -> str | None:
        """Pop the token this release should use, or None if we never held the key."""
        tokens = self._owned.get(key)
        if not tokens:
            return None
        task = _current_task()
        index = next((i for i, (owner, _) in enumerate(tokens) if owner is task), 0)
        _, token = tokens.pop(index)
        if not tokens:
            del self._owned[key]
        return token

    @with_db_retry(max_attempts=5)
    async def _delete(self, key: str, token: str | None) -> None:
        async with self._session_scope() as session:
            stmt = delete(OperationLockModel).where(OperationLockModel.key == key)
            if token is not None:
                stmt = stmt.where(OperationLockModel.owner == token)
            await session.execute(stmt)
        logger.debug("Released lock %s", key)

    async def purge_expired(self) -> int:
        """Delete expired lock rows. Returns how many were removed."""
        now = self._clock()
        async with self._session_scope() as session:
            result = await session.execute(
                delete(OperationLockModel).where(OperationLockModel.expires_at <= now)
            )
        removed = result.rowcount or 0  # type: ignore[attr-defined]
        if removed:
            logger.info("Purged %d expired operation locks", removed)
        return removed
