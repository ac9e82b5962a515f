"""Tests for the database-backed operation lock."""

import asyncio

import pytest
from sqlalchemy import select

from trackforge.infrastructure.persistence import (
    Database,
    DatabaseOperationLock,
    OperationLockModel,
)


class FakeClock:
    """Manually advanced epoch clock."""

    def __init__(self, start: float = 1_000_000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def lock(database: Database, clock: FakeClock) -> DatabaseOperationLock:
    return DatabaseOperationLock(database.session_scope, clock=clock)


class TestAcquireRelease:
    """Basic mutual exclusion."""

    async def test_first_acquire_wins(self, lock: DatabaseOperationLock) -> None:
        assert await lock.acquire("download:job-1", ttl_seconds=60) is True

    async def test_second_acquire_fails_while_held(self, database: Database) -> None:
        first = DatabaseOperationLock(database.session_scope)
        second = DatabaseOperationLock(database.session_scope)

        assert await first.acquire("download:job-1", ttl_seconds=60) is True
        assert await second.acquire("download:job-1", ttl_seconds=60) is False

    async def test_different_keys_are_independent(self, lock: DatabaseOperationLock) -> None:
        assert await lock.acquire("download:job-1", ttl_seconds=60) is True
        assert await lock.acquire("download:job-2", ttl_seconds=60) is True

    async def test_release_allows_reacquire(self, lock: DatabaseOperationLock) -> None:
        await lock.acquire("download:job-1", ttl_seconds=60)
        await lock.release("download:job-1")

        assert await lock.acquire("download:job-1", ttl_seconds=60) is True

    async def test_release_of_unknown_key_is_noop(self, lock: DatabaseOperationLock) -> None:
        await lock.release("never-acquired")

    async def test_concurrent_acquire_has_exactly_one_winner(self, database: Database) -> None:
        """Many callers racing for the same key: one True, the rest False."""
        locks = [DatabaseOperationLock(database.session_scope) for _ in range(8)]

        results = await asyncio.gather(
            *(candidate.acquire("download:race", ttl_seconds=60) for candidate in locks)
        )

        assert results.count(True) == 1


class TestExpiry:
    """TTL-based recovery after a crashed holder."""

    async def test_expired_lock_can_be_taken_over(
        self, database: Database, clock: FakeClock
    ) -> None:
        crashed = DatabaseOperationLock(database.session_scope, clock=clock)
        successor = DatabaseOperationLock(database.session_scope, clock=clock)

        assert await crashed.acquire("download:job-1", ttl_seconds=30) is True
        clock.advance(10)
        assert await successor.acquire("download:job-1", ttl_seconds=30) is False
        clock.advance(25)
        assert await successor.acquire("download:job-1", ttl_seconds=30) is True

    async def test_stale_holder_cannot_release_new_owner(
        self, database: Database, clock: FakeClock
    ) -> None:
        """Releasing after expiry must not delete the successor's lock."""
        stale = DatabaseOperationLock(database.session_scope, clock=clock)
        successor = DatabaseOperationLock(database.session_scope, clock=clock)
        third = DatabaseOperationLock(database.session_scope, clock=clock)

        await stale.acquire("download:job-1", ttl_seconds=30)
        clock.advance(31)
        await successor.acquire("download:job-1", ttl_seconds=30)
        await stale.release("download:job-1")

        assert await third.acquire("download:job-1", ttl_seconds=30) is False

    async def test_shared_instance_late_release_keeps_successor_lock(
        self, database: Database, lock: DatabaseOperationLock, clock: FakeClock
    ) -> None:
        """Same instance for both holders, as in the running app."""
        other_process = DatabaseOperationLock(database.session_scope, clock=clock)

        assert await lock.acquire("download:job-1", ttl_seconds=30) is True
        clock.advance(31)
        assert await lock.acquire("download:job-1", ttl_seconds=30) is True
        await lock.release("download:job-1")

        assert await other_process.acquire("download:job-1", ttl_seconds=30) is False

    async def test_shared_instance_holders_in_separate_tasks(
        self, database: Database, lock: DatabaseOperationLock, clock: FakeClock
    ) -> None:
        other_process = DatabaseOperationLock(database.session_scope, clock=clock)
        stale_acquired = asyncio.Event()
        successor_acquired = asyncio.Event()
        stale_may_release = asyncio.Event()
        successor_may_release = asyncio.Event()

        async def stale_holder() -> None:
            await lock.acquire("download:job-1", ttl_seconds=30)
            stale_acquired.set()
            await stale_may_release.wait()
            await lock.release("download:job-1")

        async def successor() -> None:
            await stale_acquired.wait()
            clock.advance(31)
            await lock.acquire("download:job-1", ttl_seconds=30)
            successor_acquired.set()
            await successor_may_release.wait()
            await lock.release("download:job-1")

        tasks = [asyncio.create_task(stale_holder()), asyncio.create_task(successor())]
        await successor_acquired.wait()
        stale_may_release.set()
        await tasks[0]

        assert await other_process.acquire("download:job-1", ttl_seconds=30) is False

        successor_may_release.set()
        await tasks[1]

        assert await other_process.acquire("download:job-1", ttl_seconds=30) is True

    async def test_purge_expired_removes_only_dead_rows(
        self, database: Database, lock: DatabaseOperationLock, clock: FakeClock
    ) -> None:
        await lock.acquire("short", ttl_seconds=5)
        await lock.acquire("long", ttl_seconds=500)
        clock.advance(10)

        removed = await lock.purge_expired()

        assert removed == 1
        async with database.session_scope() as session:
            keys = (await session.execute(select(OperationLockModel.key))).scalars().all()
        assert keys == ["long"]
