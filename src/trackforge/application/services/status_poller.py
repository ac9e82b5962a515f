"""Bounded polling of a provider task until it reaches a terminal status."""

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable

from trackforge.config.settings import PollingSettings
from trackforge.domain.exceptions import PollingTimeout, ProviderTimeout, ProviderUnavailable
from trackforge.domain.ports import IGenerationProvider
from trackforge.domain.value_objects import TaskSnapshot, TaskStatus

logger = logging.getLogger(__name__)


class StatusPoller:
    """Drive ``provider.query`` until succeeded/failed or a bound is hit.

    Two independent bounds apply, both measured from the first query:
    an attempt counter and a wall-clock deadline. Sleeps are clamped to
    the time left, so the deadline always wins over backoff.

    Transient errors (timeouts, 5xx) consume an attempt and are retried.
    ``ProviderRejected`` propagates immediately.
    """

    def __init__(
        self,
        settings: PollingSettings,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._settings = settings
        self._clock = clock
        self._sleep = sleep

    def delay_for(self, status: TaskStatus | None) -> float:
        """Early states get short delays; running tasks are checked less often."""
        if status == TaskStatus.RUNNING:
            return self._settings.running_delay_seconds
        return self._settings.queued_delay_seconds

    async def await_terminal(
        self,
        provider: IGenerationProvider,
        task_id: str,
        max_attempts: int | None = None,
        max_total_wait: float | None = None,
        on_update: Callable[[TaskSnapshot], Awaitable[None]] | None = None,
    ) -> TaskSnapshot:
        """Poll until the task is terminal.

        Args:
            provider: Provider that owns the task
            task_id: Provider task id
            max_attempts: Query budget (defaults from settings)
            max_total_wait: Wall-clock budget in seconds (defaults from settings)
            on_update: Called with every non-terminal snapshot (progress recording)

        Returns:
            The terminal snapshot (succeeded or failed)

        Raises:
            PollingTimeout: Either bound was hit first
            ProviderRejected: Provider refused the query
        """
        max_attempts = max_attempts or self._settings.max_attempts
        max_total_wait = max_total_wait or self._settings.max_total_wait_seconds
        deadline = self._clock() + max_total_wait
        last_status: TaskStatus | None = None

        for attempt in range(1, max_attempts + 1):
            try:
                snapshot = await provider.query(task_id)
            except (ProviderTimeout, ProviderUnavailable) as e:
                logger.warning(
                    "Transient error polling %s task %s (attempt %d/%d): %s",
                    provider.service.value,
                    task_id,
                    attempt,
                    max_attempts,
                    e.message,
                )
            else:
                last_status = snapshot.status
                if snapshot.status.is_terminal:
                    logger.info(
                        "%s task %s reached %s after %d attempts",
                        provider.service.value,
                        task_id,
                        snapshot.status.value,
                        attempt,
                    )
                    return snapshot
                if on_update is not None:
                    await on_update(snapshot)

            if attempt == max_attempts:
                break
            remaining = deadline - self._clock()
            if remaining <= 0:
                break
            await self._sleep(min(self.delay_for(last_status), remaining))
            if self._clock() >= deadline:
                break

        raise PollingTimeout(task_id, last_status.value if last_status else None, attempt)
