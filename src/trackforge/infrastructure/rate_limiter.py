"""
Durable fixed-window rate limiter for generation requests.

Hey future me - this limits how many generation requests ONE caller may send to ONE
provider per window. Counters live in the ``rate_limit_counters`` table, so every
process and every restart sees the same numbers.

ALGORITHM: fixed window
- first request (or first after the window ended): count=1, reset_at=now+window
- while now < reset_at: admit and count+1 if count < max, else reject
- rejected callers get retry_after = ceil(reset_at - now)

The whole decision is ONE upsert with CASE expressions. SET clauses read the row's
old values, so "was the window expired" and "was there room" are judged on the same
snapshot and two concurrent requests can't both take the last slot.

USAGE:
    limiter = DatabaseRateLimiter(db.session_scope, RateLimitPolicy.from_settings(settings))
    result = await limiter.admit(user_id, ServiceName.SUNO)
    if not result.allowed:
        raise RateLimitExceededError("suno", result.retry_after_seconds)
"""

import logging
import math
import time
from collections.abc import Callable
from contextlib import AbstractAsyncContextManager
from dataclasses import dataclass

from sqlalchemy import case, delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from trackforge.config import Settings
from trackforge.domain.ports import IRateLimiter
from trackforge.domain.value_objects import AdmissionResult, ServiceName
from trackforge.infrastructure.persistence.models import RateLimitCounterModel
from trackforge.infrastructure.persistence.retry import with_db_retry
from trackforge.infrastructure.persistence.upsert import dialect_insert

logger = logging.getLogger(__name__)

SessionScope = Callable[[], AbstractAsyncContextManager[AsyncSession]]


@dataclass(frozen=True)
class RateLimitPolicy:
    """Window size and request budget for one provider."""

    max_requests: int
    window_seconds: int

    @classmethod
    def for_suno(cls) -> "RateLimitPolicy":
        """5 requests per 10 minutes."""
        return cls(max_requests=5, window_seconds=600)

    @classmethod
    def for_mureka(cls) -> "RateLimitPolicy":
        """10 requests per 10 minutes."""
        return cls(max_requests=10, window_seconds=600)

    @classmethod
    def from_settings(cls, settings: Settings) -> dict[ServiceName, "RateLimitPolicy"]:
        """Build the policy map from provider settings."""
        return {
            service: cls(
                max_requests=settings.provider(service.value).rate_limit_requests,
                window_seconds=settings.provider(service.value).rate_limit_window_seconds,
            )
            for service in ServiceName
        }


class DatabaseRateLimiter(IRateLimiter):
    """Per (caller, service) admission control shared across processes."""

    def __init__(
        self,
        session_scope: SessionScope,
        policies: dict[ServiceName, RateLimitPolicy] | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._session_scope = session_scope
        self._policies = policies or {
            ServiceName.SUNO: RateLimitPolicy.for_suno(),
            ServiceName.MUREKA: RateLimitPolicy.for_mureka(),
        }
        self._clock = clock

    def policy(self, service: ServiceName) -> RateLimitPolicy:
        return self._policies[service]

    @with_db_retry(max_attempts=5)
    async def admit(self, caller_id: str, service: ServiceName) -> AdmissionResult:
        """Count one request against the caller's window.

        Never fails for a caller without history: the first request creates the row.
        """
        policy = self.policy(service)
        now = self._clock()
        new_reset = now + policy.window_seconds
        counter = RateLimitCounterModel

        expired = counter.window_reset_at <= now
        has_room = counter.request_count < policy.max_requests

        async with self._session_scope() as session:
            stmt = dialect_insert(session, counter).values(
                caller_id=caller_id,
                service=service.value,
                request_count=1,
                window_reset_at=new_reset,
                last_admitted=True,
            )
            stmt = stmt.on_conflict_do_update(
                index_elements=[counter.caller_id, counter.service],
                set_={
                    "request_count": case(
                        (expired, 1),
                        (has_room, counter.request_count + 1),
                        else_=counter.request_count,
                    ),
                    "window_reset_at": case(
                        (expired, new_reset),
                        else_=counter.window_reset_at,
                    ),
                    "last_admitted": case(
                        (expired, True),
                        (has_room, True),
                        else_=False,
                    ),
                },
            ).returning(
                counter.request_count, counter.window_reset_at, counter.last_admitted
            )
            row = (await session.execute(stmt)).one()

        count, reset_at, admitted = row
        if admitted:
            return AdmissionResult(
                allowed=True,
                remaining=max(policy.max_requests - count, 0),
                reset_at=reset_at,
            )

        retry_after = max(math.ceil(reset_at - now), 1)
        logger.info(
            "Rate limit hit for caller %s on %s (%d/%d), retry after %ds",
            caller_id,
            service.value,
            count,
            policy.max_requests,
            retry_after,
        )
        return AdmissionResult(
            allowed=False, retry_after_seconds=retry_after, remaining=0, reset_at=reset_at
        )

    async def status(self, caller_id: str, service: ServiceName) -> AdmissionResult:
        """Read the caller's window without counting a request."""
        policy = self.policy(service)
        now = self._clock()
        async with self._session_scope() as session:
            result = await session.execute(
                select(RateLimitCounterModel).where(
                    RateLimitCounterModel.caller_id == caller_id,
                    RateLimitCounterModel.service == service.value,
                )
            )
            row = result.scalar_one_or_none()

        if row is None or row.window_reset_at <= now:
            return AdmissionResult(allowed=True, remaining=policy.max_requests)
        remaining = max(policy.max_requests - row.request_count, 0)
        if remaining:
            return AdmissionResult(
                allowed=True, remaining=remaining, reset_at=row.window_reset_at
            )
        return AdmissionResult(
            allowed=False,
            retry_after_seconds=max(math.ceil(row.window_reset_at - now), 1),
            reset_at=row.window_reset_at,
        )

    async def reset(self, caller_id: str, service: ServiceName) -> None:
        """Forget the caller's window (admin action)."""
        async with self._session_scope() as session:
            await session.execute(
                delete(RateLimitCounterModel).where(
                    RateLimitCounterModel.caller_id == caller_id,
                    RateLimitCounterModel.service == service.value,
                )
            )
        logger.info("Rate limit reset for caller %s on %s", caller_id, service.value)
