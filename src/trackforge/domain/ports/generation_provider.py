"""Generation Provider Port (Interface).

Following Hexagonal Architecture (Ports & Adapters), this is a PORT in the
domain layer. Implementations live in
``trackforge.infrastructure.integrations``.

Each provider (Suno, Mureka) speaks its own payload shape and status
vocabulary. Implementations translate both into our ``TaskStatus`` and
``ResultCandidate`` types so the poller, the sweeper and the ingestion
pipeline never look at provider-specific strings.
"""

from abc import ABC, abstractmethod
from typing import Any

from trackforge.domain.value_objects import (
    GenerationRequest,
    PreparedContent,
    ServiceName,
    SubmitResult,
    TaskSnapshot,
    TaskStatus,
)


class IGenerationProvider(ABC):
    """Interface for AI music generation providers.

    Error contract for every network call:
    - ``ProviderTimeout``: hard timeout hit (retryable)
    - ``ProviderUnavailable``: 5xx or network error (retryable)
    - ``ProviderRejected``: 4xx, unknown task or business error (fatal)
    - ``ProviderProtocolError``: unusable success body (fatal)
    """

    @property
    @abstractmethod
    def service(self) -> ServiceName:
        """Return the service this provider implements."""

    @property
    def supports_status_check(self) -> bool:
        """Whether ``query`` is cheap enough for the sweeper to re-check stale jobs."""
        return True

    @abstractmethod
    def build_payload(
        self, request: GenerationRequest, prepared: PreparedContent
    ) -> dict[str, Any]:
        """Build the provider-specific submit body. Pure."""

    @abstractmethod
    def normalize_status(self, raw_status: str | None) -> TaskStatus:
        """Map a raw provider status string to ``TaskStatus``."""

    @abstractmethod
    async def submit(self, payload: dict[str, Any]) -> SubmitResult:
        """Submit a generation task.

        Raises:
            ProviderProtocolError: If the response carries no task id
        """

    @abstractmethod
    async def query(self, task_id: str) -> TaskSnapshot:
        """Fetch the current state of a task."""

    async def close(self) -> None:
        """Release network resources."""
        return None
