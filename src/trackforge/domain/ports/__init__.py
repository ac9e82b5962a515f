"""Domain ports (interfaces) for dependency inversion."""

from abc import ABC, abstractmethod
from datetime import datetime

from trackforge.domain.entities import GenerationJob, JobStatus, Project, Track
from trackforge.domain.ports.generation_provider import IGenerationProvider
from trackforge.domain.value_objects import AdmissionResult, ResultCandidate, ServiceName


class IGenerationJobRepository(ABC):
    """Repository interface for GenerationJob entities.

    Implementations stage changes on an injected session. Commit is the
    caller's job.
    """

    @abstractmethod
    async def add(self, job: GenerationJob) -> None:
        """Add a new job."""

    @abstractmethod
    async def update(self, job: GenerationJob) -> None:
        """Persist every mutable field of a job."""

    @abstractmethod
    async def get_by_id(self, job_id: str) -> GenerationJob | None:
        """Get a job by internal id."""

    @abstractmethod
    async def get_by_external_id(
        self, external_id: str, service: ServiceName | None = None
    ) -> GenerationJob | None:
        """Get a job by provider task id."""

    @abstractmethod
    async def list_by_status(
        self,
        status: JobStatus,
        older_than: datetime | None = None,
        limit: int = 50,
    ) -> list[GenerationJob]:
        """List jobs in a status, oldest first."""

    @abstractmethod
    async def claim_variant_group(self, job_id: str, group_id: str) -> str:
        """Set the job's variant group id if unset and return the effective one."""

    @abstractmethod
    async def claim_track(self, job_id: str, track_id: str) -> bool:
        """Set the job's track id only if it is still empty."""


class ICatalogStore(ABC):
    """Catalog of artists, projects and tracks.

    Every method runs in its own transaction.
    """

    @abstractmethod
    async def ensure_user_inbox(self, user_id: str) -> Project:
        """Return the caller's personal inbox project, creating it if missing."""

    @abstractmethod
    async def resolve_destination_project(
        self,
        user_id: str,
        project_id: str | None = None,
        artist_id: str | None = None,
    ) -> Project:
        """Pick where new tracks for a job land."""

    @abstractmethod
    async def get_track(self, track_id: str) -> Track | None:
        """Get a track by id."""

    @abstractmethod
    async def list_tracks_for_job(self, job_id: str) -> list[Track]:
        """All tracks produced by a generation job."""

    @abstractmethod
    async def ensure_variant_track(
        self,
        job_id: str,
        variant_number: int,
        candidate: ResultCandidate,
        total_variants: int,
    ) -> tuple[Track, bool]:
        """Create the track for one variant unless it exists.

        Returns:
            (track, created)
        """

    @abstractmethod
    async def create_or_update_track_from_job(
        self, job_id: str, project_id: str | None = None
    ) -> str:
        """Atomically create or update the primary track of an ingested job."""

    @abstractmethod
    async def attach_media(
        self,
        track_id: str,
        public_url: str,
        storage_path: str,
        file_size: int,
    ) -> Track:
        """Point a track at its durable audio file."""


class IBlobStore(ABC):
    """Durable object storage with no-overwrite uploads."""

    @abstractmethod
    async def upload(self, path: str, data: bytes, content_type: str) -> None:
        """Write bytes to a new path.

        Raises:
            StorageWriteFailed: If the path exists or the write fails
        """

    @abstractmethod
    async def exists(self, path: str) -> bool:
        """Whether an object exists at path."""

    @abstractmethod
    def public_url(self, path: str) -> str:
        """URL clients use to fetch the object."""


class IIdentityProvider(ABC):
    """Answers "who is the caller" and nothing else."""

    @abstractmethod
    def identify(self, authorization: str | None) -> str:
        """Return the caller's user id.

        Raises:
            AuthenticationError: If the credentials are missing or invalid
        """


class IOperationLock(ABC):
    """Durable TTL mutex keyed by string."""

    @abstractmethod
    async def acquire(self, key: str, ttl_seconds: int) -> bool:
        """Try to take the lock. False means someone else holds it."""

    @abstractmethod
    async def release(self, key: str) -> None:
        """Release the lock. Idempotent."""


class IRateLimiter(ABC):
    """Per (caller, service) admission control."""

    @abstractmethod
    async def admit(self, caller_id: str, service: ServiceName) -> AdmissionResult:
        """Count one request against the caller's window."""


__all__ = [
    "IBlobStore",
    "ICatalogStore",
    "IGenerationJobRepository",
    "IGenerationProvider",
    "IIdentityProvider",
    "IOperationLock",
    "IRateLimiter",
]
