"""Shared fixtures: throwaway SQLite database, settings and job factory."""

from collections.abc import AsyncGenerator, Awaitable, Callable
from datetime import datetime
from pathlib import Path
from typing import Any

import pytest

from trackforge.config.settings import (
    AuthSettings,
    DatabaseSettings,
    IngestionSettings,
    MurekaSettings,
    Settings,
    StorageSettings,
    SunoSettings,
    SweeperSettings,
)
from trackforge.domain.entities import GenerationJob, JobStatus
from trackforge.domain.value_objects import ResultCandidate, ServiceName
from trackforge.infrastructure.persistence import Database, GenerationJobRepository

JobFactory = Callable[..., Awaitable[GenerationJob]]


@pytest.fixture
def settings(tmp_path: Path) -> Settings:
    """Settings pointing at a temp database and temp media root."""
    return Settings(
        _env_file=None,
        database=DatabaseSettings(url=f"sqlite+aiosqlite:///{tmp_path / 'trackforge.db'}"),
        storage=StorageSettings(root_path=tmp_path / "media", public_base_url="/media"),
        suno=SunoSettings(api_key="suno-test-key", callback_url="https://test/callback"),
        mureka=MurekaSettings(api_key="mureka-test-key"),
        ingestion=IngestionSettings(
            contention_wait_seconds=5.0, contention_poll_interval_seconds=0.01
        ),
        sweeper=SweeperSettings(enabled=False),
        auth=AuthSettings(token_secret="test-secret"),
    )


@pytest.fixture
async def database(settings: Settings) -> AsyncGenerator[Database, None]:
    """Fresh database with all tables created."""
    db = Database(settings)
    await db.create_tables()
    yield db
    await db.close()


@pytest.fixture
def make_job(database: Database) -> JobFactory:
    """Insert a generation job and return it."""

    async def _make(
        user_id: str = "user-1",
        service: ServiceName = ServiceName.SUNO,
        status: JobStatus = JobStatus.PROCESSING,
        external_id: str | None = "task-1",
        results: list[str] | None = None,
        parameters: dict[str, Any] | None = None,
        metadata: dict[str, Any] | None = None,
        created_at: datetime | None = None,
    ) -> GenerationJob:
        job_metadata = dict(metadata or {})
        if results is not None:
            job_metadata["results"] = [
                ResultCandidate(
                    audio_url=url,
                    external_track_id=f"clip-{index}",
                    title=f"Night Drive {index}" if index > 1 else "Night Drive",
                ).to_dict()
                for index, url in enumerate(results, start=1)
            ]
            job_metadata["total_variants"] = len(results)
        job = GenerationJob(
            user_id=user_id,
            service=service,
            prompt="synthwave night drive",
            status=status,
            external_id=external_id,
            parameters=parameters or {"style": "synthwave", "title": None},
            metadata=job_metadata,
        )
        if created_at is not None:
            job.created_at = created_at
            job.updated_at = created_at
        async with database.session_scope() as session:
            await GenerationJobRepository(session).add(job)
        return job

    return _make


async def load_job(database: Database, job_id: str) -> GenerationJob:
    async with database.session_scope() as session:
        job = await GenerationJobRepository(session).get_by_id(job_id)
    assert job is not None
    return job


@pytest.fixture
def reload_job(database: Database) -> Callable[[str], Awaitable[GenerationJob]]:
    """Re-read a job from the database."""

    async def _reload(job_id: str) -> GenerationJob:
        return await load_job(database, job_id)

    return _reload
