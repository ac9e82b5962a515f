"""Application lifecycle management for startup and shutdown tasks.

This module builds every long-lived object once (database, provider clients, job
queue, services, sweeper) and hangs them on ``app.state`` for the routers.

Startup order:
1. Logging, storage directories, SQLite path check
2. Database (+ tables when ``auto_create_tables``)
3. Adapters: providers, blob store, downloader, lock, rate limiter, catalog, identity
4. Services and the job queue (handlers registered before workers start)
5. Stale job sweeper loop

Shutdown runs in reverse and never stops at the first error.
"""

import asyncio
import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager, suppress

from fastapi import FastAPI

from trackforge.application.services.generation_service import GenerationService
from trackforge.application.services.ingestion_service import IngestionService
from trackforge.application.services.status_poller import StatusPoller
from trackforge.application.services.variant_reconciler import VariantReconciler
from trackforge.application.workers.generation_worker import GenerationWorker
from trackforge.application.workers.job_queue import JobQueue
from trackforge.application.workers.stale_job_sweeper import StaleJobSweeper
from trackforge.config import Settings, get_settings
from trackforge.domain.exceptions import ConfigurationError
from trackforge.infrastructure.identity import SignedTokenIdentityProvider
from trackforge.infrastructure.integrations import build_providers
from trackforge.infrastructure.integrations.media_downloader import MediaDownloader
from trackforge.infrastructure.observability import configure_logging
from trackforge.infrastructure.persistence import (
    Database,
    DatabaseOperationLock,
    SqlCatalogStore,
)
from trackforge.infrastructure.rate_limiter import DatabaseRateLimiter, RateLimitPolicy
from trackforge.infrastructure.storage import LocalBlobStore

logger = logging.getLogger(__name__)


# Hey future me, this checks the SQLite directory BEFORE the engine exists. SQLite needs to
# create -wal and -shm files next to the .db file, so a read-only directory fails late and
# cryptically otherwise. No-op for PostgreSQL.
def _validate_sqlite_path(settings: Settings) -> None:
    """Ensure the SQLite database directory exists and is writable."""
    db_path = settings.get_sqlite_db_path()
    if db_path is None:
        return

    directory = db_path.parent
    try:
        directory.mkdir(parents=True, exist_ok=True)
        probe = directory / f".{db_path.stem}_write_test"
        probe.write_bytes(b"test")
        probe.unlink()
    except OSError as exc:
        raise ConfigurationError(
            f"Unable to write SQLite files in '{directory}': {exc}. "
            "Update TRACKFORGE_DATABASE__URL or adjust directory permissions."
        ) from exc
    logger.debug("Verified SQLite directory is writable: %s", directory)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan manager."""
    settings: Settings = getattr(app.state, "settings", None) or get_settings()
    app.state.settings = settings

    configure_logging(
        log_level=settings.log_level,
        json_format=settings.observability.log_json_format,
        app_name=settings.app_name,
    )
    logger.info("Starting application: %s", settings.app_name)

    db: Database | None = None
    job_queue: JobQueue | None = None
    sweeper: StaleJobSweeper | None = None
    sweeper_task: asyncio.Task[None] | None = None
    downloader: MediaDownloader | None = None
    providers = {}
    try:
        settings.ensure_directories()
        _validate_sqlite_path(settings)

        db = Database(settings)
        app.state.db = db
        if settings.database.auto_create_tables:
            await db.create_tables()
        logger.info("Database initialized (%s)", db.dialect_name)

        providers = build_providers(settings)
        app.state.providers = providers
        for service, provider_settings in (
            ("suno", settings.suno),
            ("mureka", settings.mureka),
        ):
            if not provider_settings.is_configured:
                logger.warning("%s API key not configured, submissions will fail", service)

        blob_store = LocalBlobStore(settings.storage.root_path, settings.storage.public_base_url)
        downloader = MediaDownloader(settings.ingestion.download_timeout_seconds)
        lock = DatabaseOperationLock(db.session_scope)
        rate_limiter = DatabaseRateLimiter(
            db.session_scope, RateLimitPolicy.from_settings(settings)
        )
        catalog = SqlCatalogStore(db.session_scope)
        app.state.identity_provider = SignedTokenIdentityProvider(settings.auth.token_secret)

        job_queue = JobQueue(max_concurrent_jobs=settings.queue.num_workers)
        app.state.job_queue = job_queue

        ingestion_service = IngestionService(
            db.session_scope, lock, blob_store, downloader, catalog, settings.ingestion
        )
        reconciler = VariantReconciler(
            db.session_scope, catalog, job_queue, max_retries=settings.queue.max_retries
        )
        generation_service = GenerationService(
            db.session_scope,
            providers,
            rate_limiter,
            job_queue,
            StatusPoller(settings.polling),
            ingestion_service,
            reconciler,
            max_retries=settings.queue.max_retries,
        )
        app.state.ingestion_service = ingestion_service
        app.state.variant_reconciler = reconciler
        app.state.generation_service = generation_service

        GenerationWorker(job_queue, generation_service, ingestion_service).register()
        await job_queue.start(num_workers=settings.queue.num_workers)

        sweeper = StaleJobSweeper(db.session_scope, providers, generation_service, lock, settings)
        app.state.stale_job_sweeper = sweeper
        if settings.sweeper.enabled:
            sweeper_task = asyncio.create_task(sweeper.start(), name="stale-job-sweeper")
            logger.info(
                "Stale job sweeper started (every %ss)", settings.sweeper.interval_seconds
            )

        yield

    except Exception as e:
        logger.exception("Error during application startup: %s", e)
        raise
    finally:
        logger.info("Shutting down application")

        if sweeper is not None:
            sweeper.stop()
        if sweeper_task is not None:
            sweeper_task.cancel()
            with suppress(asyncio.CancelledError):
                await sweeper_task

        if job_queue is not None:
            try:
                await job_queue.stop()
            except Exception as e:
                logger.exception("Error stopping job queue: %s", e)

        for provider in providers.values():
            try:
                await provider.close()
            except Exception as e:
                logger.exception("Error closing %s client: %s", provider.service.value, e)

        if downloader is not None:
            try:
                await downloader.close()
            except Exception as e:
                logger.exception("Error closing media downloader: %s", e)

        if db is not None:
            try:
                await db.close()
                logger.info("Database connection closed")
            except Exception as e:
                logger.exception("Error closing database: %s", e)
