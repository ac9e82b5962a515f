"""Infrastructure persistence layer."""

from .catalog_store import SqlCatalogStore
from .database import Database
from .models import (
    ArtistModel,
    Base,
    GenerationJobModel,
    OperationLockModel,
    ProjectModel,
    RateLimitCounterModel,
    TrackModel,
)
from .operation_lock import DatabaseOperationLock
from .repositories import CatalogRepository, GenerationJobRepository
from .retry import is_lock_error, with_db_retry

__all__ = [
    "ArtistModel",
    "Base",
    "CatalogRepository",
    "Database",
    "DatabaseOperationLock",
    "GenerationJobModel",
    "GenerationJobRepository",
    "OperationLockModel",
    "ProjectModel",
    "RateLimitCounterModel",
    "SqlCatalogStore",
    "TrackModel",
    "is_lock_error",
    "with_db_retry",
]
