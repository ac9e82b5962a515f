"""Dialect-specific INSERT constructs for single-statement upserts.

Only SQLite and PostgreSQL support ``INSERT ... ON CONFLICT DO UPDATE ...
WHERE ... RETURNING`` in the form the lock and the rate limiter rely on.
"""

from typing import Any

from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.ext.asyncio import AsyncSession

from trackforge.domain.exceptions import ConfigurationError


def dialect_insert(session: AsyncSession, model: type[Any]) -> Any:
    """Return an ``insert()`` that supports ``on_conflict_do_update``.

    Raises:
        ConfigurationError: For databases without ON CONFLICT support
    """
    dialect = session.get_bind().dialect.name
    if dialect == "sqlite":
        return sqlite.insert(model)
    if dialect == "postgresql":
        return postgresql.insert(model)
    raise ConfigurationError(f"Atomic upserts are not supported on {dialect}")
