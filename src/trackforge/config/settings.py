"""Application settings loaded from environment variables and .env files.

Every group is a nested model so env vars look like
``TRACKFORGE_DATABASE__URL`` or ``TRACKFORGE_SUNO__API_KEY``.
"""

from functools import lru_cache
from pathlib import Path

from pydantic import BaseModel, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class DatabaseSettings(BaseModel):
    """Database connection settings."""

    url: str = "sqlite+aiosqlite:///./trackforge.db"
    echo: bool = False
    pool_size: int = 5
    max_overflow: int = 10
    pool_timeout: int = 30
    pool_recycle: int = 3600
    pool_pre_ping: bool = True
    # Migrations own the schema in production; tests and dev setups create tables directly.
    auto_create_tables: bool = True


class ProviderSettings(BaseModel):
    """Settings shared by every generation provider."""

    api_key: str = ""
    base_url: str
    timeout_seconds: float = Field(default=30.0, gt=0)
    default_model: str
    # Fixed window admission per (caller, service)
    rate_limit_requests: int = Field(gt=0)
    rate_limit_window_seconds: int = Field(default=600, gt=0)
    # A processing job younger than this is never touched by the sweeper
    stale_after_seconds: int = 300
    # Providers without a cheap status check are failed after this long
    hard_timeout_seconds: int = 3600

    @property
    def is_configured(self) -> bool:
        """Whether an API key is present."""
        return bool(self.api_key.strip())


class SunoSettings(ProviderSettings):
    """Suno (sunoapi.org) settings."""

    base_url: str = "https://api.sunoapi.org"
    default_model: str = "V3_5"
    rate_limit_requests: int = 5
    callback_url: str = "https://localhost/api/callbacks/suno"


class MurekaSettings(ProviderSettings):
    """Mureka settings."""

    base_url: str = "https://api.mureka.ai/v1"
    default_model: str = "auto"
    rate_limit_requests: int = 10


class PollingSettings(BaseModel):
    """Status poller bounds."""

    max_attempts: int = Field(default=100, gt=0)
    max_total_wait_seconds: float = Field(default=300.0, gt=0)
    queued_delay_seconds: float = 3.0
    running_delay_seconds: float = 5.0


class IngestionSettings(BaseModel):
    """Ingestion pipeline settings."""

    lock_ttl_seconds: int = 120
    download_timeout_seconds: float = 60.0
    # How long a call that lost the lock waits for the winner's result
    contention_wait_seconds: float = 10.0
    contention_poll_interval_seconds: float = 0.5
    default_extension: str = "mp3"


class StorageSettings(BaseModel):
    """Blob storage settings."""

    root_path: Path = Path("./media")
    public_base_url: str = "/media"


class SweeperSettings(BaseModel):
    """Stale job sweeper settings."""

    enabled: bool = True
    interval_seconds: int = 120
    batch_size: int = 50
    # Sweep lock lifetime; unset means batch_size x the ingestion download timeout
    lock_ttl_seconds: int | None = Field(default=None, gt=0)


class QueueSettings(BaseModel):
    """Background job queue settings."""

    num_workers: int = Field(default=2, gt=0)
    max_retries: int = 3


class AuthSettings(BaseModel):
    """Bearer token verification settings."""

    token_secret: str = "change-me"


class ObservabilitySettings(BaseModel):
    """Logging settings."""

    log_json_format: bool = False


class ApiSettings(BaseModel):
    """HTTP server settings."""

    host: str = "0.0.0.0"
    port: int = 8000


class Settings(BaseSettings):
    """Root settings object."""

    model_config = SettingsConfigDict(
        env_prefix="TRACKFORGE_",
        env_nested_delimiter="__",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    app_name: str = "trackforge"
    log_level: str = "INFO"

    database: DatabaseSettings = Field(default_factory=DatabaseSettings)
    suno: SunoSettings = Field(default_factory=SunoSettings)
    mureka: MurekaSettings = Field(default_factory=MurekaSettings)
    polling: PollingSettings = Field(default_factory=PollingSettings)
    ingestion: IngestionSettings = Field(default_factory=IngestionSettings)
    storage: StorageSettings = Field(default_factory=StorageSettings)
    sweeper: SweeperSettings = Field(default_factory=SweeperSettings)
    queue: QueueSettings = Field(default_factory=QueueSettings)
    auth: AuthSettings = Field(default_factory=AuthSettings)
    observability: ObservabilitySettings = Field(default_factory=ObservabilitySettings)
    api: ApiSettings = Field(default_factory=ApiSettings)

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, value: str) -> str:
        """Normalize and validate the log level name."""
        level = value.upper()
        if level not in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}:
            raise ValueError(f"Invalid log level: {value}")
        return level

    def provider(self, service: str) -> ProviderSettings:
        """Return the provider settings group for a service name."""
        if service == "suno":
            return self.suno
        if service == "mureka":
            return self.mureka
        raise KeyError(service)

    def get_sqlite_db_path(self) -> Path | None:
        """Return the SQLite file path, or None for other databases."""
        url = self.database.url
        if not url.startswith("sqlite"):
            return None
        _, _, path = url.partition(":///")
        if not path or path == ":memory:":
            return None
        return Path(path)

    def ensure_directories(self) -> None:
        """Create the storage root if it does not exist."""
        self.storage.root_path.mkdir(parents=True, exist_ok=True)


@lru_cache
def get_settings() -> Settings:
    """Return the process-wide settings instance."""
    return Settings()
