"""
Configuration management for SafeBack Server.

All configuration is done via environment variables - no config files inside containers.
This module provides typed configuration classes with validation.

Invariants:
    - All settings have sensible defaults for local development
    - Production deployments MUST set MAINTENANCE_KEY for the scheduler trigger
    - Secrets are never logged or exposed in error messages

How to change safely:
    - Add new settings with defaults that maintain backward compatibility
    - Deprecate settings by logging warnings but continuing to support them
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from enum import Enum

logger = logging.getLogger(__name__)


class BlobBackend(Enum):
    """Supported snapshot blob storage backends."""

    LOCAL = "local"
    S3 = "s3"


@dataclass(frozen=True)
class StorageConfig:
    """Local SQLite storage configuration.

    Attributes:
        data_dir: Directory for the control database and workspace databases
        workspace_db_pattern: Pattern for workspace database files
        wal_mode: SQLite WAL mode enabled
        busy_timeout_ms: SQLite busy timeout in milliseconds
    """

    data_dir: str = "/var/lib/safeback"
    workspace_db_pattern: str = "workspace_{workspace_id}.db"
    wal_mode: bool = True
    busy_timeout_ms: int = 5000

    @classmethod
    def from_env(cls) -> StorageConfig:
        """Load configuration from environment variables."""
        return cls(
            data_dir=os.getenv("DATA_DIR", "/var/lib/safeback"),
            workspace_db_pattern=os.getenv("WORKSPACE_DB_PATTERN", "workspace_{workspace_id}.db"),
            wal_mode=os.getenv("SQLITE_WAL_MODE", "true").lower() == "true",
            busy_timeout_ms=int(os.getenv("SQLITE_BUSY_TIMEOUT_MS", "5000")),
        )


@dataclass(frozen=True)
class BlobConfig:
    """Snapshot blob storage configuration.

    Attributes:
        backend: Where externalized snapshots are written
        local_dir: Root directory for the local backend
        compression: Compression applied to blobs (gzip, none)
    """

    backend: BlobBackend = BlobBackend.LOCAL
    local_dir: str = "/var/lib/safeback/blobs"
    compression: str = "none"

    @classmethod
    def from_env(cls) -> BlobConfig:
        """Load configuration from environment variables."""
        backend_str = os.getenv("BLOB_BACKEND", "local").lower()
        try:
            backend = BlobBackend(backend_str)
        except ValueError:
            raise ValueError(f"Invalid BLOB_BACKEND '{backend_str}'. Must be one of: local, s3")

        return cls(
            backend=backend,
            local_dir=os.getenv(
                "BLOB_DIR", os.path.join(os.getenv("DATA_DIR", "/var/lib/safeback"), "blobs")
            ),
            compression=os.getenv("SNAPSHOT_COMPRESSION", "none").lower(),
        )


@dataclass(frozen=True)
class S3Config:
    """S3 configuration for externalized snapshots.

    Attributes:
        bucket: S3 bucket name
        region: AWS region
        endpoint_url: Custom endpoint URL (for MinIO)
        snapshot_prefix: Key prefix for snapshot blobs
        access_key_id: AWS access key ID (optional, uses AWS credential chain)
        secret_access_key: AWS secret access key (optional)
    """

    bucket: str = "workspace-backups"
    region: str = "us-east-1"
    endpoint_url: str | None = None
    snapshot_prefix: str = "snapshots"
    access_key_id: str | None = None
    secret_access_key: str | None = None

    @classmethod
    def from_env(cls) -> S3Config:
        """Load configuration from environment variables."""
        return cls(
            bucket=os.getenv("S3_BUCKET", "workspace-backups"),
            region=os.getenv("S3_REGION", os.getenv("AWS_REGION", "us-east-1")),
            endpoint_url=os.getenv("S3_ENDPOINT"),
            snapshot_prefix=os.getenv("S3_SNAPSHOT_PREFIX", "snapshots"),
            access_key_id=os.getenv("AWS_ACCESS_KEY_ID"),
            secret_access_key=os.getenv("AWS_SECRET_ACCESS_KEY"),
        )


@dataclass(frozen=True)
class RestoreConfig:
    """Preview/restore protocol configuration.

    Attributes:
        token_ttl_seconds: Lifetime of a restore confirmation token
    """

    token_ttl_seconds: int = 600

    @classmethod
    def from_env(cls) -> RestoreConfig:
        """Load configuration from environment variables."""
        return cls(
            token_ttl_seconds=int(os.getenv("RESTORE_TOKEN_TTL_SECONDS", "600")),
        )


@dataclass(frozen=True)
class SchedulerConfig:
    """Built-in backup scheduler configuration.

    The scheduler is normally triggered externally through the maintenance
    endpoint. The in-process loop is for single-node deployments.

    Attributes:
        enabled: Whether the in-process scheduler loop runs
        interval_seconds: Interval between scheduler passes
        max_concurrent: Maximum workspaces captured in parallel
    """

    enabled: bool = False
    interval_seconds: int = 3600
    max_concurrent: int = 4

    @classmethod
    def from_env(cls) -> SchedulerConfig:
        """Load configuration from environment variables."""
        return cls(
            enabled=os.getenv("SCHEDULER_ENABLED", "false").lower() == "true",
            interval_seconds=int(os.getenv("SCHEDULER_INTERVAL_SECONDS", "3600")),
            max_concurrent=int(os.getenv("SCHEDULER_MAX_CONCURRENT", "4")),
        )


@dataclass(frozen=True)
class HttpConfig:
    """HTTP server configuration.

    Attributes:
        host: Host to bind
        port: Port to listen on
        cors_origins: Allowed CORS origins
        maintenance_key: Shared secret for the scheduler trigger
    """

    host: str = "0.0.0.0"
    port: int = 8081
    cors_origins: tuple[str, ...] = ("*",)
    maintenance_key: str | None = None

    @classmethod
    def from_env(cls) -> HttpConfig:
        """Load configuration from environment variables."""
        origins = os.getenv("CORS_ORIGINS", "*")
        return cls(
            host=os.getenv("HTTP_HOST", "0.0.0.0"),
            port=int(os.getenv("HTTP_PORT", "8081")),
            cors_origins=tuple(o.strip() for o in origins.split(",") if o.strip()),
            maintenance_key=os.getenv("MAINTENANCE_KEY"),
        )


@dataclass(frozen=True)
class ObservabilityConfig:
    """Logging configuration.

    Attributes:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR)
        log_format: Log format (json, text)
    """

    log_level: str = "INFO"
    log_format: str = "json"

    @classmethod
    def from_env(cls) -> ObservabilityConfig:
        """Load configuration from environment variables."""
        return cls(
            log_level=os.getenv("LOG_LEVEL", "INFO"),
            log_format=os.getenv("LOG_FORMAT", "json"),
        )


@dataclass
class ServerConfig:
    """Complete server configuration.

    This aggregates all configuration sections and provides validation.

    Attributes:
        storage: Local SQLite storage configuration
        blob: Snapshot blob configuration
        s3: S3 configuration (if blob backend is S3)
        restore: Preview/restore configuration
        scheduler: Scheduler configuration
        http: HTTP server configuration
        observability: Logging configuration
    """

    storage: StorageConfig = field(default_factory=StorageConfig)
    blob: BlobConfig = field(default_factory=BlobConfig)
    s3: S3Config = field(default_factory=S3Config)
    restore: RestoreConfig = field(default_factory=RestoreConfig)
    scheduler: SchedulerConfig = field(default_factory=SchedulerConfig)
    http: HttpConfig = field(default_factory=HttpConfig)
    observability: ObservabilityConfig = field(default_factory=ObservabilityConfig)

    @classmethod
    def from_env(cls) -> ServerConfig:
        """Load complete configuration from environment variables.

        Returns:
            ServerConfig with all sections populated from environment.

        Raises:
            ValueError: If required configuration is missing or invalid.
        """
        config = cls(
            storage=StorageConfig.from_env(),
            blob=BlobConfig.from_env(),
            s3=S3Config.from_env(),
            restore=RestoreConfig.from_env(),
            scheduler=SchedulerConfig.from_env(),
            http=HttpConfig.from_env(),
            observability=ObservabilityConfig.from_env(),
        )

        config.validate()
        return config

    def validate(self) -> None:
        """Validate configuration consistency.

        Raises:
            ValueError: If configuration is invalid.
        """
        if self.blob.compression not in ("gzip", "none"):
            raise ValueError(
                f"Invalid SNAPSHOT_COMPRESSION '{self.blob.compression}'. Must be one of: gzip, none"
            )

        if self.blob.backend == BlobBackend.S3 and not self.s3.bucket:
            raise ValueError("S3_BUCKET is required when BLOB_BACKEND=s3")

        if self.restore.token_ttl_seconds <= 0:
            raise ValueError("RESTORE_TOKEN_TTL_SECONDS must be positive")

        if self.scheduler.max_concurrent < 1:
            raise ValueError("SCHEDULER_MAX_CONCURRENT must be at least 1")

        if not self.http.maintenance_key:
            logger.warning("MAINTENANCE_KEY is not set; the scheduler trigger endpoint is disabled")

        if not os.path.exists(self.storage.data_dir):
            logger.warning(
                f"Data directory does not exist: {self.storage.data_dir}. "
                "It will be created on first write."
            )

    def log_config(self) -> None:
        """Log configuration (redacting secrets)."""
        logger.info(
            "Server configuration loaded",
            extra={
                "data_dir": self.storage.data_dir,
                "blob_backend": self.blob.backend.value,
                "blob_dir": self.blob.local_dir if self.blob.backend == BlobBackend.LOCAL else None,
                "s3_bucket": self.s3.bucket if self.blob.backend == BlobBackend.S3 else None,
                "compression": self.blob.compression,
                "token_ttl_seconds": self.restore.token_ttl_seconds,
                "scheduler_enabled": self.scheduler.enabled,
                "http_bind": f"{self.http.host}:{self.http.port}",
                "maintenance_key_set": bool(self.http.maintenance_key),
                "log_level": self.observability.log_level,
            },
        )
