"""
Configuration management for the ledger server.

All configuration is done via environment variables.
This module provides typed configuration classes with validation.

Invariants:
    - All settings have sensible defaults for local development
    - The core only ever receives a ready-to-use store built from StorageConfig

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


def _env_bool(name: str, default: str) -> bool:
    return os.getenv(name, default).lower() == "true"


class DatabaseType(Enum):
    """Supported storage backends."""

    SQLITE = "sqlite3"
    MEMORY = "memorydb"


@dataclass(frozen=True)
class GrpcConfig:
    """gRPC server configuration.

    Attributes:
        bind_address: Address to bind gRPC server (host:port)
        max_workers: Maximum number of concurrent RPCs
        max_message_size: Maximum message size in bytes
    """

    bind_address: str = "0.0.0.0:50051"
    max_workers: int = 10
    max_message_size: int = 4 * 1024 * 1024  # 4MB

    @classmethod
    def from_env(cls) -> GrpcConfig:
        """Load configuration from environment variables."""
        return cls(
            bind_address=os.getenv("GRPC_BIND", "0.0.0.0:50051"),
            max_workers=int(os.getenv("GRPC_MAX_WORKERS", "10")),
            max_message_size=int(os.getenv("GRPC_MAX_MESSAGE_SIZE", str(4 * 1024 * 1024))),
        )


@dataclass(frozen=True)
class HttpConfig:
    """HTTP mirror configuration.

    Attributes:
        enabled: Whether to serve the HTTP/JSON API
        host: Host to bind to
        port: Port to listen on
        cors_origins: Allowed CORS origins
    """

    enabled: bool = False
    host: str = "0.0.0.0"
    port: int = 8081
    cors_origins: tuple[str, ...] = ("*",)

    @classmethod
    def from_env(cls) -> HttpConfig:
        """Load configuration from environment variables."""
        origins = os.getenv("HTTP_CORS_ORIGINS", "*")
        return cls(
            enabled=_env_bool("HTTP_ENABLED", "false"),
            host=os.getenv("HTTP_HOST", "0.0.0.0"),
            port=int(os.getenv("HTTP_PORT", "8081")),
            cors_origins=tuple(o.strip() for o in origins.split(",") if o.strip()),
        )


@dataclass(frozen=True)
class StorageConfig:
    """Storage configuration.

    Attributes:
        data_dir: Directory holding the ledger database
        database_type: File-backed SQLite or shared in-memory SQLite
        database_name: Database file name inside data_dir
        clear_on_start: Remove the data directory before opening the store
        wal_mode: SQLite WAL mode enabled
        busy_timeout_ms: SQLite busy timeout in milliseconds
    """

    data_dir: str = "./ledgerdata"
    database_type: DatabaseType = DatabaseType.SQLITE
    database_name: str = "ledger.db"
    clear_on_start: bool = False
    wal_mode: bool = True
    busy_timeout_ms: int = 5000

    @classmethod
    def from_env(cls) -> StorageConfig:
        """Load configuration from environment variables.

        Raises:
            ValueError: If DATABASE_TYPE is not a known backend
        """
        backend = os.getenv("DATABASE_TYPE", "sqlite3").lower()
        try:
            database_type = DatabaseType(backend)
        except ValueError:
            raise ValueError(
                f"Invalid DATABASE_TYPE '{backend}'. Must be one of: sqlite3, memorydb"
            )

        return cls(
            data_dir=os.getenv("DATA_DIR", "./ledgerdata"),
            database_type=database_type,
            database_name=os.getenv("DATABASE_NAME", "ledger.db"),
            clear_on_start=_env_bool("CLEAR_DB", "false"),
            wal_mode=_env_bool("SQLITE_WAL_MODE", "true"),
            busy_timeout_ms=int(os.getenv("SQLITE_BUSY_TIMEOUT_MS", "5000")),
        )


@dataclass(frozen=True)
class LedgerConfig:
    """Commit pipeline behaviour.

    Attributes:
        default_poster: Username recorded when a transaction names no poster
        default_decimals: Decimals for currencies created without a precision
        default_tag: Tag ensured on every account referenced by a commit
        enforce_balance: Reject transactions that don't balance per currency
        strict_delete: Deleting an unknown transaction is an error
    """

    default_poster: str = "MainUser"
    default_decimals: int = 2
    default_tag: str = "main"
    enforce_balance: bool = True
    strict_delete: bool = True

    @classmethod
    def from_env(cls) -> LedgerConfig:
        """Load configuration from environment variables."""
        return cls(
            default_poster=os.getenv("LEDGER_DEFAULT_POSTER", "MainUser"),
            default_decimals=int(os.getenv("LEDGER_DEFAULT_DECIMALS", "2")),
            default_tag=os.getenv("LEDGER_DEFAULT_TAG", "main"),
            enforce_balance=_env_bool("LEDGER_ENFORCE_BALANCE", "true"),
            strict_delete=_env_bool("LEDGER_STRICT_DELETE", "true"),
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

    Attributes:
        grpc: gRPC server configuration
        http: HTTP mirror configuration
        storage: Storage configuration
        ledger: Commit pipeline configuration
        observability: Logging configuration
    """

    grpc: GrpcConfig = field(default_factory=GrpcConfig)
    http: HttpConfig = field(default_factory=HttpConfig)
    storage: StorageConfig = field(default_factory=StorageConfig)
    ledger: LedgerConfig = field(default_factory=LedgerConfig)
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
            grpc=GrpcConfig.from_env(),
            http=HttpConfig.from_env(),
            storage=StorageConfig.from_env(),
            ledger=LedgerConfig.from_env(),
            observability=ObservabilityConfig.from_env(),
        )

        config.validate()
        return config

    def validate(self) -> None:
        """Validate configuration consistency.

        Raises:
            ValueError: If configuration is invalid.
        """
        if ":" not in self.grpc.bind_address:
            raise ValueError(f"GRPC_BIND must be host:port, got '{self.grpc.bind_address}'")

        if self.storage.database_type == DatabaseType.SQLITE and not self.storage.data_dir:
            raise ValueError("DATA_DIR is required when DATABASE_TYPE=sqlite3")

        if self.ledger.default_decimals < 0:
            raise ValueError("LEDGER_DEFAULT_DECIMALS must not be negative")

        if not self.ledger.default_poster:
            raise ValueError("LEDGER_DEFAULT_POSTER must not be empty")

        if self.observability.log_format not in ("json", "text"):
            raise ValueError(
                f"Invalid LOG_FORMAT '{self.observability.log_format}'. Must be one of: json, text"
            )

        if (
            self.storage.database_type == DatabaseType.SQLITE
            and not os.path.exists(self.storage.data_dir)
        ):
            logger.warning(
                f"Data directory does not exist: {self.storage.data_dir}. "
                "It will be created on startup."
            )

    def log_config(self) -> None:
        """Log configuration summary."""
        logger.info(
            "Server configuration loaded",
            extra={
                "grpc_bind": self.grpc.bind_address,
                "http_enabled": self.http.enabled,
                "http_port": self.http.port if self.http.enabled else None,
                "database_type": self.storage.database_type.value,
                "data_dir": self.storage.data_dir,
                "clear_on_start": self.storage.clear_on_start,
                "enforce_balance": self.ledger.enforce_balance,
                "strict_delete": self.ledger.strict_delete,
                "log_level": self.observability.log_level,
            },
        )
