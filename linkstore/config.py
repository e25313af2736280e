"""
Configuration management for LinkStore.

All configuration is done via environment variables prefixed with
LINKSTORE_. This module provides typed configuration classes with
validation; the HTTP surface layers its own pydantic settings on top
(see linkstore.api.settings).

Invariants:
    - All settings have sensible defaults for local development
    - Configuration objects are immutable once loaded

How to change safely:
    - Add new settings with defaults that maintain backward compatibility
    - Document new variables in the class docstring
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class StorageConfig:
    """Local storage configuration.

    Attributes:
        data_dir: Directory holding the database and the sidecar file
        database_name: Database name; the SQLite file is `<name>.db`
        sidecar_file: Sidecar file name; empty keeps settings in memory
        wal_mode: SQLite WAL mode enabled
        busy_timeout_ms: SQLite busy timeout in milliseconds
        cache_size_pages: SQLite cache size in pages (negative = KB)
    """

    data_dir: str = "./.linkstore"
    database_name: str = "PersistentRandomData"
    sidecar_file: str = "persistence.json"
    wal_mode: bool = True
    busy_timeout_ms: int = 5000
    cache_size_pages: int = -16000  # 16MB

    @property
    def sidecar_path(self) -> Path:
        return Path(self.data_dir) / self.sidecar_file

    @classmethod
    def from_env(cls) -> StorageConfig:
        """Load configuration from environment variables."""
        return cls(
            data_dir=os.getenv("LINKSTORE_DATA_DIR", "./.linkstore"),
            database_name=os.getenv("LINKSTORE_DATABASE_NAME", "PersistentRandomData"),
            sidecar_file=os.getenv("LINKSTORE_SIDECAR_FILE", "persistence.json"),
            wal_mode=os.getenv("LINKSTORE_SQLITE_WAL_MODE", "true").lower() == "true",
            busy_timeout_ms=int(os.getenv("LINKSTORE_SQLITE_BUSY_TIMEOUT_MS", "5000")),
            cache_size_pages=int(os.getenv("LINKSTORE_SQLITE_CACHE_SIZE", "-16000")),
        )


@dataclass(frozen=True)
class EngineConfig:
    """Behaviour of the persistence engine.

    Attributes:
        index_sample_size: Entities per collection sampled for index keys
        default_page_size: Page size used when a caller omits one
        debug: Log every write/read/delete journey at DEBUG level
    """

    index_sample_size: int = 20
    default_page_size: int = 20
    debug: bool = False

    @classmethod
    def from_env(cls) -> EngineConfig:
        """Load configuration from environment variables."""
        return cls(
            index_sample_size=int(os.getenv("LINKSTORE_INDEX_SAMPLE_SIZE", "20")),
            default_page_size=int(os.getenv("LINKSTORE_DEFAULT_PAGE_SIZE", "20")),
            debug=os.getenv("LINKSTORE_DEBUG", "false").lower() == "true",
        )


@dataclass(frozen=True)
class ObservabilityConfig:
    """Logging configuration.

    Attributes:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR)
        log_format: Log format (json, text)
    """

    log_level: str = "INFO"
    log_format: str = "text"

    @classmethod
    def from_env(cls) -> ObservabilityConfig:
        """Load configuration from environment variables."""
        return cls(
            log_level=os.getenv("LINKSTORE_LOG_LEVEL", "INFO"),
            log_format=os.getenv("LINKSTORE_LOG_FORMAT", "text"),
        )


@dataclass
class LinkStoreConfig:
    """Complete configuration.

    Attributes:
        storage: Local storage configuration
        engine: Engine behaviour
        observability: Logging configuration
    """

    storage: StorageConfig = field(default_factory=StorageConfig)
    engine: EngineConfig = field(default_factory=EngineConfig)
    observability: ObservabilityConfig = field(default_factory=ObservabilityConfig)

    @classmethod
    def from_env(cls) -> LinkStoreConfig:
        """Load complete configuration from environment variables.

        Raises:
            ValueError: If configuration is invalid.
        """
        config = cls(
            storage=StorageConfig.from_env(),
            engine=EngineConfig.from_env(),
            observability=ObservabilityConfig.from_env(),
        )
        config.validate()
        return config

    def validate(self) -> None:
        """Validate configuration consistency.

        Raises:
            ValueError: If configuration is invalid.
        """
        if not self.storage.database_name:
            raise ValueError("LINKSTORE_DATABASE_NAME must not be empty")
        if self.engine.index_sample_size < 1:
            raise ValueError("LINKSTORE_INDEX_SAMPLE_SIZE must be at least 1")
        if self.engine.default_page_size < 1:
            raise ValueError("LINKSTORE_DEFAULT_PAGE_SIZE must be at least 1")
        if self.observability.log_format not in ("json", "text"):
            raise ValueError(
                f"Invalid LINKSTORE_LOG_FORMAT '{self.observability.log_format}'. "
                "Must be one of: json, text"
            )

        if not os.path.exists(self.storage.data_dir):
            logger.warning(
                f"Data directory does not exist: {self.storage.data_dir}. "
                "It will be created on first open."
            )

    def log_config(self) -> None:
        """Log the effective configuration."""
        logger.info(
            "LinkStore configuration loaded",
            extra={
                "data_dir": self.storage.data_dir,
                "database_name": self.storage.database_name,
                "sidecar_file": self.storage.sidecar_file or None,
                "index_sample_size": self.engine.index_sample_size,
                "log_level": self.observability.log_level,
            },
        )
