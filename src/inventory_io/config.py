"""Configuration management for the inventory import/export pipeline."""

import os
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path

import yaml

from .constants import (
    BACKGROUND_ROW_THRESHOLD,
    DEFAULT_EXPORT_PAGE_SIZE,
    DEFAULT_STORAGE_TIMEOUT,
    PROGRESS_INTERVAL,
)
from .models.options import MergeStrategy


@dataclass
class ImportPolicyConfig:
    """
    Policy configuration for import jobs.

    Per-job ``ImportOptions`` fall back to these defaults when the caller
    does not set them.
    """

    # Dispatch
    background_threshold: int = BACKGROUND_ROW_THRESHOLD  # Rows at which jobs go background
    progress_interval: int = PROGRESS_INTERVAL  # Rows between progress notifications

    # Defaults for ImportOptions
    create_missing: bool = False
    default_merge_strategy: MergeStrategy = MergeStrategy.SKIP

    def __post_init__(self) -> None:
        if self.background_threshold < 1:
            raise ValueError("background_threshold must be at least 1")
        if self.progress_interval < 1:
            raise ValueError("progress_interval must be at least 1")
        self.default_merge_strategy = MergeStrategy(self.default_merge_strategy)


@dataclass
class StorageConfig:
    """SQLite storage configuration."""

    database_path: str = ".inventory/inventory.db"
    timeout_seconds: float = DEFAULT_STORAGE_TIMEOUT  # Busy timeout for locked databases


@dataclass
class ExportConfig:
    """Export configuration."""

    page_size: int = DEFAULT_EXPORT_PAGE_SIZE
    allow_formulas: bool = False  # Write =, +, -, @ prefixed cells verbatim


@dataclass
class LoggingConfig:
    """Logging configuration."""

    level: str = "INFO"
    format: str = "json"
    file: Path | None = None


@dataclass
class ImporterConfig:
    """
    Complete configuration for the inventory import/export pipeline.

    This combines all configuration sections.
    """

    policy: ImportPolicyConfig = field(default_factory=ImportPolicyConfig)
    storage: StorageConfig = field(default_factory=StorageConfig)
    export: ExportConfig = field(default_factory=ExportConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)

    @classmethod
    def from_file(cls, config_path: Path) -> "ImporterConfig":
        """
        Load configuration from YAML file.

        Args:
            config_path: Path to YAML config file

        Returns:
            ImporterConfig instance
        """
        try:
            with open(config_path) as f:
                data = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise ValueError(f"Invalid YAML in configuration file {config_path}: {e}") from e

        if data is None:
            data = {}
        if not isinstance(data, dict):
            raise ValueError(
                f"Invalid configuration file structure in {config_path}: "
                f"expected dictionary, got {type(data).__name__}"
            )

        try:
            policy = ImportPolicyConfig(**data.get("policy", {}))
            storage = StorageConfig(**data.get("storage", {}))
            export = ExportConfig(**data.get("export", {}))

            logging_data = dict(data.get("logging", {}))
            if logging_data.get("file"):
                logging_data["file"] = Path(logging_data["file"])
            logging = LoggingConfig(**logging_data)
        except TypeError as e:
            raise ValueError(f"Unknown setting in configuration file {config_path}: {e}") from e

        return cls(policy=policy, storage=storage, export=export, logging=logging)

    def to_file(self, config_path: Path) -> None:
        """
        Save configuration to YAML file.

        Args:
            config_path: Path to save config file
        """
        data = {
            "policy": {
                k: v.value if isinstance(v, Enum) else v for k, v in self.policy.__dict__.items()
            },
            "storage": self.storage.__dict__,
            "export": self.export.__dict__,
            "logging": {
                k: str(v) if isinstance(v, Path) else v
                for k, v in self.logging.__dict__.items()
                if v is not None
            },
        }

        config_path.parent.mkdir(parents=True, exist_ok=True)

        with open(config_path, "w") as f:
            yaml.dump(data, f, default_flow_style=False, sort_keys=False)

    @classmethod
    def from_env(cls) -> "ImporterConfig":
        """
        Create configuration from environment variables.

        Environment variables:
            INVENTORY_DB_PATH: SQLite database file (default: .inventory/inventory.db)
            INVENTORY_STORAGE_TIMEOUT: Busy timeout in seconds (default: 5)
            INVENTORY_BACKGROUND_THRESHOLD: Rows at which imports run in the background
            LOG_LEVEL: Logging level (default: INFO)
            LOG_FORMAT: json or console (default: json)

        Returns:
            ImporterConfig instance

        Raises:
            ValueError: If a numeric variable cannot be parsed
        """
        try:
            storage = StorageConfig(
                database_path=os.environ.get("INVENTORY_DB_PATH", StorageConfig.database_path),
                timeout_seconds=float(
                    os.environ.get("INVENTORY_STORAGE_TIMEOUT", DEFAULT_STORAGE_TIMEOUT)
                ),
            )
            policy = ImportPolicyConfig(
                background_threshold=int(
                    os.environ.get("INVENTORY_BACKGROUND_THRESHOLD", BACKGROUND_ROW_THRESHOLD)
                ),
            )
        except ValueError as e:
            raise ValueError(f"Invalid inventory environment setting: {e}") from e

        logging_config = LoggingConfig(
            level=os.environ.get("LOG_LEVEL", "INFO"),
            format=os.environ.get("LOG_FORMAT", "json"),
        )

        return cls(
            policy=policy,
            storage=storage,
            export=ExportConfig(),
            logging=logging_config,
        )


def load_config(config_file: Path | None = None) -> ImporterConfig:
    """
    Load configuration from file or environment variables.

    Args:
        config_file: Optional path to YAML config file

    Returns:
        ImporterConfig instance

    Raises:
        FileNotFoundError: If config_file is specified but doesn't exist
    """
    if config_file:
        if not config_file.exists():
            raise FileNotFoundError(f"Configuration file not found: {config_file}")
        return ImporterConfig.from_file(config_file)
    return ImporterConfig.from_env()
