"""Unit tests for configuration management."""

from pathlib import Path

import pytest
import yaml

from src.inventory_io.config import (
    ExportConfig,
    ImporterConfig,
    ImportPolicyConfig,
    LoggingConfig,
    StorageConfig,
    load_config,
)
from src.inventory_io.models.options import MergeStrategy


class TestImportPolicyConfig:
    """Test ImportPolicyConfig dataclass."""

    def test_default_values(self):
        policy = ImportPolicyConfig()

        assert policy.background_threshold == 1000
        assert policy.progress_interval == 100
        assert policy.create_missing is False
        assert policy.default_merge_strategy == MergeStrategy.SKIP

    def test_merge_strategy_from_string(self):
        policy = ImportPolicyConfig(default_merge_strategy="update")
        assert policy.default_merge_strategy == MergeStrategy.UPDATE

    def test_invalid_merge_strategy(self):
        with pytest.raises(ValueError):
            ImportPolicyConfig(default_merge_strategy="merge-ish")

    @pytest.mark.parametrize("field", ["background_threshold", "progress_interval"])
    def test_thresholds_must_be_positive(self, field):
        with pytest.raises(ValueError, match=field):
            ImportPolicyConfig(**{field: 0})


class TestSectionDefaults:
    def test_storage(self):
        storage = StorageConfig()
        assert storage.database_path == ".inventory/inventory.db"
        assert storage.timeout_seconds == 5.0

    def test_export(self):
        export = ExportConfig()
        assert export.page_size == 500
        assert export.allow_formulas is False

    def test_logging(self):
        logging_config = LoggingConfig()
        assert logging_config.level == "INFO"
        assert logging_config.format == "json"
        assert logging_config.file is None


class TestImporterConfigFile:
    """Test YAML loading and saving."""

    def test_from_file(self, tmp_path: Path):
        config_file = tmp_path / "config.yaml"
        config_file.write_text(
            yaml.dump(
                {
                    "policy": {"background_threshold": 50, "create_missing": True},
                    "storage": {"database_path": str(tmp_path / "inv.db")},
                    "export": {"page_size": 10},
                    "logging": {"level": "DEBUG", "file": str(tmp_path / "logs" / "app.log")},
                }
            )
        )

        config = ImporterConfig.from_file(config_file)

        assert config.policy.background_threshold == 50
        assert config.policy.create_missing is True
        assert config.storage.database_path == str(tmp_path / "inv.db")
        assert config.export.page_size == 10
        assert config.logging.level == "DEBUG"
        assert config.logging.file == tmp_path / "logs" / "app.log"

    def test_empty_file_gives_defaults(self, tmp_path: Path):
        config_file = tmp_path / "empty.yaml"
        config_file.write_text("")

        config = ImporterConfig.from_file(config_file)

        assert config.policy.background_threshold == 1000

    def test_invalid_yaml(self, tmp_path: Path):
        config_file = tmp_path / "bad.yaml"
        config_file.write_text("policy: [unclosed")

        with pytest.raises(ValueError, match="Invalid YAML"):
            ImporterConfig.from_file(config_file)

    def test_non_mapping(self, tmp_path: Path):
        config_file = tmp_path / "list.yaml"
        config_file.write_text("- a\n- b\n")

        with pytest.raises(ValueError, match="expected dictionary"):
            ImporterConfig.from_file(config_file)

    def test_unknown_key(self, tmp_path: Path):
        config_file = tmp_path / "unknown.yaml"
        config_file.write_text(yaml.dump({"storage": {"dsn": "postgres://"}}))

        with pytest.raises(ValueError, match="Unknown setting"):
            ImporterConfig.from_file(config_file)

    def test_round_trip(self, tmp_path: Path):
        config = ImporterConfig()
        config.policy.default_merge_strategy = MergeStrategy.REPLACE
        config.export.allow_formulas = True
        config_file = tmp_path / "nested" / "config.yaml"

        config.to_file(config_file)
        loaded = ImporterConfig.from_file(config_file)

        assert loaded.policy.default_merge_strategy == MergeStrategy.REPLACE
        assert loaded.export.allow_formulas is True
        assert yaml.safe_load(config_file.read_text())["policy"]["default_merge_strategy"] == (
            "replace"
        )


class TestFromEnv:
    def test_defaults(self, monkeypatch):
        for name in (
            "INVENTORY_DB_PATH",
            "INVENTORY_STORAGE_TIMEOUT",
            "INVENTORY_BACKGROUND_THRESHOLD",
            "LOG_LEVEL",
            "LOG_FORMAT",
        ):
            monkeypatch.delenv(name, raising=False)

        config = ImporterConfig.from_env()

        assert config.storage.database_path == ".inventory/inventory.db"
        assert config.policy.background_threshold == 1000
        assert config.logging.format == "json"

    def test_overrides(self, monkeypatch):
        monkeypatch.setenv("INVENTORY_DB_PATH", "/tmp/x.db")
        monkeypatch.setenv("INVENTORY_STORAGE_TIMEOUT", "1.5")
        monkeypatch.setenv("INVENTORY_BACKGROUND_THRESHOLD", "10")
        monkeypatch.setenv("LOG_LEVEL", "WARNING")

        config = ImporterConfig.from_env()

        assert config.storage.database_path == "/tmp/x.db"
        assert config.storage.timeout_seconds == 1.5
        assert config.policy.background_threshold == 10
        assert config.logging.level == "WARNING"

    def test_bad_number(self, monkeypatch):
        monkeypatch.setenv("INVENTORY_BACKGROUND_THRESHOLD", "lots")

        with pytest.raises(ValueError, match="Invalid inventory environment setting"):
            ImporterConfig.from_env()


class TestLoadConfig:
    def test_missing_file(self, tmp_path: Path):
        with pytest.raises(FileNotFoundError):
            load_config(tmp_path / "nope.yaml")

    def test_file_wins(self, tmp_path: Path):
        config_file = tmp_path / "config.yaml"
        config_file.write_text(yaml.dump({"export": {"page_size": 7}}))

        assert load_config(config_file).export.page_size == 7

    def test_env_without_file(self, monkeypatch):
        monkeypatch.setenv("INVENTORY_BACKGROUND_THRESHOLD", "42")
        assert load_config(None).policy.background_threshold == 42
