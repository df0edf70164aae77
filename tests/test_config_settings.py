import json

import pytest
import yaml
from pydantic import ValidationError

from chatfold.config.manager import ConfigManager
from chatfold.config.settings import (
    ChatfoldSettings,
    IdentitySettings,
    LogLevel,
    ReconcileSettings,
    StorageBackendType,
    StorageSettings,
)
from chatfold.utils.exceptions import ConfigurationError


def test_default_timings():
    settings = ChatfoldSettings()
    assert settings.reconcile.scan_debounce_ms == 300
    assert settings.reconcile.render_debounce_ms == 200
    assert settings.reconcile.settle_delay_ms == 150
    assert settings.reconcile.seed_delay_ms == 1000
    assert settings.reconcile.title_sync_interval_s == 3.0
    assert settings.reconcile.auto_assign_enabled is True


def test_default_storage_and_identity():
    settings = ChatfoldSettings()
    assert settings.storage.backend is StorageBackendType.MEMORY
    assert settings.storage.key_prefix == "gcm_"
    assert settings.identity.default_namespace == "default"
    assert settings.identity.extra_placeholder_titles == []


@pytest.mark.parametrize(
    ("raw", "expected"),
    [
        ("sqlalchemy", StorageBackendType.SQLALCHEMY),
        (" SQLite ", StorageBackendType.SQLALCHEMY),
        ("in-memory", StorageBackendType.MEMORY),
        ("unknown", StorageBackendType.MEMORY),
    ],
)
def test_storage_backend_aliases(raw, expected):
    assert StorageSettings(backend=raw).backend is expected


def test_blank_database_url_falls_back_to_default():
    assert StorageSettings(database_url="  ").database_url == "sqlite:///chatfold.db"


def test_log_level_is_case_insensitive():
    settings = ChatfoldSettings(logging={"level": "debug"})
    assert settings.logging.level is LogLevel.DEBUG


def test_placeholder_titles_accept_comma_separated_string():
    identity = IdentitySettings(extra_placeholder_titles="Home, Library ,")
    assert identity.extra_placeholder_titles == ["home", "library"]


def test_blank_default_namespace_is_replaced():
    assert IdentitySettings(default_namespace="   ").default_namespace == "default"


@pytest.mark.parametrize(
    "overrides",
    [
        {"scan_debounce_ms": -1},
        {"hover_retry_ms": 0},
        {"title_sync_interval_s": 0},
    ],
)
def test_reconcile_settings_reject_invalid_timings(overrides):
    with pytest.raises(ValidationError):
        ReconcileSettings(**overrides)


def test_from_file_json(tmp_path):
    path = tmp_path / "chatfold.json"
    path.write_text(
        json.dumps({"storage": {"backend": "sqlalchemy"}, "reconcile": {"seed_delay_ms": 5}})
    )
    settings = ChatfoldSettings.from_file(path)
    assert settings.storage.backend is StorageBackendType.SQLALCHEMY
    assert settings.reconcile.seed_delay_ms == 5


def test_from_file_yaml(tmp_path):
    path = tmp_path / "chatfold.yaml"
    path.write_text(yaml.safe_dump({"identity": {"default_namespace": "me"}}))
    assert ChatfoldSettings.from_file(path).identity.default_namespace == "me"


def test_from_file_rejects_unknown_format(tmp_path):
    path = tmp_path / "chatfold.ini"
    path.write_text("[storage]\n")
    with pytest.raises(ValueError):
        ChatfoldSettings.from_file(path)


def test_to_file_round_trips_yaml(tmp_path):
    path = tmp_path / "out" / "config.yaml"
    original = ChatfoldSettings(reconcile={"settle_delay_ms": 42})
    original.to_file(path, format="yaml")
    assert ChatfoldSettings.from_file(path).reconcile.settle_delay_ms == 42


def test_config_manager_loads_nested_env(monkeypatch, reset_config_manager):
    monkeypatch.setenv("CHATFOLD_STORAGE__BACKEND", "sqlalchemy")
    monkeypatch.setenv("CHATFOLD_RECONCILE__SCAN_DEBOUNCE_MS", "25")

    manager = ConfigManager()
    manager.load_from_env()
    settings = manager.get_settings()

    assert settings.storage.backend is StorageBackendType.SQLALCHEMY
    assert settings.reconcile.scan_debounce_ms == 25
    assert manager.get_config_info()["env_overrides"] == [
        "CHATFOLD_RECONCILE__SCAN_DEBOUNCE_MS",
        "CHATFOLD_STORAGE__BACKEND",
    ]


def test_config_manager_env_aliases(monkeypatch, reset_config_manager):
    monkeypatch.setenv("CHATFOLD_DATABASE_URL", "sqlite:///alias.db")
    monkeypatch.setenv("CHATFOLD_DEFAULT_NAMESPACE", "work")

    manager = ConfigManager()
    manager.load_from_env()
    settings = manager.get_settings()

    assert settings.storage.database_url == "sqlite:///alias.db"
    assert settings.identity.default_namespace == "work"


def test_auto_load_merges_env_over_file(monkeypatch, tmp_path, reset_config_manager):
    path = tmp_path / "config.json"
    path.write_text(
        json.dumps({"storage": {"key_prefix": "test_"}, "reconcile": {"seed_delay_ms": 7}})
    )
    monkeypatch.setenv("CHATFOLD_CONFIG_PATH", str(path))
    monkeypatch.setenv("CHATFOLD_RECONCILE__SEED_DELAY_MS", "9")

    manager = ConfigManager.get_instance()
    manager.auto_load()
    settings = manager.get_settings()

    assert settings.storage.key_prefix == "test_"
    assert settings.reconcile.seed_delay_ms == 9
    info = manager.get_config_info()
    assert info["config_path"] == str(path)
    assert "environment" in info["sources"]


def test_load_from_missing_file_raises(tmp_path, reset_config_manager):
    manager = ConfigManager()
    with pytest.raises(ConfigurationError):
        manager.load_from_file(tmp_path / "missing.json")


def test_reset_to_defaults(monkeypatch, reset_config_manager):
    monkeypatch.setenv("CHATFOLD_IDENTITY__DEFAULT_NAMESPACE", "other")
    manager = ConfigManager()
    manager.load_from_env()
    manager.reset_to_defaults()
    assert manager.get_settings().identity.default_namespace == "default"
    assert manager.get_config_info()["sources"] == ["defaults"]


def test_setup_logging_writes_to_configured_file(tmp_path, reset_config_manager):
    from loguru import logger

    from chatfold.utils.logging import LoggingManager

    log_path = tmp_path / "logs" / "chatfold.log"
    manager = ConfigManager()
    manager._settings = ChatfoldSettings(
        logging={"level": "info", "log_to_file": True, "log_file_path": str(log_path)}
    )
    try:
        manager.setup_logging()
        assert LoggingManager.is_initialized()
        logger.info("filed conversation {}", "c_0123456789ab")
        logger.complete()
        assert "filed conversation c_0123456789ab" in log_path.read_text()
    finally:
        LoggingManager.reset()
