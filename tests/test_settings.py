"""Tests for configuration loading"""
import pytest
from pydantic import ValidationError

from config.settings import Settings, load_config


def test_missing_config_uses_defaults(tmp_path):
    settings = load_config(str(tmp_path / "absent.yaml"), env_path=str(tmp_path / ".env"))

    assert settings == Settings()
    assert settings.memory.confidence_threshold == 0.7
    assert settings.memory.auto_expire_days == 90
    assert settings.memory.max_memories_per_teacher == 1000
    assert settings.cache.preferences_ttl_seconds == 3600
    assert settings.gate.max_concurrent == 10
    assert settings.retry.max_attempts == 3


def test_partial_yaml_keeps_other_defaults(tmp_path):
    config = tmp_path / "config.yaml"
    config.write_text("memory:\n  auto_expire_days: 30\ngate:\n  max_concurrent: 2\n", encoding="utf-8")

    settings = load_config(str(config), env_path=str(tmp_path / ".env"))

    assert settings.memory.auto_expire_days == 30
    assert settings.memory.confidence_threshold == 0.7
    assert settings.gate.max_concurrent == 2


def test_env_substitution_from_dotenv(tmp_path, monkeypatch):
    monkeypatch.delenv("MEMORY_DB_PATH", raising=False)
    env = tmp_path / ".env"
    env.write_text('# local\nexport MEMORY_DB_PATH="/var/lib/memory.db"\n', encoding="utf-8")
    config = tmp_path / "config.yaml"
    config.write_text("storage:\n  sqlite_path: ${MEMORY_DB_PATH}\n", encoding="utf-8")

    settings = load_config(str(config), env_path=str(env))

    assert settings.storage.sqlite_path == "/var/lib/memory.db"


def test_existing_environment_wins_over_dotenv(tmp_path, monkeypatch):
    monkeypatch.setenv("MEMORY_LOG_LEVEL", "DEBUG")
    env = tmp_path / ".env"
    env.write_text("MEMORY_LOG_LEVEL=ERROR\n", encoding="utf-8")
    config = tmp_path / "config.yaml"
    config.write_text("system:\n  log_level: ${MEMORY_LOG_LEVEL}\n", encoding="utf-8")

    settings = load_config(str(config), env_path=str(env))

    assert settings.system.log_level == "DEBUG"


def test_unset_variable_raises(tmp_path, monkeypatch):
    monkeypatch.delenv("MEMORY_UNSET_VAR", raising=False)
    config = tmp_path / "config.yaml"
    config.write_text("storage:\n  sqlite_path: ${MEMORY_UNSET_VAR}\n", encoding="utf-8")

    with pytest.raises(ValueError):
        load_config(str(config), env_path=str(tmp_path / ".env"))


def test_invalid_values_rejected(tmp_path):
    config = tmp_path / "config.yaml"
    config.write_text("memory:\n  confidence_threshold: 1.5\n", encoding="utf-8")

    with pytest.raises(ValidationError):
        load_config(str(config), env_path=str(tmp_path / ".env"))
