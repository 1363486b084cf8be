"""Configuration and logging setup tests."""

import json
import logging

import pydantic
import pytest

from collegium.config import Settings, get_settings
from collegium.core import ConfigurationError
from collegium.main import CollegiumPlatform, load_settings
from collegium.observability import JSONFormatter
from collegium.persistence import InMemoryEntityStore, SQLiteEntityStore


@pytest.fixture(autouse=True)
def clear_settings_cache():
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


def test_defaults():
    settings = Settings(_env_file=None)
    assert settings.store_backend == "memory"
    assert settings.passing_score == 50
    assert settings.hot_section_threshold_pct == 90
    assert settings.log_format == "json"


def test_environment_overrides(monkeypatch, tmp_path):
    monkeypatch.setenv("COLLEGIUM_STORE_BACKEND", "SQLITE")
    monkeypatch.setenv("COLLEGIUM_DATABASE_PATH", str(tmp_path / "env.db"))
    monkeypatch.setenv("COLLEGIUM_MAX_RETRIES", "0")
    monkeypatch.setenv("COLLEGIUM_LOG_LEVEL", "debug")

    settings = get_settings()
    assert settings.store_backend == "sqlite"
    assert settings.max_retries == 0
    assert settings.log_level == "DEBUG"
    assert get_settings() is settings

    platform = CollegiumPlatform(settings)
    assert isinstance(platform.store, SQLiteEntityStore)
    assert platform.store.database.database_path == str(tmp_path / "env.db")


@pytest.mark.parametrize("name, value", [
    ("COLLEGIUM_STORE_BACKEND", "postgres"),
    ("COLLEGIUM_LOCK_TIMEOUT_SECONDS", "0"),
    ("COLLEGIUM_PASSING_SCORE", "101"),
    ("COLLEGIUM_LOG_LEVEL", "chatty"),
])
def test_invalid_values_rejected(monkeypatch, name, value):
    monkeypatch.setenv(name, value)
    with pytest.raises(pydantic.ValidationError):
        Settings(_env_file=None)
    with pytest.raises(ConfigurationError):
        load_settings()


def test_platform_accepts_injected_store():
    store = InMemoryEntityStore()
    platform = CollegiumPlatform(Settings(_env_file=None), store=store)
    assert platform.store is store
    assert platform.metrics is not None
    platform.stop_platform()


def test_json_formatter_surfaces_extra_fields():
    record = logging.LogRecord("collegium.test", logging.INFO, __file__, 1, "enrolled %s", ("x",), None)
    record.student_id = "s-1"
    record.error_code = "CAPACITY_EXCEEDED"

    payload = json.loads(JSONFormatter().format(record))

    assert payload["message"] == "enrolled x"
    assert payload["level"] == "INFO"
    assert payload["student_id"] == "s-1"
    assert payload["error_code"] == "CAPACITY_EXCEEDED"
    assert "section_id" not in payload
