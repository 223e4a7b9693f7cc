"""Tests for environment-driven configuration."""

import pytest
from pydantic import ValidationError

from core.config import AppConfig


def test_defaults(monkeypatch):
    for name in ("MONGO_URL", "REDIS_URL", "NATS_URL", "TEXTBELT_API_KEY", "LOG_LEVEL"):
        monkeypatch.delenv(name, raising=False)

    config = AppConfig.from_env()

    assert config.mongo_url == "mongodb://localhost:27017"
    assert config.redis_url is None
    assert config.sms_api_key is None
    assert config.aggregate_cache_ttl_seconds == 300
    assert config.log_level == "INFO"


def test_from_env(monkeypatch):
    monkeypatch.setenv("MONGO_DB", "alerts_test")
    monkeypatch.setenv("REDIS_URL", "redis://cache:6379/0")
    monkeypatch.setenv("TEXTBELT_API_KEY", "secret")
    monkeypatch.setenv("SMS_TIMEOUT_SECONDS", "2.5")
    monkeypatch.setenv("LOG_LEVEL", "debug")

    config = AppConfig.from_env()

    assert config.mongo_db == "alerts_test"
    assert config.redis_url == "redis://cache:6379/0"
    assert config.sms_api_key == "secret"
    assert config.sms_timeout_seconds == 2.5
    assert config.log_level == "DEBUG"


@pytest.mark.parametrize(
    "field,value",
    [
        ("sms_timeout_seconds", 0),
        ("aggregate_cache_ttl_seconds", -1),
        ("max_cooldown_minutes", 0),
        ("log_level", "LOUD"),
    ],
)
def test_validation(field, value):
    with pytest.raises(ValidationError):
        AppConfig(**{field: value})
