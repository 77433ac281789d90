"""Tests for Settings loading."""

import pytest

from paysync.core.config import Settings

pytestmark = pytest.mark.unit


def test_defaults(monkeypatch):
    monkeypatch.delenv("WEBHOOK_SECRET", raising=False)
    settings = Settings(_env_file=None)

    assert settings.storage_backend == "sql"
    assert settings.webhook_secret == ""
    assert settings.webhook_signature_header == "creem-signature"
    assert settings.processed_event_retention_days == 30
    assert settings.metrics_enabled is False


def test_environment_overrides(monkeypatch):
    monkeypatch.setenv("WEBHOOK_SECRET", "whsec_env")
    monkeypatch.setenv("STORAGE_BACKEND", "memory")
    monkeypatch.setenv("STORAGE_TIMEOUT_SECONDS", "2.5")

    settings = Settings(_env_file=None)

    assert settings.webhook_secret == "whsec_env"
    assert settings.storage_backend == "memory"
    assert settings.storage_timeout_seconds == 2.5


def test_unknown_backend_rejected():
    with pytest.raises(ValueError):
        Settings(_env_file=None, storage_backend="mongo")
