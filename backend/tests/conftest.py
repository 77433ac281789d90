"""Shared test fixtures for all test groups."""

import pytest

from factories import WEBHOOK_SECRET
from paysync.core.config import Settings
from paysync.core.locking import LocalEntityLock
from paysync.storage import InMemoryStateStore
from paysync.webhooks.pipeline import build_pipeline


@pytest.fixture
def settings() -> Settings:
    """Explicit settings for tests; never reads .env."""
    return Settings(
        _env_file=None,
        debug=True,
        storage_backend="memory",
        webhook_secret=WEBHOOK_SECRET,
        redis_url="",
        metrics_enabled=False,
        storage_timeout_seconds=1.0,
        lock_wait_timeout_seconds=1.0,
    )


@pytest.fixture
def memory_store() -> InMemoryStateStore:
    return InMemoryStateStore()


@pytest.fixture
def entity_lock() -> LocalEntityLock:
    return LocalEntityLock(wait_timeout=1.0)


@pytest.fixture
def pipeline(settings, memory_store, entity_lock):
    """Fully wired pipeline over the in-memory store."""
    return build_pipeline(settings, memory_store, entity_lock)
