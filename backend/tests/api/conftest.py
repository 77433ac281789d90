"""API-specific test fixtures."""

import pytest
from fastapi.testclient import TestClient

from paysync.main import create_app


@pytest.fixture
def api_client(settings):
    """FastAPI test client over the in-memory backend.

    The real lifespan runs inside TestClient's own event loop, so the
    store and pipeline on app.state are built exactly as in production.
    """
    app = create_app(settings)
    with TestClient(app) as client:
        yield client


@pytest.fixture
def unconfigured_client(settings):
    """Client whose settings carry no webhook secret."""
    app = create_app(settings.model_copy(update={"webhook_secret": ""}))
    with TestClient(app) as client:
        yield client
