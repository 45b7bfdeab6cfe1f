"""API fixtures: the FastAPI app wired to the shared in-memory store and fake Redis."""

import fakeredis
import pytest
from fastapi.testclient import TestClient

from api.src.config import Settings, get_settings
from api.src.dependencies import get_pipeline_store, get_signal_client, get_sink
from api.src.main import app
from api.src.services.queue import get_redis_client

@pytest.fixture
def redis_server():
    return fakeredis.FakeServer()

@pytest.fixture
def queue(redis_server):
    """Sync view of the Redis the API enqueues into."""
    return fakeredis.FakeRedis(server=redis_server, decode_responses=True)

@pytest.fixture
def api_settings():
    return Settings(webhook_clone=False, github_webhook_secret="")

@pytest.fixture
def client(store, log_sink, signals, redis_server, api_settings):
    async def fake_redis_client():
        client = fakeredis.FakeAsyncRedis(server=redis_server, decode_responses=True)
        try:
            yield client
        finally:
            await client.aclose()

    app.dependency_overrides[get_pipeline_store] = lambda: store
    app.dependency_overrides[get_sink] = lambda: log_sink
    app.dependency_overrides[get_signal_client] = lambda: signals
    app.dependency_overrides[get_redis_client] = fake_redis_client
    app.dependency_overrides[get_settings] = lambda: api_settings

    with TestClient(app) as test_client:
        yield test_client

    app.dependency_overrides.clear()
