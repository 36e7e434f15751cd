"""Shared test fixtures and configuration for backend tests."""
import pytest
from fastapi.testclient import TestClient

from app.config import AppConfig, ChatSettings, DatabaseSettings, JWTSecrets, Secrets, set_config

TEST_SECRET = "test-secret-key-that-is-at-least-32-bytes-long"

# Must be installed before app.main is imported (CORS reads it at import time)
set_config(AppConfig(
    database=DatabaseSettings(path=":memory:"),
    chat=ChatSettings(heartbeat_timeout_seconds=5),
    secrets=Secrets(jwt=JWTSecrets(secret_key=TEST_SECRET)),
))

from app.chat.auth import TokenAuthenticator  # noqa: E402
from app.chat.hub import get_chat_hub  # noqa: E402
from app.main import app  # noqa: E402


class RecordingTransport:
    """Stands in for a WebSocket: records every frame sent to it."""

    def __init__(self) -> None:
        self.frames = []

    async def send_json(self, data: dict) -> None:
        self.frames.append(data)

    def types(self) -> list:
        return [f["type"] for f in self.frames]


@pytest.fixture
def authenticator():
    return TokenAuthenticator(secret_key=TEST_SECRET)


@pytest.fixture
def token_for(authenticator):
    """Issue a valid bearer token for an identity."""
    return authenticator.issue


@pytest.fixture
def api_client():
    """Provide a TestClient with the lifespan running (fresh in-memory store)."""
    with TestClient(app) as client:
        yield client


@pytest.fixture
def hub(api_client):
    """The ChatHub created by the running app's lifespan."""
    return get_chat_hub()
