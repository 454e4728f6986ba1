"""Shared test fixtures and configuration for backend tests."""
import pytest
from fastapi.testclient import TestClient

from livechat.auth.service import set_auth_service
from livechat.chat.manager import set_coordinator
from livechat.config import AppSettings, reset_config, set_config
from livechat.main import app
from livechat.messages.service import MessageStore
from livechat.users.service import UserStore


@pytest.fixture(autouse=True)
def test_config():
    """In-memory DuckDB and cheap password hashing for every test.

    Also drops every process-wide singleton afterwards so tests never see
    each other's users, messages or sessions.
    """
    MessageStore.reset_instance()
    UserStore.reset_instance()
    set_auth_service(None)
    set_coordinator(None)

    config = AppSettings(
        storage={"db_path": ":memory:"},
        auth={"password_iterations": 1000},
        secrets={"jwt": {"secret_key": "test-secret"}},
    )
    set_config(config)
    yield config

    set_coordinator(None)
    set_auth_service(None)
    MessageStore.reset_instance()
    UserStore.reset_instance()
    reset_config()


@pytest.fixture
def api_client():
    """TestClient with the app lifespan running (stores + coordinator wired)."""
    with TestClient(app) as client:
        yield client


@pytest.fixture
def register(api_client):
    """Return a helper that registers a user and returns their token."""
    def _register(username: str, password: str = "secret") -> str:
        response = api_client.post(
            "/api/auth/register", json={"username": username, "password": password}
        )
        assert response.status_code == 200, response.text
        return response.json()["token"]
    return _register
