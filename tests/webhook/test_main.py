"""Tests for webhook.main — engine wiring, token check and lifespan."""

import httpx
import pytest
import respx
from fastapi.testclient import TestClient

from reconciliation.engine import ShowLocks
from shared_lib.client_registry import ClientRegistry
from tests.conftest import ANILIST_ENDPOINT, viewer_response
from webhook import main
from webhook.config import WebhookSettings


def make_settings(**overrides):
    values = {
        "jellyfin_api_key": "jf",
        "anilist_token": "shared",
        "anilist_users": {"alice": {"token": "alice-token"}},
    }
    values.update(overrides)
    return WebhookSettings(**values)


@pytest.fixture(autouse=True)
def no_config_file(monkeypatch, tmp_path):
    monkeypatch.setenv("AW_CONFIG_FILE", str(tmp_path / "missing.yml"))


def test_build_engine_from_settings():
    settings = make_settings(
        jellyfin_url="jellyfin:8096",
        auto_add=True,
        retry_attempts=5,
        retry_backoff=[1.0, 2.0],
        serialize_per_show=True,
    )

    engine = main.build_engine(settings, ClientRegistry())

    assert engine.credentials.resolve_token("alice") == "alice-token"
    assert engine.credentials.resolve_token("bob") == "shared"
    assert engine.jellyfin_url == "jellyfin:8096"
    assert engine.auto_add is True
    assert engine.retry_policy.max_attempts == 5
    assert engine.retry_policy.backoff == (1.0, 2.0)
    assert isinstance(engine.show_locks, ShowLocks)


def test_build_engine_without_locks_or_fallback_url():
    engine = main.build_engine(make_settings(), ClientRegistry())
    assert engine.show_locks is None
    assert engine.jellyfin_url is None


@pytest.mark.asyncio
async def test_token_check_counts_valid_tokens():
    registry = ClientRegistry()
    engine = main.build_engine(make_settings(), registry)

    def respond(request):
        if request.headers["Authorization"] == "Bearer alice-token":
            return httpx.Response(200, json=viewer_response(1, "alice"))
        return httpx.Response(401, json={"errors": [{"message": "Invalid token"}]})

    try:
        with respx.mock:
            respx.post(ANILIST_ENDPOINT).mock(side_effect=respond)
            assert await main._check_anilist_tokens(engine) == 1
    finally:
        await registry.aclose()


def test_lifespan_wires_app_state(monkeypatch):
    settings = make_settings(allow_any_agent=True)
    monkeypatch.setattr(main, "get_settings", lambda: settings)
    monkeypatch.setattr(main, "configure_logging", lambda level: None)

    with respx.mock:
        respx.post(ANILIST_ENDPOINT).mock(
            side_effect=lambda request: httpx.Response(200, json=viewer_response())
        )
        with TestClient(main.app) as client:
            assert client.app.state.allow_any_agent is True
            assert client.app.state.engine.credentials is client.app.state.credentials
            assert client.get("/health").json()["users_configured"] == 1
            registry = client.app.state.registry

    assert len(registry) == 0
