"""Shared test fixtures."""

from __future__ import annotations

import os

import pytest
from fastapi.testclient import TestClient


@pytest.fixture(autouse=True)
def _mock_settings(monkeypatch):
    """Provide default settings for all tests."""
    for key in list(os.environ):
        if key.startswith("NATOURS_"):
            monkeypatch.delenv(key, raising=False)
    monkeypatch.setenv("NATOURS_LOG_JSON", "false")
    monkeypatch.setenv("NATOURS_LOG_LEVEL", "debug")
    monkeypatch.setenv("NATOURS_WEBHOOK_SECRET", "whsec_test")

    # Reset cached settings
    import natours.config.loader as loader
    loader._settings = None
    yield
    loader._settings = None


@pytest.fixture
def static_root(tmp_path):
    """A public asset root with one stylesheet."""
    root = tmp_path / "public"
    (root / "css").mkdir(parents=True)
    (root / "css" / "style.css").write_text("body { color: #55c57a; }")
    return root


@pytest.fixture
def make_client(static_root):
    """Factory for a TestClient around a freshly created app."""
    from natours.config.loader import NatoursSettings
    from natours.main import create_app

    clients: list[TestClient] = []

    def _make(routers=None, webhook_handler=None, renderer=None, store=None, **overrides) -> TestClient:
        overrides.setdefault("static_root", str(static_root))
        settings = NatoursSettings(**overrides)
        app = create_app(
            settings=settings,
            routers=routers,
            webhook_handler=webhook_handler,
            renderer=renderer,
            store=store,
        )
        client = TestClient(app, raise_server_exceptions=False)
        client.__enter__()
        clients.append(client)
        return client

    yield _make

    for client in clients:
        client.__exit__(None, None, None)
