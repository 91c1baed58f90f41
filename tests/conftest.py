# tests/conftest.py

from __future__ import annotations

from datetime import datetime, timezone
from types import SimpleNamespace
from typing import Callable

import mongomock
import pytest
from fastapi.testclient import TestClient

from config import Settings, get_settings
from database import get_db
from main import app, get_now

FIXED_NOW = datetime(2026, 3, 10, 12, 0, 0, tzinfo=timezone.utc)


@pytest.fixture()
def settings() -> Settings:
    """
    Explicit settings for tests, so nothing depends on the developer's .env.
    """
    return Settings(
        app_name="taskify-test",
        log_level="DEBUG",
        log_dir="",
        database_url="mongodb://unused",
        database_name="taskify_test",
        jwt_secret="test-secret",
        token_ttl_days=30,
        timezone="UTC",
        cors_origins=["*"],
        max_attachment_bytes=1024 * 1024,
        host="127.0.0.1",
        port=8000,
    )


@pytest.fixture()
def mongo_db():
    return mongomock.MongoClient()["taskify_test"]


@pytest.fixture()
def clock() -> SimpleNamespace:
    """Mutable clock; tests move `clock.now` to place tasks around it."""
    return SimpleNamespace(now=FIXED_NOW)


@pytest.fixture()
def client(settings: Settings, mongo_db, clock: SimpleNamespace):
    app.dependency_overrides[get_db] = lambda: mongo_db
    app.dependency_overrides[get_settings] = lambda: settings
    app.dependency_overrides[get_now] = lambda: clock.now
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()


@pytest.fixture()
def register(client: TestClient) -> Callable[..., SimpleNamespace]:
    """Register a user; returns its id, email and ready-made auth headers."""

    def _register(email: str = "alice@example.com", password: str = "secret123") -> SimpleNamespace:
        resp = client.post("/users", json={"email": email, "password": password})
        assert resp.status_code == 201, resp.text
        body = resp.json()
        return SimpleNamespace(
            id=body["id"],
            email=body["email"],
            token=body["token"],
            headers={"Authorization": f"Bearer {body['token']}"},
        )

    return _register

