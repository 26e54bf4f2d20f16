"""Pytest configuration and shared fixtures."""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any

import httpx
import pytest

from startpage.adapters.remote.session_store import SessionStore
from startpage.config import AssetCacheConfig, SyncConfig
from startpage.db.session import DatabaseSessionManager
from startpage.infrastructure.messaging.event_bus import EventBus
from startpage.infrastructure.persistence.kv_store import LocalKeyValueStore

BASE_URL = "https://sync.example.test"


@pytest.fixture
def db(tmp_path):
    manager = DatabaseSessionManager(str(tmp_path / "startpage.db"))
    manager.migrate()
    yield manager
    manager.close()


@pytest.fixture
def kv(db):
    return LocalKeyValueStore(db, writer_id="newtab")


@pytest.fixture
def event_bus():
    return EventBus()


@pytest.fixture
def sessions(kv):
    return SessionStore(kv)


@pytest.fixture
def sync_cfg():
    return SyncConfig(base_url=BASE_URL, push_debounce_ms=60, pull_settle_ms=30)


@pytest.fixture
def cache_cfg():
    return AssetCacheConfig(max_bytes=4096)


@dataclass
class FakeSyncBackend:
    """In-memory stand-in for the sync worker's four routes."""

    accounts: dict[str, str] = field(default_factory=dict)
    tokens: dict[str, str] = field(default_factory=dict)
    snapshots: dict[str, dict[str, Any]] = field(default_factory=dict)
    requests: list[httpx.Request] = field(default_factory=list)
    pushes: list[dict[str, Any]] = field(default_factory=list)
    overrides: dict[str, httpx.Response] = field(default_factory=dict)
    updated_at: int = 1_700_000_000_000

    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handle)

    def client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=self.transport())

    def paths(self) -> list[str]:
        return [request.url.path for request in self.requests]

    def login_token(self, email: str, password: str = "secret") -> str:
        self.accounts[email] = password
        token = f"token-{email}"
        self.tokens[token] = email
        return token

    def handle(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        path = request.url.path
        if path in self.overrides:
            return self.overrides[path]

        if path in ("/api/auth/register", "/api/auth/login"):
            body = json.loads(request.content or b"{}")
            email, password = body.get("email"), body.get("password")
            if not email or not password:
                return httpx.Response(400, json={"error": "Email and password required"})
            if path.endswith("register"):
                if email in self.accounts:
                    return httpx.Response(409, json={"error": "User already exists"})
                self.accounts[email] = password
            elif self.accounts.get(email) != password:
                return httpx.Response(401, json={"error": "Invalid credentials"})
            token = f"token-{email}"
            self.tokens[token] = email
            return httpx.Response(200, json={"token": token, "email": email})

        email = self.tokens.get(request.headers.get("authorization", "").removeprefix("Bearer "))
        if email is None:
            return httpx.Response(401, json={"error": "Unauthorized"})

        if path == "/api/sync/pull":
            return httpx.Response(200, json={"data": self.snapshots.get(email)})
        if path == "/api/sync/push":
            body = json.loads(request.content)
            if any(body.get(name) is None for name in ("shortcuts", "gridConfig", "bgConfig")):
                return httpx.Response(400, json={"error": "Invalid data structure"})
            self.updated_at += 1
            self.pushes.append(body)
            self.snapshots[email] = {**body, "updatedAt": self.updated_at}
            return httpx.Response(200, json={"success": True, "updatedAt": self.updated_at})
        return httpx.Response(404, json={"error": "Not found"})


@pytest.fixture
def backend():
    return FakeSyncBackend()
