"""Tests for the sync and device-login HTTP endpoints.

Use cases are replaced through FastAPI dependency overrides, so these
tests cover routing, request parsing and error mapping only.
"""
import asyncio
import sys
from unittest.mock import AsyncMock, MagicMock

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

sys.path.insert(0, str(__file__).rsplit("/tests", 1)[0])
from src.syncio.api.exceptions import (
    AlreadySyncingError,
    AuthExpiredError,
    ConfirmationRequiredError,
    NotFoundError,
    ServerError,
)
from src.syncio.api.link import DeviceCode, LinkReadResult, LinkReadState
from src.syncio.auth import DeviceAuthFlow, DeviceAuthRegistry, InMemorySessionStore, SessionManager
from src.syncio.auth.ports import IDeviceLinkAPI
from src.syncio.sync.api.dependencies import (
    get_device_auth_registry,
    get_device_flow_factory,
    get_session_manager,
    get_status_use_case,
    get_sync_group_use_case,
    get_sync_user_use_case,
)
from src.syncio.sync.api.router import auth_router, router
from src.syncio.sync.domain.entities import (
    AddonDescriptor,
    SyncOperation,
    SyncOutcome,
    SyncPlan,
    SyncStatus,
    UserSyncState,
)
from src.syncio.sync.use_cases.sync_user import GroupSyncResult, GroupSyncStatus, UserSyncStatus

TORRENTIO = AddonDescriptor(manifest_url="https://torrentio.test/manifest.json", name="Torrentio")


class IdleLinkAPI(IDeviceLinkAPI):
    """Link API whose code is never approved."""

    async def create_device_code(self) -> DeviceCode:
        return DeviceCode(code="ABCD", link="https://link.test/ABCD")

    async def read_device_code(self, code: str) -> LinkReadResult:
        return LinkReadResult(state=LinkReadState.PENDING, error_code=101)


@pytest.fixture
def sync_user():
    use_case = MagicMock()
    use_case.plan = AsyncMock()
    use_case.execute = AsyncMock()
    return use_case


@pytest.fixture
def sync_group():
    use_case = MagicMock()
    use_case.execute = AsyncMock()
    return use_case


@pytest.fixture
def status_use_case():
    use_case = MagicMock()
    use_case.user_status = AsyncMock()
    use_case.group_status = AsyncMock()
    return use_case


@pytest.fixture
def registry():
    return DeviceAuthRegistry()


class FakeClock:
    def __init__(self, now: float = 0.0):
        self.now = now

    def __call__(self) -> float:
        return self.now


@pytest.fixture
def clock():
    return FakeClock(1000.0)


@pytest.fixture
def sessions(clock):
    return SessionManager(InMemorySessionStore(), ttl=60.0, clock=clock)


@pytest.fixture
def client(monkeypatch, sync_user, sync_group, status_use_case, registry, sessions):
    monkeypatch.setenv("DISABLE_AUTH", "true")

    app = FastAPI()
    app.include_router(router)
    app.include_router(auth_router)

    def build_flow(user_id, expected_email):
        return DeviceAuthFlow(IdleLinkAPI(), expected_email=expected_email, poll_interval=60.0)

    app.dependency_overrides[get_sync_user_use_case] = lambda: sync_user
    app.dependency_overrides[get_sync_group_use_case] = lambda: sync_group
    app.dependency_overrides[get_status_use_case] = lambda: status_use_case
    app.dependency_overrides[get_device_auth_registry] = lambda: registry
    app.dependency_overrides[get_device_flow_factory] = lambda: build_flow
    app.dependency_overrides[get_session_manager] = lambda: sessions

    with TestClient(app) as test_client:
        yield test_client
        registry.cancel_all()


# ============================================
# Sync Endpoints
# ============================================

class TestSyncEndpoints:
    """Plan, sync and status."""

    def test_plan(self, client, sync_user):
        sync_user.plan.return_value = SyncPlan(
            user_id="alice",
            operations=[SyncOperation.add(TORRENTIO)],
            target=[TORRENTIO],
        )

        response = client.get("/api/sync/users/alice/plan")

        assert response.status_code == 200
        body = response.json()
        assert body["outcome"] == "safe"
        assert body["added"] == [TORRENTIO.manifest_url]
        assert body["operations"][0]["kind"] == "add"
        assert body["requires_confirmation"] is False

    def test_sync_user_passes_request(self, client, sync_user):
        sync_user.execute.return_value = SyncOutcome(
            user_id="alice",
            status=SyncStatus.SUCCEEDED,
            removed=[TORRENTIO],
            attempts=1,
            exclusions_to_persist=["torrentio"],
        )

        response = client.post(
            "/api/sync/users/alice",
            json={"confirm": True, "drop_addons": ["torrentio"]},
        )

        assert response.status_code == 200
        assert response.json()["status"] == "succeeded"
        assert response.json()["exclusions_to_persist"] == ["torrentio"]
        sync_user.execute.assert_awaited_once_with("alice", confirm=True, drop_addons=["torrentio"])

    def test_failed_outcome_message_is_sanitized(self, client, sync_user):
        sync_user.execute.return_value = SyncOutcome.failed(
            "alice", ServerError("upstream leaked authKey=abc123"),
        )

        response = client.post("/api/sync/users/alice", json={})

        assert response.status_code == 200
        assert response.json()["status"] == "failed"
        assert "abc123" not in response.json()["error"]["message"]

    def test_sync_group(self, client, sync_group):
        sync_group.execute.return_value = GroupSyncResult(
            group_id="family",
            outcomes=[SyncOutcome(user_id="alice", status=SyncStatus.SUCCEEDED)],
            skipped={"bob": "inactive"},
        )

        response = client.post("/api/sync/groups/family", json={})

        assert response.status_code == 200
        body = response.json()
        assert body["success"] is True
        assert body["skipped"] == {"bob": "inactive"}
        assert body["outcomes"][0]["user_id"] == "alice"

    def test_group_status(self, client, status_use_case):
        status_use_case.group_status.return_value = GroupSyncStatus(
            group_id="family",
            users=[
                UserSyncStatus(user_id="alice", state=UserSyncState.SYNCED),
                UserSyncStatus(user_id="bob", state=UserSyncState.CONNECT),
            ],
        )

        response = client.get("/api/sync/groups/family/status")

        assert response.status_code == 200
        assert response.json()["state"] == "unsynced"
        assert [u["state"] for u in response.json()["users"]] == ["synced", "connect"]


class TestErrorMapping:
    """SyncioError subclasses map to HTTP status codes."""

    @pytest.mark.parametrize(
        "error,expected_status",
        [
            (NotFoundError("User", "zed"), 404),
            (AlreadySyncingError("alice"), 409),
            (ConfirmationRequiredError("alice"), 409),
            (AuthExpiredError(), 401),
            (ServerError("remote down"), 502),
        ],
    )
    def test_status_codes(self, client, sync_user, error, expected_status):
        sync_user.execute.side_effect = error

        response = client.post("/api/sync/users/alice", json={})

        assert response.status_code == expected_status
        detail = response.json()["detail"]
        assert detail["code"] == error.code
        assert "cause" not in detail

    def test_detail_message_is_sanitized(self, client, sync_user):
        sync_user.plan.side_effect = ServerError("failed for postgresql://u:pw@db/syncio")

        response = client.get("/api/sync/users/alice/plan")

        assert response.status_code == 502
        assert "pw@db" not in response.json()["detail"]["message"]


class TestApiKey:
    """X-API-Key guard."""

    def test_missing_key_rejected(self, client, monkeypatch):
        monkeypatch.setenv("DISABLE_AUTH", "false")
        monkeypatch.setenv("API_KEY", "secret")

        assert client.get("/api/sync/users/alice/status").status_code == 401

    def test_valid_key_accepted(self, client, monkeypatch, status_use_case):
        monkeypatch.setenv("DISABLE_AUTH", "false")
        monkeypatch.setenv("API_KEY", "secret")
        status_use_case.user_status.return_value = UserSyncStatus(
            user_id="alice", state=UserSyncState.SYNCED,
        )

        response = client.get("/api/sync/users/alice/status", headers={"X-API-Key": "secret"})

        assert response.status_code == 200
        assert response.json()["state"] == "synced"


# ============================================
# Device Login Endpoints
# ============================================

class TestDeviceLoginEndpoints:
    """Start, inspect and cancel device logins."""

    def test_start_returns_link(self, client):
        response = client.post("/api/auth/device", json={"expected_email": "a@example.com"})

        assert response.status_code == 201
        body = response.json()
        assert body["state"] == "awaiting_user"
        assert body["link"] == "https://link.test/ABCD"
        assert body["flow_id"]
        assert 0 < body["expires_in"] <= 300

    def test_get_and_cancel(self, client):
        flow_id = client.post("/api/auth/device", json={}).json()["flow_id"]

        assert client.get(f"/api/auth/device/{flow_id}").json()["state"] == "awaiting_user"

        response = client.delete(f"/api/auth/device/{flow_id}")
        assert response.status_code == 200
        assert response.json()["state"] == "cancelled"
        assert response.json()["link"] is None

        # Cancel is safe to repeat
        assert client.delete(f"/api/auth/device/{flow_id}").json()["state"] == "cancelled"

    def test_unknown_flow(self, client):
        assert client.get("/api/auth/device/nope").status_code == 404
        assert client.delete("/api/auth/device/nope").status_code == 404


# ============================================
# Session Endpoints
# ============================================

class TestSessionEndpoints:
    """Read and end sessions opened by device logins."""

    def test_read_then_logout(self, client, sessions):
        session = asyncio.run(sessions.login("alice", "secret-auth-key"))

        response = client.get("/api/auth/sessions/alice")

        assert response.status_code == 200
        assert response.json()["credential_id"] == session.credential_id
        assert response.json()["expires_at"] == 1060.0
        assert "secret-auth-key" not in response.text

        assert client.delete("/api/auth/sessions/alice").status_code == 204
        assert client.get("/api/auth/sessions/alice").status_code == 404
        assert client.delete("/api/auth/sessions/alice").status_code == 404

    def test_expired_session_is_not_found(self, client, sessions, clock):
        asyncio.run(sessions.login("alice", "key"))
        clock.now = 1060.0

        assert client.get("/api/auth/sessions/alice").status_code == 404
        assert asyncio.run(sessions.store.load("alice")) is None
