"""Tests for session lifecycle, the auth-state channel and the flow registry."""
import sys
from unittest.mock import AsyncMock, MagicMock

import pytest

sys.path.insert(0, str(__file__).rsplit("/tests", 1)[0])
from src.syncio.api.exceptions import AuthExpiredError
from src.syncio.api.link import DeviceCode, LinkReadResult, LinkReadState
from src.syncio.auth import (
    AuthEvent,
    AuthSession,
    AuthStateChannel,
    DeviceAuthFlow,
    DeviceAuthRegistry,
    FlowState,
    InMemorySessionStore,
    SessionManager,
    StremioIdentityAdapter,
)
from src.syncio.sync.api import dependencies


def idle_link_api():
    """Link API whose code is never approved."""
    link_api = MagicMock()
    link_api.create_device_code = AsyncMock(return_value=DeviceCode(code="ABCD", link="https://link.test/ABCD"))
    link_api.read_device_code = AsyncMock(return_value=LinkReadResult(state=LinkReadState.PENDING, error_code=101))
    return link_api


class FakeClock:
    def __init__(self, now: float = 0.0):
        self.now = now

    def __call__(self) -> float:
        return self.now


class TestAuthSession:
    """The session value object."""

    def test_credential_not_in_repr(self):
        session = AuthSession(subject="u1", credential="super-secret", issued_at=0.0)
        assert "super-secret" not in repr(session)
        assert len(session.credential_id) == 8

    def test_expiry(self):
        session = AuthSession(subject="u1", credential="k", issued_at=0.0, expires_at=10.0)
        assert not session.is_expired(9.9)
        assert session.is_expired(10.0)

    def test_no_expiry(self):
        assert not AuthSession(subject="u1", credential="k", issued_at=0.0).is_expired(1e12)


class TestAuthStateChannel:
    """Publish/subscribe."""

    @pytest.mark.asyncio
    async def test_publish_reaches_sync_and_async_listeners(self):
        channel = AuthStateChannel()
        received = []
        channel.subscribe(lambda event, session: received.append(("sync", event)))

        async def async_listener(event, session):
            received.append(("async", event))

        channel.subscribe(async_listener)
        session = AuthSession(subject="u1", credential="k", issued_at=0.0)

        await channel.publish(AuthEvent.LOGGED_IN, session)

        assert received == [("sync", AuthEvent.LOGGED_IN), ("async", AuthEvent.LOGGED_IN)]

    @pytest.mark.asyncio
    async def test_unsubscribe(self):
        channel = AuthStateChannel()
        listener = MagicMock()
        unsubscribe = channel.subscribe(listener)

        unsubscribe()
        unsubscribe()
        await channel.publish(AuthEvent.LOGGED_OUT, AuthSession("u1", "k", 0.0))

        listener.assert_not_called()
        assert channel.listener_count == 0

    @pytest.mark.asyncio
    async def test_failing_listener_does_not_block_others(self):
        channel = AuthStateChannel()
        good = MagicMock()
        channel.subscribe(MagicMock(side_effect=RuntimeError("boom")))
        channel.subscribe(good)

        await channel.publish(AuthEvent.EXPIRED, AuthSession("u1", "k", 0.0))

        good.assert_called_once()


class TestSessionManager:
    """Login, logout and expiry."""

    @pytest.mark.asyncio
    async def test_login_stores_and_publishes(self):
        clock = FakeClock(100.0)
        channel = AuthStateChannel()
        events = []
        channel.subscribe(lambda event, session: events.append((event, session.subject)))
        manager = SessionManager(InMemorySessionStore(), channel, ttl=60.0, clock=clock)

        session = await manager.login("u1", "key")

        assert session.expires_at == 160.0
        assert await manager.current("u1") == session
        assert events == [(AuthEvent.LOGGED_IN, "u1")]

    @pytest.mark.asyncio
    async def test_logout(self):
        channel = AuthStateChannel()
        events = []
        channel.subscribe(lambda event, session: events.append(event))
        manager = SessionManager(InMemorySessionStore(), channel)

        await manager.login("u1", "key")

        assert await manager.logout("u1")
        assert not await manager.logout("u1")
        assert await manager.current("u1") is None
        assert events == [AuthEvent.LOGGED_IN, AuthEvent.LOGGED_OUT]

    @pytest.mark.asyncio
    async def test_expired_session_is_cleared(self):
        clock = FakeClock(0.0)
        store = InMemorySessionStore()
        channel = AuthStateChannel()
        events = []
        channel.subscribe(lambda event, session: events.append(event))
        manager = SessionManager(store, channel, ttl=10.0, clock=clock)
        await manager.login("u1", "key")

        clock.now = 10.0

        assert await manager.current("u1") is None
        assert await store.load("u1") is None
        assert events[-1] == AuthEvent.EXPIRED

    @pytest.mark.asyncio
    async def test_login_purges_expired_sessions(self):
        clock = FakeClock(0.0)
        store = InMemorySessionStore()
        channel = AuthStateChannel()
        events = []
        channel.subscribe(lambda event, session: events.append((event, session.subject)))
        manager = SessionManager(store, channel, ttl=10.0, clock=clock)
        await manager.login("u1", "key-1")
        await manager.login("u2", "key-2")

        clock.now = 10.0
        await manager.login("u3", "key-3")

        assert sorted(await store.subjects()) == ["u3"]
        assert sorted(s for e, s in events if e == AuthEvent.EXPIRED) == ["u1", "u2"]

    @pytest.mark.asyncio
    async def test_login_replaces_previous_session(self):
        manager = SessionManager(InMemorySessionStore())
        await manager.login("u1", "old")
        await manager.login("u1", "new")
        assert (await manager.current("u1")).credential == "new"


class TestDeviceAuthRegistry:
    """Flows addressable by id."""

    def test_add_get_cancel(self):
        registry = DeviceAuthRegistry()
        flow = DeviceAuthFlow(MagicMock())

        flow_id = registry.add(flow)

        assert registry.get(flow_id) is flow
        assert registry.cancel(flow_id)
        assert flow.state == FlowState.CANCELLED
        assert not registry.cancel("unknown")

    def test_finished_flows_pruned_after_retention(self):
        clock = FakeClock(0.0)
        registry = DeviceAuthRegistry(retention=60.0, clock=clock)
        flow_id = registry.add(DeviceAuthFlow(MagicMock()))
        registry.cancel(flow_id)

        registry.prune()
        clock.now = 59.0
        assert registry.get(flow_id) is not None

        clock.now = 61.0
        assert registry.get(flow_id) is None
        assert len(registry) == 0

    def test_cancel_all_counts_running_flows(self):
        registry = DeviceAuthRegistry()
        flows = [DeviceAuthFlow(MagicMock()) for _ in range(3)]
        for flow in flows:
            registry.add(flow)
        flows[0].cancel()

        assert registry.cancel_all() == 2

    @pytest.mark.asyncio
    async def test_shutdown_waits_for_flow_tasks(self):
        registry = DeviceAuthRegistry()
        flows = [DeviceAuthFlow(idle_link_api(), poll_interval=60.0) for _ in range(2)]
        for flow in flows:
            registry.add(flow)
            await flow.start()
        assert all(flow.is_running for flow in flows)

        assert await registry.shutdown() == 2

        assert not any(flow.is_running for flow in flows)
        assert all(flow.state == FlowState.CANCELLED for flow in flows)

    @pytest.mark.asyncio
    async def test_clients_closed_after_flows_ended(self, monkeypatch):
        registry = DeviceAuthRegistry()
        flow = DeviceAuthFlow(idle_link_api(), poll_interval=60.0)
        registry.add(flow)
        await flow.start()

        running_at_close = []
        client = MagicMock()
        client.__aexit__ = AsyncMock(side_effect=lambda *args: running_at_close.append(flow.is_running))
        monkeypatch.setattr(dependencies, "_registry", registry)
        monkeypatch.setattr(dependencies, "_stremio_client", client)

        await dependencies.close_stremio_clients()

        assert running_at_close == [False]
        assert dependencies._registry is None


class TestStremioIdentityAdapter:
    """Account e-mail lookup."""

    @pytest.mark.asyncio
    async def test_returns_email(self):
        client = MagicMock()
        client.get_user = AsyncMock(return_value={"_id": "1", "email": "a@example.com"})
        assert await StremioIdentityAdapter(client).get_account_email("k") == "a@example.com"

    @pytest.mark.asyncio
    async def test_missing_email(self):
        client = MagicMock()
        client.get_user = AsyncMock(return_value={"_id": "1"})
        with pytest.raises(AuthExpiredError):
            await StremioIdentityAdapter(client).get_account_email("k")
