"""Tests for Home Assistant connectivity."""

import asyncio
import json
from unittest import mock

import pytest
import requests

from hadeck.errors import TransportError
from hadeck.events import EntityUpdate
from hadeck.hass import HomeAssistantClient, HomeAssistantSession, normalize_url, websocket_url


class FakeWebSocket:
    """Scripted websocket: recv() and iteration consume the same inbox."""

    def __init__(self, inbox):
        self.inbox = [json.dumps(message) for message in inbox]
        self.sent = []

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc):
        return False

    async def recv(self):
        return self.inbox.pop(0)

    async def send(self, message):
        self.sent.append(json.loads(message))

    def __aiter__(self):
        return self

    async def __anext__(self):
        if not self.inbox:
            raise StopAsyncIteration
        return self.inbox.pop(0)


def ha_state(entity_id, state):
    return {"entity_id": entity_id, "state": state, "attributes": {}}


def test_urls():
    """Test REST and websocket URL derivation."""
    assert normalize_url("ha.local:8123/") == "http://ha.local:8123"
    assert websocket_url("http://ha.local:8123") == "ws://ha.local:8123/api/websocket"
    assert websocket_url("https://ha.example.com") == "wss://ha.example.com/api/websocket"


class TestHomeAssistantSession:
    """Tests for HomeAssistantSession."""

    def make(self, inbox, tracked=("light.desk",)):
        ws = FakeWebSocket(inbox)
        events = []
        connect = mock.Mock(return_value=ws)
        session = HomeAssistantSession(
            "http://ha.local:8123", "secret", events.append,
            tracked=lambda: set(tracked), connect=connect,
        )
        return session, ws, events, connect

    async def test_session_syncs_snapshot_and_events(self):
        """Test auth, subscription, snapshot filtering and live events."""
        session, ws, events, connect = self.make([
            {"type": "auth_required"},
            {"type": "auth_ok"},
            {"type": "result", "id": 1, "success": True, "result": None},
            {"type": "result", "id": 2, "success": True,
             "result": [ha_state("light.desk", "off"), ha_state("light.other", "on")]},
            {"type": "event", "id": 1, "event": {"event_type": "state_changed", "data": {
                "entity_id": "light.desk", "new_state": ha_state("light.desk", "on")}}},
            {"type": "event", "id": 1, "event": {"event_type": "state_changed", "data": {
                "entity_id": "light.other", "new_state": ha_state("light.other", "off")}}},
        ])

        with pytest.raises(TransportError):
            await session._session()

        connect.assert_called_once_with("ws://ha.local:8123/api/websocket", max_size=mock.ANY)
        assert ws.sent == [
            {"type": "auth", "access_token": "secret"},
            {"type": "subscribe_events", "event_type": "state_changed", "id": 1},
            {"type": "get_states", "id": 2},
        ]
        assert [e.state.state for e in events] == ["off", "on"]
        assert all(isinstance(e, EntityUpdate) and e.state.entity_id == "light.desk" for e in events)

    async def test_no_subscription_without_tracked_entities(self):
        """Test that nothing is subscribed when no entity is tracked."""
        session, ws, events, _ = self.make([{"type": "auth_required"}, {"type": "auth_ok"}], tracked=())

        with pytest.raises(TransportError):
            await session._session()

        assert ws.sent == [{"type": "auth", "access_token": "secret"}]

    async def test_auth_failure(self):
        """Test that rejected tokens end the session."""
        session, _, _, _ = self.make([{"type": "auth_required"}, {"type": "auth_invalid", "message": "bad"}])

        with pytest.raises(TransportError, match="bad"):
            await session._session()

    async def test_run_reconnects(self):
        """Test that a lost connection is retried after the delay."""
        session, _, _, connect = self.make([])
        connect.side_effect = OSError("refused")
        session.reconnect_delay = 0.01

        session.start()
        await asyncio.sleep(0.05)
        await session.stop()

        assert connect.call_count >= 2

    async def test_non_object_frames_are_ignored(self):
        """Test that a 'null' frame neither ends the session nor stops the updates after it."""
        session, ws, events, _ = self.make([
            {"type": "auth_required"},
            {"type": "auth_ok"},
            None,
            {"type": "event", "id": 1, "event": {"event_type": "state_changed", "data": {
                "entity_id": "light.desk", "new_state": ha_state("light.desk", "on")}}},
        ])

        with pytest.raises(TransportError):
            await session._session()

        assert [e.state.state for e in events] == ["on"]

    async def test_unexpected_errors_keep_reconnecting(self, caplog):
        """Test that any error inside a session is logged and retried."""
        session, _, _, connect = self.make([])
        connect.side_effect = RuntimeError("bug")
        session.reconnect_delay = 0.01

        session.start()
        await asyncio.sleep(0.05)

        assert not session._task.done()
        assert connect.call_count >= 2
        assert "Unexpected error in Home Assistant session" in caplog.text
        await session.stop()
        assert session._task is None

    async def test_stop_after_failed_task(self):
        """Test that stop() does not re-raise the error of a finished session task."""
        session, _, _, _ = self.make([])

        async def crash():
            raise RuntimeError("bug")

        session._task = asyncio.get_running_loop().create_task(crash())
        await asyncio.sleep(0)

        await session.stop()

        assert session._task is None

    def test_disabled_without_token(self):
        """Test that a session without token does not start."""
        session = HomeAssistantSession("http://ha.local", None, lambda e: None, tracked=set)

        assert session.enabled is False
        assert session.start() is None


class TestHomeAssistantClient:
    """Tests for HomeAssistantClient.call_service."""

    def test_posts_service_call(self):
        """Test the REST request for a service call."""
        http = mock.Mock()
        http.post.return_value = mock.Mock(ok=True)
        client = HomeAssistantClient("http://ha.local:8123/", "secret", session=http)

        assert client.call_service("light.toggle", "light.desk", {"brightness": 100}) is True

        http.post.assert_called_once_with(
            "http://ha.local:8123/api/services/light/toggle",
            headers={"Authorization": "Bearer secret"},
            json={"brightness": 100, "entity_id": "light.desk"},
            timeout=mock.ANY,
        )

    def test_invalid_service(self):
        """Test that services without a domain are rejected locally."""
        http = mock.Mock()
        client = HomeAssistantClient("http://ha.local", "secret", session=http)

        assert client.call_service("toggle") is False
        http.post.assert_not_called()

    def test_http_error(self):
        """Test that error responses are reported as failure."""
        http = mock.Mock()
        http.post.return_value = mock.Mock(ok=False, status_code=401, text="Unauthorized")
        client = HomeAssistantClient("http://ha.local", "secret", session=http)

        assert client.call_service("light.toggle", "light.desk") is False

    def test_network_error(self):
        """Test that connection errors do not raise."""
        http = mock.Mock()
        http.post.side_effect = requests.ConnectionError("down")
        client = HomeAssistantClient("http://ha.local", "secret", session=http)

        assert client.call_service("light.toggle") is False
