"""Tests for the serialized dispatcher."""

import asyncio
import json
from unittest import mock

import pytest

from hadeck.app import DeckApp
from hadeck.events import ConfigPayload, DeviceFault, EntityUpdate, KeyEvent, RemoteCommand
from hadeck.models import EntityState

CONFIG = {
    "pages": {
        "default": [
            {"key": 0, "text": "Desk", "useEntityState": True,
             "action": {"type": "ha", "service": "light.toggle", "entityId": "light.desk"}},
            {"key": 1, "text": "Doorbell",
             "action": {"type": "mqtt", "topic": "home/doorbell", "payload": "ring"}},
            {"key": 2, "text": "Broken", "action": {"type": "ha", "service": ""}},
        ],
    },
}


@pytest.fixture
def hass():
    return mock.Mock()


@pytest.fixture
def app(settings, device, transport, hass):
    return DeckApp(settings, device, transport=transport, hass=hass)


async def configured(app):
    await app.dispatch(ConfigPayload(json.dumps(CONFIG).encode()))
    await app.navigation.drain()


class TestDispatch:
    """Tests for DeckApp.dispatch."""

    async def test_config_payload(self, app, transport, device):
        """Test that config messages are applied and acknowledged."""
        await configured(app)

        assert transport.acks[-1]["status"] == "applied"
        assert set(device.images) == {0, 1, 2}

    async def test_invalid_json(self, app, transport):
        """Test that undecodable config bodies are acknowledged as errors."""
        await app.dispatch(ConfigPayload(b"{oops"))

        assert transport.acks[-1]["status"] == "error"

    async def test_service_action(self, app, transport, hass):
        """Test that Home Assistant actions run off the dispatcher."""
        await configured(app)

        await app.dispatch(KeyEvent(0, True))
        await asyncio.gather(*app._actions)

        hass.call_service.assert_called_once_with("light.toggle", "light.desk", {})
        assert transport.key_states == [(0, True)]

    async def test_empty_service_is_skipped(self, app, hass):
        """Test that actions without a service are not executed."""
        await configured(app)

        await app.dispatch(KeyEvent(2, True))

        assert app._actions == set()
        hass.call_service.assert_not_called()

    async def test_publish_action(self, app, transport):
        """Test that mqtt actions are published through the transport."""
        await configured(app)

        await app.dispatch(KeyEvent(1, True))
        await app.dispatch(KeyEvent(1, False))

        assert transport.published == [("home/doorbell", "ring", False)]
        assert transport.key_states == [(1, True), (1, False)]

    async def test_entity_update_restyles(self, app, device):
        """Test that state pushes re-render the tracking key."""
        await configured(app)
        before = device.images[0]

        await app.dispatch(EntityUpdate(EntityState("light.desk", "on", {"rgb_color": [0, 255, 0]})))
        await app.navigation.drain()

        assert device.images[0] != before

    async def test_remote_commands(self, app, device):
        """Test brightness, image and text remote control."""
        await app.dispatch(RemoteCommand("set_brightness", "25"))
        await app.dispatch(RemoteCommand("set_brightness", "lots"))
        await app.dispatch(RemoteCommand("set_image", "#00ff00", key=5))
        await app.dispatch(RemoteCommand("set_text", "Hi", key=6))
        await app.navigation.drain()

        assert device.brightness == 25
        assert device.images[5] == bytes((0, 255, 0)) * (device.icon_size ** 2)
        assert 6 in device.images

    async def test_remote_clear(self, app, device):
        """Test that the clear command blanks the deck."""
        await configured(app)

        await app.dispatch(RemoteCommand("command", "clear"))
        await app.navigation.drain()

        assert device.images == {}

    async def test_device_fault(self, app, transport):
        """Test that hardware faults are reported as error status."""
        await app.dispatch(DeviceFault("unplugged"))

        assert transport.statuses == ["error"]

    async def test_handler_errors_are_isolated(self, app, caplog):
        """Test that a failing handler does not propagate."""
        app.navigation.run_command = mock.Mock(side_effect=RuntimeError("boom"))

        await app.dispatch(RemoteCommand("command", "clear"))

        assert "Error handling RemoteCommand" in caplog.text


class TestRun:
    """Tests for the dispatcher lifecycle."""

    async def test_startup_and_shutdown(self, app, device, transport):
        """Test cached startup, queued events and orderly shutdown."""
        task = asyncio.create_task(app.run())
        while not transport.started:
            await asyncio.sleep(0)

        app.post(ConfigPayload(json.dumps(CONFIG).encode()))
        app.stop()
        await asyncio.wait_for(task, timeout=5)

        assert device.sink == app.post
        assert transport.discovery == device.info()
        assert transport.acks[-1]["status"] == "applied"
        assert transport.stopped
        assert device.closed
        assert device.images == {}

    def test_post_before_run_is_dropped(self, app):
        """Test that events without a running dispatcher are ignored."""
        app.post(KeyEvent(0, True))
