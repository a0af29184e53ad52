"""Shared fixtures: in-memory device, transport and renderer."""

import pytest

from hadeck.icons import IconResolver
from hadeck.models import DeviceConfig
from hadeck.navigation import NavigationEngine
from hadeck.render import ButtonRenderer, RenderCache
from hadeck.settings import Settings

ICON_SIZE = 24


class FakeDevice:
    """Records every device call instead of talking to USB."""

    def __init__(self, key_count=15, icon_size=ICON_SIZE):
        self.key_count = key_count
        self.icon_size = icon_size
        self.columns = 5
        self.rows = key_count // 5
        self.images = {}
        self.calls = []
        self.brightness = None
        self.sink = None
        self.closed = False

    def info(self):
        return {"model": "Fake Deck", "keyCount": self.key_count, "iconSize": self.icon_size}

    def attach(self, sink):
        self.sink = sink

    def clear_key(self, key):
        self.calls.append(("clear", key))
        self.images.pop(key, None)

    def fill_key_buffer(self, key, pixels):
        self.calls.append(("fill", key))
        self.images[key] = pixels

    def set_brightness(self, percent):
        self.calls.append(("brightness", percent))
        self.brightness = percent

    def close(self):
        self.closed = True


class FakeTransport:
    """Collects outbound MQTT traffic."""

    def __init__(self):
        self.started = False
        self.stopped = False
        self.key_states = []
        self.acks = []
        self.statuses = []
        self.discovery = None
        self.published = []

    def start(self):
        self.started = True

    def stop(self):
        self.stopped = True

    def publish(self, topic, payload, qos=0, retain=False):
        self.published.append((topic, payload, retain))
        return True

    def publish_key_state(self, key, pressed):
        self.key_states.append((key, pressed))

    def publish_ack(self, ack):
        self.acks.append(ack)

    def publish_status(self, status):
        self.statuses.append(status)

    def publish_discovery(self, info):
        self.discovery = info


@pytest.fixture
def device():
    return FakeDevice()


@pytest.fixture
def transport():
    return FakeTransport()


@pytest.fixture
def resolver(tmp_path):
    # No local vector icons and no downloads: vector icons degrade
    return IconResolver(str(tmp_path), vector_url=None, phosphor_url=None)


@pytest.fixture
def renderer(resolver):
    return ButtonRenderer(resolver)


@pytest.fixture
def cache(renderer):
    return RenderCache(renderer, ICON_SIZE)


@pytest.fixture
def two_pages():
    return DeviceConfig.from_dict({
        "pages": {
            "default": [
                {"key": 0, "text": "Lights", "action": {"type": "navigate", "page": "lights"}},
                {"key": 1, "color": "#ff0000"},
            ],
            "lights": [
                {"key": 0, "text": "Back", "action": {"type": "navigate", "page": "default"}},
                {"key": 4, "text": "Desk", "useEntityState": True,
                 "action": {"type": "ha", "service": "light.toggle", "entityId": "light.desk"}},
            ],
        }
    })


@pytest.fixture
def navigation(device, cache, two_pages):
    return NavigationEngine(device, cache, config=two_pages)


@pytest.fixture
def settings(tmp_path):
    return Settings(
        device_id="deck-test",
        assets_path=str(tmp_path),
        state_path=str(tmp_path / "state" / "config.json"),
        vector_url=None,
        phosphor_url=None,
    )
