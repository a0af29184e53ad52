###############################################################
#
# HADeck – StreamDeck panel for Home Assistant and MQTT
#
# Copyright (C) 2026 Peter Damerau
# https://www.talla83.de
#
# This program is free software: you can redistribute it and/or modify
# it under the terms of the GNU General Public License as published by
# the Free Software Foundation, either version 3 of the License, or
# (at your option) any later version.
#
###############################################################

"""
Serialized dispatcher

Every input source runs on its own thread or task: the StreamDeck
reader thread, the paho network thread and the Home Assistant
websocket task. None of them touch application state. They post
hadeck.events messages through DeckApp.post, and DeckApp.run handles
one message at a time on the event loop thread.
"""

import asyncio
import json
import logging
from concurrent.futures import ThreadPoolExecutor

from .controller import ConfigController, acknowledgment
from .events import ConfigPayload, DeviceFault, EntityUpdate, KeyEvent, RemoteCommand
from .hass import HomeAssistantClient, HomeAssistantSession
from .icons import IconResolver
from .models import ButtonSpec, PublishAction, ServiceAction
from .navigation import NavigationEngine
from .render import ButtonRenderer, RenderCache
from .state import EntityStateTracker
from .store import ConfigStore
from .transport import MqttTransport

log = logging.getLogger(__name__)

RENDER_WORKERS = 4


class DeckApp:
    """
    Owns all collaborators of one StreamDeck

    Args:
        settings: hadeck.settings.Settings
        device: DeckDevice (or a compatible fake)
        transport: MQTT transport; built from settings when None
        hass: HomeAssistantClient; built from settings when None
        connect: websockets.connect compatible factory for the session
    """

    def __init__(self, settings, device, transport=None, hass=None, connect=None):
        self.settings = settings
        self.device = device
        self._loop = None
        self._queue = None
        self._actions = set()

        self.executor = ThreadPoolExecutor(max_workers=RENDER_WORKERS, thread_name_prefix="hadeck-render")
        resolver = IconResolver(settings.assets_path, settings.vector_path, settings.vector_url,
                                settings.phosphor_url)
        self.cache = RenderCache(
            ButtonRenderer(resolver, settings.assets_path, settings.font_file),
            device.icon_size,
            font_size=settings.font_size,
            max_entries=settings.cache_size,
            executor=self.executor,
        )

        self.tracker = EntityStateTracker()
        self.navigation = NavigationEngine(device, self.cache, style=self.tracker.style)
        self.tracker.navigation = self.navigation
        self.tracker.session = HomeAssistantSession(
            settings.ha_url, settings.ha_token, self.post,
            tracked=lambda: self.tracker.tracked,
            connect=connect,
        )

        self.transport = transport or MqttTransport(settings, self.post)
        self.hass = hass or HomeAssistantClient(settings.ha_url, settings.ha_token)
        self.controller = ConfigController(
            self.navigation, self.tracker, ConfigStore(settings.state_path),
            publish_ack=self.transport.publish_ack,
        )

    def post(self, event):
        """
        Queue an event for the dispatcher; safe to call from any thread

        Events posted before run() started, or after it finished, are
        dropped.
        """
        loop = self._loop
        if loop is None or loop.is_closed():
            log.debug("Dispatcher not running, dropping %s", type(event).__name__)
            return
        loop.call_soon_threadsafe(self._queue.put_nowait, event)

    def stop(self):
        """Ask run() to shut down after the events already queued"""
        self.post(None)

    async def run(self):
        self._loop = asyncio.get_running_loop()
        self._queue = asyncio.Queue()
        try:
            self.device.attach(self.post)
            # Show the cached layout before any network connection exists
            await self.controller.load_cached()
            self.transport.start()
            self.transport.publish_discovery(self.device.info())
            self.tracker.start()

            while True:
                event = await self._queue.get()
                if event is None:
                    break
                await self.dispatch(event)
        finally:
            await self.shutdown()

    async def dispatch(self, event):
        """Handle one event; a failing handler never stops the dispatcher"""
        try:
            match event:
                case KeyEvent(key=key, pressed=True):
                    await self._key_down(key)
                case KeyEvent(key=key, pressed=False):
                    self.transport.publish_key_state(key, False)
                case ConfigPayload(payload=raw):
                    await self._config_payload(raw)
                case RemoteCommand():
                    self._remote_command(event)
                case EntityUpdate(state=state):
                    self.tracker.apply(state)
                case DeviceFault(message=message):
                    log.error("StreamDeck failure: %s", message)
                    self.transport.publish_status("error")
                case _:
                    log.warning("Unknown event: %r", event)
        except Exception:
            log.exception("Error handling %s", type(event).__name__)

    async def shutdown(self):
        log.info("Shutting down...")
        await self.tracker.stop()
        await asyncio.gather(*list(self._actions), return_exceptions=True)
        await self.navigation.drain()
        self.navigation.clear()
        self.transport.stop()
        self.device.close()
        self.executor.shutdown(wait=False)
        self._loop = None

    async def _key_down(self, key):
        self.transport.publish_key_state(key, True)
        action = await self.navigation.on_key_down(key)

        match action:
            case None:
                pass
            case ServiceAction(service=service, entity_id=entity_id, data=data):
                if not service:
                    log.warning("Key %d: Home Assistant action without service", key)
                    return
                log.info("Calling %s for %s", service, entity_id or "-")
                self._track_action(asyncio.to_thread(self.hass.call_service, service, entity_id, data))
            case PublishAction(topic=topic, payload=payload, retain=retain):
                log.info("Publishing to %s: %s", topic, payload)
                self.transport.publish(topic, payload, retain=retain)
            case _:
                log.warning("Key %d: unsupported action %r", key, action)

    async def _config_payload(self, raw):
        try:
            payload = json.loads(raw)
        except ValueError as e:
            log.error("Failed to parse config JSON: %s", e)
            self.transport.publish_ack(acknowledgment("error", raw.decode("utf-8", errors="replace"), str(e)))
            return
        await self.controller.apply_config(payload)

    def _remote_command(self, event):
        match event.kind:
            case "command":
                self.navigation.run_command(event.payload)
            case "set_brightness":
                try:
                    value = int(float(event.payload))
                except ValueError:
                    log.error("Invalid brightness value: %s", event.payload)
                    return
                self.navigation.set_brightness(value)
            case "set_image":
                self.navigation.show(ButtonSpec(key=event.key, icon=event.payload or None))
            case "set_text":
                self.navigation.show(ButtonSpec(key=event.key, text=event.payload or None, color="#000000"))
            case other:
                log.warning("Unknown remote command: %s", other)

    def _track_action(self, coro):
        task = asyncio.get_running_loop().create_task(coro)
        self._actions.add(task)
        task.add_done_callback(self._actions.discard)
