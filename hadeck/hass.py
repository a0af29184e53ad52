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
Home Assistant connectivity

HomeAssistantClient  REST service calls for 'ha' button actions
HomeAssistantSession long-lived websocket feeding entity state changes
                     into the dispatcher
"""

import asyncio
import itertools
import json
import logging

import requests
import websockets

from .errors import TransportError
from .events import EntityUpdate
from .models import EntityState

log = logging.getLogger(__name__)

RECONNECT_DELAY = 5         # Seconds between reconnect attempts
SERVICE_TIMEOUT = 10        # Seconds for REST service calls
MAX_MESSAGE_SIZE = 10485760  # get_states can be large on big installs


def normalize_url(url):
    """Strip trailing slash and default to http://"""
    url = (url or "").strip().rstrip("/")
    if url and not url.startswith(("http://", "https://")):
        url = "http://" + url
    return url


def websocket_url(url):
    url = normalize_url(url)
    if url.startswith("https://"):
        return "wss://" + url[len("https://"):] + "/api/websocket"
    return "ws://" + url[len("http://"):] + "/api/websocket"


class HomeAssistantClient:
    """Calls Home Assistant services over the REST API"""

    def __init__(self, url, token, session=None):
        self.base_url = normalize_url(url)
        self.token = token
        self.session = session or requests.Session()

    def call_service(self, service, entity_id=None, data=None):
        """
        POST /api/services/<domain>/<service>

        Blocking; the dispatcher runs it on a worker thread.

        Returns:
            True on success. Failures are logged, never raised.
        """
        if not self.token or not self.base_url:
            log.error("HOMEASSISTANT_TOKEN not set, cannot call API")
            return False

        domain, _, name = service.partition(".")
        if not domain or not name:
            log.error("Invalid service format: %s. Expected domain.service", service)
            return False

        payload = dict(data or {})
        if entity_id:
            payload["entity_id"] = entity_id

        url = "{}/api/services/{}/{}".format(self.base_url, domain, name)
        try:
            response = self.session.post(
                url,
                headers={"Authorization": "Bearer {}".format(self.token)},
                json=payload,
                timeout=SERVICE_TIMEOUT,
            )
        except requests.RequestException as e:
            log.error("Failed to call Home Assistant API: %s", e)
            return False

        if not response.ok:
            log.error("Home Assistant API Error (%s): %s", response.status_code, response.text)
            return False
        return True


class HomeAssistantSession:
    """
    State-change subscription over the Home Assistant websocket API

    On every (re)connect the session authenticates, subscribes to
    state_changed events and fetches a full snapshot so that entities
    unchanged since the last connection are still synchronized. Lost
    connections are retried every RECONNECT_DELAY seconds, forever.

    The session only posts EntityUpdate events for ids in the tracked
    set; it never touches tracker state itself.
    """

    def __init__(self, url, token, sink, tracked, reconnect_delay=RECONNECT_DELAY, connect=None):
        """
        Args:
            url: Home Assistant base URL (http/https)
            token: Long-lived access token
            sink: Callable receiving EntityUpdate events
            tracked: Callable returning the current set of tracked ids
            reconnect_delay: Seconds to wait before reconnecting
            connect: websockets.connect compatible factory
        """
        self.url = normalize_url(url)
        self.token = token
        self.sink = sink
        self.tracked = tracked
        self.reconnect_delay = reconnect_delay
        self._connect = connect or websockets.connect
        self._ids = itertools.count(1)
        self._ws = None
        self._subscribed = False
        self._snapshot_id = None
        self._task = None

    @property
    def enabled(self):
        return bool(self.url and self.token)

    @property
    def connected(self):
        return self._ws is not None

    def start(self):
        if not self.enabled:
            log.warning("No Home Assistant URL/token configured, state tracking disabled")
            return None
        self._task = asyncio.get_running_loop().create_task(self.run())
        return self._task

    async def stop(self):
        """Cancel the session, including a pending reconnect wait"""
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        except Exception:
            log.exception("Home Assistant session ended with an error")
        self._task = None

    async def run(self):
        while True:
            try:
                await self._session()
            except (OSError, ValueError, websockets.exceptions.WebSocketException, TransportError) as e:
                log.warning("Home Assistant connection lost: %s", e)
            except Exception:
                log.exception("Unexpected error in Home Assistant session")
            finally:
                self._ws = None
                self._subscribed = False
                self._snapshot_id = None
            log.info("Reconnecting to Home Assistant in %ss", self.reconnect_delay)
            await asyncio.sleep(self.reconnect_delay)

    async def refresh(self):
        """
        React to a changed tracked set

        Subscribes if this is the first time entities are tracked on
        the current connection, otherwise re-fetches the snapshot so
        newly tracked entities get their current values.
        """
        if self._ws is None or not self.tracked():
            return
        try:
            if not self._subscribed:
                await self._subscribe()
            else:
                await self._fetch_states()
        except websockets.exceptions.WebSocketException as e:
            # The reader loop notices the broken connection and reconnects
            log.warning("Subscription refresh failed: %s", e)

    async def _session(self):
        log.info("Connecting to %s", websocket_url(self.url))
        async with self._connect(websocket_url(self.url), max_size=MAX_MESSAGE_SIZE) as ws:
            await self._authenticate(ws)
            self._ws = ws
            log.info("Connected to Home Assistant")
            if self.tracked():
                await self._subscribe()
            async for message in ws:
                message = json.loads(message)
                if not isinstance(message, dict):
                    log.warning("Ignoring non-object message from Home Assistant: %r", message)
                    continue
                self._handle(message)
        raise TransportError("Connection closed")

    async def _authenticate(self, ws):
        message = json.loads(await ws.recv())
        if message.get("type") == "auth_required":
            await ws.send(json.dumps({"type": "auth", "access_token": self.token}))
            message = json.loads(await ws.recv())
        if message.get("type") != "auth_ok":
            raise TransportError("Authentication failed: {}".format(message.get("message", message.get("type"))))

    async def _subscribe(self):
        await self._send({"type": "subscribe_events", "event_type": "state_changed"})
        self._subscribed = True
        await self._fetch_states()

    async def _fetch_states(self):
        self._snapshot_id = await self._send({"type": "get_states"})

    async def _send(self, message):
        message_id = next(self._ids)
        await self._ws.send(json.dumps(dict(message, id=message_id)))
        return message_id

    def _handle(self, message):
        match message.get("type"):
            case "event":
                event = message.get("event") or {}
                if event.get("event_type") != "state_changed":
                    return
                new_state = (event.get("data") or {}).get("new_state")
                if new_state and new_state.get("entity_id") in self.tracked():
                    self.sink(EntityUpdate(EntityState.from_ha(new_state)))
            case "result":
                if not message.get("success"):
                    log.warning("Home Assistant request %s failed: %s", message.get("id"), message.get("error"))
                    return
                if message.get("id") != self._snapshot_id or not isinstance(message.get("result"), list):
                    return
                tracked = self.tracked()
                for raw in message["result"]:
                    if raw.get("entity_id") in tracked:
                        self.sink(EntityUpdate(EntityState.from_ha(raw)))
