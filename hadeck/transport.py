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
MQTT transport

Topics below streamdeck/<device id>:

    config/set            in   full config replacement (JSON)
    command               in   'clear' or any local command name
    set_brightness        in   0-100
    key/<i>/set_image     in   '#RRGGBB' or image URL
    key/<i>/set_text      in   plain text
    status                out  online / offline (last will) / error
    discovery             out  device description (retained)
    config/status         out  config acknowledgment (retained)
    key/<i>/state         out  pressed / released
"""

import json
import logging
from datetime import datetime, timezone

import paho.mqtt.client as mqtt

from .events import ConfigPayload, RemoteCommand

log = logging.getLogger(__name__)

KEEPALIVE = 60


def _is_success(reason_code):
    # paho 2.x passes ReasonCode objects, 1.x plain ints
    if hasattr(reason_code, "is_failure"):
        return not reason_code.is_failure
    return reason_code == 0


class MqttTransport:
    """
    paho-mqtt client bound to one device's topic tree

    paho runs its network loop on its own thread and reconnects on its
    own; inbound messages are translated into dispatcher events and
    handed to sink, which must be thread-safe.
    """

    def __init__(self, settings, sink, client=None):
        """
        Args:
            settings: hadeck.settings.Settings
            sink: Thread-safe callable receiving ConfigPayload and
                  RemoteCommand events
            client: Preconfigured paho client (tests)
        """
        self.settings = settings
        self.base = settings.base_topic
        self.sink = sink
        self.discovery = None
        if client is None:
            callback_kwargs = {}
            if hasattr(mqtt, "CallbackAPIVersion"):
                callback_kwargs["callback_api_version"] = mqtt.CallbackAPIVersion.VERSION2
            client = mqtt.Client(**callback_kwargs)
        self.client = client
        self.client.on_connect = self.on_connect
        self.client.on_disconnect = self.on_disconnect
        self.client.on_message = self.on_message

    def topic(self, *parts):
        return "/".join((self.base,) + tuple(str(p) for p in parts))

    def start(self):
        host, port, tls = self.settings.mqtt_endpoint
        if self.settings.mqtt_user:
            self.client.username_pw_set(self.settings.mqtt_user, self.settings.mqtt_password)
        if tls:
            self.client.tls_set()
        self.client.will_set(self.topic("status"), payload="offline", qos=1, retain=True)
        self.client.reconnect_delay_set(min_delay=1, max_delay=30)

        log.info("Connecting to MQTT broker %s:%d", host, port)
        self.client.connect_async(host, port, keepalive=KEEPALIVE)
        self.client.loop_start()

    def stop(self):
        self.publish(self.topic("status"), "offline", qos=1, retain=True)
        self.client.disconnect()
        self.client.loop_stop()

    def on_connect(self, client, _userdata, _flags, reason_code, properties=None):
        if not _is_success(reason_code):
            log.error("MQTT connection failed (reason=%s)", reason_code)
            return
        log.info("Connected to MQTT broker")
        for topic in (
            self.topic("config", "set"),
            self.topic("command"),
            self.topic("set_brightness"),
            self.topic("key", "+", "set_image"),
            self.topic("key", "+", "set_text"),
        ):
            client.subscribe(topic)
        self.publish(self.topic("status"), "online", qos=1, retain=True)
        if self.discovery is not None:
            self.publish_discovery(self.discovery)

    def on_disconnect(self, _client, _userdata, *args):
        # paho 1.x: (rc), paho 2.x: (flags, reason_code, properties)
        reason = args[1] if len(args) > 1 else (args[0] if args else None)
        log.warning("Disconnected from MQTT broker (reason=%s), paho will reconnect", reason)

    def on_message(self, _client, _userdata, msg):
        topic = msg.topic
        if topic == self.topic("config", "set"):
            log.info("Received config update via MQTT")
            self.sink(ConfigPayload(bytes(msg.payload)))
            return

        text = bytes(msg.payload).decode("utf-8", errors="replace").strip()
        if topic == self.topic("command"):
            self.sink(RemoteCommand("command", text))
        elif topic == self.topic("set_brightness"):
            self.sink(RemoteCommand("set_brightness", text))
        elif topic.startswith(self.topic("key") + "/"):
            parts = topic[len(self.base) + 1:].split("/")  # key/<i>/<kind>
            try:
                key = int(parts[1])
            except (IndexError, ValueError):
                log.warning("Ignoring message on malformed key topic %s", topic)
                return
            self.sink(RemoteCommand(parts[2], text, key=key))
        else:
            log.debug("Received message on unexpected topic %s", topic)

    def publish(self, topic, payload, qos=0, retain=False):
        """
        Publish without raising

        Returns:
            True if paho accepted the message for delivery
        """
        result = self.client.publish(topic, payload, qos=qos, retain=retain)
        if result.rc != mqtt.MQTT_ERR_SUCCESS:
            log.warning("Publish to %s failed: %s", topic, mqtt.error_string(result.rc))
            return False
        return True

    def publish_key_state(self, key, pressed):
        self.publish(self.topic("key", key, "state"), "pressed" if pressed else "released")

    def publish_ack(self, ack):
        self.publish(self.topic("config", "status"), json.dumps(ack), qos=1, retain=True)

    def publish_status(self, status):
        self.publish(self.topic("status"), status, qos=1, retain=True)

    def publish_discovery(self, info):
        """Announce the device; republished after every reconnect"""
        self.discovery = info
        payload = dict(info, timestamp=datetime.now(timezone.utc).isoformat())
        self.publish(self.topic("discovery"), json.dumps(payload), qos=1, retain=True)
