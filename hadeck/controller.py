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

"""Configuration replacement"""

import hashlib
import json
import logging
from datetime import datetime, timezone

from .errors import ValidationError
from .models import ButtonSpec, DeviceConfig

log = logging.getLogger(__name__)

WAITING_SPEC = ButtonSpec(key=0, text="Waiting", color="#333333")


def config_hash(payload):
    """Short correlation hash of a config payload (not for security)"""
    try:
        encoded = json.dumps(payload, separators=(",", ":"), ensure_ascii=False)
    except (TypeError, ValueError):
        encoded = repr(payload)
    return hashlib.md5(encoded.encode("utf-8"), usedforsecurity=False).hexdigest()[:8]


def acknowledgment(status, payload, error=None):
    return {
        "status": status,
        "configHash": config_hash(payload),
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "error": error,
    }


class ConfigController:
    """
    Applies full configuration replacements

    A payload is validated completely before anything changes. Once
    accepted it is persisted, the tracked entity set is rebuilt, the
    brightness applied and the default page rendered. Failures after
    acceptance are reported, not rolled back.
    """

    def __init__(self, navigation, tracker, store, publish_ack=None):
        """
        Args:
            navigation: NavigationEngine
            tracker: EntityStateTracker
            store: ConfigStore
            publish_ack: Callable receiving the acknowledgment dict
        """
        self.navigation = navigation
        self.tracker = tracker
        self.store = store
        self.publish_ack = publish_ack

    async def apply_config(self, payload):
        """
        Replace the running configuration

        Args:
            payload: Decoded JSON document

        Returns:
            Acknowledgment dict {status, configHash, timestamp, error}
        """
        try:
            config = DeviceConfig.from_dict(payload)
        except ValidationError as e:
            log.error("Rejected config: %s", e)
            return self._report(acknowledgment("error", payload, str(e)))

        try:
            self.store.save(payload)
            await self._install(config)
        except Exception as e:
            log.exception("Error applying config")
            return self._report(acknowledgment("error", payload, str(e) or type(e).__name__))

        log.info("Config applied successfully (%d pages)", len(config.pages))
        return self._report(acknowledgment("applied", payload))

    async def load_cached(self):
        """
        Show the last applied configuration, or a waiting screen

        Returns:
            True if a cached configuration was applied
        """
        payload = self.store.load()
        if payload is not None:
            try:
                config = DeviceConfig.from_dict(payload)
            except ValidationError as e:
                log.warning("Cached config is invalid, ignoring it: %s", e)
            else:
                log.info("Using cached config")
                await self._install(config)
                return True

        log.info("No cached config found. Waiting for config via MQTT...")
        config = DeviceConfig.empty()
        self.tracker.update_config(config)
        self.navigation.update_config(config)
        self.navigation.set_brightness(self.navigation.brightness)
        self.navigation.show(WAITING_SPEC)
        return False

    async def _install(self, config):
        self.tracker.update_config(config)
        self.navigation.update_config(config)
        await self.tracker.resync()

    def _report(self, ack):
        if self.publish_ack is not None:
            self.publish_ack(ack)
        return ack

