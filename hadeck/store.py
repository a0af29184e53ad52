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

"""Last-known-good configuration on local disk"""

import json
import logging
import os
import tempfile

log = logging.getLogger(__name__)


class ConfigStore:
    """
    One JSON document holding the last applied configuration

    Read at startup before any network connection so the deck shows
    something immediately; overwritten after every accepted config.
    """

    def __init__(self, path):
        self.path = path

    def load(self):
        """
        Returns:
            The stored payload as dict, or None if missing or unreadable
        """
        try:
            with open(self.path, encoding="utf-8") as f:
                payload = json.load(f)
        except FileNotFoundError:
            return None
        except (OSError, ValueError) as e:
            log.warning("Ignoring unreadable cached config %s: %s", self.path, e)
            return None
        if not isinstance(payload, dict):
            log.warning("Ignoring cached config %s: not an object", self.path)
            return None
        return payload

    def save(self, payload):
        """Write atomically: temp file in the same directory, then rename"""
        directory = os.path.dirname(os.path.abspath(self.path))
        os.makedirs(directory, exist_ok=True)
        fd, tmp = tempfile.mkstemp(prefix=".config-", suffix=".json", dir=directory)
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(payload, f, indent=2)
            os.replace(tmp, self.path)
        except BaseException:
            os.unlink(tmp)
            raise
        log.debug("Saved config to %s", self.path)
