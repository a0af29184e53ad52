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

"""Messages fed into the serialized dispatcher (hadeck.app)"""

from dataclasses import dataclass

from .models import EntityState


@dataclass(frozen=True)
class KeyEvent:
    key: int
    pressed: bool


@dataclass(frozen=True)
class ConfigPayload:
    """Raw config/set message body"""
    payload: bytes


@dataclass(frozen=True)
class RemoteCommand:
    """
    Direct remote control request

    kind is one of 'command', 'set_brightness', 'set_image',
    'set_text'; key is only used by the per-key kinds.
    """
    kind: str
    payload: str
    key: int | None = None


@dataclass(frozen=True)
class EntityUpdate:
    state: EntityState


@dataclass(frozen=True)
class DeviceFault:
    message: str
