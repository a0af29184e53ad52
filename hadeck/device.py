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

"""StreamDeck hardware adapter"""

import logging

from PIL import Image
from StreamDeck.DeviceManager import DeviceManager
from StreamDeck.ImageHelpers import PILHelper
from StreamDeck.Transport.Transport import TransportError as DeckTransportError

from .errors import HardwareError
from .events import DeviceFault, KeyEvent

log = logging.getLogger(__name__)


def open_first_deck():
    """
    Enumerate StreamDecks and open the first visual one

    Non-visual devices (e.g. Stream Deck Pedal) are skipped.

    Returns:
        Opened and reset StreamDeck, or None if no usable deck is found
    """
    decks = DeviceManager().enumerate()
    log.info("Found %d deck(s)", len(decks))

    for deck in decks:
        if not deck.is_visual():
            continue

        deck.open()
        deck.reset()
        log.info("Opened '%s' device (serial number: '%s', fw: '%s')",
                 deck.deck_type(), deck.get_serial_number(), deck.get_firmware_version())
        return deck
    return None


class DeckDevice:
    """
    Device collaborator over a python-elgato-streamdeck deck

    Pixels arrive as raw RGB buffers of icon_size x icon_size and are
    converted to the deck's native key format here. Every call holds
    the deck lock. After a transport failure the device is marked
    unusable and further I/O raises HardwareError until the process
    reopens it.
    """

    def __init__(self, deck):
        self.deck = deck
        self.usable = True
        self.rows, self.columns = deck.key_layout()  # returns (rows, cols)
        self.icon_size = deck.key_image_format()['size'][0]
        self._sink = None

    @property
    def key_count(self):
        return self.deck.key_count()

    def info(self):
        """Device description published on the discovery topic"""
        with self.deck:
            return {
                "model": self.deck.deck_type(),
                "serial": self.deck.get_serial_number(),
                "firmware": self.deck.get_firmware_version(),
                "columns": self.columns,
                "rows": self.rows,
                "keyCount": self.key_count,
                "iconSize": self.icon_size,
                "capabilities": {"brightness": True, "lcd": False},
            }

    def attach(self, sink):
        """
        Forward hardware key callbacks as KeyEvent messages

        Args:
            sink: Thread-safe callable accepting one event; the
                  StreamDeck library calls back from its reader thread
        """
        def key_change_callback(deck, key, state):
            log.debug("Deck %s key %d = %s", deck.id(), key, state)
            sink(KeyEvent(key=key, pressed=bool(state)))

        self.deck.set_key_callback(key_change_callback)
        self._sink = sink

    def clear_key(self, key):
        self._io(self.deck.set_key_image, key, None)

    def fill_key_buffer(self, key, pixels):
        image = Image.frombytes("RGB", (self.icon_size, self.icon_size), pixels)
        native = PILHelper.to_native_key_format(self.deck, image)
        self._io(self.deck.set_key_image, key, native)

    def set_brightness(self, percent):
        self._io(self.deck.set_brightness, max(0, min(100, int(percent))))

    def close(self):
        if not self.usable:
            return
        try:
            with self.deck:
                self.deck.reset()
                self.deck.close()
        except DeckTransportError as e:
            log.warning("Error closing deck: %s", e)
        self.usable = False

    def _io(self, func, *args):
        if not self.usable:
            raise HardwareError("Device unusable")
        try:
            with self.deck:
                func(*args)
        except DeckTransportError as e:
            self.usable = False
            if self._sink is not None:
                self._sink(DeviceFault(str(e)))
            raise HardwareError(str(e)) from e
