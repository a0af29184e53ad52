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

import argparse
import asyncio
import logging
import time

from .app import DeckApp
from .device import DeckDevice, open_first_deck
from .settings import Settings

log = logging.getLogger("hadeck")

DECK_RETRY_DELAY = 5     # Seconds between device scans


def wait_for_deck():
    """Block until a visual StreamDeck is plugged in"""
    while True:
        deck = open_first_deck()
        if deck is not None:
            return deck
        log.warning("No StreamDeck found, retrying in %ds", DECK_RETRY_DELAY)
        time.sleep(DECK_RETRY_DELAY)


def main(argv=None):
    ap = argparse.ArgumentParser(
        prog='hadeck',
        description='StreamDeck panel for Home Assistant, configured over MQTT'
    )
    ap.add_argument('configfile', nargs='?', help='Path to configuration INI file')
    ap.add_argument('-v', '--verbose', action='store_true', help='Enable debug logging')
    args = ap.parse_args(argv)

    settings = Settings.load(args.configfile)
    logging.basicConfig(
        level=logging.DEBUG if (args.verbose or settings.verbose) else logging.INFO,
        format="%(asctime)s %(levelname)-7s %(name)s: %(message)s",
    )
    log.info("Device id: %s (base topic %s)", settings.device_id, settings.base_topic)

    try:
        device = DeckDevice(wait_for_deck())
        log.info("Deck layout: %d x %d keys, %dpx icons", device.columns, device.rows, device.icon_size)
        asyncio.run(DeckApp(settings, device).run())
    except KeyboardInterrupt:
        log.info("Interrupted")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
