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
Page navigation

The engine owns the current page and the panel brightness. Key presses
either change local state (navigation, brightness, clear) or resolve to
an action that the caller carries out (Home Assistant service call,
MQTT publish).

Page renders run as tasks so the dispatcher stays responsive. Every
navigation bumps a generation counter; a render that finishes after a
newer navigation started is discarded instead of written to the deck
("last navigate wins").
"""

import asyncio
import logging

from .errors import HardwareError
from .models import DEFAULT_PAGE, CommandAction, DeviceConfig, NavigateAction

log = logging.getLogger(__name__)

DEFAULT_BRIGHTNESS = 50
BRIGHTNESS_STEP = 10
LCD_ON_FALLBACK = 100


def clamp(value):
    return max(0, min(100, int(value)))


class NavigationEngine:

    def __init__(self, device, cache, config=None, style=None, brightness=DEFAULT_BRIGHTNESS):
        """
        Args:
            device: Device collaborator (clear_key, fill_key_buffer, ...)
            cache: RenderCache for the device's icon size
            config: Initial DeviceConfig
            style: Callable mapping a ButtonSpec to its effective spec
            brightness: Initial brightness, 0-100
        """
        self.device = device
        self.cache = cache
        self.config = config or DeviceConfig.empty()
        self.style = style or (lambda spec: spec)
        self.current_page = DEFAULT_PAGE
        self.brightness = clamp(brightness)
        self._remembered_brightness = None
        self._generation = 0
        self._key_tickets = {}
        self._tasks = set()

    @property
    def generation(self):
        return self._generation

    @property
    def page(self):
        return self.config.pages.get(self.current_page)

    def update_config(self, config):
        """
        Install a new topology and show its default page

        The previously displayed page may not exist any more, so the
        default page is always the landing point.
        """
        self.config = config
        if config.brightness is not None:
            self.set_brightness(config.brightness)
        if not self.navigate_to(DEFAULT_PAGE):
            # Nothing to land on; blank the deck rather than keep stale keys
            self.current_page = DEFAULT_PAGE
            self.clear()

    def navigate_to(self, page_name):
        """
        Switch page and render it

        Returns:
            True if the page exists and the switch happened. An unknown
            page leaves the state and the deck untouched.
        """
        page = self.config.pages.get(page_name)
        if page is None:
            log.error("Page not found: %s", page_name)
            return False

        log.info("Navigating to page: %s", page_name)
        self.current_page = page_name
        self._generation += 1
        generation = self._generation

        self._clear_all()
        self._spawn(self._render_page(generation, page))
        return True

    async def on_key_down(self, key):
        """
        Handle a key press on the current page

        Returns:
            The button's action if it has to be executed by a
            collaborator, otherwise None
        """
        page = self.page
        spec = page.button(key) if page else None
        if spec is None or spec.action is None:
            return None

        match spec.action:
            case NavigateAction(page=target):
                self.navigate_to(target)
                return None
            case CommandAction(command=command, value=value):
                self.run_command(command, value)
                return None
            case action:
                return action

    def run_command(self, command, value=None):
        """
        Execute a local command

        Args:
            command: clear, brightness_up, brightness_down,
                     set_brightness, lcd_on or lcd_off
            value: Optional step or absolute brightness
        """
        match command:
            case "clear":
                self.clear()
            case "brightness_up":
                self.set_brightness(self.brightness + (BRIGHTNESS_STEP if value is None else value))
            case "brightness_down":
                self.set_brightness(self.brightness - (BRIGHTNESS_STEP if value is None else value))
            case "set_brightness":
                if value is None:
                    log.warning("set_brightness without value ignored")
                    return
                self.set_brightness(value)
            case "lcd_off":
                if self.brightness > 0:
                    self._remembered_brightness = self.brightness
                self.set_brightness(0)
                log.info("LCD turned off")
            case "lcd_on":
                self.set_brightness(self._remembered_brightness or LCD_ON_FALLBACK)
                log.info("LCD turned on (brightness: %d%%)", self.brightness)
            case _:
                log.warning("Unknown command: %s", command)

    def set_brightness(self, value):
        self.brightness = clamp(value)
        log.debug("Brightness set to %d%%", self.brightness)
        try:
            self.device.set_brightness(self.brightness)
        except HardwareError as e:
            log.error("Failed to set brightness: %s", e)

    def clear(self):
        """Blank every key and drop renders still in flight"""
        self._generation += 1
        self._clear_all()

    def refresh_key(self, spec):
        """Re-render one key of the current page with its effective spec"""
        self._spawn(self._render_key(self._generation, spec))

    def show(self, spec):
        """Draw a one-off spec (remote set_image / set_text) on its key"""
        self._spawn(self._render_key(self._generation, spec, styled=False))

    async def drain(self):
        """Wait for all pending renders"""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    def _spawn(self, coro):
        task = asyncio.get_running_loop().create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def _render_page(self, generation, page):
        for spec in page.buttons:
            if not await self._render_key(generation, spec):
                log.debug("Discarding stale render of page %s", page.name)
                return

    async def _render_key(self, generation, spec, styled=True):
        """
        Render and push one key

        Every render of a key draws a ticket; only the latest ticket of
        that key may write, so a slow render never overwrites a newer
        one on the same page.

        Returns:
            False if the render went stale, True otherwise (including
            failures and renders overtaken by a newer one of the same
            key, which never stop the rest of a page)
        """
        if generation != self._generation:
            return False
        if spec.key >= self.device.key_count:
            log.warning("Key %d outside of device (%d keys)", spec.key, self.device.key_count)
            return True

        ticket = self._key_tickets.get(spec.key, 0) + 1
        self._key_tickets[spec.key] = ticket

        try:
            effective = self.style(spec) if styled else spec
            pixels = await self.cache.render_async(effective)
        except Exception:
            log.exception("Error rendering key %d", spec.key)
            return True

        if generation != self._generation:
            return False
        if ticket != self._key_tickets[spec.key]:
            log.debug("Discarding overtaken render of key %d", spec.key)
            return True
        if pixels is not None:
            try:
                self.device.fill_key_buffer(spec.key, pixels)
            except HardwareError as e:
                log.error("Error pushing key %d: %s", spec.key, e)
        return True

    def _clear_all(self):
        for key in range(self.device.key_count):
            try:
                self.device.clear_key(key)
            except HardwareError as e:
                log.error("Error clearing keys: %s", e)
                return
