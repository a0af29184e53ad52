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
Key rendering and the content-addressed render cache

Rendering pipeline for one key:
    ButtonSpec -> canonicalize() -> VisualKey -> ButtonRenderer -> raw RGB bytes

The VisualKey is the only input of the renderer and the only input of
the cache hash, so what is cached is always what is drawn.
"""

import asyncio
import hashlib
import json
import logging
import os
from collections import OrderedDict
from dataclasses import asdict, dataclass

from PIL import Image, ImageColor, ImageDraw, ImageFont

from .icons import IconResolver
from .models import Align

log = logging.getLogger(__name__)

DEFAULT_BACKGROUND = "#333333"
DEFAULT_ICON_COLOR = "#ffffff"
DEFAULT_TEXT_COLOR = "#ffffff"
DEFAULT_ALIGN = Align.MIDDLE

TEXT_PADDING = 4        # Horizontal/vertical margin for titles
LINE_SPACING = 2
FONT_FILE = "Roboto-Regular.ttf"


@dataclass(frozen=True)
class VisualKey:
    """
    Canonical visual intent of a key

    Two buttons with equal VisualKeys render to identical bytes, no
    matter which page or key index they come from.
    """
    size: int
    background: str
    text: str | None = None
    icon: str | None = None
    icon_color: str = DEFAULT_ICON_COLOR
    text_color: str = DEFAULT_TEXT_COLOR
    align: str = DEFAULT_ALIGN.value
    font_size: int = 14

    @property
    def digest(self):
        """Canonical hash used as cache key"""
        encoded = json.dumps(asdict(self), sort_keys=True, separators=(",", ":"))
        return hashlib.sha1(encoded.encode("utf-8")).hexdigest()


def normalize_color(value, default):
    """
    Parse any PIL color string to lowercase '#rrggbb'

    Invalid colors fall back to the default so that two equally
    invalid specs still share one cache slot.
    """
    if not value:
        return default
    try:
        rgb = ImageColor.getrgb(value)
    except ValueError:
        log.warning("Invalid color %r, using %s", value, default)
        return default
    return "#{:02x}{:02x}{:02x}".format(*rgb[:3])


def hex_to_rgb(color):
    color = color.lstrip("#")
    return tuple(int(color[i:i + 2], 16) for i in (0, 2, 4))


def canonicalize(spec, size, font_size=14):
    """
    Substitute defaults for absent visual fields

    Args:
        spec: ButtonSpec (usually the effective spec)
        size: Device icon size in pixels
        font_size: Title font size

    Returns:
        VisualKey, or None when the spec has nothing to draw (no color,
        icon or text); such keys are left untouched on the device.
    """
    if not (spec.color or spec.icon or spec.text):
        return None

    background = spec.color
    icon = spec.icon
    # A plain color as icon is a background fill
    if icon and icon.startswith("#"):
        background = icon
        icon = None

    align = spec.align or DEFAULT_ALIGN
    return VisualKey(
        size=size,
        background=normalize_color(background, DEFAULT_BACKGROUND),
        text=spec.text or None,
        icon=icon,
        # Tint only matters when there is an icon to tint
        icon_color=normalize_color(spec.icon_color, DEFAULT_ICON_COLOR) if icon else DEFAULT_ICON_COLOR,
        text_color=normalize_color(spec.text_color, DEFAULT_TEXT_COLOR) if spec.text else DEFAULT_TEXT_COLOR,
        align=align.value,
        font_size=font_size,
    )


class ButtonRenderer:
    """
    Composes background, icon and title into a raw RGB buffer

    Layers, bottom to top:
    1. Flat background color
    2. Icon (cover fit for bitmaps, padded contain fit for vectors)
    3. Word-wrapped title, recolored through its alpha mask
    """

    def __init__(self, resolver: IconResolver, assets_path=None, font_file=FONT_FILE):
        """
        Args:
            resolver: IconResolver for the icon layer
            assets_path: Directory searched for a relative font_file
            font_file: TrueType font for titles, absolute or relative to
                       assets_path. Falls back to the PIL default font.
        """
        self.resolver = resolver
        self.assets_path = assets_path
        self.font_file = font_file
        self._fonts = {}

    def render(self, visual: VisualKey):
        """
        Render one key

        Never raises: an icon failure degrades to background only, any
        other failure is logged and a background-only buffer returned.

        Returns:
            bytes of length size * size * 3
        """
        try:
            if visual.icon is None and visual.text is None:
                # Fast path: plain color fill
                return bytes(hex_to_rgb(visual.background)) * (visual.size * visual.size)
            return self._compose(visual).convert("RGB").tobytes()
        except Exception:
            log.exception("Rendering failed for %s, falling back to background", visual)
            return bytes(hex_to_rgb(visual.background)) * (visual.size * visual.size)

    def _compose(self, visual):
        size = visual.size
        image = Image.new("RGBA", (size, size), visual.background)

        if visual.icon is not None:
            resolved = self.resolver.resolve(visual.icon, size, visual.icon_color, visual.background)
            if not resolved.degraded:
                image.alpha_composite(resolved.image)

        if visual.text is not None:
            self._draw_title(image, visual)

        return image

    def font(self, font_size):
        font = self._fonts.get(font_size)
        if font is None:
            font = self._load_font(font_size)
            self._fonts[font_size] = font
        return font

    def font_path(self):
        if not self.font_file:
            return None
        if os.path.isabs(self.font_file):
            return self.font_file
        if self.assets_path:
            return os.path.join(self.assets_path, self.font_file)
        return None

    def _load_font(self, font_size):
        path = self.font_path()
        if path:
            try:
                return ImageFont.truetype(path, font_size)
            except OSError:
                log.warning("Font %s not available, using PIL default font", path)
        return ImageFont.load_default(size=font_size)

    def _draw_title(self, image, visual):
        size = visual.size
        font = self.font(visual.font_size)
        lines = wrap_text(visual.text, font, size - 2 * TEXT_PADDING)
        if not lines:
            return

        line_height = font.getbbox("Ag")[3]
        block_height = len(lines) * line_height + (len(lines) - 1) * LINE_SPACING

        match visual.align:
            case "top":
                y = TEXT_PADDING
            case "bottom":
                y = size - TEXT_PADDING - block_height
            case _:
                y = (size - block_height) // 2

        # Draw into a mask, then fill the mask with the text color so
        # anti-aliased edges keep their partial alpha
        mask = Image.new("L", (size, size), 0)
        draw = ImageDraw.Draw(mask)
        for line in lines:
            width = font.getlength(line)
            draw.text(((size - width) / 2, y), line, font=font, fill=255)
            y += line_height + LINE_SPACING

        layer = Image.new("RGBA", (size, size), visual.text_color)
        layer.putalpha(mask)
        image.alpha_composite(layer)


def wrap_text(text, font, max_width):
    """
    Greedy word wrap honoring explicit newlines

    Words wider than max_width are split at character level.
    """
    lines = []
    for paragraph in text.split("\n"):
        current = ""
        for word in paragraph.split():
            candidate = word if not current else current + " " + word
            if font.getlength(candidate) <= max_width:
                current = candidate
                continue
            if current:
                lines.append(current)
                current = ""
            # Hard-wrap long tokens
            while font.getlength(word) > max_width and len(word) > 1:
                cut = len(word) - 1
                while cut > 1 and font.getlength(word[:cut]) > max_width:
                    cut -= 1
                lines.append(word[:cut])
                word = word[cut:]
            current = word
        lines.append(current)

    # Drop leading/trailing blank lines but keep inner ones
    while lines and not lines[-1]:
        lines.pop()
    while lines and not lines[0]:
        lines.pop(0)
    return lines


class RenderCache:
    """
    Content-addressed cache in front of a ButtonRenderer

    Entries are keyed by VisualKey.digest and never overwritten. With
    max_entries set the cache evicts least recently used entries,
    otherwise entries live for the process lifetime.
    """

    def __init__(self, renderer, size, font_size=14, max_entries=None, executor=None):
        self.renderer = renderer
        self.size = size
        self.font_size = font_size
        self.max_entries = max_entries
        self.executor = executor
        self.hits = 0
        self.misses = 0
        self._entries = OrderedDict()
        self._inflight = {}

    def __len__(self):
        return len(self._entries)

    def __contains__(self, digest):
        return digest in self._entries

    def visual(self, spec):
        return canonicalize(spec, self.size, self.font_size)

    def render(self, spec):
        """
        Pixels for a button, rendering on first use

        Returns:
            bytes, or None when the spec has nothing to draw
        """
        visual = self.visual(spec)
        if visual is None:
            return None
        digest = visual.digest
        cached = self._lookup(digest)
        if cached is not None:
            return cached
        self.misses += 1
        return self._store(digest, self.renderer.render(visual))

    async def render_async(self, spec):
        """
        Like render(), rasterizing on a worker thread

        Must be called from the event loop thread; the cache itself is
        only touched there. Concurrent requests for the same visual
        share one rendering job.
        """
        visual = self.visual(spec)
        if visual is None:
            return None
        digest = visual.digest
        cached = self._lookup(digest)
        if cached is not None:
            return cached

        job = self._inflight.get(digest)
        if job is not None:
            self.hits += 1
            return await asyncio.shield(job)

        self.misses += 1
        loop = asyncio.get_running_loop()
        job = loop.run_in_executor(self.executor, self.renderer.render, visual)
        self._inflight[digest] = job
        try:
            pixels = await asyncio.shield(job)
        finally:
            self._inflight.pop(digest, None)
        return self._store(digest, pixels)

    def _lookup(self, digest):
        pixels = self._entries.get(digest)
        if pixels is not None:
            self.hits += 1
            self._entries.move_to_end(digest)
        return pixels

    def _store(self, digest, pixels):
        # First writer wins; entries are immutable
        pixels = self._entries.setdefault(digest, pixels)
        self._entries.move_to_end(digest)
        if self.max_entries is not None:
            while len(self._entries) > self.max_entries:
                evicted, _ = self._entries.popitem(last=False)
                log.debug("Evicted render cache entry %s", evicted)
        return pixels
