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
Icon resolution

Supported descriptors:
    vector:<name>   SVG icon from the configured vector set, tinted and rasterized
    ph:<name>       Phosphor icon (regular weight), tinted and rasterized
    local:<path>    image file relative to the assets directory
    http(s)://...   remote image

Plain '#RRGGBB' descriptors are folded into the background color by
hadeck.render.canonicalize and never reach this module.
"""

import functools as ft
import io
import logging
import os
from typing import NamedTuple

import requests
from lxml import etree
from PIL import Image, ImageOps, UnidentifiedImageError

from .errors import ResolutionError

log = logging.getLogger(__name__)

VECTOR_PADDING = 8          # Inset around vector icons (contain fit)
DOWNLOAD_TIMEOUT = 5        # Seconds
DEFAULT_VECTOR_URL = "https://raw.githubusercontent.com/Templarian/MaterialDesign/master/svg/{name}.svg"
DEFAULT_PHOSPHOR_URL = "https://raw.githubusercontent.com/phosphor-icons/core/main/assets/regular/{name}.svg"
PHOSPHOR_DIR = "phosphor"   # Subdirectory of the vector path for local Phosphor SVGs


class ResolvedIcon(NamedTuple):
    """
    A full-size RGBA layer ready for alpha compositing

    degraded is True when the source failed and image is the
    solid background placeholder.
    """
    image: Image.Image
    degraded: bool = False


def _download(url):
    """Download raw bytes, raising ResolutionError on any failure"""
    log.debug("Downloading %s", url)
    try:
        response = requests.get(url, timeout=DOWNLOAD_TIMEOUT)
        response.raise_for_status()
    except requests.RequestException as e:
        raise ResolutionError("Download failed for {}: {}".format(url, e)) from e
    return response.content


@ft.lru_cache(maxsize=128)
def _download_vector(url):
    """Download an SVG icon source, kept for the lifetime of the process"""
    return _download(url)


def tint_svg(svg_content, color):
    """
    Rewrite the fill of an SVG document to a single color

    Every fill attribute except "none" is replaced, as is any
    currentColor reference, and the root element gets the fill too so
    that paths without their own fill pick it up.

    Args:
        svg_content: SVG document as bytes
        color: Hex color, e.g. '#ffffff'

    Returns:
        Modified SVG as bytes
    """
    try:
        root = etree.fromstring(svg_content)
    except etree.XMLSyntaxError as e:
        raise ResolutionError("Invalid SVG: {}".format(e)) from e

    for element in root.iter():
        if not isinstance(element.tag, str):
            continue  # comments, processing instructions
        fill = element.attrib.get("fill")
        if fill is not None and fill != "none":
            element.attrib["fill"] = color
        if element.attrib.get("stroke") == "currentColor":
            element.attrib["stroke"] = color
    root.attrib["fill"] = color
    root.attrib["color"] = color
    return etree.tostring(root)


def cover_fit(image, size):
    """Scale preserving aspect ratio and center-crop to fill size x size"""
    return ImageOps.fit(image, (size, size), Image.LANCZOS)


def contain_fit(image, size, padding):
    """Scale preserving aspect ratio into the padded square and center it"""
    inner = max(1, size - 2 * padding)
    fitted = ImageOps.contain(image, (inner, inner), Image.LANCZOS)
    layer = Image.new("RGBA", (size, size), (0, 0, 0, 0))
    layer.paste(fitted, ((size - fitted.width) // 2, (size - fitted.height) // 2))
    return layer


class IconResolver:
    """
    Turns icon descriptors into RGBA layers

    The resolver has no cache of its own; identical (descriptor, tint,
    size) always produce identical pixels, so the render cache in front
    of the renderer covers it.
    """

    def __init__(self, assets_path, vector_path=None, vector_url=DEFAULT_VECTOR_URL,
                 phosphor_url=DEFAULT_PHOSPHOR_URL):
        """
        Args:
            assets_path: Base directory for local: descriptors
            vector_path: Directory holding <name>.svg vector icons, and
                         Phosphor icons in its 'phosphor' subdirectory
            vector_url: URL template with {name} for vector: icons, used
                        when an SVG is not found locally. None disables
                        downloading.
            phosphor_url: Same for ph: icons
        """
        self.assets_path = assets_path
        self.vector_path = vector_path or os.path.join(assets_path, "icons")
        self.vector_url = vector_url
        self.phosphor_url = phosphor_url

    def resolve(self, descriptor, size, tint="#ffffff", background="#333333"):
        """
        Resolve an icon descriptor

        Args:
            descriptor: Icon descriptor string
            size: Key icon size in pixels
            tint: Hex color applied to vector icons
            background: Hex color of the placeholder on failure

        Returns:
            ResolvedIcon; never raises
        """
        try:
            return ResolvedIcon(self._load(descriptor, size, tint))
        except ResolutionError as e:
            log.warning("Icon %s unavailable, using placeholder: %s", descriptor, e)
            return ResolvedIcon(Image.new("RGBA", (size, size), background), degraded=True)

    def _load(self, descriptor, size, tint):
        kind, _, ref = descriptor.partition(":")
        match kind:
            case "vector" | "ph":
                return contain_fit(self._rasterize_vector(kind, ref, size, tint), size, VECTOR_PADDING)
            case "local":
                path = ref if os.path.isabs(ref) else os.path.join(self.assets_path, ref)
                try:
                    with open(path, "rb") as f:
                        data = f.read()
                except OSError as e:
                    raise ResolutionError("Cannot read {}: {}".format(path, e)) from e
                return cover_fit(_decode(data), size)
            case "http" | "https":
                return cover_fit(_decode(_download(descriptor)), size)
            case _:
                raise ResolutionError("Unknown icon descriptor {!r}".format(descriptor))

    def _vector_source(self, kind, name):
        name = name.strip().lower()
        if not name or "/" in name or "\\" in name or name.startswith("."):
            raise ResolutionError("Invalid vector icon name {!r}".format(name))

        if kind == "ph":
            directory, url = os.path.join(self.vector_path, PHOSPHOR_DIR), self.phosphor_url
        else:
            directory, url = self.vector_path, self.vector_url

        path = os.path.join(directory, name + ".svg")
        if os.path.exists(path):
            with open(path, "rb") as f:
                return f.read()

        if url:
            return _download_vector(url.format(name=name))
        raise ResolutionError("{} icon {!r} not found in {}".format(kind, name, directory))

    def _rasterize_vector(self, kind, name, size, tint):
        svg = tint_svg(self._vector_source(kind, name), tint)

        import cairosvg  # importing here because it requires a non Python dep
        inner = max(1, size - 2 * VECTOR_PADDING)
        try:
            png = cairosvg.svg2png(bytestring=svg, output_width=inner, output_height=inner)
        except (ValueError, etree.XMLSyntaxError) as e:
            raise ResolutionError("Cannot rasterize {!r}: {}".format(name, e)) from e
        return _decode(png)


def _decode(data):
    try:
        image = Image.open(io.BytesIO(data))
        image.load()
    except (UnidentifiedImageError, OSError) as e:
        raise ResolutionError("Cannot decode image: {}".format(e)) from e
    return image.convert("RGBA")
