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
State-driven button styling

effective_spec() is a pure function of a button and the latest state
of the entity it tracks. The result is what gets rendered.
"""

import colorsys
import dataclasses

from .render import hex_to_rgb, normalize_color

LIGHT_OFF_STATES = ("off", "unavailable", "unknown")
ACTIVE_STATES = ("on", "open", "home", "playing", "unlocked")

DIM_BACKGROUND = "#1a1a1a"
DIM_ICON = "#666666"
DIM_TEXT = "#888888"
ACTIVE_TINT = "#f0a030"

LIGHT_ICON_OFF = "vector:lightbulb"
LIGHT_ICON_ON = "vector:lightbulb-filament"

MIN_BRIGHTNESS_FACTOR = 0.3     # "on" never renders fully dark
LUMINANCE_THRESHOLD = 0.5

WARM = (255, 180, 100)
NEUTRAL = (255, 240, 220)
COOL = (200, 220, 255)


def to_hex(rgb):
    return "#" + "".join("{:02x}".format(max(0, min(255, round(c)))) for c in rgb)


def luminance(rgb):
    """Relative luminance 0..1 (ITU-R BT.601 weights)"""
    r, g, b = rgb
    return (0.299 * r + 0.587 * g + 0.114 * b) / 255


def contrast_color(rgb):
    return "#000000" if luminance(rgb) > LUMINANCE_THRESHOLD else "#ffffff"


def hs_to_rgb(hue, saturation):
    """Home Assistant hs_color (hue 0-360, saturation 0-100) at full value"""
    r, g, b = colorsys.hsv_to_rgb((hue % 360) / 360, max(0, min(100, saturation)) / 100, 1.0)
    return (round(r * 255), round(g * 255), round(b * 255))


def color_temp_to_rgb(kelvin):
    """Coarse warm / neutral / cool bucket for a color temperature"""
    if kelvin <= 4000:
        return WARM
    if kelvin <= 5500:
        return NEUTRAL
    return COOL


def light_color(attributes):
    """
    Base RGB color reported by a light, or None

    Preference: rgb_color, then hs_color, then color temperature
    (color_temp_kelvin, else color_temp in mireds).
    """
    rgb = attributes.get("rgb_color")
    if rgb and len(rgb) >= 3:
        return tuple(int(c) for c in rgb[:3])

    hs = attributes.get("hs_color")
    if hs and len(hs) >= 2:
        return hs_to_rgb(float(hs[0]), float(hs[1]))

    kelvin = attributes.get("color_temp_kelvin")
    if kelvin:
        return color_temp_to_rgb(float(kelvin))
    mireds = attributes.get("color_temp")
    if mireds:
        return color_temp_to_rgb(1000000 / float(mireds))
    return None


def brightness_factor(attributes):
    brightness = attributes.get("brightness")
    if brightness is None:
        return 1.0
    return max(MIN_BRIGHTNESS_FACTOR, min(1.0, float(brightness) / 255))


def dim_style(spec, icon=None):
    return dataclasses.replace(
        spec,
        color=DIM_BACKGROUND,
        icon_color=DIM_ICON,
        text_color=DIM_TEXT,
        icon=spec.icon or icon,
    )


def light_style(spec, state):
    if state is None or state.state in LIGHT_OFF_STATES:
        return dim_style(spec, LIGHT_ICON_OFF)

    factor = brightness_factor(state.attributes)
    base = light_color(state.attributes)
    if base is None:
        # No color info: warm white
        base = (255, 255 * 0.9, 255 * 0.7)
    background = tuple(max(0, min(255, round(c * factor))) for c in base)
    foreground = contrast_color(background)

    return dataclasses.replace(
        spec,
        color=to_hex(background),
        icon_color=foreground,
        text_color=foreground,
        icon=spec.icon or LIGHT_ICON_ON,
    )


def binary_style(spec, state):
    if state is None or state.state not in ACTIVE_STATES:
        return dim_style(spec)

    tint = normalize_color(spec.color, ACTIVE_TINT)
    foreground = contrast_color(hex_to_rgb(tint))
    return dataclasses.replace(spec, color=tint, icon_color=foreground, text_color=foreground)


def effective_spec(spec, state):
    """
    Apply entity state to a button

    Args:
        spec: ButtonSpec as configured
        state: Latest EntityState of its tracked entity, or None

    Returns:
        The spec unchanged when it does not track state, otherwise a
        restyled copy
    """
    entity_id = spec.tracked_entity
    if entity_id is None:
        return spec
    if entity_id.split(".", 1)[0] == "light":
        return light_style(spec, state)
    return binary_style(spec, state)
