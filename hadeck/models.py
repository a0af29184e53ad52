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
Configuration and state model

A device configuration arrives as JSON (over MQTT or from the local
cache) and is parsed into immutable objects here:

    {
      "brightness": 80,
      "pages": {
        "default": [
          {"key": 0, "text": "Lamp", "icon": "vector:lightbulb",
           "useEntityState": true,
           "action": {"type": "ha", "service": "light.toggle",
                      "entityId": "light.desk"}},
          {"key": 3, "text": "System",
           "action": {"type": "navigate", "page": "system"}}
        ],
        "system": [...]
      }
    }
"""

from dataclasses import dataclass, field
from enum import Enum

from .errors import ValidationError

DEFAULT_PAGE = "default"


class Align(Enum):
    """Vertical title alignment"""
    TOP = "top"
    MIDDLE = "middle"
    BOTTOM = "bottom"


@dataclass(frozen=True)
class NavigateAction:
    page: str


@dataclass(frozen=True)
class CommandAction:
    command: str
    value: int | None = None


@dataclass(frozen=True)
class ServiceAction:
    """Home Assistant service call, executed outside the navigation engine"""
    service: str
    entity_id: str | None = None
    data: dict = field(default_factory=dict)


@dataclass(frozen=True)
class PublishAction:
    """MQTT pass-through publish, executed by the transport"""
    topic: str
    payload: str
    retain: bool = False


@dataclass(frozen=True)
class ButtonSpec:
    """
    Declarative description of one key

    Visual fields stay None when absent; defaults are filled in by
    hadeck.render.canonicalize so that hashing and drawing agree.
    """
    key: int
    text: str | None = None
    icon: str | None = None
    color: str | None = None
    icon_color: str | None = None
    text_color: str | None = None
    align: Align | None = None
    action: object = None
    track_state: bool = False
    state_entity: str | None = None

    @property
    def tracked_entity(self):
        """
        Entity id whose state styles this button

        Returns:
            The explicit stateEntity override, else the entity id of a
            Home Assistant action, else None. Always None when state
            tracking is disabled for the button.
        """
        if not self.track_state:
            return None
        if self.state_entity:
            return self.state_entity
        if isinstance(self.action, ServiceAction):
            return self.action.entity_id
        return None


@dataclass(frozen=True)
class PageSpec:
    name: str
    buttons: tuple = ()

    def button(self, key):
        for spec in self.buttons:
            if spec.key == key:
                return spec
        return None


@dataclass(frozen=True)
class DeviceConfig:
    pages: dict
    brightness: int | None = None

    @classmethod
    def from_dict(cls, payload):
        """
        Parse and validate a configuration document

        Args:
            payload: Decoded JSON object

        Returns:
            DeviceConfig

        Raises:
            ValidationError: pages missing or any button malformed
        """
        if not isinstance(payload, dict):
            raise ValidationError("Invalid config format: expected an object")
        raw_pages = payload.get("pages")
        if raw_pages is None:
            raise ValidationError("Invalid config format: missing pages")
        if not isinstance(raw_pages, dict):
            raise ValidationError("Invalid config format: pages must be an object")

        pages = {}
        for name, raw_buttons in raw_pages.items():
            pages[name] = _parse_page(name, raw_buttons)

        brightness = payload.get("brightness")
        if brightness is not None:
            try:
                brightness = max(0, min(100, int(brightness)))
            except (TypeError, ValueError):
                raise ValidationError("Invalid brightness: {!r}".format(brightness)) from None

        return cls(pages=pages, brightness=brightness)

    @classmethod
    def empty(cls):
        """Configuration used while waiting for the first real one"""
        return cls(pages={DEFAULT_PAGE: PageSpec(DEFAULT_PAGE)})


@dataclass(frozen=True)
class EntityState:
    entity_id: str
    state: str
    attributes: dict = field(default_factory=dict)
    last_changed: str | None = None
    last_updated: str | None = None

    @property
    def domain(self):
        return self.entity_id.split(".", 1)[0]

    @classmethod
    def from_ha(cls, raw):
        """Build from a Home Assistant state object"""
        return cls(
            entity_id=raw["entity_id"],
            state=str(raw.get("state", "unknown")),
            attributes=raw.get("attributes") or {},
            last_changed=raw.get("last_changed"),
            last_updated=raw.get("last_updated"),
        )


def _parse_page(name, raw_buttons):
    # The editor stores pages as lists; older configs used {key: button}
    if isinstance(raw_buttons, dict):
        raw_buttons = list(raw_buttons.values())
    if not isinstance(raw_buttons, list):
        raise ValidationError("Page {!r}: buttons must be a list".format(name))

    buttons = []
    seen = set()
    for raw in raw_buttons:
        spec = parse_button(raw, page=name)
        if spec.key in seen:
            raise ValidationError("Page {!r}: duplicate key {}".format(name, spec.key))
        seen.add(spec.key)
        buttons.append(spec)

    buttons.sort(key=lambda b: b.key)
    return PageSpec(name=name, buttons=tuple(buttons))


def parse_button(raw, page="?"):
    if not isinstance(raw, dict):
        raise ValidationError("Page {!r}: button must be an object".format(page))

    key = raw.get("key")
    if isinstance(key, bool) or not isinstance(key, int) or key < 0:
        raise ValidationError("Page {!r}: invalid key index {!r}".format(page, key))

    align = raw.get("titleAlign")
    if align is not None:
        try:
            align = Align(align)
        except ValueError:
            raise ValidationError(
                "Page {!r} key {}: invalid titleAlign {!r}".format(page, key, align)
            ) from None

    action = raw.get("action")
    if action is not None:
        action = parse_action(action, where="page {!r} key {}".format(page, key))

    return ButtonSpec(
        key=key,
        text=_optional_str(raw.get("text")),
        icon=_optional_str(raw.get("icon")),
        color=_optional_str(raw.get("color")),
        icon_color=_optional_str(raw.get("iconColor")),
        text_color=_optional_str(raw.get("textColor")),
        align=align,
        action=action,
        track_state=bool(raw.get("useEntityState", False)),
        state_entity=_optional_str(raw.get("stateEntity")),
    )


def parse_action(raw, where="action"):
    if not isinstance(raw, dict):
        raise ValidationError("{}: action must be an object".format(where))

    match raw.get("type"):
        case "navigate":
            page = raw.get("page")
            if not page:
                raise ValidationError("{}: navigate action needs a page".format(where))
            return NavigateAction(page=str(page))
        case "command":
            command = raw.get("command")
            if not command:
                raise ValidationError("{}: command action needs a command".format(where))
            value = raw.get("value")
            if value is not None:
                try:
                    value = int(value)
                except (TypeError, ValueError):
                    raise ValidationError("{}: invalid command value {!r}".format(where, value)) from None
            return CommandAction(command=str(command), value=value)
        case "ha":
            return ServiceAction(
                service=str(raw.get("service") or ""),
                entity_id=_optional_str(raw.get("entityId")),
                data=dict(raw.get("data") or {}),
            )
        case "mqtt":
            topic = raw.get("topic")
            if not topic:
                raise ValidationError("{}: mqtt action needs a topic".format(where))
            return PublishAction(
                topic=str(topic),
                payload=str(raw.get("payload", "")),
                retain=bool(raw.get("retain", False)),
            )
        case other:
            raise ValidationError("{}: unknown action type {!r}".format(where, other))


def _optional_str(value):
    if value is None or value == "":
        return None
    return str(value)
