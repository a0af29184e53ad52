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
Process settings

Read from an optional INI file; environment variables win over it.

    [General]
    Verbose = false
    DeviceId = office-deck
    AssetsPath = /opt/hadeck/assets
    StatePath = /var/lib/hadeck/config.json
    FontSize = 14

    [MQTT]
    Url = mqtt://homeassistant.local:1883
    User = deck
    Password = secret

    [HomeAssistant]
    Url = http://homeassistant.local:8123
    Token = <long-lived access token>

    [Icons]
    VectorPath = /opt/hadeck/assets/icons
    VectorUrl = https://raw.githubusercontent.com/Templarian/MaterialDesign/master/svg/{name}.svg
    PhosphorUrl = https://raw.githubusercontent.com/phosphor-icons/core/main/assets/regular/{name}.svg

    [Render]
    ; absolute, or relative to AssetsPath
    FontFile = Roboto-Regular.ttf
    ; 0 keeps every rendered key for the process lifetime
    CacheSize = 0
"""

import configparser
import os
import socket
from dataclasses import dataclass
from urllib.parse import urlparse

from .icons import DEFAULT_PHOSPHOR_URL, DEFAULT_VECTOR_URL
from .render import FONT_FILE

ASSETS_PATH = os.path.join(os.path.dirname(os.path.abspath(__file__)), "assets")


@dataclass
class Settings:
    verbose: bool = False
    device_id: str = "streamdeck-unknown"
    assets_path: str = ASSETS_PATH
    state_path: str = os.path.join(os.path.expanduser("~"), ".local", "share", "hadeck", "config.json")
    font_size: int = 14

    mqtt_url: str = "mqtt://homeassistant.local"
    mqtt_user: str | None = None
    mqtt_password: str | None = None

    ha_url: str = "http://homeassistant.local:8123"
    ha_token: str | None = None

    vector_path: str | None = None
    vector_url: str | None = DEFAULT_VECTOR_URL
    phosphor_url: str | None = DEFAULT_PHOSPHOR_URL
    font_file: str | None = FONT_FILE
    cache_size: int | None = None

    @property
    def base_topic(self):
        return "streamdeck/{}".format(self.device_id)

    @property
    def mqtt_endpoint(self):
        """(host, port, use_tls) parsed from mqtt_url"""
        url = self.mqtt_url if "://" in self.mqtt_url else "mqtt://" + self.mqtt_url
        parsed = urlparse(url)
        tls = parsed.scheme in ("mqtts", "ssl")
        return parsed.hostname or "localhost", parsed.port or (8883 if tls else 1883), tls

    @classmethod
    def load(cls, path=None, environ=None):
        """
        Build settings from defaults, INI file and environment

        Args:
            path: Optional INI file
            environ: Environment mapping (defaults to os.environ)

        Returns:
            Settings
        """
        environ = os.environ if environ is None else environ
        config = configparser.ConfigParser()
        if path:
            with open(path, encoding="utf-8") as f:
                config.read_file(f)
        for section in ("General", "MQTT", "HomeAssistant", "Icons", "Render"):
            if section not in config.sections():
                config[section] = {}

        general = config["General"]
        mqtt = config["MQTT"]
        hass = config["HomeAssistant"]
        icons = config["Icons"]
        render = config["Render"]
        defaults = cls()

        device_id = (environ.get("DEVICE_ID") or environ.get("BALENA_DEVICE_UUID")
                     or general.get("DeviceId") or environ.get("HOSTNAME")
                     or socket.gethostname() or defaults.device_id)

        cache_size = render.getint("CacheSize", 0)

        return cls(
            verbose=general.getboolean("Verbose", False),
            device_id=device_id,
            assets_path=general.get("AssetsPath", defaults.assets_path),
            state_path=general.get("StatePath", defaults.state_path),
            font_size=general.getint("FontSize", defaults.font_size),
            mqtt_url=environ.get("MQTT_URL") or mqtt.get("Url", defaults.mqtt_url),
            mqtt_user=environ.get("MQTT_USER") or mqtt.get("User") or None,
            mqtt_password=environ.get("MQTT_PASS") or mqtt.get("Password", raw=True) or None,
            ha_url=environ.get("HOMEASSISTANT_URL") or hass.get("Url", defaults.ha_url),
            ha_token=environ.get("HOMEASSISTANT_TOKEN") or hass.get("Token", raw=True) or None,
            vector_path=icons.get("VectorPath") or None,
            vector_url=icons.get("VectorUrl", defaults.vector_url, raw=True) or None,
            phosphor_url=icons.get("PhosphorUrl", defaults.phosphor_url, raw=True) or None,
            font_file=render.get("FontFile", defaults.font_file) or None,
            cache_size=cache_size if cache_size > 0 else None,
        )
