"""Tests for settings loading."""

import os

import hadeck
from hadeck.icons import DEFAULT_PHOSPHOR_URL, DEFAULT_VECTOR_URL
from hadeck.render import FONT_FILE
from hadeck.settings import ASSETS_PATH, Settings

INI = """
[General]
Verbose = yes
DeviceId = ini-deck
FontSize = 12

[MQTT]
Url = mqtt://ini-broker:1884
User = ini-user
Password = p%ss

[HomeAssistant]
Url = http://ini-ha:8123
Token = ini-token

[Icons]
PhosphorUrl = https://icons.lan/phosphor/{name}.svg

[Render]
FontFile = /usr/share/fonts/deck.ttf
CacheSize = 200
"""


def write_ini(tmp_path):
    path = tmp_path / "hadeck.ini"
    path.write_text(INI, encoding="utf-8")
    return str(path)


class TestSettings:
    """Tests for Settings.load."""

    def test_defaults(self):
        """Test defaults with no file and an empty environment."""
        settings = Settings.load(environ={})

        assert settings.verbose is False
        assert settings.mqtt_url == "mqtt://homeassistant.local"
        assert settings.ha_token is None
        assert settings.vector_url == DEFAULT_VECTOR_URL
        assert settings.phosphor_url == DEFAULT_PHOSPHOR_URL
        assert settings.font_file == FONT_FILE
        assert settings.assets_path == ASSETS_PATH
        assert settings.cache_size is None
        assert settings.device_id

    def test_ini_values(self, tmp_path):
        """Test that INI values override defaults."""
        settings = Settings.load(write_ini(tmp_path), environ={})

        assert settings.verbose is True
        assert settings.device_id == "ini-deck"
        assert settings.font_size == 12
        assert settings.mqtt_user == "ini-user"
        assert settings.mqtt_password == "p%ss"
        assert settings.ha_token == "ini-token"
        assert settings.cache_size == 200
        assert settings.phosphor_url == "https://icons.lan/phosphor/{name}.svg"
        assert settings.vector_url == DEFAULT_VECTOR_URL
        assert settings.font_file == "/usr/share/fonts/deck.ttf"
        assert settings.base_topic == "streamdeck/ini-deck"

    def test_environment_wins(self, tmp_path):
        """Test that environment variables override the INI file."""
        settings = Settings.load(write_ini(tmp_path), environ={
            "DEVICE_ID": "env-deck",
            "MQTT_URL": "mqtts://env-broker",
            "MQTT_USER": "env-user",
            "MQTT_PASS": "env-pass",
            "HOMEASSISTANT_URL": "https://env-ha",
            "HOMEASSISTANT_TOKEN": "env-token",
        })

        assert settings.device_id == "env-deck"
        assert settings.mqtt_user == "env-user"
        assert settings.mqtt_password == "env-pass"
        assert settings.ha_url == "https://env-ha"
        assert settings.ha_token == "env-token"
        assert settings.mqtt_endpoint == ("env-broker", 8883, True)

    def test_device_id_fallbacks(self):
        """Test the device id lookup order."""
        assert Settings.load(environ={"BALENA_DEVICE_UUID": "abc", "HOSTNAME": "host"}).device_id == "abc"
        assert Settings.load(environ={"HOSTNAME": "host"}).device_id == "host"

    def test_mqtt_endpoint(self):
        """Test broker URL parsing."""
        assert Settings(mqtt_url="mqtt://broker:1884").mqtt_endpoint == ("broker", 1884, False)
        assert Settings(mqtt_url="broker").mqtt_endpoint == ("broker", 1883, False)

    def test_assets_ship_with_package(self):
        """Test that the default assets directory lives inside the installed package."""
        package_dir = os.path.dirname(os.path.abspath(hadeck.__file__))

        assert os.path.dirname(ASSETS_PATH) == package_dir
        assert os.path.isfile(os.path.join(ASSETS_PATH, "README.md"))
