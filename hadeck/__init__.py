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
HADeck: StreamDeck panel for Home Assistant and MQTT

Renders pages of buttons on an Elgato StreamDeck, receives its layout
over MQTT and keeps buttons in sync with Home Assistant entity states.
"""

__version__ = "1.0.0"
