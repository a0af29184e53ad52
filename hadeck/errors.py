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

"""Exception types used across HADeck"""


class HadeckError(Exception):
    """Base class for all HADeck errors"""


class ValidationError(HadeckError):
    """Malformed configuration, rejected before anything is changed"""


class ResolutionError(HadeckError):
    """Icon could not be fetched or decoded"""


class TransportError(HadeckError):
    """MQTT or Home Assistant link failure"""


class HardwareError(HadeckError):
    """StreamDeck I/O failure"""
