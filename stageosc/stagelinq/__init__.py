#!/usr/bin/env python3
"""
StagelinQ protocol support

Discovery, directory and StateMap/BeatInfo service connections for
Denon StagelinQ devices, built on asyncio.
"""

from .connection import (
    BeatInfoConnection,
    DeviceConnection,
    MessageConnection,
    StateMapConnection,
)
from .device import Device
from .listener import Listener, ListenerConfig
from .types import BeatInfo, DeviceState, PlayerInfo, Service, StagelinqError, State
from .value_names import DeckValueNames, track_name_paths

__all__ = [
    "BeatInfo",
    "BeatInfoConnection",
    "DeckValueNames",
    "Device",
    "DeviceConnection",
    "DeviceState",
    "Listener",
    "ListenerConfig",
    "MessageConnection",
    "PlayerInfo",
    "Service",
    "StagelinqError",
    "State",
    "StateMapConnection",
    "track_name_paths",
]
