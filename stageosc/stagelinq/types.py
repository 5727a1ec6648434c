#!/usr/bin/env python3
"""
Shared data types and constants for the StagelinQ protocol

Everything here is plain data: the device-facing classes that open
connections live in device.py and connection.py.
"""

import enum
from dataclasses import dataclass, field
from typing import Any

# Protocol constants
DISCOVERY_PORT = 51337
DISCOVERY_MAGIC = b"airD"
SMAA_MAGIC = b"smaa"

DISCOVERER_HOWDY = "DISCOVERER_HOWDY_"
DISCOVERER_EXIT = "DISCOVERER_EXIT_"

# Directory (control) connection message IDs
MSG_SERVICE_ANNOUNCEMENT = 0x00000000
MSG_REFERENCE = 0x00000001
MSG_SERVICES_REQUEST = 0x00000002

# StateMap magic IDs, following the smaa magic
STATE_EMIT_MAGIC = b"\x00\x00\x00\x00"
STATE_SUBSCRIBE_MAGIC = b"\x00\x00\x07\xd2"

# BeatInfo message magic
BEAT_INFO_START_STREAM_MAGIC = b"\x00\x00\x00\x00"
BEAT_EMIT_MAGIC = b"\x00\x00\x00\x02"

TOKEN_LENGTH = 16

# upper bound for a single length-prefixed message
MAX_MESSAGE_LENGTH = 10 * 1024 * 1024


class StagelinqError(Exception):
    """Base exception for StagelinQ protocol errors"""


class DeviceState(enum.Enum):
    """what a discovery announcement says about its sender"""

    PRESENT = "present"
    LEAVING = "leaving"


@dataclass
class Announcement:
    """A parsed discovery datagram"""

    token: bytes
    name: str
    action: str
    software_name: str
    software_version: str
    port: int

    @property
    def state(self) -> DeviceState:
        """anything other than a howdy means the sender is going away"""
        if self.action == DISCOVERER_HOWDY:
            return DeviceState.PRESENT
        return DeviceState.LEAVING


@dataclass(frozen=True)
class Service:
    """Information about a service provided by a device"""

    name: str
    port: int

    def __str__(self) -> str:
        return f"{self.name}:{self.port}"


@dataclass
class State:
    """State value update from the StateMap service

    value is the decoded JSON object sent by the device, e.g.
    {"string": "Some Artist", "type": 8}
    """

    name: str
    value: dict[str, Any] = field(default_factory=dict)

    def __str__(self) -> str:
        return f"{self.name}={self.value}"


@dataclass
class PlayerInfo:
    """Beat state of one deck"""

    beat: float = 0.0
    total_beats: float = 0.0
    bpm: float = 0.0

    def __str__(self) -> str:
        return f"Player(beat={self.beat:.2f}, total={self.total_beats:.0f}, bpm={self.bpm:.1f})"


@dataclass
class BeatInfo:
    """One beat frame: a sample per deck"""

    clock: int = 0
    players: list[PlayerInfo] = field(default_factory=list)
    timelines: list[float] = field(default_factory=list)

    def __str__(self) -> str:
        return f"BeatInfo(clock={self.clock}, players={[str(p) for p in self.players]})"
