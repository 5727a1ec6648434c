#!/usr/bin/env python3
"""StagelinQ device as seen on the network"""

from dataclasses import dataclass, field

from .connection import DeviceConnection, MessageConnection
from .types import Announcement


@dataclass(frozen=True)
class Device:
    """A discovered StagelinQ device

    Two devices are equal when they share address and token; the
    descriptive fields do not take part in comparisons.
    """

    ipaddr: str
    token: bytes
    name: str = field(default="", compare=False)
    software_name: str = field(default="", compare=False)
    software_version: str = field(default="", compare=False)
    port: int = field(default=0, compare=False)

    @classmethod
    def from_announcement(cls, ipaddr: str, announcement: Announcement) -> "Device":
        """build a device from a parsed discovery datagram"""
        return cls(
            ipaddr=ipaddr,
            token=announcement.token,
            name=announcement.name,
            software_name=announcement.software_name,
            software_version=announcement.software_version,
            port=announcement.port,
        )

    def __str__(self) -> str:
        return (
            f"{self.name} ({self.software_name} {self.software_version}) "
            f"at {self.ipaddr}:{self.port}"
        )

    async def connect(self, token: bytes) -> DeviceConnection:
        """open the directory connection, presenting token as our identity"""
        return await DeviceConnection.open(self, token)

    async def dial(self, port: int) -> MessageConnection:
        """open a data connection to one of the device's service ports"""
        return await MessageConnection.open(self.ipaddr, port)
