#!/usr/bin/env python3
"""
StagelinQ discovery listener

Binds the UDP discovery port, queues every announcement heard from other
devices and, when asked, broadcasts our own announcement so devices that
insist on a two-way handshake will accept connections from us.
"""

import asyncio
import contextlib
import logging
from dataclasses import dataclass
from typing import Callable

import netifaces

from .device import Device
from .protocol import StagelinqProtocol
from .types import (
    DISCOVERER_EXIT,
    DISCOVERER_HOWDY,
    DISCOVERY_PORT,
    DeviceState,
    StagelinqError,
)

logger = logging.getLogger(__name__)


@dataclass
class ListenerConfig:
    """Configuration for the discovery listener."""

    name: str = "StageOSC"
    software_name: str = "StageOSC"
    software_version: str = "0.0.1"
    discovery_timeout: float = 5.0
    port: int = DISCOVERY_PORT
    token: bytes | None = None

    def __post_init__(self) -> None:
        """Initialize token if not provided."""
        if self.token is None:
            self.token = StagelinqProtocol.generate_token()


class DiscoveryProtocol(asyncio.DatagramProtocol):
    """UDP protocol handler for StagelinQ discovery."""

    def __init__(self, message_handler: Callable[[bytes, tuple[str, int]], None]) -> None:
        self.message_handler = message_handler

    def datagram_received(self, data: bytes, addr: tuple[str, int]) -> None:
        self.message_handler(data, addr)

    def error_received(self, exc: Exception) -> None:
        logger.debug("StagelinQ discovery socket error: %s", exc)


def broadcast_addresses() -> list[str]:
    """Get IPv4 broadcast addresses for all network interfaces."""
    addresses = {"255.255.255.255"}
    for interface in netifaces.interfaces():
        try:
            addrs = netifaces.ifaddresses(interface)
        except ValueError:
            continue
        addresses.update(
            addr_info["broadcast"]
            for addr_info in addrs.get(netifaces.AF_INET, [])
            if "broadcast" in addr_info
        )
    return sorted(addresses)


class Listener:
    """StagelinQ discovery endpoint"""

    def __init__(self, config: ListenerConfig | None = None):
        self.config = config or ListenerConfig()
        self.transport: asyncio.DatagramTransport | None = None
        self.announcements: asyncio.Queue[tuple[Device, DeviceState]] = asyncio.Queue()
        self._announce_task: asyncio.Task | None = None
        self.discovering = True

    @classmethod
    async def listen(cls, config: ListenerConfig | None = None) -> "Listener":
        """create a listener and bind the discovery port"""
        listener = cls(config)
        await listener.start()
        return listener

    @property
    def token(self) -> bytes:
        """our identity towards devices"""
        return self.config.token

    async def start(self) -> None:
        """bind the discovery port"""
        if self.transport:
            return

        loop = asyncio.get_running_loop()
        try:
            self.transport, _ = await loop.create_datagram_endpoint(
                lambda: DiscoveryProtocol(self._on_datagram),
                local_addr=("0.0.0.0", self.config.port),
                reuse_port=True,
                allow_broadcast=True,
            )
        except (OSError, ValueError):
            # reuse_port is not available everywhere
            self.transport, _ = await loop.create_datagram_endpoint(
                lambda: DiscoveryProtocol(self._on_datagram),
                local_addr=("0.0.0.0", self.config.port),
                allow_broadcast=True,
            )
        logger.info("Listening for StagelinQ devices on port %s", self.config.port)

    def announce_every(self, interval: float) -> None:
        """broadcast our presence every interval seconds until close()"""
        if self._announce_task and not self._announce_task.done():
            return
        self._announce_task = asyncio.create_task(
            self._announce_loop(interval), name="stagelinq-announce"
        )

    async def _announce_loop(self, interval: float) -> None:
        while True:
            self._announce(DISCOVERER_HOWDY)
            await asyncio.sleep(interval)

    def _announce(self, action: str) -> None:
        if not self.transport:
            return

        data = StagelinqProtocol.create_discovery_message(
            token=self.token,
            name=self.config.name,
            software_name=self.config.software_name,
            software_version=self.config.software_version,
            action=action,
        )
        for address in broadcast_addresses():
            try:
                self.transport.sendto(data, (address, self.config.port))
            except OSError as err:
                logger.debug("Failed to announce to %s: %s", address, err)

    def _on_datagram(self, data: bytes, addr: tuple[str, int]) -> None:
        if not self.discovering:
            return

        try:
            announcement = StagelinqProtocol.parse_discovery_message(data)
        except StagelinqError as err:
            logger.debug("Failed to parse discovery message from %s: %s", addr, err)
            return

        # our own broadcasts come back to us
        if announcement.token == self.token:
            return

        self.announcements.put_nowait(
            (Device.from_announcement(addr[0], announcement), announcement.state)
        )

    async def discover(self, timeout: float) -> tuple[Device, DeviceState]:
        """wait for the next announcement

        Raises asyncio.TimeoutError if nothing arrives within timeout seconds.
        """
        return await asyncio.wait_for(self.announcements.get(), timeout=timeout)

    def stop_discovery(self) -> None:
        """drop queued and future announcements; announcing carries on"""
        self.discovering = False
        while not self.announcements.empty():
            self.announcements.get_nowait()
        logger.debug("No longer queueing StagelinQ announcements")

    async def close(self) -> None:
        """stop announcing, say goodbye and release the socket"""
        if self._announce_task:
            self._announce_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._announce_task
            self._announce_task = None

        if self.transport:
            self._announce(DISCOVERER_EXIT)
            self.transport.close()
            self.transport = None
            logger.info("Stopped StagelinQ discovery")

    async def __aenter__(self) -> "Listener":
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()
