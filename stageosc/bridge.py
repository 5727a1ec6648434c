#!/usr/bin/env python3
"""
StagelinQ to OSC bridge

Listens for devices for a fixed window, starts a session for every new
device heard, then waits forever: from that point on the handler tasks
are the whole job.  Only cancellation from outside (the process being
told to stop) ends run(), and that tears every session down.
"""

import asyncio
import logging

from stageosc.oscsink import OSCSink
from stageosc.session import DeviceSession
from stageosc.stagelinq import Device, DeviceState, Listener, StagelinqError, track_name_paths

DISCOVERY_TIMEOUT = 5.0
ANNOUNCE_INTERVAL = 1.0
DECK_COUNT = 4


class Bridge:  # pylint: disable=too-many-instance-attributes
    """discover devices, then keep their handlers running"""

    def __init__(  # pylint: disable=too-many-arguments
        self,
        listener: Listener,
        sink: OSCSink,
        discovery_timeout: float = DISCOVERY_TIMEOUT,
        announce_interval: float = ANNOUNCE_INTERVAL,
        deck_count: int = DECK_COUNT,
        state_paths: list[str] | None = None,
        verbose: bool = False,
    ):
        self.listener = listener
        self.sink = sink
        self.discovery_timeout = discovery_timeout
        self.announce_interval = announce_interval
        self.deck_count = deck_count
        if state_paths is None:
            state_paths = track_name_paths(deck_count)
        self.state_paths = state_paths
        self.verbose = verbose
        self.devices: list[Device] = []
        self.sessions: list[DeviceSession] = []

    def new_session(self, device: Device) -> DeviceSession:
        """session for a device, sharing our token, sink and deck layout"""
        return DeviceSession(
            device,
            self.listener.token,
            self.sink,
            state_paths=self.state_paths,
            deck_count=self.deck_count,
            verbose=self.verbose,
        )

    async def discover(self) -> list[Device]:
        """listen for discovery_timeout seconds, starting a session per new device"""
        self.listener.announce_every(self.announce_interval)

        loop = asyncio.get_running_loop()
        deadline = loop.time() + self.discovery_timeout
        logging.info("Listening for devices for %ss", self.discovery_timeout)

        while loop.time() < deadline:
            try:
                device, state = await self.listener.discover(self.discovery_timeout)
            except asyncio.TimeoutError:
                logging.warning("No device announcements within %ss", self.discovery_timeout)
                continue
            except StagelinqError as err:
                logging.warning("Discovery error: %s", err)
                continue

            # only a snapshot of who is there is needed, so goodbyes are ignored
            if state != DeviceState.PRESENT:
                continue

            if device in self.devices:
                continue

            self.devices.append(device)
            logging.info(
                "%s %r %r %r",
                device.ipaddr,
                device.name,
                device.software_name,
                device.software_version,
            )

            session = self.new_session(device)
            self.sessions.append(session)
            await session.open()

        self.listener.stop_discovery()
        logging.info("Found devices: %d", len(self.devices))
        return list(self.devices)

    async def run(self) -> None:
        """discover, then block until cancelled"""
        try:
            await self.discover()
            await asyncio.Event().wait()
        finally:
            await self.close()

    async def close(self) -> None:
        """stop every handler and close every device connection"""
        for session in self.sessions:
            await session.close()
        self.sessions.clear()
