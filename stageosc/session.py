#!/usr/bin/env python3
"""
Device sessions

Connects to a freshly discovered device, asks what it offers and starts
one handler task per service we know how to forward.  The directory
connection is kept open until the session is closed at process teardown;
the device drops the services it granted once it goes away.
"""

import asyncio
import logging

from stageosc.handlers import BeatInfoHandler, StateMapHandler, StreamHandler
from stageosc.oscsink import OSCSink
from stageosc.stagelinq import Device, DeviceConnection, Service, StagelinqError


class DeviceSession:  # pylint: disable=too-many-instance-attributes
    """everything the bridge runs for one device"""

    def __init__(  # pylint: disable=too-many-arguments
        self,
        device: Device,
        token: bytes,
        sink: OSCSink,
        state_paths: list[str],
        deck_count: int,
        verbose: bool = False,
    ):
        self.device = device
        self.token = token
        self.sink = sink
        self.state_paths = state_paths
        self.deck_count = deck_count
        self.verbose = verbose
        self.connection: DeviceConnection | None = None
        self.tasks: set[asyncio.Task] = set()

    def handler_for(self, service: Service) -> StreamHandler | None:
        """pick the handler for a service by name; None if it is not one we forward"""
        if service.name == "StateMap":
            return StateMapHandler(
                self.device, service, self.token, self.sink, state_paths=self.state_paths
            )
        if service.name == "BeatInfo":
            return BeatInfoHandler(
                self.device,
                service,
                self.token,
                self.sink,
                deck_count=self.deck_count,
                verbose=self.verbose,
            )
        return None

    async def open(self) -> set[asyncio.Task]:
        """connect, list services, spawn handlers

        Connection or service listing failures are logged and leave the
        session without handlers; nothing is retried.
        """
        logging.info("attempting to connect to %s", self.device)
        try:
            self.connection = await self.device.connect(self.token)
        except (OSError, StagelinqError) as err:
            logging.warning("Unable to connect to %s: %s", self.device, err)
            return self.tasks

        logging.info("requesting device data services from %s", self.device.name)
        try:
            services = await self.connection.request_services()
        except (OSError, StagelinqError) as err:
            logging.warning("Unable to get services from %s: %s", self.device, err)
            return self.tasks

        for service in services:
            logging.info("%s offers %s at port %d", self.device.name, service.name, service.port)
            handler = self.handler_for(service)
            if not handler:
                logging.info("ignoring %s service on %s", service.name, self.device.name)
                continue
            self.tasks.add(
                asyncio.create_task(
                    handler.run(), name=f"{service.name}-{self.device.ipaddr}:{service.port}"
                )
            )

        logging.info("end of list of %s data services", self.device.name)
        return self.tasks

    async def close(self) -> None:
        """cancel and join the handlers, then drop the directory connection"""
        for task in self.tasks:
            task.cancel()
        if self.tasks:
            await asyncio.gather(*self.tasks, return_exceptions=True)
        self.tasks.clear()

        if self.connection:
            await self.connection.close()
            self.connection = None
