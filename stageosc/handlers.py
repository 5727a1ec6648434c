#!/usr/bin/env python3
"""
Service stream handlers

One handler per device service.  Each owns its data connection, opens the
service session on it and then forwards events to the OSC sink until the
session reports an error.  Handlers never reconnect: a failed or closed
session ends that handler and nothing else.
"""

import asyncio
import logging
from typing import Any

from stageosc.oscsink import OSCSink
from stageosc.stagelinq import (
    BeatInfo,
    BeatInfoConnection,
    Device,
    MessageConnection,
    Service,
    StagelinqError,
    State,
    StateMapConnection,
)
from stageosc.translate import BeatDebouncer, OutboundMessage, state_to_message


async def next_event(
    events: asyncio.Queue, errors: asyncio.Queue
) -> tuple[Any | None, Exception | None]:
    """wait for whichever of the two queues produces first

    Returns (event, error); either may be None.  When both are ready at
    once, both are returned so the event is not lost.
    """
    event_get = asyncio.ensure_future(events.get())
    error_get = asyncio.ensure_future(errors.get())
    try:
        done, _ = await asyncio.wait({event_get, error_get}, return_when=asyncio.FIRST_COMPLETED)
    finally:
        for getter in (event_get, error_get):
            if not getter.done():
                getter.cancel()

    event = event_get.result() if event_get in done else None
    error = error_get.result() if error_get in done else None
    return event, error


class StreamHandler:
    """common handler lifecycle: dial, open session, start, loop"""

    def __init__(self, device: Device, service: Service, token: bytes, sink: OSCSink):
        self.device = device
        self.service = service
        self.token = token
        self.sink = sink

    async def open_session(self, connection: MessageConnection):
        """open the service session on a fresh data connection"""
        raise NotImplementedError

    async def start(self, session) -> None:
        """ask the device to start sending"""
        raise NotImplementedError

    def events(self, session) -> asyncio.Queue:
        """the queue this handler consumes"""
        raise NotImplementedError

    def handle(self, event) -> None:
        """translate and send one event"""
        raise NotImplementedError

    def send(self, message: OutboundMessage) -> None:
        """best effort delivery"""
        try:
            self.sink.send(message)
        except OSError as err:
            logging.warning("Failed to send OSC message %s: %s", message.address, err)

    async def run(self) -> None:
        """run until the session fails; failures are logged, never raised"""
        try:
            connection = await self.device.dial(self.service.port)
        except OSError as err:
            logging.warning("Unable to dial %s on %s: %s", self.service, self.device.ipaddr, err)
            return

        async with connection:
            try:
                session = await self.open_session(connection)
            except (OSError, StagelinqError) as err:
                logging.warning("Unable to open %s on %s: %s", self.service.name, self.device, err)
                return

            async with session:
                try:
                    await self.start(session)
                except (OSError, StagelinqError) as err:
                    logging.warning(
                        "Unable to start %s on %s: %s", self.service.name, self.device, err
                    )
                    return
                await self.loop(session)

    async def loop(self, session) -> None:
        """forward events in arrival order until an error shows up"""
        events = self.events(session)
        while True:
            event, error = await next_event(events, session.errors)
            if event is not None:
                self.handle(event)
            if error is not None:
                # the reader queued these before it failed
                while not events.empty():
                    self.handle(events.get_nowait())
                logging.warning(
                    "%s session with %s ended: %s", self.service.name, self.device, error
                )
                return


class StateMapHandler(StreamHandler):
    """forward track text (artist, song name, ...) as it changes"""

    def __init__(  # pylint: disable=too-many-arguments
        self,
        device: Device,
        service: Service,
        token: bytes,
        sink: OSCSink,
        state_paths: list[str],
    ):
        super().__init__(device, service, token, sink)
        self.state_paths = state_paths

    async def open_session(self, connection: MessageConnection) -> StateMapConnection:
        return await StateMapConnection.open(connection, self.token)

    async def start(self, session: StateMapConnection) -> None:
        for state_path in self.state_paths:
            await session.subscribe(state_path)

    def events(self, session: StateMapConnection) -> asyncio.Queue:
        return session.states

    def handle(self, event: State) -> None:
        logging.info("%s = %s", event.name, event.value)
        if message := state_to_message(event):
            self.send(message)


class BeatInfoHandler(StreamHandler):
    """forward one beat pulse per deck per beat"""

    def __init__(  # pylint: disable=too-many-arguments
        self,
        device: Device,
        service: Service,
        token: bytes,
        sink: OSCSink,
        deck_count: int,
        verbose: bool = False,
    ):
        super().__init__(device, service, token, sink)
        self.debouncer = BeatDebouncer(deck_count)
        self.verbose = verbose

    async def open_session(self, connection: MessageConnection) -> BeatInfoConnection:
        logging.info("connecting to BeatInfo on %s", self.device.name)
        return await BeatInfoConnection.open(connection, self.token)

    async def start(self, session: BeatInfoConnection) -> None:
        logging.info("requesting start of BeatInfo stream from %s", self.device.name)
        await session.start_stream()

    def events(self, session: BeatInfoConnection) -> asyncio.Queue:
        return session.beats

    def handle(self, event: BeatInfo) -> None:
        if self.verbose:
            logging.debug("%s", event)
        for message in self.debouncer.process(event):
            logging.debug("%s %s", message.address, message.value)
            self.send(message)
