#!/usr/bin/env python3
"""
StagelinQ Connections

TCP side of the protocol:

* DeviceConnection: the directory (control) connection to a device.  Its
  messages carry no length prefix.  While it is open a reference message
  is sent every 250ms so the device keeps the session alive.
* MessageConnection: a data connection to one service port, framed with a
  32-bit length prefix.
* StateMapConnection / BeatInfoConnection: service sessions layered on a
  MessageConnection.  A reader task parses frames onto an event queue; the
  first read failure (including the device closing the connection) is put
  on the errors queue and ends the reader.
"""

import asyncio
import contextlib
import logging
import struct
from typing import TYPE_CHECKING

from .protocol import StagelinqProtocol
from .types import (
    MAX_MESSAGE_LENGTH,
    MSG_REFERENCE,
    MSG_SERVICE_ANNOUNCEMENT,
    MSG_SERVICES_REQUEST,
    TOKEN_LENGTH,
    BeatInfo,
    Service,
    StagelinqError,
    State,
)

if TYPE_CHECKING:
    from .device import Device

logger = logging.getLogger(__name__)

REFERENCE_INTERVAL = 0.25
SERVICES_TIMEOUT = 5.0


async def _close_writer(writer: asyncio.StreamWriter) -> None:
    writer.close()
    with contextlib.suppress(ConnectionError, OSError):
        await writer.wait_closed()


class DeviceConnection:  # pylint: disable=too-many-instance-attributes
    """Directory connection to a device"""

    def __init__(
        self,
        device: "Device",
        token: bytes,
        reader: asyncio.StreamReader,
        writer: asyncio.StreamWriter,
    ):
        self.device = device
        self.token = token
        self.reader = reader
        self.writer = writer
        self.keepalive_interval = REFERENCE_INTERVAL
        self._services: list[Service] = []
        self._services_done = asyncio.Event()
        self._error: BaseException | None = None
        self.tasks: list[asyncio.Task] = []

    @classmethod
    async def open(cls, device: "Device", token: bytes) -> "DeviceConnection":
        """connect to the device's directory port"""
        try:
            reader, writer = await asyncio.open_connection(device.ipaddr, device.port)
        except OSError as err:
            raise ConnectionError(f"Failed to connect to {device}: {err}") from err

        connection = cls(device, token, reader, writer)
        connection.tasks.append(
            asyncio.create_task(connection._read_loop(), name=f"directory-{device.ipaddr}")
        )
        connection.tasks.append(
            asyncio.create_task(connection._keepalive(), name=f"reference-{device.ipaddr}")
        )
        logger.info("Connected to device %s", device)
        return connection

    async def request_services(self, timeout: float = SERVICES_TIMEOUT) -> list[Service]:
        """ask the device which services it offers

        The device answers with one announcement per service followed by
        a reference message.
        """
        if self._error:
            raise StagelinqError(f"Directory connection failed: {self._error}")

        self._services = []
        self._services_done.clear()
        self.writer.write(StagelinqProtocol.create_services_request(self.token))
        await self.writer.drain()

        try:
            await asyncio.wait_for(self._services_done.wait(), timeout=timeout)
        except asyncio.TimeoutError as err:
            raise StagelinqError(
                f"Timed out after {timeout}s waiting for services from {self.device}"
            ) from err

        if self._error:
            raise StagelinqError(f"Directory connection failed: {self._error}")
        return list(self._services)

    async def _read_directory_message(self) -> tuple[int, bytes]:
        """read one unprefixed directory message, returning (id, body)"""
        msg_id = int.from_bytes(await self.reader.readexactly(4), "big")

        if msg_id == MSG_SERVICE_ANNOUNCEMENT:
            token = await self.reader.readexactly(TOKEN_LENGTH)
            str_len_data = await self.reader.readexactly(4)
            str_data = await self.reader.readexactly(int.from_bytes(str_len_data, "big"))
            port_data = await self.reader.readexactly(2)
            return msg_id, token + str_len_data + str_data + port_data

        if msg_id == MSG_REFERENCE:
            # token, token, int64 reference
            return msg_id, await self.reader.readexactly(2 * TOKEN_LENGTH + 8)

        if msg_id == MSG_SERVICES_REQUEST:
            return msg_id, await self.reader.readexactly(TOKEN_LENGTH)

        raise StagelinqError(f"Unknown directory message id {msg_id:#x}")

    async def _read_loop(self) -> None:
        try:
            while True:
                msg_id, body = await self._read_directory_message()
                if msg_id == MSG_SERVICE_ANNOUNCEMENT:
                    service = StagelinqProtocol.parse_service_announcement(body)
                    self._services.append(service)
                    logger.debug("%s offers %s", self.device.name, service)
                elif msg_id == MSG_REFERENCE:
                    self._services_done.set()
                else:
                    logger.debug("%s asked for our services, ignoring", self.device.name)
        except (asyncio.IncompleteReadError, OSError, StagelinqError) as err:
            logger.debug("Directory connection to %s ended: %s", self.device, err)
            self._error = err
            self._services_done.set()

    async def _keepalive(self) -> None:
        """Send periodic reference messages to keep the connection alive"""
        message = StagelinqProtocol.create_reference_message(self.token, self.device.token)
        try:
            while True:
                await asyncio.sleep(self.keepalive_interval)
                self.writer.write(message)
                await self.writer.drain()
        except OSError as err:
            logger.debug("Reference message error: %s", err)

    async def close(self) -> None:
        """Stop the background tasks and close the socket"""
        for task in self.tasks:
            task.cancel()
        await asyncio.gather(*self.tasks, return_exceptions=True)
        self.tasks.clear()
        await _close_writer(self.writer)
        logger.info("Disconnected from device %s", self.device)

    async def __aenter__(self) -> "DeviceConnection":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()


class MessageConnection:
    """Length-prefixed message stream to one service port"""

    def __init__(
        self, host: str, port: int, reader: asyncio.StreamReader, writer: asyncio.StreamWriter
    ):
        self.host = host
        self.port = port
        self.reader = reader
        self.writer = writer
        self._closed = False

    @classmethod
    async def open(cls, host: str, port: int) -> "MessageConnection":
        """connect to host:port"""
        try:
            reader, writer = await asyncio.open_connection(host, port)
        except OSError as err:
            raise ConnectionError(f"Failed to connect to {host}:{port}: {err}") from err
        logger.info("Connected to StagelinQ service at %s:%s", host, port)
        return cls(host, port, reader, writer)

    @property
    def local_port(self) -> int:
        """the local port of the connection, 0 if unknown"""
        if sockname := self.writer.get_extra_info("sockname"):
            return sockname[1]
        return 0

    async def write_raw(self, data: bytes) -> None:
        """write data without a length prefix"""
        if self._closed:
            raise ConnectionError("Connection is closed")
        self.writer.write(data)
        await self.writer.drain()

    async def write_message(self, payload: bytes) -> None:
        """write a length-prefixed message"""
        await self.write_raw(struct.pack(">I", len(payload)) + payload)

    async def read_message(self) -> bytes | None:
        """read the next message; None when the peer closed the connection"""
        try:
            length_data = await self.reader.readexactly(4)
        except asyncio.IncompleteReadError as err:
            if err.partial:
                raise ConnectionError("Stream closed during message length read") from err
            return None

        length = int.from_bytes(length_data, "big")
        if length > MAX_MESSAGE_LENGTH:
            raise StagelinqError(f"Message length too large: {length} bytes")

        try:
            return await self.reader.readexactly(length)
        except asyncio.IncompleteReadError as err:
            raise ConnectionError(
                f"Stream closed during message read: got {len(err.partial)} of {length} bytes"
            ) from err

    async def close(self) -> None:
        """close the socket"""
        if self._closed:
            return
        self._closed = True
        await _close_writer(self.writer)
        logger.info("Disconnected from StagelinQ service at %s:%s", self.host, self.port)

    async def __aenter__(self) -> "MessageConnection":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()


class ServiceSession:
    """Base for sessions on a service data connection

    The session does not own the MessageConnection; closing the session
    only stops its reader task.
    """

    SERVICE_NAME = ""

    def __init__(self, connection: MessageConnection, token: bytes):
        self.connection = connection
        self.token = token
        self.errors: asyncio.Queue[Exception] = asyncio.Queue()
        self._reader_task: asyncio.Task | None = None

    @classmethod
    async def open(cls, connection: MessageConnection, token: bytes):
        """announce ourselves on the connection and start reading"""
        session = cls(connection, token)
        await connection.write_raw(
            StagelinqProtocol.create_service_announcement(
                token, cls.SERVICE_NAME, connection.local_port
            )
        )
        session._reader_task = asyncio.create_task(
            session._read_loop(), name=f"{cls.SERVICE_NAME}-{connection.host}:{connection.port}"
        )
        return session

    def handle_message(self, payload: bytes) -> None:
        """parse one frame and queue the result"""
        raise NotImplementedError

    async def _read_loop(self) -> None:
        try:
            while True:
                payload = await self.connection.read_message()
                if payload is None:
                    raise ConnectionError(
                        f"{self.SERVICE_NAME} connection closed by {self.connection.host}"
                    )
                try:
                    self.handle_message(payload)
                except StagelinqError as err:
                    logger.debug("Skipping malformed %s message: %s", self.SERVICE_NAME, err)
        except (OSError, StagelinqError) as err:
            self.errors.put_nowait(err)

    async def close(self) -> None:
        """stop reading"""
        if self._reader_task:
            self._reader_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._reader_task
            self._reader_task = None

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()


class StateMapConnection(ServiceSession):
    """StateMap session: subscribe to state paths, receive State updates"""

    SERVICE_NAME = "StateMap"

    def __init__(self, connection: MessageConnection, token: bytes):
        super().__init__(connection, token)
        self.states: asyncio.Queue[State] = asyncio.Queue()
        self.subscriptions: set[str] = set()

    async def subscribe(self, state_name: str, interval: int = 0) -> None:
        """Subscribe to state updates"""
        if state_name in self.subscriptions:
            return
        await self.connection.write_message(
            StagelinqProtocol.create_state_subscription(state_name, interval)
        )
        self.subscriptions.add(state_name)
        logger.debug("Subscribed to state: %s", state_name)

    def handle_message(self, payload: bytes) -> None:
        if state := StagelinqProtocol.parse_state_emit_message(payload):
            self.states.put_nowait(state)


class BeatInfoConnection(ServiceSession):
    """BeatInfo session: start the stream, receive BeatInfo frames"""

    SERVICE_NAME = "BeatInfo"

    def __init__(self, connection: MessageConnection, token: bytes):
        super().__init__(connection, token)
        self.beats: asyncio.Queue[BeatInfo] = asyncio.Queue()
        self.streaming = False

    async def start_stream(self) -> None:
        """Start beat info streaming"""
        if self.streaming:
            return
        await self.connection.write_message(StagelinqProtocol.create_beat_start_stream())
        self.streaming = True
        logger.debug("Started beat info streaming")

    def handle_message(self, payload: bytes) -> None:
        if beatinfo := StagelinqProtocol.parse_beat_emit_message(payload):
            self.beats.put_nowait(beatinfo)
