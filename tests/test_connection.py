#!/usr/bin/env python3
"""test StagelinQ connections against a local fake device"""

import asyncio
import struct

import pytest

from stageosc.stagelinq import (
    BeatInfo,
    BeatInfoConnection,
    Device,
    MessageConnection,
    PlayerInfo,
    StagelinqError,
    StateMapConnection,
)
from stageosc.stagelinq.protocol import StagelinqProtocol
from stageosc.stagelinq.types import MAX_MESSAGE_LENGTH

TOKEN = bytes(range(16))
DEVICE_TOKEN = bytes([0x42] * 16)

# message id, token, UTF-16 service name length and text, port
ANNOUNCEMENT_LENGTH = 4 + 16 + 4 + 2 * len("StateMap") + 2


def frame(payload: bytes) -> bytes:
    """length-prefix a payload"""
    return struct.pack(">I", len(payload)) + payload


async def read_frame(reader: asyncio.StreamReader) -> bytes:
    """read one length-prefixed payload"""
    length = int.from_bytes(await reader.readexactly(4), "big")
    return await reader.readexactly(length)


async def fake_device(handler):
    """run handler for every connection on a loopback port"""
    server = await asyncio.start_server(handler, "127.0.0.1", 0)
    return server, server.sockets[0].getsockname()[1]


async def stop(server):
    """shut the fake device down"""
    server.close()
    await server.wait_closed()


@pytest.mark.asyncio
async def test_request_services():
    """the device lists its services, then sends a reference"""
    requests = []

    async def handler(reader, writer):
        requests.append(await reader.readexactly(20))
        writer.write(
            StagelinqProtocol.create_service_announcement(DEVICE_TOKEN, "StateMap", 43121)
            + StagelinqProtocol.create_service_announcement(DEVICE_TOKEN, "BeatInfo", 43122)
            + StagelinqProtocol.create_reference_message(DEVICE_TOKEN, TOKEN)
        )
        await writer.drain()
        await reader.read()
        writer.close()

    server, port = await fake_device(handler)
    device = Device(ipaddr="127.0.0.1", token=DEVICE_TOKEN, name="fake", port=port)
    async with await device.connect(TOKEN) as connection:
        services = await connection.request_services(timeout=2)
    await stop(server)

    assert requests == [StagelinqProtocol.create_services_request(TOKEN)]
    assert [(service.name, service.port) for service in services] == [
        ("StateMap", 43121),
        ("BeatInfo", 43122),
    ]


@pytest.mark.asyncio
async def test_request_services_device_hangs_up():
    """a device closing the directory connection is an error, not an empty list"""

    async def handler(reader, writer):
        await reader.readexactly(20)
        writer.close()

    server, port = await fake_device(handler)
    device = Device(ipaddr="127.0.0.1", token=DEVICE_TOKEN, name="fake", port=port)
    async with await device.connect(TOKEN) as connection:
        with pytest.raises(StagelinqError):
            await connection.request_services(timeout=2)
    await stop(server)


@pytest.mark.asyncio
async def test_request_services_timeout():
    """a silent device times out"""

    async def handler(reader, writer):
        await reader.read()
        writer.close()

    server, port = await fake_device(handler)
    device = Device(ipaddr="127.0.0.1", token=DEVICE_TOKEN, name="fake", port=port)
    async with await device.connect(TOKEN) as connection:
        with pytest.raises(StagelinqError):
            await connection.request_services(timeout=0.1)
    await stop(server)


@pytest.mark.asyncio
async def test_keepalive_references():
    """reference messages flow while the directory connection is open"""
    received = asyncio.Queue()

    async def handler(reader, writer):
        while data := await reader.read(1024):
            received.put_nowait(data)
        writer.close()

    server, port = await fake_device(handler)
    device = Device(ipaddr="127.0.0.1", token=DEVICE_TOKEN, name="fake", port=port)
    connection = await device.connect(TOKEN)
    connection.keepalive_interval = 0.01
    data = await asyncio.wait_for(received.get(), timeout=2)
    await connection.close()
    await stop(server)

    assert data.startswith(StagelinqProtocol.create_reference_message(TOKEN, DEVICE_TOKEN))


@pytest.mark.asyncio
async def test_connect_refused():
    """nothing listening is a connection error"""
    server, port = await fake_device(lambda reader, writer: None)
    await stop(server)
    device = Device(ipaddr="127.0.0.1", token=DEVICE_TOKEN, port=port)
    with pytest.raises(ConnectionError):
        await device.connect(TOKEN)
    with pytest.raises(ConnectionError):
        await device.dial(port)


@pytest.mark.asyncio
async def test_message_too_long():
    """absurd length prefixes are rejected"""

    async def handler(reader, writer):
        writer.write(struct.pack(">I", MAX_MESSAGE_LENGTH + 1))
        await writer.drain()
        await reader.read()
        writer.close()

    server, port = await fake_device(handler)
    async with await MessageConnection.open("127.0.0.1", port) as connection:
        with pytest.raises(StagelinqError):
            await connection.read_message()
    await stop(server)


@pytest.mark.asyncio
async def test_statemap_session():
    """announce, subscribe, then states until the device goes away"""
    seen = {}
    path = "/Engine/Deck1/Track/SongName"

    async def handler(reader, writer):
        seen["announcement"] = await reader.readexactly(ANNOUNCEMENT_LENGTH)
        seen["subscription"] = await read_frame(reader)
        writer.write(
            frame(StagelinqProtocol.create_state_emit_message(path, {"string": "Teardrop"}))
            + frame(b"smaa\x00\x00\x00\x00garbage")
            + frame(StagelinqProtocol.create_state_subscription(path))
            + frame(StagelinqProtocol.create_state_emit_message(path, {"string": "Angel"}))
        )
        await writer.drain()
        writer.close()

    server, port = await fake_device(handler)
    async with await MessageConnection.open("127.0.0.1", port) as connection:
        async with await StateMapConnection.open(connection, TOKEN) as session:
            await session.subscribe(path)
            await session.subscribe(path)
            first = await asyncio.wait_for(session.states.get(), timeout=2)
            second = await asyncio.wait_for(session.states.get(), timeout=2)
            error = await asyncio.wait_for(session.errors.get(), timeout=2)
    await stop(server)

    announced = StagelinqProtocol.parse_service_announcement(seen["announcement"][4:])
    assert announced.name == "StateMap"
    assert seen["announcement"][4:20] == TOKEN
    assert seen["subscription"] == StagelinqProtocol.create_state_subscription(path)
    assert first.value["string"] == "Teardrop"
    assert second.value["string"] == "Angel"
    assert isinstance(error, ConnectionError)


@pytest.mark.asyncio
async def test_beatinfo_session():
    """start the stream, get frames, a torn frame is a connection error"""
    seen = {}
    beatinfo = BeatInfo(
        clock=99,
        players=[PlayerInfo(beat=4.0, total_beats=300.0, bpm=126.0)],
        timelines=[2.0],
    )

    async def handler(reader, writer):
        seen["announcement"] = await reader.readexactly(ANNOUNCEMENT_LENGTH)
        seen["start"] = await read_frame(reader)
        writer.write(
            frame(StagelinqProtocol.create_beat_start_stream())
            + frame(StagelinqProtocol.create_beat_emit_message(beatinfo))
            + struct.pack(">I", 100)
            + b"\x00" * 5
        )
        await writer.drain()
        writer.close()

    server, port = await fake_device(handler)
    async with await MessageConnection.open("127.0.0.1", port) as connection:
        async with await BeatInfoConnection.open(connection, TOKEN) as session:
            await session.start_stream()
            assert session.streaming
            received = await asyncio.wait_for(session.beats.get(), timeout=2)
            error = await asyncio.wait_for(session.errors.get(), timeout=2)
            assert session.beats.empty()
    await stop(server)

    assert StagelinqProtocol.parse_service_announcement(seen["announcement"][4:]).name == (
        "BeatInfo"
    )
    assert seen["start"] == StagelinqProtocol.create_beat_start_stream()
    assert received == beatinfo
    assert isinstance(error, ConnectionError)
