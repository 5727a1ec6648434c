#!/usr/bin/env python3
"""test the discovery listener"""

import asyncio
from unittest.mock import MagicMock, patch

import pytest

from stageosc.stagelinq import DeviceState, Listener, ListenerConfig
from stageosc.stagelinq.listener import broadcast_addresses
from stageosc.stagelinq.protocol import StagelinqProtocol
from stageosc.stagelinq.types import DISCOVERER_EXIT

DEVICE_TOKEN = bytes([0x42] * 16)


def announcement(token=DEVICE_TOKEN, action="DISCOVERER_HOWDY_"):
    """a device announcement datagram"""
    return StagelinqProtocol.create_discovery_message(
        token=token,
        name="prime4",
        software_name="JP11",
        software_version="2.1.0",
        action=action,
        port=40000,
    )


def test_config_token():
    """a token is made up when none is given"""
    config = ListenerConfig()
    assert len(config.token) == 16
    assert config.token[0] & 0x80 == 0
    assert ListenerConfig(token=DEVICE_TOKEN).token == DEVICE_TOKEN


def test_broadcast_addresses():
    """global broadcast plus every interface broadcast"""
    with patch("stageosc.stagelinq.listener.netifaces") as mock_netifaces:
        mock_netifaces.AF_INET = 2
        mock_netifaces.interfaces.return_value = ["lo", "eth0", "gone"]
        mock_netifaces.ifaddresses.side_effect = [
            {2: [{"addr": "127.0.0.1"}]},
            {2: [{"addr": "192.168.1.10", "broadcast": "192.168.1.255"}]},
            ValueError("no such interface"),
        ]
        assert broadcast_addresses() == ["192.168.1.255", "255.255.255.255"]


@pytest.mark.asyncio
async def test_datagrams_queued():
    """announcements from others are queued with the sender address"""
    listener = Listener(ListenerConfig(token=bytes(16)))
    listener._on_datagram(announcement(), ("10.0.0.20", 51337))  # pylint: disable=protected-access
    listener._on_datagram(  # pylint: disable=protected-access
        announcement(action=DISCOVERER_EXIT), ("10.0.0.20", 51337)
    )

    device, state = await listener.discover(1)
    assert device.ipaddr == "10.0.0.20"
    assert device.token == DEVICE_TOKEN
    assert device.name == "prime4"
    assert device.port == 40000
    assert state == DeviceState.PRESENT

    _, state = await listener.discover(1)
    assert state == DeviceState.LEAVING


@pytest.mark.asyncio
async def test_own_and_bad_datagrams_dropped():
    """our own echo and junk never reach discover()"""
    listener = Listener(ListenerConfig(token=DEVICE_TOKEN))
    listener._on_datagram(announcement(), ("10.0.0.5", 51337))  # pylint: disable=protected-access
    listener._on_datagram(b"airDjunk", ("10.0.0.6", 51337))  # pylint: disable=protected-access
    assert listener.announcements.empty()
    with pytest.raises(asyncio.TimeoutError):
        await listener.discover(0.05)


@pytest.mark.asyncio
async def test_announce_and_goodbye():
    """periodic howdy while running, exit on close"""
    listener = Listener(ListenerConfig(name="StageOSC", token=bytes(16)))
    transport = MagicMock()
    listener.transport = transport

    with patch(
        "stageosc.stagelinq.listener.broadcast_addresses", return_value=["255.255.255.255"]
    ):
        listener.announce_every(0.01)
        await asyncio.sleep(0.05)
        await listener.close()

    sent = [call.args[0] for call in transport.sendto.call_args_list]
    assert len(sent) >= 2
    first = StagelinqProtocol.parse_discovery_message(sent[0])
    assert first.state == DeviceState.PRESENT
    assert first.name == "StageOSC"
    assert transport.sendto.call_args_list[0].args[1] == ("255.255.255.255", 51337)
    assert StagelinqProtocol.parse_discovery_message(sent[-1]).action == DISCOVERER_EXIT
    transport.close.assert_called_once()
    assert listener.transport is None


@pytest.mark.asyncio
async def test_bind_loopback():
    """the socket really binds and hears datagrams"""
    async with Listener(ListenerConfig(port=0, token=bytes(16))) as listener:
        port = listener.transport.get_extra_info("sockname")[1]
        loop = asyncio.get_running_loop()
        sender, _ = await loop.create_datagram_endpoint(
            asyncio.DatagramProtocol, remote_addr=("127.0.0.1", port)
        )
        sender.sendto(announcement())
        device, state = await listener.discover(2)
        sender.close()
        # skip the goodbye broadcast
        listener.transport.close()
        listener.transport = None

    assert device.ipaddr == "127.0.0.1"
    assert state == DeviceState.PRESENT


@pytest.mark.asyncio
async def test_stop_discovery_stops_queueing():
    """after the discovery window, announcements no longer pile up"""
    listener = Listener(ListenerConfig(token=bytes(16)))
    for _ in range(3):
        listener._on_datagram(announcement(), ("10.0.0.20", 51337))  # pylint: disable=protected-access
    assert listener.announcements.qsize() == 3

    listener.stop_discovery()
    assert listener.announcements.empty()
    for _ in range(1000):
        listener._on_datagram(announcement(), ("10.0.0.20", 51337))  # pylint: disable=protected-access
    assert listener.announcements.empty()
