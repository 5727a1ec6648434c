#!/usr/bin/env python3
"""OSC output"""

import logging

from pythonosc import osc_message_builder, udp_client

from stageosc.translate import OutboundMessage

DEFAULT_HOST = "127.0.0.1"
DEFAULT_PORT = 57200


class OSCSink:
    """Fire-and-forget OSC over UDP

    send() raises OSError when the datagram can not be sent; there is no
    retry and nothing is buffered.
    """

    def __init__(self, host: str = DEFAULT_HOST, port: int = DEFAULT_PORT):
        self.host = host
        self.port = port
        self.client = udp_client.UDPClient(host, port)
        logging.info("Sending OSC to %s:%s", host, port)

    @staticmethod
    def build(message: OutboundMessage):
        """build the python-osc message; floats go out as 32-bit OSC floats"""
        builder = osc_message_builder.OscMessageBuilder(address=message.address)
        if isinstance(message.value, str):
            builder.add_arg(message.value, builder.ARG_TYPE_STRING)
        else:
            builder.add_arg(float(message.value), builder.ARG_TYPE_FLOAT)
        return builder.build()

    def send(self, message: OutboundMessage) -> None:
        """send one message"""
        self.client.send(self.build(message))
