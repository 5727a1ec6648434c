#!/usr/bin/env python3
"""
StagelinQ Protocol Handler

Low-level message packing and parsing. All integers are big endian and all
strings are UTF-16BE with a 32-bit byte length prefix.

Messages built here do not carry the outer 32-bit length prefix used on
StateMap/BeatInfo data connections; MessageConnection adds that.
"""

import json
import os
import struct

from .types import (
    BEAT_EMIT_MAGIC,
    BEAT_INFO_START_STREAM_MAGIC,
    DISCOVERER_HOWDY,
    DISCOVERY_MAGIC,
    MSG_REFERENCE,
    MSG_SERVICE_ANNOUNCEMENT,
    MSG_SERVICES_REQUEST,
    SMAA_MAGIC,
    STATE_EMIT_MAGIC,
    STATE_SUBSCRIBE_MAGIC,
    TOKEN_LENGTH,
    Announcement,
    BeatInfo,
    PlayerInfo,
    Service,
    StagelinqError,
    State,
)

# beat, total beats, bpm
PLAYER_RECORD = struct.Struct(">ddd")
TIMELINE_RECORD = struct.Struct(">d")


class StagelinqProtocol:
    """Handles StagelinQ protocol message parsing and formatting"""

    @staticmethod
    def generate_token() -> bytes:
        """Generate a random 16-byte token (MSb must be 0)"""
        token = bytearray(os.urandom(TOKEN_LENGTH))
        # devices reject tokens with the top bit set
        token[0] = token[0] & 0x7F
        return bytes(token)

    @staticmethod
    def pack_utf16_string(string: str) -> bytes:
        """Pack a string as UTF-16 BigEndian with length prefix"""
        encoded = string.encode("utf-16be")
        return struct.pack(">I", len(encoded)) + encoded

    @staticmethod
    def unpack_utf16_string(data: bytes, offset: int = 0) -> tuple[str, int]:
        """Unpack a UTF-16 BigEndian string with length prefix"""
        if len(data) < offset + 4:
            raise StagelinqError("Insufficient data for string length")

        length: int = struct.unpack(">I", data[offset : offset + 4])[0]
        if len(data) < offset + 4 + length:
            raise StagelinqError("Insufficient data for string content")

        string_data = data[offset + 4 : offset + 4 + length]
        try:
            decoded = string_data.decode("utf-16be")
        except UnicodeDecodeError as err:
            raise StagelinqError(f"Invalid UTF-16 string data: {err}") from err
        return decoded, offset + 4 + length

    @staticmethod
    def _unpack_token(data: bytes, offset: int) -> tuple[bytes, int]:
        if len(data) < offset + TOKEN_LENGTH:
            raise StagelinqError("Insufficient data for token")
        return data[offset : offset + TOKEN_LENGTH], offset + TOKEN_LENGTH

    @staticmethod
    def _unpack_port(data: bytes, offset: int) -> tuple[int, int]:
        if len(data) < offset + 2:
            raise StagelinqError("Insufficient data for port")
        return struct.unpack(">H", data[offset : offset + 2])[0], offset + 2

    #### Discovery (UDP)

    @staticmethod
    def create_discovery_message(  # pylint: disable=too-many-arguments
        token: bytes,
        name: str,
        software_name: str,
        software_version: str,
        action: str = DISCOVERER_HOWDY,
        port: int = 0,
    ) -> bytes:
        """Create a discovery announcement message"""
        return (
            DISCOVERY_MAGIC
            + token
            + StagelinqProtocol.pack_utf16_string(name)
            + StagelinqProtocol.pack_utf16_string(action)
            + StagelinqProtocol.pack_utf16_string(software_name)
            + StagelinqProtocol.pack_utf16_string(software_version)
            + struct.pack(">H", port)
        )

    @staticmethod
    def parse_discovery_message(data: bytes) -> Announcement:
        """Parse a discovery message from a UDP broadcast"""
        if data[:4] != DISCOVERY_MAGIC:
            raise StagelinqError("Invalid discovery magic")

        token, offset = StagelinqProtocol._unpack_token(data, 4)
        name, offset = StagelinqProtocol.unpack_utf16_string(data, offset)
        action, offset = StagelinqProtocol.unpack_utf16_string(data, offset)
        software_name, offset = StagelinqProtocol.unpack_utf16_string(data, offset)
        software_version, offset = StagelinqProtocol.unpack_utf16_string(data, offset)
        port, _ = StagelinqProtocol._unpack_port(data, offset)

        return Announcement(
            token=token,
            name=name,
            action=action,
            software_name=software_name,
            software_version=software_version,
            port=port,
        )

    #### Directory connection

    @staticmethod
    def create_services_request(token: bytes) -> bytes:
        """Create a services request message"""
        return struct.pack(">I", MSG_SERVICES_REQUEST) + token

    @staticmethod
    def create_reference_message(
        our_token: bytes, target_token: bytes, reference: int = 0
    ) -> bytes:
        """Create a reference message to keep the connection alive"""
        return (
            struct.pack(">I", MSG_REFERENCE)
            + our_token
            + target_token
            + struct.pack(">q", reference)
        )

    @staticmethod
    def create_service_announcement(token: bytes, service_name: str, port: int) -> bytes:
        """Create a service announcement message"""
        return (
            struct.pack(">I", MSG_SERVICE_ANNOUNCEMENT)
            + token
            + StagelinqProtocol.pack_utf16_string(service_name)
            + struct.pack(">H", port)
        )

    @staticmethod
    def parse_service_announcement(data: bytes) -> Service:
        """Parse the body of a service announcement (everything after the message ID)"""
        _, offset = StagelinqProtocol._unpack_token(data, 0)
        name, offset = StagelinqProtocol.unpack_utf16_string(data, offset)
        port, _ = StagelinqProtocol._unpack_port(data, offset)
        return Service(name=name, port=port)

    #### StateMap

    @staticmethod
    def create_state_subscription(state_path: str, interval: int = 0) -> bytes:
        """Create a state subscription message"""
        return (
            SMAA_MAGIC
            + STATE_SUBSCRIBE_MAGIC
            + StagelinqProtocol.pack_utf16_string(state_path)
            + struct.pack(">I", interval)
        )

    @staticmethod
    def create_state_emit_message(name: str, value: dict) -> bytes:
        """Create a state emit message, as a device would send it"""
        return (
            SMAA_MAGIC
            + STATE_EMIT_MAGIC
            + StagelinqProtocol.pack_utf16_string(name)
            + StagelinqProtocol.pack_utf16_string(json.dumps(value))
        )

    @staticmethod
    def parse_state_emit_message(data: bytes) -> State | None:
        """Parse a state emit message

        Other smaa messages (subscription echoes and the like) return None.
        """
        if len(data) < 8 or data[:4] != SMAA_MAGIC or data[4:8] != STATE_EMIT_MAGIC:
            return None

        name, offset = StagelinqProtocol.unpack_utf16_string(data, 8)
        json_str, _ = StagelinqProtocol.unpack_utf16_string(data, offset)
        try:
            value = json.loads(json_str)
        except json.JSONDecodeError as err:
            raise StagelinqError(f"Invalid JSON for {name}: {err}") from err

        if not isinstance(value, dict):
            value = {"value": value}
        return State(name=name, value=value)

    #### BeatInfo

    @staticmethod
    def create_beat_start_stream() -> bytes:
        """Create a beat info start stream message"""
        return BEAT_INFO_START_STREAM_MAGIC

    @staticmethod
    def create_beat_emit_message(beatinfo: BeatInfo) -> bytes:
        """Create a beat emit message, as a device would send it"""
        if len(beatinfo.players) != len(beatinfo.timelines):
            raise StagelinqError("Number of players must match number of timelines")

        message = BEAT_EMIT_MAGIC + struct.pack(">QI", beatinfo.clock, len(beatinfo.players))
        for player in beatinfo.players:
            message += PLAYER_RECORD.pack(player.beat, player.total_beats, player.bpm)
        for timeline in beatinfo.timelines:
            message += TIMELINE_RECORD.pack(timeline)
        return message

    @staticmethod
    def parse_beat_emit_message(data: bytes) -> BeatInfo | None:
        """Parse a beat emit message

        Anything that is not a beat emit (e.g. the device echoing a start
        stream) returns None.
        """
        if data[:4] != BEAT_EMIT_MAGIC:
            return None

        if len(data) < 16:
            raise StagelinqError("Beat emit message too short")

        clock, count = struct.unpack(">QI", data[4:16])
        expected = 16 + count * (PLAYER_RECORD.size + TIMELINE_RECORD.size)
        if len(data) != expected:
            raise StagelinqError(
                f"Beat emit message for {count} players is {len(data)} bytes, expected {expected}"
            )

        offset = 16
        players = []
        for _ in range(count):
            beat, total_beats, bpm = PLAYER_RECORD.unpack_from(data, offset)
            players.append(PlayerInfo(beat=beat, total_beats=total_beats, bpm=bpm))
            offset += PLAYER_RECORD.size

        timelines = []
        for _ in range(count):
            timelines.append(TIMELINE_RECORD.unpack_from(data, offset)[0])
            offset += TIMELINE_RECORD.size

        return BeatInfo(clock=clock, players=players, timelines=timelines)
