"""Libratone command packet encoder/decoder.

Every command, reply, notification and acknowledgment exchanged with a
speaker is one UDP datagram holding one packet:

    offset  field           value
    0-1     magic           0xAA 0xAA
    2       command type    1 = fetch, 2 = set
    3-4     command id      uint16, big-endian
    5       reserved        0x00
    6-7     reserved        0x12 0x34
    8-9     payload length  uint16, big-endian
    10+     payload         payload length bytes
"""

from __future__ import annotations

import struct
from dataclasses import dataclass
from enum import IntEnum

from libratone_lan.logging_abstraction import get_logger
from libratone_lan.protocol.exceptions import PacketDecodeError

__all__ = [
    "HEADER_LENGTH",
    "PACKET_MAGIC",
    "CommandType",
    "Packet",
    "decode_packet",
    "encode_packet",
]

PACKET_MAGIC = b"\xaa\xaa"
HEADER_LENGTH = 10
MAX_UINT16 = 0xFFFF

# magic(2) type(1) command(2) reserved(3) length(2)
_HEADER = struct.Struct(">2sBH3sH")
_RESERVED = b"\x00\x12\x34"

logger = get_logger(__name__)


class CommandType(IntEnum):
    """Packet command type byte."""

    FETCH = 1
    SET = 2


@dataclass(frozen=True, slots=True)
class Packet:
    """A single decoded command packet.

    Attributes:
        command_type: FETCH or SET
        command_id: 16-bit command identifier
        payload: Payload bytes, None when the packet carries no payload

    """

    command_type: CommandType
    command_id: int
    payload: bytes | None = None

    def __post_init__(self) -> None:
        if not 0 <= self.command_id <= MAX_UINT16:
            error_msg = f"command_id must fit in 16 bits, got {self.command_id}"
            raise ValueError(error_msg)
        if self.payload is not None and len(self.payload) > MAX_UINT16:
            error_msg = f"payload must be at most {MAX_UINT16} bytes, got {len(self.payload)}"
            raise ValueError(error_msg)

    @classmethod
    def fetch_request(cls, command_id: int) -> Packet:
        return cls(CommandType.FETCH, command_id)

    @classmethod
    def set_request(cls, command_id: int, payload: bytes | None = None) -> Packet:
        return cls(CommandType.SET, command_id, payload)

    @classmethod
    def from_bytes(cls, data: bytes) -> Packet:
        return decode_packet(data)

    def to_bytes(self) -> bytes:
        return encode_packet(self)

    def __str__(self) -> str:
        payload_len = len(self.payload) if self.payload else 0
        return f"Packet({self.command_type.name} id={self.command_id} payload_len={payload_len})"


def decode_packet(data: bytes) -> Packet:
    """Decode one packet from a complete datagram.

    Raises:
        PacketDecodeError: too_short if under 10 bytes, inconsistent_length if
            the declared payload length disagrees with the datagram size,
            invalid_command_type if the type byte is not 1 or 2

    Example:
        >>> decode_packet(bytes.fromhex("aaaa01005a0012340000"))
        Packet(command_type=<CommandType.FETCH: 1>, command_id=90, payload=None)

    """
    if len(data) < HEADER_LENGTH:
        error_reason = "too_short"
        raise PacketDecodeError(error_reason, data)

    _, type_byte, command_id, _, payload_len = _HEADER.unpack_from(data)

    if HEADER_LENGTH + payload_len != len(data):
        error_reason = "inconsistent_length"
        raise PacketDecodeError(error_reason, data)

    try:
        command_type = CommandType(type_byte)
    except ValueError as e:
        error_reason = "invalid_command_type"
        raise PacketDecodeError(error_reason, data) from e

    payload = bytes(data[HEADER_LENGTH:]) if payload_len > 0 else None

    logger.debug(
        "Decoded packet: type=%s, command=%d, payload_len=%d",
        command_type.name,
        command_id,
        payload_len,
    )

    return Packet(command_type=command_type, command_id=command_id, payload=payload)


def encode_packet(packet: Packet) -> bytes:
    """Encode a packet into its wire form, reserved bytes included."""
    payload = packet.payload or b""
    header = _HEADER.pack(PACKET_MAGIC, packet.command_type, packet.command_id, _RESERVED, len(payload))
    return header + payload
