"""Libratone wire protocol - command packet codec and discovery messages.

Public API:
- Command packets (Packet, CommandType, decode_packet, encode_packet)
- Discovery messages (Probe, Announcement, parse_message)
- Protocol exceptions
"""

from libratone_lan.protocol.discovery import Announcement, DiscoveryMessage, Probe, parse_message
from libratone_lan.protocol.exceptions import (
    DiscoveryParseError,
    InvalidMessageError,
    InvalidUTF8Error,
    LibratoneProtocolError,
    PacketDecodeError,
)
from libratone_lan.protocol.packet import CommandType, Packet, decode_packet, encode_packet

__all__ = [
    # Discovery
    "Announcement",
    "DiscoveryMessage",
    "Probe",
    "parse_message",
    # Command packets
    "CommandType",
    "Packet",
    "decode_packet",
    "encode_packet",
    # Exceptions
    "DiscoveryParseError",
    "InvalidMessageError",
    "InvalidUTF8Error",
    "LibratoneProtocolError",
    "PacketDecodeError",
]
