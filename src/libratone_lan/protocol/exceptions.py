"""Custom exception types for Libratone protocol errors.

Every wire-level failure raises one of these instead of returning None, so
callers can tell a malformed datagram from a routing miss.
"""

from __future__ import annotations


class LibratoneProtocolError(Exception):
    """Base exception for all Libratone protocol errors."""


class PacketDecodeError(LibratoneProtocolError):
    """Command packet cannot be decoded.

    Attributes:
        reason: Specific failure reason ("too_short", "inconsistent_length",
            "invalid_command_type")
        data_preview: First 16 bytes of packet data

    """

    def __init__(self, reason: str, data: bytes = b"") -> None:
        self.reason: str = reason
        self.data_preview: bytes = data[:16] if data else b""
        super().__init__(f"Packet decode failed: {reason}")


class DiscoveryParseError(LibratoneProtocolError):
    """Discovery message cannot be parsed."""


class InvalidUTF8Error(DiscoveryParseError):
    """Discovery message is not valid UTF-8 text."""

    def __init__(self) -> None:
        super().__init__("Discovery message is not valid UTF-8")


class InvalidMessageError(DiscoveryParseError):
    """Discovery message is well-formed text but not a valid message.

    Attributes:
        reason: Human-readable failure reason (e.g. "invalid method: WAT")

    """

    def __init__(self, reason: str) -> None:
        self.reason: str = reason
        super().__init__(f"Invalid discovery message: {reason}")

    def __eq__(self, other: object) -> bool:
        return isinstance(other, InvalidMessageError) and other.reason == self.reason

    def __hash__(self) -> int:
        return hash(self.reason)
