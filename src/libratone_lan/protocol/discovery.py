"""Discovery message parser.

Speakers announce themselves with SSDP-style text datagrams on the discovery
multicast group:

    NOTIFY * HTTP/1.1\r\n
    DeviceID: ...\r\n
    DeviceName: ...\r\n

A controller looking for speakers sends ``M-SEARCH * HTTP/1.1``.
"""

from __future__ import annotations

from dataclasses import dataclass, field

from libratone_lan.const import PROBE_MESSAGE
from libratone_lan.protocol.exceptions import InvalidMessageError, InvalidUTF8Error

__all__ = [
    "Announcement",
    "DiscoveryMessage",
    "Probe",
    "parse_message",
]

METHOD_SEARCH = "M-SEARCH"
METHOD_NOTIFY = "NOTIFY"
EXPECTED_PATH = "*"
EXPECTED_PROTOCOL = "HTTP/1.1"
HEADER_TOKEN_COUNT = 3


@dataclass(frozen=True)
class Probe:
    """An M-SEARCH request sent to find speakers."""

    def to_bytes(self) -> bytes:
        return PROBE_MESSAGE


@dataclass(frozen=True)
class Announcement:
    """A NOTIFY message advertising a speaker and its headers."""

    headers: dict[str, str] = field(default_factory=dict)

    @property
    def device_id(self) -> str:
        return self.headers.get("DeviceID", "")

    @property
    def device_name(self) -> str:
        return self.headers.get("DeviceName", "")


DiscoveryMessage = Probe | Announcement


def parse_message(data: bytes) -> DiscoveryMessage:
    """Parse a discovery datagram.

    Raises:
        InvalidUTF8Error: data is not UTF-8
        InvalidMessageError: header line or a header field is malformed, or the
            method is neither M-SEARCH nor NOTIFY

    Example:
        >>> parse_message(b"NOTIFY * HTTP/1.1\\r\\nHello: World:Yep\\r\\n")
        Announcement(headers={'Hello': 'World:Yep'})

    """
    try:
        text = data.decode("utf-8")
    except UnicodeDecodeError as e:
        raise InvalidUTF8Error from e

    lines = [line for line in text.split("\r\n") if line]
    if not lines:
        raise InvalidMessageError("no header line")

    tokens = [token for token in lines[0].split(" ") if token]
    if len(tokens) != HEADER_TOKEN_COUNT:
        raise InvalidMessageError(f"invalid number of tokens: {len(tokens)}")

    method, path, protocol = tokens
    if path != EXPECTED_PATH:
        raise InvalidMessageError(f"invalid path: {path}")
    if protocol != EXPECTED_PROTOCOL:
        raise InvalidMessageError(f"invalid protocol: {protocol}")

    if method == METHOD_SEARCH:
        return Probe()
    if method == METHOD_NOTIFY:
        return Announcement(headers=_parse_headers(lines[1:]))
    raise InvalidMessageError(f"invalid method: {method}")


def _parse_headers(lines: list[str]) -> dict[str, str]:
    headers: dict[str, str] = {}
    for line in lines:
        key, sep, value = line.partition(":")
        # partition on the first colon only, so values may contain colons
        if not sep or not key:
            raise InvalidMessageError(f"invalid header line: {line!r}")
        headers[key] = value.strip(" ")
    return headers
