"""Unit tests for the discovery message parser."""

from __future__ import annotations

import pytest

from libratone_lan.const import PROBE_MESSAGE
from libratone_lan.protocol.discovery import Announcement, Probe, parse_message
from libratone_lan.protocol.exceptions import InvalidMessageError, InvalidUTF8Error


def test_parse_probe() -> None:
    assert parse_message(b"M-SEARCH * HTTP/1.1") == Probe()


def test_probe_bytes() -> None:
    assert Probe().to_bytes() == PROBE_MESSAGE
    assert isinstance(parse_message(Probe().to_bytes()), Probe)


def test_parse_announcement_headers() -> None:
    message = parse_message(b"NOTIFY * HTTP/1.1\r\nDeviceID: 0011AABB\r\nDeviceName: Kitchen Zipp\r\n")
    assert isinstance(message, Announcement)
    assert message.headers == {"DeviceID": "0011AABB", "DeviceName": "Kitchen Zipp"}
    assert message.device_id == "0011AABB"
    assert message.device_name == "Kitchen Zipp"


def test_header_split_on_first_colon() -> None:
    message = parse_message(b"NOTIFY * HTTP/1.1\r\nHello: World:Yep\r\n")
    assert message == Announcement(headers={"Hello": "World:Yep"})


def test_announcement_without_headers() -> None:
    message = parse_message(b"NOTIFY * HTTP/1.1\r\n")
    assert message == Announcement(headers={})
    assert isinstance(message, Announcement)
    assert message.device_name == ""


def test_empty_lines_are_skipped() -> None:
    message = parse_message(b"NOTIFY * HTTP/1.1\r\n\r\nDeviceID: 1\r\n\r\n")
    assert message == Announcement(headers={"DeviceID": "1"})


def test_empty_header_value_accepted() -> None:
    message = parse_message(b"NOTIFY * HTTP/1.1\r\nDeviceName:\r\n")
    assert message == Announcement(headers={"DeviceName": ""})


def test_repeated_spaces_in_header_line() -> None:
    assert parse_message(b"M-SEARCH  *  HTTP/1.1") == Probe()


@pytest.mark.parametrize(
    ("data", "reason"),
    [
        (b"", "no header line"),
        (b"\r\n\r\n", "no header line"),
        (b"NOTIFY *", "invalid number of tokens: 2"),
        (b"NOTIFY * HTTP/1.1 extra", "invalid number of tokens: 4"),
        (b"NOTIFY / HTTP/1.1", "invalid path: /"),
        (b"NOTIFY * HTTP/1.0", "invalid protocol: HTTP/1.0"),
        (b"WAT * HTTP/1.1", "invalid method: WAT"),
    ],
)
def test_invalid_header_line(data: bytes, reason: str) -> None:
    with pytest.raises(InvalidMessageError) as exc_info:
        _ = parse_message(data)
    assert exc_info.value == InvalidMessageError(reason)


def test_header_field_without_colon() -> None:
    with pytest.raises(InvalidMessageError, match="invalid header line"):
        _ = parse_message(b"NOTIFY * HTTP/1.1\r\nDeviceID 1234\r\n")


def test_header_field_with_empty_name() -> None:
    with pytest.raises(InvalidMessageError, match="invalid header line"):
        _ = parse_message(b"NOTIFY * HTTP/1.1\r\n: value\r\n")


def test_invalid_utf8() -> None:
    with pytest.raises(InvalidUTF8Error):
        _ = parse_message(b"NOTIFY * HTTP/1.1\r\nDeviceName: \xff\xfe\r\n")
