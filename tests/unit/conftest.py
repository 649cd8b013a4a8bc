"""Shared fixtures for unit tests.

This module provides reusable fixtures for testing libratone-lan components.
"""

from unittest.mock import MagicMock

import pytest

from libratone_lan.protocol.packet import Packet
from libratone_lan.session import DeviceSession, SessionState

SPEAKER_HOST = "192.168.1.50"


def make_transport() -> MagicMock:
    """Mock asyncio.DatagramTransport recording sendto calls."""
    transport: MagicMock = MagicMock()
    transport.is_closing = MagicMock(return_value=False)
    transport.sendto = MagicMock()
    transport.close = MagicMock()
    return transport


def sent_packets(transport: MagicMock) -> list[Packet]:
    """Decode every datagram sent through a mock transport."""
    return [Packet.from_bytes(call.args[0]) for call in transport.sendto.call_args_list]


class ReadySession(DeviceSession):
    """DeviceSession with mock transports, already in READY."""

    command_transport: MagicMock
    ack_transport: MagicMock

    def attach_mock_transports(self) -> None:
        self.command_transport = make_transport()
        self.ack_transport = make_transport()
        self._command_transport = self.command_transport
        self._ack_transport = self.ack_transport
        self.state = SessionState.READY
        self._settled.set()


@pytest.fixture
def ready_session() -> ReadySession:
    """Ready session for SPEAKER_HOST with mocked outbound channels and callbacks."""
    session = ReadySession(
        SPEAKER_HOST,
        on_info_changed=MagicMock(),
        on_closed=MagicMock(),
    )
    session.attach_mock_transports()
    return session
