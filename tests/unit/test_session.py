"""Unit tests for DeviceSession.

Tests cover:
- Startup (channels opened, fetch of every property)
- Set commands and their packets
- Reply and notification handling
- Channel failure and close
"""

from __future__ import annotations

import asyncio
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from conftest import SPEAKER_HOST, ReadySession, make_transport, sent_packets

from libratone_lan.exceptions import PropertyNotSettableError, SessionClosedError
from libratone_lan.properties import FAVORITES
from libratone_lan.protocol.packet import CommandType, Packet
from libratone_lan.session import DeviceSession, SessionState
from libratone_lan.structs import CurrentTrack, DeviceInfo, PlayingState, PowerState

# Test constants
FETCH_IDS_IN_ORDER = [90, 64, 15, 51, 278, 275]


class TestStart:
    """Tests for session startup."""

    @pytest.mark.asyncio
    async def test_start_opens_channels_and_fetches_everything(self) -> None:
        command_transport = make_transport()
        ack_transport = make_transport()
        session = DeviceSession(SPEAKER_HOST, command_port=17777, ack_port=13334)

        loop = asyncio.get_running_loop()
        with patch.object(
            loop,
            "create_datagram_endpoint",
            AsyncMock(side_effect=[(command_transport, MagicMock()), (ack_transport, MagicMock())]),
        ) as mock_endpoint:
            assert await session.start() is True

        remote_addrs = [call.kwargs["remote_addr"] for call in mock_endpoint.call_args_list]
        assert remote_addrs == [(SPEAKER_HOST, 17777), (SPEAKER_HOST, 13334)]
        assert session.state is SessionState.READY
        assert await session.wait_ready() is True

        packets = sent_packets(command_transport)
        assert [packet.command_id for packet in packets] == FETCH_IDS_IN_ORDER
        assert all(packet.command_type is CommandType.FETCH for packet in packets)
        assert all(packet.payload is None for packet in packets)
        ack_transport.sendto.assert_not_called()

    @pytest.mark.asyncio
    async def test_start_failure_closes_session(self) -> None:
        command_transport = make_transport()
        on_closed = MagicMock()
        session = DeviceSession(SPEAKER_HOST, on_closed=on_closed)

        loop = asyncio.get_running_loop()
        with patch.object(
            loop,
            "create_datagram_endpoint",
            AsyncMock(side_effect=[(command_transport, MagicMock()), OSError("unreachable")]),
        ):
            assert await session.start() is False

        assert session.state is SessionState.CLOSED
        assert await session.wait_ready() is False
        command_transport.close.assert_called_once()
        on_closed.assert_called_once_with(SPEAKER_HOST)

    def test_send_before_ready_raises(self) -> None:
        session = DeviceSession(SPEAKER_HOST)
        with pytest.raises(SessionClosedError) as exc_info:
            session.set_volume(10)
        assert exc_info.value.host == SPEAKER_HOST
        assert exc_info.value.state == "connecting"


class TestSetCommands:
    """Tests for set requests."""

    def test_set_volume(self, ready_session: ReadySession) -> None:
        ready_session.set_volume(35)
        assert sent_packets(ready_session.command_transport) == [Packet.set_request(64, b"35")]

    def test_set_volume_clamped(self, ready_session: ReadySession) -> None:
        ready_session.set_volume(180)
        assert sent_packets(ready_session.command_transport) == [Packet.set_request(64, b"100")]

    def test_set_power_state(self, ready_session: ReadySession) -> None:
        ready_session.set_power_state(PowerState.SLEEPING)
        assert sent_packets(ready_session.command_transport) == [Packet.set_request(15, b"02")]

    def test_set_playing_state_uses_set_id(self, ready_session: ReadySession) -> None:
        ready_session.set_playing_state(PlayingState.NEXT)
        assert sent_packets(ready_session.command_transport) == [Packet.set_request(40, b"NEXT")]

    def test_set_current_track(self, ready_session: ReadySession) -> None:
        ready_session.set_current_track(CurrentTrack(play_title="Song"))
        assert sent_packets(ready_session.command_transport) == [
            Packet.set_request(277, b'{"play_title":"Song"}'),
        ]

    def test_set_name(self, ready_session: ReadySession) -> None:
        ready_session.set_name("Office")
        assert sent_packets(ready_session.command_transport) == [Packet.set_request(90, b"Office")]

    def test_set_read_only_property(self, ready_session: ReadySession) -> None:
        with pytest.raises(PropertyNotSettableError):
            ready_session.set_property(FAVORITES, ())
        ready_session.command_transport.sendto.assert_not_called()

    def test_set_does_not_change_info(self, ready_session: ReadySession) -> None:
        ready_session.set_volume(35)
        assert ready_session.info == DeviceInfo()


class TestHandleReply:
    """Tests for replies from the shared reply channel."""

    def test_reply_updates_info(self, ready_session: ReadySession) -> None:
        ready_session.handle_reply(Packet(CommandType.FETCH, 90, b"Kitchen"))
        assert ready_session.info.name == "Kitchen"
        on_info_changed: MagicMock = ready_session.on_info_changed  # type: ignore[assignment]
        on_info_changed.assert_called_once_with(SPEAKER_HOST, ready_session.info)

    def test_reply_without_payload_ignored(self, ready_session: ReadySession) -> None:
        ready_session.handle_reply(Packet.set_request(64))
        assert ready_session.info == DeviceInfo()
        on_info_changed: MagicMock = ready_session.on_info_changed  # type: ignore[assignment]
        on_info_changed.assert_not_called()

    def test_reply_to_unknown_command_ignored(self, ready_session: ReadySession) -> None:
        ready_session.handle_reply(Packet(CommandType.FETCH, 999, b"x"))
        assert ready_session.info == DeviceInfo()

    def test_reply_to_playing_state_set_id_ignored(self, ready_session: ReadySession) -> None:
        """Replies are looked up by fetch id; 40 only exists as a set id."""
        ready_session.handle_reply(Packet(CommandType.SET, 40, b"2"))
        assert ready_session.info.playing_state is None

    def test_undecodable_reply_keeps_info(self, ready_session: ReadySession) -> None:
        ready_session.handle_reply(Packet(CommandType.FETCH, 64, b"loud"))
        assert ready_session.info == DeviceInfo()

    def test_replies_merge(self, ready_session: ReadySession) -> None:
        ready_session.handle_reply(Packet(CommandType.FETCH, 64, b"20"))
        ready_session.handle_reply(Packet(CommandType.FETCH, 15, b"00"))
        assert ready_session.info.volume == 20
        assert ready_session.info.power_state is PowerState.AWAKE

    def test_callback_error_does_not_break_session(self, ready_session: ReadySession) -> None:
        ready_session.on_info_changed = MagicMock(side_effect=RuntimeError("consumer bug"))
        ready_session.handle_reply(Packet(CommandType.FETCH, 64, b"20"))
        assert ready_session.info.volume == 20
        assert ready_session.state is SessionState.READY


class TestHandleNotify:
    """Tests for notifications from the shared notify channel."""

    def test_notify_acknowledged_then_applied(self, ready_session: ReadySession) -> None:
        ready_session.handle_notify(Packet(CommandType.SET, 51, b"2"))
        assert sent_packets(ready_session.ack_transport) == [Packet.set_request(51)]
        assert ready_session.info.playing_state is PlayingState.PAUSE
        ready_session.command_transport.sendto.assert_not_called()

    def test_ack_has_no_payload(self, ready_session: ReadySession) -> None:
        ready_session.handle_notify(Packet(CommandType.SET, 64, b"55"))
        raw = ready_session.ack_transport.sendto.call_args.args[0]
        assert raw == bytes.fromhex("aaaa0200400012340000")
        assert ready_session.info.volume == 55

    def test_unknown_notify_still_acknowledged(self, ready_session: ReadySession) -> None:
        ready_session.handle_notify(Packet(CommandType.SET, 4242, b"x"))
        assert sent_packets(ready_session.ack_transport) == [Packet.set_request(4242)]
        assert ready_session.info == DeviceInfo()

    def test_notify_without_payload(self, ready_session: ReadySession) -> None:
        ready_session.handle_notify(Packet(CommandType.SET, 64))
        assert sent_packets(ready_session.ack_transport) == [Packet.set_request(64)]
        assert ready_session.info == DeviceInfo()

    def test_notify_before_ready_applied_without_ack(self) -> None:
        session = DeviceSession(SPEAKER_HOST)
        session.handle_notify(Packet(CommandType.SET, 64, b"12"))
        assert session.info.volume == 12

    def test_current_track_notify(self, ready_session: ReadySession) -> None:
        ready_session.handle_notify(Packet(CommandType.SET, 278, b'{"play_title":"News","isFromChannel":true}'))
        track = ready_session.info.current_track
        assert track is not None
        assert track.play_title == "News"
        assert track.is_from_channel is True


class TestClose:
    """Tests for channel failure and close."""

    def test_channel_failure_closes_session(self, ready_session: ReadySession) -> None:
        ready_session.channel_failed("command", ConnectionRefusedError())
        assert ready_session.state is SessionState.CLOSED
        ready_session.command_transport.close.assert_called_once()
        ready_session.ack_transport.close.assert_called_once()
        on_closed: MagicMock = ready_session.on_closed  # type: ignore[assignment]
        on_closed.assert_called_once_with(SPEAKER_HOST)

    def test_close_idempotent(self, ready_session: ReadySession) -> None:
        ready_session.close()
        ready_session.close()
        ready_session.channel_failed("ack", OSError("late"))
        on_closed: MagicMock = ready_session.on_closed  # type: ignore[assignment]
        on_closed.assert_called_once_with(SPEAKER_HOST)

    def test_send_after_close_raises(self, ready_session: ReadySession) -> None:
        ready_session.close()
        with pytest.raises(SessionClosedError) as exc_info:
            ready_session.set_power_state(PowerState.AWAKE)
        assert exc_info.value.state == "closed"

    def test_info_kept_after_close(self, ready_session: ReadySession) -> None:
        ready_session.handle_reply(Packet(CommandType.FETCH, 64, b"20"))
        ready_session.close()
        assert ready_session.info.volume == 20
