"""Per-speaker session: outbound channels, state snapshot and state machine.

A session owns two connected UDP channels to its speaker, one for fetch/set
commands and one for acknowledging notifications. Replies and notifications
arrive on the manager's shared inbound channels and are handed to
``handle_reply`` / ``handle_notify`` by the manager.

    connecting --(both channels open)--> ready --(channel failure)--> closed

There are no timeouts and no retries: a lost datagram simply never produces
an update.
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable
from enum import StrEnum
from typing import Any, override

from libratone_lan import metrics
from libratone_lan.const import ACK_PORT, COMMAND_PORT
from libratone_lan.exceptions import SessionClosedError
from libratone_lan.logging_abstraction import get_logger
from libratone_lan.properties import (
    CURRENT_TRACK,
    NAME,
    PLAYING_STATE,
    POWER_STATE,
    PROPERTIES,
    VOLUME,
    PropertyDescriptor,
    lookup_notify,
    lookup_reply,
)
from libratone_lan.protocol.packet import Packet
from libratone_lan.structs import CurrentTrack, DeviceInfo, PlayingState, PowerState, merge_info

__all__ = [
    "ClosedCallback",
    "DeviceSession",
    "InfoChangedCallback",
    "SessionState",
]

logger = get_logger(__name__)

InfoChangedCallback = Callable[[str, DeviceInfo], None]
ClosedCallback = Callable[[str], None]

COMMAND_CHANNEL = "command"
ACK_CHANNEL = "ack"


class SessionState(StrEnum):
    """Lifecycle state of a device session."""

    CONNECTING = "connecting"
    READY = "ready"
    CLOSED = "closed"


class _OutboundChannelProtocol(asyncio.DatagramProtocol):
    """Reports failures of one outbound channel back to its session."""

    def __init__(self, session: DeviceSession, channel: str) -> None:
        self.session = session
        self.channel = channel

    @override
    def datagram_received(self, data: bytes, addr: tuple[str | Any, int]) -> None:
        # Speakers answer on the shared inbound ports, not on this socket
        logger.debug(
            "%s Ignoring datagram on outbound %s channel",
            self.session.lp,
            self.channel,
            extra={"bytes": len(data)},
        )

    @override
    def error_received(self, exc: Exception) -> None:
        self.session.channel_failed(self.channel, exc)

    @override
    def connection_lost(self, exc: Exception | None) -> None:
        if exc is not None:
            self.session.channel_failed(self.channel, exc)


class DeviceSession:
    """Live connection to one speaker and the mirror of its state.

    Attributes:
        host: Speaker address, the session's identity
        state: Current SessionState
        info: Latest immutable DeviceInfo snapshot
        on_info_changed: Called with (host, info) after every applied update
        on_closed: Called once with host when the session closes

    """

    def __init__(
        self,
        host: str,
        *,
        command_port: int = COMMAND_PORT,
        ack_port: int = ACK_PORT,
        on_info_changed: InfoChangedCallback | None = None,
        on_closed: ClosedCallback | None = None,
    ) -> None:
        self.host: str = host
        self.command_port: int = command_port
        self.ack_port: int = ack_port
        self.on_info_changed: InfoChangedCallback | None = on_info_changed
        self.on_closed: ClosedCallback | None = on_closed
        self.state: SessionState = SessionState.CONNECTING
        self.info: DeviceInfo = DeviceInfo()
        self.lp: str = f"DeviceSession:{host}:"
        self._command_transport: asyncio.DatagramTransport | None = None
        self._ack_transport: asyncio.DatagramTransport | None = None
        # Set once the session leaves CONNECTING, whichever way it goes
        self._settled: asyncio.Event = asyncio.Event()

    def __repr__(self) -> str:
        return f"DeviceSession(host={self.host!r}, state={self.state.value})"

    @property
    def ready(self) -> bool:
        return self.state is SessionState.READY

    async def wait_ready(self) -> bool:
        """Wait until the session is ready or closed; return True if ready."""
        await self._settled.wait()
        return self.ready

    async def start(self) -> bool:
        """Open both outbound channels, then fetch every property.

        Returns:
            True if the session reached READY, False if it closed instead

        """
        loop = asyncio.get_running_loop()
        try:
            self._command_transport, _ = await loop.create_datagram_endpoint(
                lambda: _OutboundChannelProtocol(self, COMMAND_CHANNEL),
                remote_addr=(self.host, self.command_port),
            )
            self._ack_transport, _ = await loop.create_datagram_endpoint(
                lambda: _OutboundChannelProtocol(self, ACK_CHANNEL),
                remote_addr=(self.host, self.ack_port),
            )
        except OSError as e:
            logger.error(
                "%s Failed to open outbound channels",
                self.lp,
                extra={"host": self.host, "error": str(e)},
            )
            self.close()
            return False

        if self.state is not SessionState.CONNECTING:
            # A channel failed while the other one was opening
            self._close_transports()
            return False

        self.state = SessionState.READY
        logger.debug("%s Connected, fetching info", self.lp)
        self.fetch_all()
        self._settled.set()
        return True

    def fetch_all(self) -> None:
        """Send one fetch request per registry property."""
        for descriptor in PROPERTIES:
            self.fetch(descriptor)

    def fetch(self, descriptor: PropertyDescriptor) -> None:
        self._send(COMMAND_CHANNEL, Packet.fetch_request(descriptor.fetch_id))

    def set_property(self, descriptor: PropertyDescriptor, value: Any) -> None:
        """Send a set request for ``descriptor``.

        The speaker replies without a payload; the new value arrives later as
        a notification.

        Raises:
            PropertyNotSettableError: descriptor has no set command
            SessionClosedError: session is not ready

        """
        payload = descriptor.encode_value(value)
        # encode_value only succeeds when set_id is present
        assert descriptor.set_id is not None
        self._send(COMMAND_CHANNEL, Packet.set_request(descriptor.set_id, payload))

    def set_name(self, name: str) -> None:
        self.set_property(NAME, name)

    def set_volume(self, volume: int) -> None:
        """Set the volume; values above 100 are clamped to 100."""
        self.set_property(VOLUME, volume)

    def set_power_state(self, state: PowerState) -> None:
        self.set_property(POWER_STATE, state)

    def set_playing_state(self, state: PlayingState) -> None:
        self.set_property(PLAYING_STATE, state)

    def set_current_track(self, track: CurrentTrack) -> None:
        self.set_property(CURRENT_TRACK, track)

    def handle_reply(self, packet: Packet) -> None:
        """Apply a reply from the shared reply channel."""
        logger.debug("%s Got reply %s", self.lp, packet)

        descriptor = lookup_reply(packet.command_id)
        if descriptor is None:
            logger.debug("%s Ignoring reply to unknown command %d", self.lp, packet.command_id)
            return

        if packet.payload is None:
            # Replies to a set carry no data; the new value comes as a notification
            return

        self._apply(descriptor, packet.payload)

    def handle_notify(self, packet: Packet) -> None:
        """Acknowledge and apply a notification from the shared notify channel."""
        logger.debug("%s Got notify %s", self.lp, packet)
        self._acknowledge(packet.command_id)

        descriptor = lookup_notify(packet.command_id)
        if descriptor is None:
            logger.debug("%s Ignoring notify from unknown command %d", self.lp, packet.command_id)
            return

        if packet.payload is None:
            logger.error("%s No data for notify from %s", self.lp, descriptor.name)
            return

        self._apply(descriptor, packet.payload)

    def _acknowledge(self, command_id: int) -> None:
        try:
            self._send(ACK_CHANNEL, Packet.set_request(command_id))
        except SessionClosedError:
            logger.warning(
                "%s Cannot acknowledge notify %d, session not ready",
                self.lp,
                command_id,
                extra={"state": self.state.value},
            )
            metrics.record_notify_ack("skipped")
        else:
            metrics.record_notify_ack("sent")

    def _apply(self, descriptor: PropertyDescriptor, payload: bytes) -> None:
        update = descriptor.decode(payload)
        if update is None:
            metrics.record_decode_error("payload", descriptor.name)
            return

        self.info = merge_info(self.info, update)
        logger.debug(
            "%s Updated %s",
            self.lp,
            descriptor.name,
            extra={"fields": ",".join(update)},
        )

        if self.on_info_changed is not None:
            try:
                self.on_info_changed(self.host, self.info)
            except Exception:
                logger.exception("%s info-changed callback failed", self.lp)

    def _send(self, channel: str, packet: Packet) -> None:
        if self.state is not SessionState.READY:
            metrics.record_packet_sent(channel, packet.command_type.name.lower(), "not_ready")
            raise SessionClosedError(self.host, self.state.value)

        transport = self._command_transport if channel == COMMAND_CHANNEL else self._ack_transport
        assert transport is not None

        # Send failures are reported asynchronously through error_received
        transport.sendto(packet.to_bytes())
        metrics.record_packet_sent(channel, packet.command_type.name.lower(), "sent")
        logger.debug("%s Sent %s on %s channel", self.lp, packet, channel)

    def channel_failed(self, channel: str, exc: Exception) -> None:
        """Close the session after a failure on one of its channels."""
        if self.state is SessionState.CLOSED:
            return
        logger.error(
            "%s %s channel failed, forgetting device",
            self.lp,
            channel.capitalize(),
            extra={"host": self.host, "error": str(exc), "error_type": type(exc).__name__},
        )
        self.close()

    def close(self) -> None:
        """Close both channels and notify the owner. Idempotent."""
        if self.state is SessionState.CLOSED:
            return
        self.state = SessionState.CLOSED
        self._close_transports()
        self._settled.set()

        logger.info("%s Session closed", self.lp)
        if self.on_closed is not None:
            self.on_closed(self.host)

    def _close_transports(self) -> None:
        for transport in (self._command_transport, self._ack_transport):
            if transport is not None and not transport.is_closing():
                transport.close()
        self._command_transport = None
        self._ack_transport = None
