"""Device manager: discovery, shared inbound channels and the session table.

The manager listens on the discovery multicast group for speaker
announcements and keeps one DeviceSession per announcing host. Speakers send
replies and notifications to two well-known ports shared by all of them; the
manager owns those listeners and routes each datagram to the session of its
source host.
"""

from __future__ import annotations

import asyncio
import socket
import struct
from collections.abc import Callable, Mapping
from types import MappingProxyType
from typing import Any, override

from libratone_lan import metrics
from libratone_lan.const import ManagerConfig
from libratone_lan.correlation import correlation_context
from libratone_lan.exceptions import ManagerStartError
from libratone_lan.logging_abstraction import get_logger
from libratone_lan.protocol.discovery import Announcement, Probe, parse_message
from libratone_lan.protocol.exceptions import DiscoveryParseError, PacketDecodeError
from libratone_lan.protocol.packet import decode_packet
from libratone_lan.session import DeviceSession
from libratone_lan.structs import DeviceInfo

__all__ = [
    "DeviceManager",
    "DiscoveredCallback",
    "DisappearedCallback",
]

logger = get_logger(__name__)

DiscoveredCallback = Callable[[DeviceSession], None]
DisappearedCallback = Callable[[str], None]
InfoChangedCallback = Callable[[str, DeviceInfo], None]

DISCOVERY_CHANNEL = "discovery"
NOTIFY_CHANNEL = "notify"
REPLY_CHANNEL = "reply"


class _DiscoveryProtocol(asyncio.DatagramProtocol):
    """Hands discovery datagrams to the manager."""

    def __init__(self, manager: DeviceManager) -> None:
        self.manager = manager

    @override
    def datagram_received(self, data: bytes, addr: tuple[str | Any, int]) -> None:
        self.manager.handle_discovery(data, addr)

    @override
    def error_received(self, exc: Exception) -> None:
        logger.error(
            "DeviceManager:discovery: Socket error",
            extra={"error": str(exc), "error_type": type(exc).__name__},
        )


class _InboundChannelProtocol(asyncio.DatagramProtocol):
    """Hands datagrams from one shared inbound channel to the manager."""

    def __init__(self, manager: DeviceManager, channel: str) -> None:
        self.manager = manager
        self.channel = channel

    @override
    def datagram_received(self, data: bytes, addr: tuple[str | Any, int]) -> None:
        self.manager.handle_inbound(self.channel, data, addr)

    @override
    def error_received(self, exc: Exception) -> None:
        # Shared by all speakers, so there is no single session to close
        logger.error(
            "DeviceManager:%s: Socket error",
            self.channel,
            extra={"error": str(exc), "error_type": type(exc).__name__},
        )


class DeviceManager:
    """Discovers speakers and keeps a session for each of them.

    Attributes:
        config: Addresses and ports in use
        on_device_discovered: Called with the new session when a speaker first announces itself
        on_device_disappeared: Called with the host when a session closes
        on_info_changed: Called with (host, info) whenever any speaker's info changes

    """

    lp = "DeviceManager:"

    def __init__(
        self,
        config: ManagerConfig | None = None,
        *,
        on_device_discovered: DiscoveredCallback | None = None,
        on_device_disappeared: DisappearedCallback | None = None,
        on_info_changed: InfoChangedCallback | None = None,
    ) -> None:
        self.config: ManagerConfig = config or ManagerConfig()
        self.on_device_discovered: DiscoveredCallback | None = on_device_discovered
        self.on_device_disappeared: DisappearedCallback | None = on_device_disappeared
        self.on_info_changed: InfoChangedCallback | None = on_info_changed
        self._sessions: dict[str, DeviceSession] = {}
        self._start_tasks: set[asyncio.Task[bool]] = set()
        self._notify_transport: asyncio.DatagramTransport | None = None
        self._reply_transport: asyncio.DatagramTransport | None = None
        self._discovery_transport: asyncio.DatagramTransport | None = None

    @property
    def sessions(self) -> Mapping[str, DeviceSession]:
        """Read-only view of the live sessions, keyed by host."""
        return MappingProxyType(self._sessions)

    def get_session(self, host: str) -> DeviceSession | None:
        return self._sessions.get(host)

    async def start(self) -> None:
        """Bind the shared inbound channels, join discovery and send a probe.

        Raises:
            ManagerStartError: a channel could not be bound; anything already
                bound is closed again

        """
        lp = f"{self.lp}start:"
        try:
            self._notify_transport = await self._open_inbound(NOTIFY_CHANNEL, self.config.notify_port)
            self._reply_transport = await self._open_inbound(REPLY_CHANNEL, self.config.reply_port)
            self._discovery_transport = await self._open_discovery()
        except ManagerStartError as e:
            logger.error(
                "%s Failed to bind %s channel",
                lp,
                e.reason,
                extra={"port": e.port, "cause": str(e.__cause__)},
            )
            self.stop()
            raise

        logger.info(
            "%s Listening",
            lp,
            extra={
                "bind_host": self.config.bind_host,
                "notify_port": self.config.notify_port,
                "reply_port": self.config.reply_port,
                "discovery": f"{self.config.discovery_group}:{self.config.discovery_port}",
            },
        )
        self.send_probe()

    async def _open_inbound(self, channel: str, port: int) -> asyncio.DatagramTransport:
        loop = asyncio.get_running_loop()
        try:
            transport, _ = await loop.create_datagram_endpoint(
                lambda: _InboundChannelProtocol(self, channel),
                local_addr=(self.config.bind_host, port),
            )
        except OSError as e:
            raise ManagerStartError(channel, port) from e
        return transport

    async def _open_discovery(self) -> asyncio.DatagramTransport:
        loop = asyncio.get_running_loop()
        try:
            sock = self._make_discovery_socket()
        except OSError as e:
            raise ManagerStartError(DISCOVERY_CHANNEL, self.config.discovery_port) from e
        transport, _ = await loop.create_datagram_endpoint(
            lambda: _DiscoveryProtocol(self),
            sock=sock,
        )
        return transport

    def _make_discovery_socket(self) -> socket.socket:
        sock = socket.socket(socket.AF_INET, socket.SOCK_DGRAM, socket.IPPROTO_UDP)
        try:
            # Other controllers on this host may listen on the same group
            sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
            if hasattr(socket, "SO_REUSEPORT"):
                sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEPORT, 1)
            sock.bind((self.config.bind_host, self.config.discovery_port))
            mreq = struct.pack("=4sl", socket.inet_aton(self.config.discovery_group), socket.INADDR_ANY)
            sock.setsockopt(socket.IPPROTO_IP, socket.IP_ADD_MEMBERSHIP, mreq)
            sock.setblocking(False)
        except OSError:
            sock.close()
            raise
        return sock

    def send_probe(self) -> None:
        """Ask every speaker on the network to announce itself."""
        if self._discovery_transport is None:
            logger.warning("%s Cannot send probe, discovery channel is not open", self.lp)
            return
        self._discovery_transport.sendto(
            Probe().to_bytes(),
            (self.config.discovery_group, self.config.discovery_port),
        )
        logger.debug("%s Sent discovery probe", self.lp)

    def stop(self) -> None:
        """Close every channel and every session."""
        for task in list(self._start_tasks):
            task.cancel()
        self._start_tasks.clear()

        for transport in (self._notify_transport, self._reply_transport, self._discovery_transport):
            if transport is not None and not transport.is_closing():
                transport.close()
        self._notify_transport = None
        self._reply_transport = None
        self._discovery_transport = None

        sessions = list(self._sessions.values())
        self._sessions.clear()
        for session in sessions:
            # Shutting down is not a disappearance
            session.on_closed = None
            session.close()
        metrics.record_device_event("stopped", 0)
        logger.info("%s Stopped", self.lp, extra={"closed_sessions": len(sessions)})

    def handle_discovery(self, data: bytes, addr: tuple[str | Any, int]) -> None:
        """Handle one datagram received on the discovery group."""
        host = str(addr[0])
        with correlation_context():
            try:
                message = parse_message(data)
            except DiscoveryParseError as e:
                logger.error(
                    "%s Failed to parse discovery message",
                    self.lp,
                    extra={"host": host, "error": str(e)},
                )
                metrics.record_decode_error("discovery", type(e).__name__)
                return

            if isinstance(message, Probe):
                # Our own probe looped back, or another controller searching
                return

            if host in self._sessions:
                return

            self._add_session(host, message)

    def _add_session(self, host: str, announcement: Announcement) -> None:
        session = DeviceSession(
            host,
            command_port=self.config.command_port,
            ack_port=self.config.ack_port,
            on_info_changed=self._forward_info_changed,
            on_closed=self._session_closed,
        )
        self._sessions[host] = session
        metrics.record_device_event("discovered", len(self._sessions))
        logger.info(
            "%s Discovered new device",
            self.lp,
            extra={
                "host": host,
                "device_id": announcement.device_id,
                "device_name": announcement.device_name,
            },
        )

        task = asyncio.get_running_loop().create_task(session.start(), name=f"libratone-session-{host}")
        self._start_tasks.add(task)
        task.add_done_callback(self._start_tasks.discard)

        if self.on_device_discovered is not None:
            try:
                self.on_device_discovered(session)
            except Exception:
                logger.exception("%s device-discovered callback failed", self.lp, extra={"host": host})

    def handle_inbound(self, channel: str, data: bytes, addr: tuple[str | Any, int]) -> None:
        """Route one datagram from a shared inbound channel to its session."""
        host = str(addr[0])
        session = self._sessions.get(host)
        if session is None:
            logger.debug(
                "%s Dropping %s datagram from unknown host",
                self.lp,
                channel,
                extra={"host": host, "bytes": len(data)},
            )
            metrics.record_packet_recv(channel, "unknown_host")
            return

        with correlation_context():
            try:
                packet = decode_packet(data)
            except PacketDecodeError as e:
                logger.error(
                    "%s Failed to decode %s packet",
                    self.lp,
                    channel,
                    extra={"host": host, "reason": e.reason, "data_preview": e.data_preview.hex(" ")},
                )
                metrics.record_decode_error("packet", e.reason)
                metrics.record_packet_recv(channel, "decode_error")
                return

            metrics.record_packet_recv(channel, "routed")
            if channel == NOTIFY_CHANNEL:
                session.handle_notify(packet)
            else:
                session.handle_reply(packet)

    def _forward_info_changed(self, host: str, info: DeviceInfo) -> None:
        if self.on_info_changed is not None:
            self.on_info_changed(host, info)

    def _session_closed(self, host: str) -> None:
        if self._sessions.pop(host, None) is None:
            return
        metrics.record_device_event("disappeared", len(self._sessions))
        logger.info("%s Device disappeared", self.lp, extra={"host": host})

        if self.on_device_disappeared is not None:
            try:
                self.on_device_disappeared(host)
            except Exception:
                logger.exception("%s device-disappeared callback failed", self.lp, extra={"host": host})
