"""Prometheus metrics registry for speaker communication."""

import threading
from typing import Final

from prometheus_client import (  # type: ignore[import-untyped]
    Counter,
    Gauge,
    start_http_server,
)

# Metric definitions
libratone_packet_sent_total: Final = Counter(  # type: ignore[assignment]
    "libratone_packet_sent_total",
    "Total command packets sent to speakers",
    ["channel", "command_type", "outcome"],
)

libratone_packet_recv_total: Final = Counter(  # type: ignore[assignment]
    "libratone_packet_recv_total",
    "Total datagrams received on the shared inbound channels",
    ["channel", "outcome"],
)

libratone_decode_errors_total: Final = Counter(  # type: ignore[assignment]
    "libratone_decode_errors_total",
    "Total datagrams or payloads that failed to decode",
    ["kind", "reason"],
)

libratone_notify_ack_total: Final = Counter(  # type: ignore[assignment]
    "libratone_notify_ack_total",
    "Total notifications acknowledged",
    ["outcome"],
)

libratone_known_devices: Final = Gauge(  # type: ignore[assignment]
    "libratone_known_devices",
    "Number of speakers with a live session",
)

libratone_device_events_total: Final = Counter(  # type: ignore[assignment]
    "libratone_device_events_total",
    "Total speaker discovered/disappeared events",
    ["event"],
)

_server_state = {"started": False}
_server_lock = threading.Lock()


def start_metrics_server(port: int = 9400) -> None:
    """Start Prometheus HTTP metrics server (idempotent)."""
    with _server_lock:
        if not _server_state["started"]:
            start_http_server(port)  # type: ignore[no-untyped-call]
            _server_state["started"] = True


def record_packet_sent(channel: str, command_type: str, outcome: str) -> None:
    """Record a packet sent on a session's command or ack channel."""
    libratone_packet_sent_total.labels(channel=channel, command_type=command_type, outcome=outcome).inc()  # type: ignore[no-untyped-call]


def record_packet_recv(channel: str, outcome: str) -> None:
    """Record a datagram received on a shared inbound channel."""
    libratone_packet_recv_total.labels(channel=channel, outcome=outcome).inc()  # type: ignore[no-untyped-call]


def record_decode_error(kind: str, reason: str) -> None:
    """Record a decode error."""
    libratone_decode_errors_total.labels(kind=kind, reason=reason).inc()  # type: ignore[no-untyped-call]


def record_notify_ack(outcome: str) -> None:
    """Record a notification acknowledgment."""
    libratone_notify_ack_total.labels(outcome=outcome).inc()  # type: ignore[no-untyped-call]


def record_device_event(event: str, known_devices: int) -> None:
    """Record a discovered/disappeared event and the resulting device count."""
    libratone_device_events_total.labels(event=event).inc()  # type: ignore[no-untyped-call]
    libratone_known_devices.set(known_devices)  # type: ignore[no-untyped-call]
