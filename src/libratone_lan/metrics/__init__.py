"""Metrics module."""

from .registry import (
    record_decode_error,
    record_device_event,
    record_notify_ack,
    record_packet_recv,
    record_packet_sent,
    start_metrics_server,
)

__all__ = [
    "record_decode_error",
    "record_device_event",
    "record_notify_ack",
    "record_packet_recv",
    "record_packet_sent",
    "start_metrics_server",
]
