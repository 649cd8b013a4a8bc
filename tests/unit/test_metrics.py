"""Unit tests for metrics registry."""

from __future__ import annotations

from unittest.mock import patch

from libratone_lan.metrics import registry


def _sample_value(metric: object, name: str, labels: dict[str, str]) -> float | None:
    for family in metric.collect():  # type: ignore[attr-defined]
        for sample in family.samples:
            if sample.name == name and sample.labels == labels:
                return sample.value
    return None


class TestPacketMetrics:
    """Tests for packet metrics."""

    def test_record_packet_sent(self) -> None:
        """Test record_packet_sent helper."""
        labels = {"channel": "command", "command_type": "fetch", "outcome": "sent"}
        before = _sample_value(registry.libratone_packet_sent_total, "libratone_packet_sent_total", labels) or 0.0
        registry.record_packet_sent("command", "fetch", "sent")
        after = _sample_value(registry.libratone_packet_sent_total, "libratone_packet_sent_total", labels)
        assert after == before + 1

    def test_record_packet_recv(self) -> None:
        """Test record_packet_recv helper."""
        registry.record_packet_recv("notify", "unknown_host")
        samples = list(registry.libratone_packet_recv_total.collect()[0].samples)
        assert any(s.labels == {"channel": "notify", "outcome": "unknown_host"} for s in samples)

    def test_record_decode_error(self) -> None:
        """Test record_decode_error helper."""
        registry.record_decode_error("packet", "too_short")
        samples = list(registry.libratone_decode_errors_total.collect()[0].samples)
        assert any(s.labels == {"kind": "packet", "reason": "too_short"} for s in samples)

    def test_record_notify_ack(self) -> None:
        """Test record_notify_ack helper."""
        registry.record_notify_ack("sent")
        samples = list(registry.libratone_notify_ack_total.collect()[0].samples)
        assert any(s.labels == {"outcome": "sent"} for s in samples)


class TestDeviceMetrics:
    """Tests for device metrics."""

    def test_record_device_event(self) -> None:
        """Test record_device_event sets the known device gauge."""
        registry.record_device_event("discovered", 3)
        samples = list(registry.libratone_device_events_total.collect()[0].samples)
        assert any(s.labels == {"event": "discovered"} for s in samples)
        assert _sample_value(registry.libratone_known_devices, "libratone_known_devices", {}) == 3.0


class TestMetricsServer:
    """Tests for the metrics HTTP server."""

    def test_start_metrics_server_idempotent(self) -> None:
        with (
            patch.object(registry, "start_http_server") as mock_start,
            patch.dict(registry._server_state, {"started": False}),
        ):
            registry.start_metrics_server(9555)
            registry.start_metrics_server(9555)

        mock_start.assert_called_once_with(9555)
