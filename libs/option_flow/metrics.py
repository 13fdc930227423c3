"""Prometheus metrics for the option flow stream client."""

from __future__ import annotations

from prometheus_client import Counter, Gauge

# Counters for stream traffic
stream_frames_received_total = Counter(
    "option_flow_frames_received_total",
    "Frames received on the stream",
)

stream_records_decoded_total = Counter(
    "option_flow_records_decoded_total",
    "Frames decoded into summary records",
)

stream_decode_noise_total = Counter(
    "option_flow_decode_noise_total",
    "Frames dropped because they were not summary records",
)

# Counters for connection lifecycle
stream_reconnects_scheduled_total = Counter(
    "option_flow_reconnects_scheduled_total",
    "Reconnects scheduled after transport failures",
)

stream_auth_rejections_total = Counter(
    "option_flow_auth_rejections_total",
    "Credential rejections (in-band or at handshake)",
)

# Counters for alerting
alerts_emitted_total = Counter(
    "option_flow_alerts_emitted_total",
    "Threshold alerts handed to the notifier",
    ["alert_class"],
)

alert_delivery_failures_total = Counter(
    "option_flow_alert_delivery_failures_total",
    "Alert deliveries that failed",
    ["notifier"],
)

# Gauges for current state
stream_connected = Gauge(
    "option_flow_stream_connected",
    "1 while the stream is in the connected phase",
)

record_store_size = Gauge(
    "option_flow_record_store_size",
    "Records held for the active subscription",
)


__all__ = [
    "stream_frames_received_total",
    "stream_records_decoded_total",
    "stream_decode_noise_total",
    "stream_reconnects_scheduled_total",
    "stream_auth_rejections_total",
    "alerts_emitted_total",
    "alert_delivery_failures_total",
    "stream_connected",
    "record_store_size",
]
