"""Métricas Prometheus del pipeline de ingesta."""

from __future__ import annotations

from prometheus_client import Counter, Gauge, Histogram

MQTT_MESSAGES_RECEIVED = Counter(
    "telemetry_mqtt_messages_received_total",
    "MQTT messages received, by message category",
    ["category"],
)
MQTT_MESSAGES_DROPPED = Counter(
    "telemetry_mqtt_messages_dropped_total",
    "MQTT messages dropped before buffering",
    ["reason"],  # rejected_topic, malformed, out_of_range, handler_error
)
MQTT_RECEIVER_CONNECTED = Gauge(
    "telemetry_mqtt_receiver_connected",
    "MQTT receiver connection status",
)
MQTT_HANDLER_LATENCY = Histogram(
    "telemetry_mqtt_handler_seconds",
    "Time spent in the MQTT message handler",
    buckets=[0.0005, 0.001, 0.005, 0.01, 0.025, 0.05, 0.1, 0.25],
)

BUFFER_SIZE = Gauge(
    "telemetry_buffer_size",
    "Items waiting in an ingestion buffer",
    ["buffer"],
)
FLUSH_TOTAL = Counter(
    "telemetry_flush_total",
    "Buffer flushes, by buffer and result",
    ["buffer", "result"],  # ok, error
)
ITEMS_PERSISTED = Counter(
    "telemetry_items_persisted_total",
    "Items written to the store, by buffer",
    ["buffer"],
)

LIVE_EVENTS_EMITTED = Counter(
    "telemetry_live_events_emitted_total",
    "Live updates handed to connected clients",
)
DATA_GAPS_LOGGED = Counter(
    "telemetry_data_gaps_logged_total",
    "Ongoing data gaps written to system_logs",
)
