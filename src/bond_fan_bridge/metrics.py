"""Prometheus metrics helpers."""

from __future__ import annotations

from prometheus_client import (
    CollectorRegistry,
    Counter,
    Gauge,
    Histogram,
    generate_latest,
    start_http_server,
)

_REGISTRY = CollectorRegistry()

BRIDGE_REQUESTS = Counter(
    "bond_bridge_requests_total",
    "HTTP requests issued to the bridge",
    ["method", "status"],
    registry=_REGISTRY,
)
BRIDGE_REQUEST_DURATION = Histogram(
    "bond_bridge_request_duration_seconds",
    "Time spent waiting for bridge responses",
    ["method", "status"],
    registry=_REGISTRY,
    buckets=[0.01, 0.05, 0.1, 0.25, 0.5, 1, 2, 5],
)
DEVICE_POLLS = Counter(
    "bond_device_polls_total",
    "State poll cycles by outcome",
    ["result"],
    registry=_REGISTRY,
)
CAPABILITY_UPDATES = Counter(
    "bond_capability_updates_total",
    "Capability values changed by poll reconciliation",
    ["capability"],
    registry=_REGISTRY,
)
CAPABILITY_WRITES = Counter(
    "bond_capability_writes_total",
    "Capability writes translated into bridge actions",
    ["capability", "result"],
    registry=_REGISTRY,
)
DEVICE_POLLING_ACTIVE = Gauge(
    "bond_device_polling_active",
    "Whether a device is currently being polled (1) or halted/removed (0)",
    ["device_id"],
    registry=_REGISTRY,
)


def get_registry() -> CollectorRegistry:
    """Return the registry holding the bridge metrics."""

    return _REGISTRY


def latest_metrics() -> bytes:
    """Render the latest metrics payload for scraping."""

    return generate_latest(_REGISTRY)


def serve_metrics(port: int) -> None:
    """Expose the registry on a background HTTP server."""

    start_http_server(port, registry=_REGISTRY)


def observe_bridge_request(method: str, status: str, duration_seconds: float) -> None:
    """Record a bridge request outcome and its latency."""

    BRIDGE_REQUESTS.labels(method=method, status=status).inc()
    BRIDGE_REQUEST_DURATION.labels(method=method, status=status).observe(duration_seconds)


def record_device_poll(result: str) -> None:
    """Record the outcome of a poll cycle."""

    DEVICE_POLLS.labels(result=result).inc()


def record_capability_update(capability: str) -> None:
    CAPABILITY_UPDATES.labels(capability=capability).inc()


def record_capability_write(capability: str, result: str) -> None:
    """Record the outcome of a capability write."""

    CAPABILITY_WRITES.labels(capability=capability, result=result).inc()


def set_device_polling_active(device_id: str, active: bool) -> None:
    DEVICE_POLLING_ACTIVE.labels(device_id=device_id).set(1 if active else 0)
