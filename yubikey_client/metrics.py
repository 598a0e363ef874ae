"""Prometheus metrics for the validation client."""

from __future__ import annotations

from prometheus_client import Counter, Histogram, generate_latest

CHECKS_PROCESSED = Counter(
    "yubikey_client_checks_total",
    "Total OTP checks that reached a verdict",
    ["result"],  # accepted, rejected
)

RESPONSES_RECEIVED = Counter(
    "yubikey_client_responses_total",
    "Per-host outcomes of verify requests",
    ["outcome"],  # authenticated, bad_signature, transport_failure
)

HOST_LATENCY = Histogram(
    "yubikey_client_host_latency_seconds",
    "Time from dispatch to a host's response",
    ["host"],
    buckets=(0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0),
)


def metrics_response() -> bytes:
    """Generate Prometheus-compatible metrics text."""
    return generate_latest()
