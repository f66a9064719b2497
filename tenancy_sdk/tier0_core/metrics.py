"""
tenancy_sdk.tier0_core.metrics
───────────────────────────────
Counters with standard naming and labels, plus the metrics the
tenancy engine emits for authorization, module access, quota and guard
decisions. Exports via a Prometheus /metrics endpoint.

Minimal stack: prometheus-client
Configure via: TENANCY_METRICS_PORT (default: 8001)
"""
from __future__ import annotations

import os
from typing import Callable

from prometheus_client import Counter, start_http_server

# Standard labels applied to every metric
_DEFAULT_LABELS = ["service", "env"]
_SERVICE = os.getenv("APP_NAME", "tenancy")
_ENV = os.getenv("TENANCY_ENV", "development")
_DEFAULT_LABEL_VALUES = {"service": _SERVICE, "env": _ENV}

# Collectors register globally; building the same name twice is an error.
_collectors: dict[str, Counter] = {}


def counter(name: str, description: str, labels: list[str] | None = None) -> Callable:
    """
    Create (or retrieve) a counter with standard labels.

    Usage:
        denials = counter("tenancy_denials_total", "Denied actions", ["permission"])
        denials(permission="delete_clients").inc()
    """
    all_labels = _DEFAULT_LABELS + (labels or [])
    c = _collectors.get(name)
    if c is None:
        c = _collectors[name] = Counter(name, description, all_labels)

    def _counter(**extra_labels: str) -> Counter:
        return c.labels(**_DEFAULT_LABEL_VALUES, **extra_labels)

    return _counter


def start_metrics_server(port: int | None = None) -> None:
    """
    Start the Prometheus HTTP metrics server on a dedicated port.
    Call once at application startup.
    """
    port = port or int(os.getenv("TENANCY_METRICS_PORT", "8001"))
    start_http_server(port)


# ── Engine metrics ────────────────────────────────────────────────────────────

authz_decisions = counter(
    "tenancy_authz_decisions_total",
    "Permission checks by outcome",
    ["decision"],
)
module_denials = counter(
    "tenancy_module_denials_total",
    "Module access checks that were denied",
    ["module"],
)
quota_evaluations = counter(
    "tenancy_quota_evaluations_total",
    "Quota evaluations by resulting usage state",
    ["resource", "state"],
)
quota_blocks = counter(
    "tenancy_quota_blocks_total",
    "Creates rejected because the resource was exhausted",
    ["resource"],
)
guard_operations = counter(
    "tenancy_guard_operations_total",
    "Repository guard operations by outcome",
    ["collection", "operation", "outcome"],
)


__sdk_export__ = {
    "exports": ["counter", "start_metrics_server"],
    "description": "Prometheus counters for tenancy decisions",
    "tier": "tier0_core",
    "module": "metrics",
}
