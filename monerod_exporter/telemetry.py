"""Exporter self-metrics.

These describe the exporter itself, not the daemon, and live in the
prometheus_client default registry. They are only reachable when a
telemetry port is configured.
"""

import logging

from prometheus_client import Counter, Gauge, Summary, start_http_server

logger = logging.getLogger(__name__)

EXPORT_DURATION = Summary(
    "monerod_exporter_export_duration_seconds", "Time spent on one export cycle"
)
EXPORT_FAILURES = Counter(
    "monerod_exporter_export_failures_total", "Failed export cycles", ["reason"]
)
LAST_SUCCESS = Gauge(
    "monerod_exporter_last_success_timestamp_seconds", "Unix time of the last successful export"
)
UP = Gauge("monerod_exporter_up", "Whether a metrics snapshot is currently published")


def record_success():
    LAST_SUCCESS.set_to_current_time()
    UP.set(1)


def record_failure(reason):
    EXPORT_FAILURES.labels(reason=reason).inc()
    UP.set(0)


def start(port, addr="0.0.0.0"):
    if not port:
        return
    start_http_server(port, addr=addr)
    logger.info("self-metrics listening on %s:%d", addr, port)
