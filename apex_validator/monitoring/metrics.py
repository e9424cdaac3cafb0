"""
Prometheus metrics for validator monitoring.

Tracks:
- Purchase events by outcome
- Settlement results and attempts
- Backfill windows
- Checkpoint progress
"""
from typing import Optional

import structlog
from prometheus_client import Counter, Gauge, Histogram, start_http_server

logger = structlog.get_logger(__name__)

# Event metrics
purchase_events_total = Counter(
    "apex_purchase_events_total",
    "Total purchase events handled",
    ["outcome"],  # settled, settlement_failed, unattributed, error, ignored
)

# Settlement metrics
settlements_total = Counter(
    "apex_settlements_total",
    "Total settlement results",
    ["status"],  # success, failed, duplicate, rejected
)

settlement_attempts = Histogram(
    "apex_settlement_attempts",
    "Submission attempts per settlement",
    buckets=(0, 1, 2, 3, 5, 8),
)

settlement_duration_seconds = Histogram(
    "apex_settlement_duration_seconds",
    "Settlement duration in seconds, including retries",
    buckets=(0.5, 1.0, 2.5, 5.0, 10.0, 30.0, 60.0, 120.0),
)

# Monitor metrics
backfill_windows_total = Counter(
    "apex_backfill_windows_total",
    "Backfill windows requested",
    ["status"],  # fetched, failed
)

watch_errors_total = Counter(
    "apex_watch_errors_total",
    "Errors reported by the live event subscription",
)

checkpoint_block = Gauge(
    "apex_checkpoint_block",
    "Last block persisted to the checkpoint",
)


def start_metrics_server(port: Optional[int]) -> bool:
    """
    Start the Prometheus exporter if a port is configured.

    Args:
        port: Port to listen on, or None to disable

    Returns:
        bool: True if the exporter was started
    """
    if port is None:
        return False
    start_http_server(port)
    logger.info("metrics_server_started", port=port)
    return True
