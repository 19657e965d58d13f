"""Prometheus metrics for notification delivery.

Usage:
    from notification_service.features.notifications.metrics import (
        notification_delivery_attempts_total,
    )

    notification_delivery_attempts_total.labels(channel="email", status="failed").inc()
"""

from __future__ import annotations

from prometheus_client import Counter, Histogram

# =============================================================================
# Send Metrics
# =============================================================================

notification_send_total = Counter(
    "notification_send_total",
    "Total number of send() calls by notification type and outcome",
    labelnames=["notification_type", "outcome"],
)
"""
Counter for send() calls.

Labels:
    notification_type: Definition key (welcome, magic-link, ...)
    outcome: ok (every attempted channel succeeded) or partial_failure
"""

notification_channel_skipped_total = Counter(
    "notification_channel_skipped_total",
    "Channels skipped during send()",
    labelnames=["channel", "reason"],
)
"""
Counter for channels not attempted.

Labels:
    channel: Channel name
    reason: preference_disabled
"""

# =============================================================================
# Delivery Metrics
# =============================================================================

notification_delivery_attempts_total = Counter(
    "notification_delivery_attempts_total",
    "Delivery attempts by channel and resulting status",
    labelnames=["channel", "status"],
)
"""
Counter for individual attempt rows.

Labels:
    channel: Channel name
    status: sent or failed
"""

notification_delivery_exhausted_total = Counter(
    "notification_delivery_exhausted_total",
    "Deliveries that failed after every permitted attempt",
    labelnames=["channel"],
)

notification_delivery_duration_seconds = Histogram(
    "notification_delivery_duration_seconds",
    "Time spent in a single channel handler call",
    labelnames=["channel"],
    buckets=(0.005, 0.01, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0),
)
"""
Histogram of handler latency per attempt. Backoff sleeps are not included.
"""

# =============================================================================
# Inbox Metrics
# =============================================================================

notification_read_total = Counter(
    "notification_read_total",
    "In-app notifications marked as read",
)
