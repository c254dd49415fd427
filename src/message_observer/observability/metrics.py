from __future__ import annotations

from prometheus_client import (
    CONTENT_TYPE_LATEST,
    REGISTRY,
    Counter,
    generate_latest,
)

observer_received_total = Counter(
    "observer_received_total",
    "Number of raw queue messages returned by long-poll receives.",
)
observer_observed_total = Counter(
    "observer_observed_total",
    "Number of messages appended to the replay log.",
    labelnames=("source_type",),
)
observer_duplicates_total = Counter(
    "observer_duplicates_total",
    "Number of redelivered messages suppressed by message id.",
)
observer_dropped_total = Counter(
    "observer_dropped_total",
    "Number of queue messages dropped without being observed.",
    labelnames=("reason",),
)
observer_poll_errors_total = Counter(
    "observer_poll_errors_total",
    "Number of failed long-poll receive calls.",
    labelnames=("classification",),
)
observer_waits_total = Counter(
    "observer_waits_total",
    "Number of finished waits by outcome.",
    labelnames=("outcome",),
)
observer_evicted_total = Counter(
    "observer_evicted_total",
    "Number of messages evicted from the replay log by capacity.",
)


def render_latest(*, registry=REGISTRY) -> tuple[bytes, str]:
    return generate_latest(registry), CONTENT_TYPE_LATEST
