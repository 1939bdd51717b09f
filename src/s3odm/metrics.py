"""Prometheus metrics definitions for s3odm.

All metrics use the ``s3odm_`` prefix. They describe the requests this
client sends to the object store, labelled by facade operation. Collectors
are only registered once ``init_metrics()`` has been called; until then the
module references stay ``None`` and the client records nothing.
"""

from __future__ import annotations

from prometheus_client import REGISTRY, Counter, Histogram, write_to_textfile

_initialized: bool = False

# ---------------------------------------------------------------------------
# Request counter and latency  (labels: operation[, status])
# ---------------------------------------------------------------------------
requests_total: Counter | None = None
request_duration_seconds: Histogram | None = None

# ---------------------------------------------------------------------------
# Byte counters
# ---------------------------------------------------------------------------
bytes_sent_total: Counter | None = None
bytes_received_total: Counter | None = None


def init_metrics() -> None:
    """Create and register all Prometheus metrics in the global registry.

    Safe to call more than once; only the first call registers collectors.
    """
    global _initialized
    global requests_total, request_duration_seconds
    global bytes_sent_total, bytes_received_total

    if _initialized:
        return

    requests_total = Counter(
        "s3odm_requests_total",
        "Total requests sent to the object store by operation and status code",
        ["operation", "status"],
    )

    request_duration_seconds = Histogram(
        "s3odm_request_duration_seconds",
        "Object store request latency in seconds",
        ["operation"],
    )

    bytes_sent_total = Counter(
        "s3odm_bytes_sent_total",
        "Total bytes sent in request bodies",
    )

    bytes_received_total = Counter(
        "s3odm_bytes_received_total",
        "Total bytes received in response bodies",
    )

    _initialized = True


def observe_request(
    operation: str, status: int | str, duration: float, sent: int, received: int
) -> None:
    """Record one completed request, if metrics are initialised."""
    if not _initialized:
        return
    requests_total.labels(operation=operation, status=str(status)).inc()
    request_duration_seconds.labels(operation=operation).observe(duration)
    bytes_sent_total.inc(sent)
    bytes_received_total.inc(received)


def write_textfile(path: str) -> None:
    """Write the global registry to ``path`` in the text exposition format.

    The file is written to a temporary name and renamed into place, so a
    node_exporter textfile collector never reads a partial file.
    """
    write_to_textfile(path, REGISTRY)
