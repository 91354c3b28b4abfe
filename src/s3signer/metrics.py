"""Prometheus metrics definitions for s3signer.

All metrics use the ``s3signer_`` prefix.  They are created by
``init_metrics()``; until then the module-level references stay ``None``
and recording sites skip them, so applications that do not want metrics
register nothing in the global prometheus_client registry.
"""

from __future__ import annotations

from prometheus_client import Counter, Histogram

# Flag indicating whether metrics have been initialised via init_metrics().
_initialized: bool = False

# ---------------------------------------------------------------------------
# Request counter  (labels: operation, status)
# ---------------------------------------------------------------------------
requests_total: Counter | None = None

# ---------------------------------------------------------------------------
# Request latency  (labels: operation)
# ---------------------------------------------------------------------------
request_duration_seconds: Histogram | None = None

# ---------------------------------------------------------------------------
# Signatures produced  (labels: mode = header | query)
# ---------------------------------------------------------------------------
signatures_total: Counter | None = None

# ---------------------------------------------------------------------------
# Retries  (labels: reason = transport | clock_skew)
# ---------------------------------------------------------------------------
retries_total: Counter | None = None


def init_metrics() -> None:
    """Create and register all Prometheus metrics.

    Safe to call more than once; only the first call registers collectors.
    """
    global _initialized
    global requests_total, request_duration_seconds, signatures_total, retries_total

    if _initialized:
        return

    requests_total = Counter(
        "s3signer_requests_total",
        "Total S3 requests by operation and outcome",
        ["operation", "status"],
    )

    request_duration_seconds = Histogram(
        "s3signer_request_duration_seconds",
        "S3 request latency including retries",
        ["operation"],
    )

    signatures_total = Counter(
        "s3signer_signatures_total",
        "Total SigV4 signatures computed",
        ["mode"],
    )

    retries_total = Counter(
        "s3signer_retries_total",
        "Total request retries by reason",
        ["reason"],
    )

    _initialized = True
