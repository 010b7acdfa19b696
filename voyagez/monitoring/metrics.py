"""
Prometheus metrics for the booking lifecycle.

Quick Start:
    >>> from voyagez.monitoring.metrics import start_metrics_server
    >>> start_metrics_server(port=9100)

Exposes:
    - voyagez_drafts_created_total: Drafts opened by the wizard
    - voyagez_handoffs_total: Payment handoffs by result
    - voyagez_handoff_duration_seconds: Handoff latency (provider call included)
    - voyagez_signals_total: Confirmation signals by outcome and result
    - voyagez_promotion_retries_total: Promotion transaction retries
    - voyagez_promotion_failures_total: Promotions abandoned after all retries
    - voyagez_drafts_expired_total: Drafts expired by the sweeper
    - voyagez_sweep_duration_seconds: Duration of one sweep batch
    - voyagez_refunds_total: Booking refunds by result
"""

from prometheus_client import Counter, Histogram, start_http_server

from voyagez.core.logger import get_logger

logger = get_logger(__name__)

DRAFTS_CREATED = Counter(
    "voyagez_drafts_created_total",
    "Drafts opened by the wizard",
)
HANDOFFS = Counter(
    "voyagez_handoffs_total",
    "Payment handoffs by result",
    ["result"],  # success, provider_unavailable, conflict
)
HANDOFF_DURATION = Histogram(
    "voyagez_handoff_duration_seconds",
    "Payment handoff latency including the provider call",
)
SIGNALS = Counter(
    "voyagez_signals_total",
    "Confirmation signals by outcome and result",
    ["outcome", "result"],  # result: promoted, cancelled, duplicate, rejected, conflict_resolved, unknown
)
PROMOTION_RETRIES = Counter(
    "voyagez_promotion_retries_total",
    "Promotion transaction retries after storage failures",
)
PROMOTION_FAILURES = Counter(
    "voyagez_promotion_failures_total",
    "Promotions abandoned after all retries",
)
DRAFTS_EXPIRED = Counter(
    "voyagez_drafts_expired_total",
    "Drafts expired by the sweeper",
    ["from_status"],
)
SWEEP_DURATION = Histogram(
    "voyagez_sweep_duration_seconds",
    "Duration of one expiry sweep batch",
)
REFUNDS = Counter(
    "voyagez_refunds_total",
    "Booking refunds by result",
    ["result"],  # full, partial, provider_unavailable
)


def start_metrics_server(port: int = 9100, addr: str = "0.0.0.0") -> None:
    """Expose ``/metrics`` on a background HTTP server."""
    start_http_server(port, addr=addr)
    logger.info(f"Prometheus metrics available at http://{addr}:{port}/metrics")
