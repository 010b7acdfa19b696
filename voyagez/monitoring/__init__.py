"""
Observability: Prometheus metrics and structured logging.
"""

from voyagez.monitoring.logging import (
    BookingContextFilter,
    BookingJsonFormatter,
    booking_context,
    booking_scope,
    setup_json_logging,
)
from voyagez.monitoring.metrics import start_metrics_server

__all__ = [
    "BookingContextFilter",
    "BookingJsonFormatter",
    "booking_context",
    "booking_scope",
    "setup_json_logging",
    "start_metrics_server",
]
