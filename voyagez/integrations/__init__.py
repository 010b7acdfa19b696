"""
Voyagez Framework Integrations

Provides integration helpers for web frameworks:
- FastAPI

Each integration provides:
- Booking lifecycle endpoints (wizard, payment, webhook, polling, redirects)
- Lifecycle error to HTTP status mapping
- Request correlation IDs
"""

from voyagez.integrations._base import (
    BookingService,
    error_body,
    generate_correlation_id,
    get_correlation_id,
    http_status_for,
)

__all__ = [
    "BookingService",
    "error_body",
    "generate_correlation_id",
    "get_correlation_id",
    "http_status_for",
]
