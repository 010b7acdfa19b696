"""
Health check infrastructure for storage backends.

Every backend reports a HealthCheckResult for readiness probes and a
StorageStatistics snapshot (drafts per status, bookings) for the CLI.
"""

import asyncio
import time
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import Any


class HealthStatus(Enum):
    """Storage health status."""

    HEALTHY = "healthy"
    DEGRADED = "degraded"  # Working but with issues
    UNHEALTHY = "unhealthy"
    UNKNOWN = "unknown"


@dataclass
class HealthCheckResult:
    """
    Result of a health check operation.

    Attributes:
        status: Overall health status
        latency_ms: Time taken for health check in milliseconds
        message: Human-readable status message
        details: Additional backend-specific details
        checked_at: Timestamp of the check
    """

    status: HealthStatus
    latency_ms: float
    message: str = ""
    details: dict[str, Any] = field(default_factory=dict)
    checked_at: datetime = field(default_factory=lambda: datetime.now(UTC))

    @property
    def is_healthy(self) -> bool:
        """Check if status is healthy or degraded (still operational)."""
        return self.status in (HealthStatus.HEALTHY, HealthStatus.DEGRADED)

    def to_dict(self) -> dict[str, Any]:
        return {
            "status": self.status.value,
            "is_healthy": self.is_healthy,
            "latency_ms": round(self.latency_ms, 2),
            "message": self.message,
            "details": self.details,
            "checked_at": self.checked_at.isoformat(),
        }


@dataclass
class StorageStatistics:
    """
    Booking storage usage statistics.

    Attributes:
        drafts_by_status: Draft count keyed by status value
        total_bookings: Confirmed bookings stored
        signals_recorded: Provider events recorded in the inbox
    """

    drafts_by_status: dict[str, int] = field(default_factory=dict)
    total_bookings: int = 0
    signals_recorded: int = 0

    @property
    def total_drafts(self) -> int:
        return sum(self.drafts_by_status.values())

    def to_dict(self) -> dict[str, Any]:
        return {
            "drafts_by_status": dict(self.drafts_by_status),
            "total_drafts": self.total_drafts,
            "total_bookings": self.total_bookings,
            "signals_recorded": self.signals_recorded,
        }


async def check_health_with_timeout(checker, timeout_seconds: float = 5.0) -> HealthCheckResult:
    """
    Perform a health check with timeout protection.

    Returns:
        HealthCheckResult (UNHEALTHY on timeout or error)
    """
    start = time.perf_counter()

    try:
        return await asyncio.wait_for(checker.health_check(), timeout=timeout_seconds)
    except TimeoutError:
        elapsed_ms = (time.perf_counter() - start) * 1000
        return HealthCheckResult(
            status=HealthStatus.UNHEALTHY,
            latency_ms=elapsed_ms,
            message=f"Health check timed out after {timeout_seconds}s",
        )
    except Exception as e:
        elapsed_ms = (time.perf_counter() - start) * 1000
        return HealthCheckResult(
            status=HealthStatus.UNHEALTHY,
            latency_ms=elapsed_ms,
            message=f"Health check failed: {e}",
            details={"error": str(e), "error_type": type(e).__name__},
        )
