"""
Voyagez Storage Core Module.

Shared infrastructure for all storage backends:
- Error hierarchy
- Serialization utilities
- Health check infrastructure
"""

from .errors import (
    ConcurrencyError,
    DuplicateKeyError,
    SerializationError,
    StorageConnectionError,
    StorageError,
    TransactionError,
)
from .health import (
    HealthCheckResult,
    HealthStatus,
    StorageStatistics,
    check_health_with_timeout,
)
from .serialization import StorageEncoder, deserialize, load_record, serialize

__all__ = [
    "ConcurrencyError",
    "DuplicateKeyError",
    "HealthCheckResult",
    "HealthStatus",
    "SerializationError",
    "StorageConnectionError",
    "StorageEncoder",
    "StorageError",
    "StorageStatistics",
    "TransactionError",
    "check_health_with_timeout",
    "deserialize",
    "load_record",
    "serialize",
]
