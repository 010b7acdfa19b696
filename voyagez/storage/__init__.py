"""
Voyagez storage package.

Usage:
    >>> from voyagez.storage import create_storage_manager
    >>>
    >>> async with create_storage_manager("sqlite:///bookings.db") as storage:
    ...     draft = await storage.drafts.get(draft_id)
"""

from voyagez.storage.backends.memory import InMemoryStorageManager
from voyagez.storage.core import (
    ConcurrencyError,
    DuplicateKeyError,
    HealthCheckResult,
    HealthStatus,
    SerializationError,
    StorageConnectionError,
    StorageError,
    StorageStatistics,
    TransactionError,
)
from voyagez.storage.interfaces import BookingStore, DraftStore, SignalInbox
from voyagez.storage.manager import BaseStorageManager, create_storage_manager, get_backend_type

__all__ = [
    "BaseStorageManager",
    "BookingStore",
    "ConcurrencyError",
    "DraftStore",
    "DuplicateKeyError",
    "HealthCheckResult",
    "HealthStatus",
    "InMemoryStorageManager",
    "SerializationError",
    "SignalInbox",
    "StorageConnectionError",
    "StorageError",
    "StorageStatistics",
    "TransactionError",
    "create_storage_manager",
    "get_backend_type",
]
