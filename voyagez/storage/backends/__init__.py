"""
Storage backends.

Backends are imported lazily by ``create_storage_manager`` so that optional
drivers (asyncpg) are only required when their backend is used.
"""

from voyagez.storage.backends.memory import InMemoryStorageManager

__all__ = ["InMemoryStorageManager"]
