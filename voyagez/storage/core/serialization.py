"""
JSON serialization utilities for storage backends.

Drafts and bookings are stored as JSON documents next to the indexed
columns the backends query on. Records serialize themselves through
``to_dict``; the encoder below covers the values that slip through as
native Python types.
"""

import json
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Any
from uuid import UUID

from .errors import SerializationError


class StorageEncoder(json.JSONEncoder):
    """
    JSON encoder for storage data.

    Handles:
    - datetime/date -> ISO format string
    - UUID -> string
    - Enum -> value
    - Decimal -> string (preserves precision)
    """

    def default(self, obj: Any) -> Any:
        if isinstance(obj, datetime | date):
            return obj.isoformat()
        if isinstance(obj, UUID):
            return str(obj)
        if isinstance(obj, Enum):
            return obj.value
        if isinstance(obj, Decimal):
            return str(obj)
        if hasattr(obj, "to_dict"):
            return obj.to_dict()

        return super().default(obj)


def serialize(data: Any) -> str:
    """
    Serialize data to a JSON string.

    Raises:
        SerializationError: If serialization fails
    """
    try:
        return json.dumps(data, cls=StorageEncoder, ensure_ascii=False)
    except (TypeError, ValueError) as e:
        raise SerializationError(
            message=f"Failed to serialize data: {e}",
            operation="serialize",
            data_type=type(data).__name__,
        ) from e


def deserialize(data: str | bytes | dict) -> Any:
    """
    Deserialize a JSON string to Python objects.

    asyncpg may hand back already-decoded ``jsonb`` values; those pass through.

    Raises:
        SerializationError: If deserialization fails
    """
    if isinstance(data, dict):
        return data
    if isinstance(data, bytes):
        data = data.decode("utf-8")

    try:
        return json.loads(data)
    except (json.JSONDecodeError, ValueError) as e:
        raise SerializationError(
            message=f"Failed to deserialize data: {e}",
            operation="deserialize",
        ) from e


def load_record(factory, data: str | bytes | dict, data_type: str):
    """
    Rebuild a record through its ``from_dict`` factory.

    Raises:
        SerializationError: If the stored payload does not fit the record type
    """
    payload = deserialize(data)
    try:
        return factory(payload)
    except (KeyError, TypeError, ValueError) as e:
        raise SerializationError(
            message=f"Stored {data_type} payload is invalid: {e}",
            operation="deserialize",
            data_type=data_type,
        ) from e
