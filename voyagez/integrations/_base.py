"""
Base integration utilities for Voyagez.

Provides framework-agnostic pieces used by the HTTP integrations:
- BookingService: storage, provider and the lifecycle components wired together
- Correlation ID generation and propagation
- Mapping of lifecycle errors to HTTP status codes
"""

from __future__ import annotations

import uuid
from typing import Any

from voyagez.core.config import BookingConfig, get_config
from voyagez.core.exceptions import (
    BookingNotFoundError,
    DraftNotFoundError,
    InvalidStateError,
    InvalidStateTransitionError,
    PromotionConflictError,
    PromotionFailedError,
    ProviderUnavailableError,
    SignatureError,
    ValidationError,
)
from voyagez.core.logger import get_logger
from voyagez.core.types import PollResult
from voyagez.handoff import PaymentHandoff
from voyagez.inventory import HotelInventoryAggregator
from voyagez.monitoring.logging import booking_context
from voyagez.providers.base import PaymentProvider
from voyagez.reconciler import ConfirmationReconciler
from voyagez.storage.core import ConcurrencyError, StorageError
from voyagez.storage.manager import BaseStorageManager
from voyagez.wizard import WizardStepWriter

logger = get_logger(__name__)

CORRELATION_HEADER = "X-Correlation-ID"

# Most specific first; the first isinstance match wins
_STATUS_CODES: list[tuple[type[Exception], int]] = [
    (ValidationError, 422),
    (DraftNotFoundError, 404),
    (BookingNotFoundError, 404),
    (InvalidStateError, 409),
    (InvalidStateTransitionError, 409),
    (PromotionConflictError, 409),
    (ConcurrencyError, 409),
    (SignatureError, 401),
    (ProviderUnavailableError, 502),
    (PromotionFailedError, 503),
    (StorageError, 503),
]


def http_status_for(error: Exception) -> int:
    """HTTP status code for a lifecycle or storage error (500 if unknown)."""
    for error_type, status_code in _STATUS_CODES:
        if isinstance(error, error_type):
            return status_code
    return 500


def error_body(error: Exception) -> dict[str, Any]:
    body: dict[str, Any] = {"error": type(error).__name__, "message": str(error)}
    field = getattr(error, "field", None)
    if field:
        body["field"] = field
    current = getattr(error, "current", None)
    if current is not None:
        body["status"] = getattr(current, "value", str(current))
    return body


def generate_correlation_id() -> str:
    return str(uuid.uuid4())


def get_correlation_id() -> str | None:
    """Correlation ID bound to the current request, if any."""
    return booking_context.get().get("correlation_id")


class BookingService:
    """
    The booking lifecycle components sharing one storage backend and provider.

    Example:
        >>> service = BookingService.from_config(BookingConfig.from_env())
        >>> await service.startup()
        >>> draft_id = await service.wizard.save_step(None, step)
        >>> await service.shutdown()
    """

    def __init__(
        self,
        storage: BaseStorageManager,
        provider: PaymentProvider,
        config: BookingConfig | None = None,
        inventory: HotelInventoryAggregator | None = None,
        url_prefix: str = "",
    ):
        self.storage = storage
        self.provider = provider
        self.config = config or get_config()
        self.wizard = WizardStepWriter(storage, self.config)
        self.handoff = PaymentHandoff(
            storage, provider, self.config, inventory=inventory, url_prefix=url_prefix
        )
        self.reconciler = ConfirmationReconciler(storage, provider, self.config)

    @classmethod
    def from_config(
        cls,
        config: BookingConfig,
        inventory: HotelInventoryAggregator | None = None,
        url_prefix: str = "",
    ) -> BookingService:
        from voyagez.providers import create_provider
        from voyagez.storage import create_storage_manager

        return cls(
            create_storage_manager(config.storage_url),
            create_provider(config),
            config,
            inventory=inventory,
            url_prefix=url_prefix,
        )

    async def startup(self) -> None:
        await self.storage.initialize()
        logger.info(
            f"Booking service ready ({self.storage.backend_name} storage, "
            f"{self.provider.name} provider)"
        )

    async def shutdown(self) -> None:
        await self.provider.close()
        await self.storage.close()
        logger.info("Booking service shut down")

    async def status(self, draft_id: str) -> PollResult:
        """Poll result, checked with the provider first when ``verify_on_poll`` is set."""
        if self.config.verify_on_poll:
            return await self.reconciler.verify_with_provider(draft_id)
        return await self.reconciler.poll_status(draft_id)
