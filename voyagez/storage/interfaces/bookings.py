"""
Booking storage interface.

The booking store is the system of record for confirmed bookings. It does
persistence and constraint enforcement only.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from decimal import Decimal

    from voyagez.core.types import BookingStatus, ConfirmedBooking, PaymentStatus


class BookingStore(ABC):
    """
    Abstract storage interface for confirmed bookings.

    Implementations must enforce uniqueness of ``source_draft_id`` and of
    ``booking_reference`` at the storage level.
    """

    @abstractmethod
    async def create_from_draft(self, booking: ConfirmedBooking) -> str:
        """
        Insert a booking snapshot.

        Returns:
            The new booking id

        Raises:
            PromotionConflictError: If a booking already exists for the source draft
            DuplicateKeyError: If the booking reference is already taken
        """
        ...

    @abstractmethod
    async def get(self, booking_id: str) -> ConfirmedBooking | None:
        ...

    @abstractmethod
    async def get_by_source_draft(self, draft_id: str) -> ConfirmedBooking | None:
        ...

    @abstractmethod
    async def update_payment_status(
        self,
        booking_id: str,
        payment_status: PaymentStatus,
        booking_status: BookingStatus | None = None,
        refunded_amount: Decimal | None = None,
    ) -> ConfirmedBooking:
        """
        Update payment (and optionally booking) status.

        Raises:
            BookingNotFoundError: If the booking does not exist
        """
        ...

    @abstractmethod
    async def list_recent(self, limit: int = 20) -> list[ConfirmedBooking]:
        """Most recently created bookings first."""
        ...

    @abstractmethod
    async def count(self) -> int:
        ...
