"""
Draft storage interface.

Drafts are durable keyed records. Every write is a compare-and-set on the
stored ``version`` and ``status`` so that concurrent wizard merges, payment
handoffs, confirmations and expiries cannot overwrite each other.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from datetime import datetime
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from voyagez.core.types import DraftBooking, DraftStatus


class DraftStore(ABC):
    """
    Abstract storage interface for draft bookings.

    Implementations must guarantee:
    - ``provider_session_id`` is unique across drafts
    - ``save`` only succeeds while the stored draft is COLLECTING
    - ``transition`` only succeeds when the stored status still matches

    Usage:
        >>> draft = await store.get(draft_id)
        >>> draft.special_requests = "Late check-in"
        >>> await store.save(draft)   # raises ConcurrencyError if someone else wrote first
    """

    @abstractmethod
    async def create(self, draft: DraftBooking) -> DraftBooking:
        """
        Insert a new draft.

        Raises:
            DuplicateKeyError: If the draft id already exists
        """
        ...

    @abstractmethod
    async def get(self, draft_id: str) -> DraftBooking | None:
        """Get a draft by id, or None."""
        ...

    @abstractmethod
    async def get_by_session(self, provider_session_id: str) -> DraftBooking | None:
        """Get the draft holding a provider session, or None."""
        ...

    @abstractmethod
    async def save(self, draft: DraftBooking) -> DraftBooking:
        """
        Persist wizard changes to a COLLECTING draft.

        The write succeeds only if the stored version equals ``draft.version``.
        On success ``draft.version`` is incremented.

        Raises:
            DraftNotFoundError: If the draft does not exist
            InvalidStateError: If the stored draft is no longer COLLECTING
            ConcurrencyError: If another writer changed the draft first
        """
        ...

    @abstractmethod
    async def transition(self, draft: DraftBooking, from_status: DraftStatus) -> bool:
        """
        Write ``draft`` (already carrying its new status) if the stored draft
        is still ``from_status`` at ``draft.version``.

        Returns:
            True if the write happened, False if the compare-and-set failed

        Raises:
            DuplicateKeyError: If the provider session id is already taken
        """
        ...

    @abstractmethod
    async def find_stale(
        self,
        statuses: list[DraftStatus],
        older_than: datetime,
        limit: int = 100,
    ) -> list[DraftBooking]:
        """Drafts in ``statuses`` not touched since ``older_than``, oldest first."""
        ...

    @abstractmethod
    async def count_by_status(self) -> dict[str, int]:
        """Draft count keyed by status value."""
        ...
