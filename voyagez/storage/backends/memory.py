"""
In-memory storage implementation for drafts, bookings and signals.

Provides a simple backend for development and testing. Not suitable for
production use as state is lost on process restart and is not shared
between processes.

Records are stored as dictionaries and rebuilt on every read, so callers
never hold a reference into the store.
"""

import asyncio
from datetime import UTC, datetime
from decimal import Decimal
from typing import Any

from voyagez.core.exceptions import (
    BookingNotFoundError,
    DraftNotFoundError,
    InvalidStateError,
    PromotionConflictError,
)
from voyagez.core.types import (
    BookingStatus,
    ConfirmedBooking,
    DraftBooking,
    DraftStatus,
    PaymentStatus,
)
from voyagez.storage.core import ConcurrencyError, DuplicateKeyError
from voyagez.storage.interfaces import BookingStore, DraftStore, SignalInbox
from voyagez.storage.manager import BaseStorageManager


class _MemoryState:
    """Tables shared by the in-memory stores, guarded by one lock."""

    def __init__(self):
        self.drafts: dict[str, dict[str, Any]] = {}
        self.sessions: dict[str, str] = {}  # provider_session_id -> draft_id
        self.bookings: dict[str, dict[str, Any]] = {}
        self.bookings_by_draft: dict[str, str] = {}
        self.references: set[str] = set()
        self.signals: dict[str, dict[str, Any]] = {}
        self.lock = asyncio.Lock()

    def write_draft(self, draft: DraftBooking) -> None:
        session_id = draft.provider_session_id
        if session_id:
            owner = self.sessions.get(session_id)
            if owner is not None and owner != draft.draft_id:
                msg = f"Provider session {session_id} already belongs to another draft"
                raise DuplicateKeyError(msg, key="provider_session_id")
            self.sessions[session_id] = draft.draft_id
        self.drafts[draft.draft_id] = draft.to_dict()

    def insert_booking(self, booking: ConfirmedBooking) -> None:
        if booking.source_draft_id in self.bookings_by_draft:
            raise PromotionConflictError(booking.source_draft_id)
        if booking.booking_reference in self.references:
            msg = f"Booking reference {booking.booking_reference} already exists"
            raise DuplicateKeyError(msg, key="booking_reference")
        self.bookings[booking.booking_id] = booking.to_dict()
        self.bookings_by_draft[booking.source_draft_id] = booking.booking_id
        self.references.add(booking.booking_reference)


class InMemoryDraftStore(DraftStore):
    def __init__(self, state: _MemoryState | None = None):
        self._state = state or _MemoryState()

    async def create(self, draft: DraftBooking) -> DraftBooking:
        async with self._state.lock:
            if draft.draft_id in self._state.drafts:
                msg = f"Draft {draft.draft_id} already exists"
                raise DuplicateKeyError(msg, key="draft_id")
            self._state.write_draft(draft)
        return draft

    async def get(self, draft_id: str) -> DraftBooking | None:
        data = self._state.drafts.get(draft_id)
        return DraftBooking.from_dict(data) if data else None

    async def get_by_session(self, provider_session_id: str) -> DraftBooking | None:
        draft_id = self._state.sessions.get(provider_session_id)
        return await self.get(draft_id) if draft_id else None

    async def save(self, draft: DraftBooking) -> DraftBooking:
        async with self._state.lock:
            stored = self._state.drafts.get(draft.draft_id)
            if stored is None:
                raise DraftNotFoundError(draft.draft_id)
            status = DraftStatus(stored["status"])
            if status != DraftStatus.COLLECTING:
                raise InvalidStateError(draft.draft_id, status, [DraftStatus.COLLECTING])
            if stored["version"] != draft.version:
                raise ConcurrencyError(
                    item_id=draft.draft_id,
                    expected_version=draft.version,
                    actual_version=stored["version"],
                )
            draft.version += 1
            self._state.write_draft(draft)
        return draft

    async def transition(self, draft: DraftBooking, from_status: DraftStatus) -> bool:
        async with self._state.lock:
            stored = self._state.drafts.get(draft.draft_id)
            if (
                stored is None
                or stored["status"] != from_status.value
                or stored["version"] != draft.version
            ):
                return False
            draft.version += 1
            try:
                self._state.write_draft(draft)
            except DuplicateKeyError:
                draft.version -= 1
                raise
        return True

    async def find_stale(
        self,
        statuses: list[DraftStatus],
        older_than: datetime,
        limit: int = 100,
    ) -> list[DraftBooking]:
        wanted = {s.value for s in statuses}
        candidates = [
            DraftBooking.from_dict(data)
            for data in self._state.drafts.values()
            if data["status"] in wanted
        ]
        stale = [d for d in candidates if d.last_touched_at < older_than]
        stale.sort(key=lambda d: d.last_touched_at)
        return stale[:limit]

    async def count_by_status(self) -> dict[str, int]:
        counts: dict[str, int] = {}
        for data in self._state.drafts.values():
            counts[data["status"]] = counts.get(data["status"], 0) + 1
        return counts


class InMemoryBookingStore(BookingStore):
    def __init__(self, state: _MemoryState | None = None):
        self._state = state or _MemoryState()

    async def create_from_draft(self, booking: ConfirmedBooking) -> str:
        async with self._state.lock:
            self._state.insert_booking(booking)
        return booking.booking_id

    async def get(self, booking_id: str) -> ConfirmedBooking | None:
        data = self._state.bookings.get(booking_id)
        return ConfirmedBooking.from_dict(data) if data else None

    async def get_by_source_draft(self, draft_id: str) -> ConfirmedBooking | None:
        booking_id = self._state.bookings_by_draft.get(draft_id)
        return await self.get(booking_id) if booking_id else None

    async def update_payment_status(
        self,
        booking_id: str,
        payment_status: PaymentStatus,
        booking_status: BookingStatus | None = None,
        refunded_amount: Decimal | None = None,
    ) -> ConfirmedBooking:
        async with self._state.lock:
            data = self._state.bookings.get(booking_id)
            if data is None:
                raise BookingNotFoundError(booking_id)
            booking = ConfirmedBooking.from_dict(data)
            booking.payment_status = payment_status
            if booking_status is not None:
                booking.booking_status = booking_status
            if refunded_amount is not None:
                booking.refunded_amount = refunded_amount
            booking.updated_at = datetime.now(UTC)
            self._state.bookings[booking_id] = booking.to_dict()
        return booking

    async def list_recent(self, limit: int = 20) -> list[ConfirmedBooking]:
        bookings = [ConfirmedBooking.from_dict(d) for d in self._state.bookings.values()]
        bookings.sort(key=lambda b: b.created_at, reverse=True)
        return bookings[:limit]

    async def count(self) -> int:
        return len(self._state.bookings)


class InMemorySignalInbox(SignalInbox):
    def __init__(self, state: _MemoryState | None = None):
        self._state = state or _MemoryState()

    async def seen(self, event_id: str) -> bool:
        return event_id in self._state.signals

    async def record(
        self,
        event_id: str,
        provider_session_id: str,
        outcome: str,
        draft_id: str | None = None,
    ) -> bool:
        async with self._state.lock:
            if event_id in self._state.signals:
                return False
            self._state.signals[event_id] = {
                "event_id": event_id,
                "provider_session_id": provider_session_id,
                "outcome": outcome,
                "draft_id": draft_id,
                "processed_at": datetime.now(UTC).isoformat(),
            }
        return True

    async def count(self) -> int:
        return len(self._state.signals)


class InMemoryStorageManager(BaseStorageManager):
    """
    In-memory storage manager for tests and local development.

    Usage:
        >>> async with InMemoryStorageManager() as storage:
        ...     await storage.drafts.create(draft)
    """

    backend_name = "memory"

    def __init__(self):
        self._state = _MemoryState()
        self._drafts = InMemoryDraftStore(self._state)
        self._bookings = InMemoryBookingStore(self._state)
        self._signals = InMemorySignalInbox(self._state)

    @property
    def drafts(self) -> InMemoryDraftStore:
        return self._drafts

    @property
    def bookings(self) -> InMemoryBookingStore:
        return self._bookings

    @property
    def signals(self) -> InMemorySignalInbox:
        return self._signals

    async def initialize(self) -> None:
        pass

    async def close(self) -> None:
        pass

    async def ping(self) -> None:
        pass

    async def promote(self, draft: DraftBooking, booking: ConfirmedBooking) -> ConfirmedBooking:
        async with self._state.lock:
            stored = self._state.drafts.get(draft.draft_id)
            if stored is None:
                raise DraftNotFoundError(draft.draft_id)

            # Booking first: the uniqueness constraint decides concurrent promotions
            self._state.insert_booking(booking)

            status = DraftStatus(stored["status"])
            if status != DraftStatus.AWAITING_PAYMENT:
                self._rollback_booking(booking)
                raise InvalidStateError(draft.draft_id, status, [DraftStatus.AWAITING_PAYMENT])

            draft.version = stored["version"] + 1
            self._state.write_draft(draft)
        return booking

    def _rollback_booking(self, booking: ConfirmedBooking) -> None:
        self._state.bookings.pop(booking.booking_id, None)
        self._state.bookings_by_draft.pop(booking.source_draft_id, None)
        self._state.references.discard(booking.booking_reference)
