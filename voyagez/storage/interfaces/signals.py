"""
Provider signal inbox.

Records the provider ``event_id`` of every confirmation signal whose
outcome has been applied, so redelivered webhooks are recognised as
duplicates without touching the draft.
"""

from __future__ import annotations

from abc import ABC, abstractmethod


class SignalInbox(ABC):
    """
    Abstract storage interface for applied provider events.

    Events are recorded *after* their outcome is applied. A signal that failed
    half-way is therefore not marked seen and will be processed again on
    redelivery.
    """

    @abstractmethod
    async def seen(self, event_id: str) -> bool:
        """True if the event has already been applied."""
        ...

    @abstractmethod
    async def record(
        self,
        event_id: str,
        provider_session_id: str,
        outcome: str,
        draft_id: str | None = None,
    ) -> bool:
        """
        Record an applied event.

        Returns:
            True if newly recorded, False if it was already present
        """
        ...

    @abstractmethod
    async def count(self) -> int:
        ...
