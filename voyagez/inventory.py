"""
Hotel inventory aggregator contract.

The aggregator is an external collaborator that matches local hotels to an
upstream inventory and quotes live prices. The booking core only consumes
the interface below; the payment handoff calls ``get_live_pricing`` when a
selection names a hotel.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any

from voyagez.core.types import DateRange, Occupancy


@dataclass
class HotelCandidate:
    """An upstream hotel that may correspond to a local one."""

    external_ref: str
    name: str
    city: str
    country_code: str
    score: float = 0.0
    attributes: dict[str, Any] = field(default_factory=dict)


class HotelInventoryAggregator(ABC):
    """
    Upstream hotel inventory.

    Implementations own their matching heuristics and caching. Every method
    may raise; callers decide whether a failure is fatal.
    """

    @abstractmethod
    async def search_by_city(self, city: str, country_code: str) -> list[HotelCandidate]:
        ...

    @abstractmethod
    async def find_matches(self, local_entity: dict[str, Any]) -> list[HotelCandidate]:
        """Candidates for a local hotel record, best match first."""
        ...

    @abstractmethod
    async def link(self, local_id: str, external_ref: str) -> None:
        ...

    @abstractmethod
    async def sync(self, local_id: str, fields: list[str] | None = None) -> dict[str, Any]:
        """Pull upstream fields for a linked hotel; returns the synced values."""
        ...

    @abstractmethod
    async def get_live_pricing(
        self, local_id: str, date_range: DateRange, occupancy: Occupancy
    ) -> Decimal | None:
        """
        Live total for the stay.

        Returns:
            The price, or None when the hotel is not linked or has no quote
        """
        ...
