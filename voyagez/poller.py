"""
Status Poller - Bounded client-side polling for a draft's confirmation.

Polling is a finite iterator: at most ``attempts`` reads, spaced by an
interval that may grow by a backoff factor. It ends with an explicit
outcome. ``DELAYED`` means the draft was still pending when the attempts ran
out; it is not a failure, the webhook or a later poll will settle it.

Cancelling the task that iterates has no server-side effect because every
poll is a read.

Usage:
    >>> poller = StatusPoller(reconciler.poll_status, attempts=10, interval=3.0)
    >>> report = await poller.wait(draft_id)
    >>> if report.outcome is PollOutcome.CONFIRMED:
    ...     print(report.last.booking_id)

    # Against a running API
    >>> async with httpx.AsyncClient(base_url="http://localhost:8000") as client:
    ...     poller = StatusPoller(http_fetcher(client))
"""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator, Awaitable, Callable
from dataclasses import dataclass
from enum import Enum

import httpx

from voyagez.core.config import BookingConfig
from voyagez.core.exceptions import DraftNotFoundError
from voyagez.core.logger import get_logger
from voyagez.core.types import DraftStatus, PollResult

logger = get_logger(__name__)

Fetcher = Callable[[str], Awaitable[PollResult]]


class PollOutcome(Enum):
    CONFIRMED = "confirmed"
    CANCELLED = "cancelled"
    EXPIRED = "expired"
    DELAYED = "delayed"
    """Still pending after every attempt"""


_TERMINAL = {
    DraftStatus.PROMOTED: PollOutcome.CONFIRMED,
    DraftStatus.CANCELLED: PollOutcome.CANCELLED,
    DraftStatus.EXPIRED: PollOutcome.EXPIRED,
}


@dataclass
class PollReport:
    outcome: PollOutcome
    attempts: int
    last: PollResult


class StatusPoller:
    """
    Polls a fetch function until the draft settles or attempts run out.

    Attributes:
        attempts: Maximum number of reads
        interval: Delay before the second read
        backoff: Factor applied to the delay after every read
        max_interval: Upper bound for the delay
    """

    def __init__(
        self,
        fetch: Fetcher,
        attempts: int = 10,
        interval: float = 3.0,
        backoff: float = 1.0,
        max_interval: float | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        if attempts < 1:
            msg = "attempts must be at least 1"
            raise ValueError(msg)
        self.fetch = fetch
        self.attempts = attempts
        self.interval = interval
        self.backoff = backoff
        self.max_interval = max_interval
        self._sleep = sleep

    @classmethod
    def from_config(cls, fetch: Fetcher, config: BookingConfig, **kwargs) -> StatusPoller:
        return cls(
            fetch,
            attempts=config.poll_attempts,
            interval=config.poll_interval_seconds,
            **kwargs,
        )

    def delays(self) -> list[float]:
        """Sleeps between consecutive reads."""
        delays = []
        delay = self.interval
        for _ in range(self.attempts - 1):
            delays.append(min(delay, self.max_interval) if self.max_interval else delay)
            delay *= self.backoff
        return delays

    async def iterate(self, draft_id: str) -> AsyncIterator[PollResult]:
        """Yield each poll result; stops after a terminal status or the last attempt."""
        delays = self.delays()
        for attempt in range(self.attempts):
            result = await self.fetch(draft_id)
            yield result
            if result.status.is_terminal or result.status == DraftStatus.COLLECTING:
                return
            if attempt < len(delays):
                await self._sleep(delays[attempt])

    async def wait(self, draft_id: str) -> PollReport:
        """
        Poll until settled.

        Raises:
            DraftNotFoundError: Unknown draft id
            ValueError: The draft was never handed off to payment
        """
        attempts = 0
        last: PollResult | None = None
        async for result in self.iterate(draft_id):
            attempts += 1
            last = result
        assert last is not None

        if last.status == DraftStatus.COLLECTING:
            msg = f"Draft {draft_id} has not been handed off to payment"
            raise ValueError(msg)

        outcome = _TERMINAL.get(last.status, PollOutcome.DELAYED)
        if outcome is PollOutcome.DELAYED:
            logger.info(f"Draft {draft_id} still pending after {attempts} polls")
        return PollReport(outcome=outcome, attempts=attempts, last=last)


def http_fetcher(client: httpx.AsyncClient, prefix: str = "") -> Fetcher:
    """Fetch function reading ``GET {prefix}/drafts/{draft_id}/status``."""

    async def fetch(draft_id: str) -> PollResult:
        response = await client.get(f"{prefix}/drafts/{draft_id}/status")
        if response.status_code == 404:
            raise DraftNotFoundError(draft_id)
        response.raise_for_status()
        return PollResult.from_dict(response.json())

    return fetch
