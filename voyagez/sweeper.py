"""
Expiry Sweeper - Background worker that expires abandoned drafts.

Selects drafts in COLLECTING or AWAITING_PAYMENT whose ``last_touched_at``
is older than the hold window and moves them to EXPIRED with a
compare-and-set write. A promotion racing the sweep either wins (and the
expiry write fails) or loses (and the late signal is rejected).

Usage:
    >>> from voyagez.sweeper import ExpirySweeper
    >>>
    >>> sweeper = ExpirySweeper(storage, provider, config)
    >>> await sweeper.start()  # Runs until stopped
    >>> # or
    >>> await sweeper.sweep_once()  # Expire one batch
"""

import asyncio
import signal
import uuid
from datetime import UTC, datetime

from voyagez.core.config import BookingConfig, get_config
from voyagez.core.logger import configure_default_logging, get_logger
from voyagez.core.state_machine import DraftStateMachine
from voyagez.core.types import DraftBooking, DraftStatus
from voyagez.monitoring.metrics import DRAFTS_EXPIRED, SWEEP_DURATION
from voyagez.providers.base import PaymentProvider
from voyagez.storage.manager import BaseStorageManager

logger = get_logger(__name__)

SWEEPABLE = [DraftStatus.COLLECTING, DraftStatus.AWAITING_PAYMENT]


class ExpirySweeper:
    """
    Periodically expires drafts that outlived the hold window.

    Features:
        - Batch processing, oldest drafts first
        - Compare-and-set expiry, safe against concurrent promotion
        - Best-effort cancellation of the provider session of expired drafts
        - Graceful shutdown on SIGTERM/SIGINT

    Lifecycle:
        1. Find a batch of stale COLLECTING / AWAITING_PAYMENT drafts
        2. Move each to EXPIRED if its status and version are unchanged
        3. Cancel the provider session of expired AWAITING_PAYMENT drafts
        4. Sleep and repeat
    """

    def __init__(
        self,
        storage: BaseStorageManager,
        provider: PaymentProvider | None = None,
        config: BookingConfig | None = None,
        worker_id: str | None = None,
    ):
        """
        Args:
            storage: Storage manager owning the drafts
            provider: Provider used to cancel sessions of expired drafts
            config: Hold window and sweep cadence
            worker_id: Unique ID for this worker (auto-generated if not provided)
        """
        self.storage = storage
        self.provider = provider
        self.config = config or get_config()
        self.worker_id = worker_id or f"sweeper-{uuid.uuid4().hex[:8]}"

        self._state_machine = DraftStateMachine()
        self._running = False
        self._shutdown_event = asyncio.Event()

        self._sweeps = 0
        self._drafts_expired = 0
        self._races_lost = 0
        self._sessions_cancelled = 0

    async def start(self) -> None:
        """
        Start the sweep loop.

        Runs continuously until stop() is called or shutdown signal received.
        """
        self._running = True
        self._shutdown_event.clear()

        logger.info(f"Expiry sweeper {self.worker_id} starting")
        self._setup_signal_handlers()

        try:
            while self._running:
                await self._sweep_iteration()
        finally:
            self._running = False
            logger.info(f"Expiry sweeper {self.worker_id} stopped")

    def _setup_signal_handlers(self) -> None:
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGTERM, signal.SIGINT):
            try:
                loop.add_signal_handler(sig, self._handle_shutdown)
            except (NotImplementedError, RuntimeError):  # pragma: no cover
                pass  # Windows, or not on the main thread

    async def _sweep_iteration(self) -> None:
        try:
            expired = await self.sweep_once()
            # A full batch means more stale drafts are likely waiting
            if expired < self.config.sweep_batch_size:
                await self._wait_for_next_sweep()
        except TimeoutError:
            pass
        except Exception as e:
            logger.error(f"Sweeper {self.worker_id} error: {e}")
            await self._wait_for_next_sweep()

    async def _wait_for_next_sweep(self) -> None:
        try:
            await asyncio.wait_for(
                self._shutdown_event.wait(), timeout=self.config.sweep_interval_seconds
            )
        except TimeoutError:
            pass

    async def stop(self) -> None:
        """Stop the sweeper gracefully."""
        logger.info(f"Stopping sweeper {self.worker_id}")
        self._running = False
        self._shutdown_event.set()

    def _handle_shutdown(self) -> None:
        logger.info(f"Shutdown signal received for sweeper {self.worker_id}")
        self._shutdown_task = asyncio.create_task(self.stop())

    async def sweep_once(self, now: datetime | None = None) -> int:
        """
        Expire one batch of stale drafts.

        Args:
            now: Reference time (defaults to the current UTC time)

        Returns:
            Number of drafts moved to EXPIRED
        """
        now = now or datetime.now(UTC)
        cutoff = now - self.config.hold_window

        with SWEEP_DURATION.time():
            stale = await self.storage.drafts.find_stale(
                SWEEPABLE, older_than=cutoff, limit=self.config.sweep_batch_size
            )
            if not stale:
                self._sweeps += 1
                return 0

            logger.debug(f"Sweeper {self.worker_id} found {len(stale)} stale drafts")
            results = await asyncio.gather(
                *(self._expire(draft) for draft in stale), return_exceptions=True
            )

        expired = 0
        for draft, result in zip(stale, results, strict=True):
            if isinstance(result, Exception):
                logger.error(f"Failed to expire draft {draft.draft_id}: {result}")
            elif result:
                expired += 1

        self._sweeps += 1
        if expired:
            logger.info(f"Sweeper {self.worker_id} expired {expired} drafts")
        return expired

    async def _expire(self, draft: DraftBooking) -> bool:
        from_status = draft.status
        candidate = self._state_machine.expire(DraftBooking.from_dict(draft.to_dict()))

        if not await self.storage.drafts.transition(candidate, from_status):
            # Touched, handed off or confirmed since it was selected
            self._races_lost += 1
            logger.debug(f"Draft {draft.draft_id} changed during sweep, skipping")
            return False

        self._drafts_expired += 1
        DRAFTS_EXPIRED.labels(from_status=from_status.value).inc()
        logger.info(
            f"Draft {draft.draft_id} expired from {from_status.value}",
            extra={"draft_id": draft.draft_id},
        )

        if from_status == DraftStatus.AWAITING_PAYMENT and draft.provider_session_id:
            await self._cancel_session(draft)
        return True

    async def _cancel_session(self, draft: DraftBooking) -> None:
        if self.provider is None or not self.config.sweep_cancel_sessions:
            return
        assert draft.provider_session_id is not None
        try:
            await asyncio.wait_for(
                self.provider.cancel_session(
                    draft.provider_session_id, draft.computed_price, draft.currency
                ),
                timeout=self.config.provider_timeout_seconds,
            )
            self._sessions_cancelled += 1
        except Exception as e:
            logger.warning(
                f"Could not cancel session {draft.provider_session_id} "
                f"of expired draft {draft.draft_id}: {e}"
            )

    def get_stats(self) -> dict:
        return {
            "worker_id": self.worker_id,
            "running": self._running,
            "sweeps": self._sweeps,
            "drafts_expired": self._drafts_expired,
            "races_lost": self._races_lost,
            "sessions_cancelled": self._sessions_cancelled,
        }


async def main(config: BookingConfig | None = None) -> None:
    """Run the sweeper against the storage and provider named by the config."""
    from voyagez.providers import create_provider
    from voyagez.storage import create_storage_manager

    configure_default_logging()
    config = config or BookingConfig.from_env()
    storage = create_storage_manager(config.storage_url)
    provider = create_provider(config) if config.sweep_cancel_sessions else None
    sweeper = ExpirySweeper(storage, provider, config)

    try:
        logger.info("Initializing storage...")
        await storage.initialize()
        await sweeper.start()
    finally:
        await sweeper.stop()
        if provider is not None:
            await provider.close()
        await storage.close()
        logger.info("Sweeper shut down.")


if __name__ == "__main__":
    asyncio.run(main())
