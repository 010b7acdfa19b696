"""
Tests for StatusPoller.
"""

import httpx
import pytest

from voyagez.core.config import BookingConfig
from voyagez.core.exceptions import DraftNotFoundError
from voyagez.core.types import DraftStatus, PollResult, SignalOutcome
from voyagez.poller import PollOutcome, StatusPoller, http_fetcher


def _scripted(*statuses):
    """Fetch function returning the given statuses in order, repeating the last."""
    calls = []

    async def fetch(draft_id):
        status = statuses[min(len(calls), len(statuses) - 1)]
        calls.append(draft_id)
        booking_id = "bk-1" if status == DraftStatus.PROMOTED else None
        return PollResult(draft_id, status, booking_id=booking_id)

    fetch.calls = calls
    return fetch


class RecordingSleep:
    def __init__(self):
        self.delays = []

    async def __call__(self, delay):
        self.delays.append(delay)


class TestStatusPoller:
    """Tests for the bounded poll loop."""

    @pytest.mark.asyncio
    async def test_stops_on_confirmation(self):
        fetch = _scripted(
            DraftStatus.AWAITING_PAYMENT, DraftStatus.AWAITING_PAYMENT, DraftStatus.PROMOTED
        )
        sleep = RecordingSleep()

        report = await StatusPoller(fetch, attempts=10, interval=2.0, sleep=sleep).wait("d-1")

        assert report.outcome is PollOutcome.CONFIRMED
        assert report.attempts == 3
        assert report.last.booking_id == "bk-1"
        assert sleep.delays == [2.0, 2.0]

    @pytest.mark.asyncio
    async def test_delayed_after_attempts(self):
        fetch = _scripted(DraftStatus.AWAITING_PAYMENT)
        sleep = RecordingSleep()

        report = await StatusPoller(fetch, attempts=10, interval=3.0, sleep=sleep).wait("d-1")

        assert report.outcome is PollOutcome.DELAYED
        assert report.attempts == 10
        assert len(fetch.calls) == 10
        # No sleep after the last attempt
        assert len(sleep.delays) == 9

    @pytest.mark.parametrize(
        ("status", "outcome"),
        [
            (DraftStatus.CANCELLED, PollOutcome.CANCELLED),
            (DraftStatus.EXPIRED, PollOutcome.EXPIRED),
        ],
    )
    @pytest.mark.asyncio
    async def test_terminal_outcomes(self, status, outcome):
        report = await StatusPoller(_scripted(status), sleep=RecordingSleep()).wait("d-1")
        assert report.outcome is outcome
        assert report.attempts == 1

    @pytest.mark.asyncio
    async def test_collecting_draft(self):
        with pytest.raises(ValueError):
            await StatusPoller(_scripted(DraftStatus.COLLECTING), sleep=RecordingSleep()).wait(
                "d-1"
            )

    def test_backoff_delays(self):
        poller = StatusPoller(
            _scripted(DraftStatus.AWAITING_PAYMENT),
            attempts=5,
            interval=1.0,
            backoff=2.0,
            max_interval=5.0,
        )
        assert poller.delays() == [1.0, 2.0, 4.0, 5.0]

    def test_from_config(self):
        config = BookingConfig(poll_attempts=4, poll_interval_seconds=0.5)
        poller = StatusPoller.from_config(_scripted(DraftStatus.PROMOTED), config)
        assert poller.attempts == 4
        assert poller.interval == 0.5

    def test_needs_an_attempt(self):
        with pytest.raises(ValueError):
            StatusPoller(_scripted(DraftStatus.PROMOTED), attempts=0)

    @pytest.mark.asyncio
    async def test_iterate_yields_every_read(self):
        fetch = _scripted(DraftStatus.AWAITING_PAYMENT, DraftStatus.CANCELLED)
        poller = StatusPoller(fetch, attempts=5, interval=0, sleep=RecordingSleep())

        seen = [result.status async for result in poller.iterate("d-1")]
        assert seen == [DraftStatus.AWAITING_PAYMENT, DraftStatus.CANCELLED]


class TestPollingTheReconciler:
    @pytest.mark.asyncio
    async def test_webhook_lands_while_polling(self, handed_off, reconciler, provider):
        draft_id, session_id = await handed_off()
        reads = []

        async def fetch(draft_id):
            reads.append(draft_id)
            if len(reads) == 3:
                await reconciler.handle_provider_callback(
                    provider.signal_for(session_id, SignalOutcome.APPROVED)
                )
            return await reconciler.poll_status(draft_id)

        report = await StatusPoller(fetch, attempts=10, interval=0).wait(draft_id)

        assert report.outcome is PollOutcome.CONFIRMED
        assert report.attempts == 3
        assert report.last.booking_reference is not None


class TestHttpFetcher:
    @pytest.mark.asyncio
    async def test_reads_status_endpoint(self):
        def handler(request):
            assert request.url.path == "/api/drafts/d-1/status"
            return httpx.Response(
                200, json={"draft_id": "d-1", "status": "confirmed", "booking_id": "bk-1"}
            )

        async with httpx.AsyncClient(
            base_url="http://booking.test", transport=httpx.MockTransport(handler)
        ) as client:
            result = await http_fetcher(client, prefix="/api")("d-1")

        assert result.status == DraftStatus.PROMOTED
        assert result.booking_id == "bk-1"

    @pytest.mark.asyncio
    async def test_not_found(self):
        async with httpx.AsyncClient(
            base_url="http://booking.test",
            transport=httpx.MockTransport(lambda request: httpx.Response(404)),
        ) as client:
            with pytest.raises(DraftNotFoundError):
                await http_fetcher(client)("missing")
