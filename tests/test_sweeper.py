"""
Tests for ExpirySweeper.
"""

import asyncio
import dataclasses
from datetime import UTC, datetime, timedelta

import pytest
from conftest import make_selection

from voyagez.core.exceptions import ProviderUnavailableError
from voyagez.core.types import DraftStatus, SignalOutcome
from voyagez.sweeper import ExpirySweeper


def _after_hold(config, extra_seconds: float = 1.0) -> datetime:
    return datetime.now(UTC) + config.hold_window + timedelta(seconds=extra_seconds)


class TestSweepOnce:
    """Tests for a single sweep batch."""

    @pytest.mark.asyncio
    async def test_fresh_drafts_are_kept(self, wizard, storage, provider, config):
        draft_id = await wizard.save_step(None, make_selection())
        sweeper = ExpirySweeper(storage, provider, config)

        assert await sweeper.sweep_once() == 0
        assert (await storage.drafts.get(draft_id)).status == DraftStatus.COLLECTING

    @pytest.mark.asyncio
    async def test_abandoned_wizard_expires(self, wizard, storage, provider, config):
        draft_id = await wizard.save_step(None, make_selection())
        sweeper = ExpirySweeper(storage, provider, config)

        assert await sweeper.sweep_once(now=_after_hold(config)) == 1

        assert (await storage.drafts.get(draft_id)).status == DraftStatus.EXPIRED
        assert provider.cancelled == []

    @pytest.mark.asyncio
    async def test_unpaid_handoff_expires_and_cancels(
        self, handed_off, storage, provider, config
    ):
        draft_id, session_id = await handed_off()
        sweeper = ExpirySweeper(storage, provider, config)

        assert await sweeper.sweep_once(now=_after_hold(config)) == 1

        assert (await storage.drafts.get(draft_id)).status == DraftStatus.EXPIRED
        assert provider.cancelled == [session_id]
        assert sweeper.get_stats()["sessions_cancelled"] == 1

    @pytest.mark.asyncio
    async def test_session_cancel_can_be_disabled(self, handed_off, storage, provider, config):
        await handed_off()
        config = dataclasses.replace(config, sweep_cancel_sessions=False)

        await ExpirySweeper(storage, provider, config).sweep_once(now=_after_hold(config))
        assert provider.cancelled == []

    @pytest.mark.asyncio
    async def test_cancel_failure_does_not_undo_expiry(
        self, handed_off, storage, provider, config
    ):
        draft_id, _ = await handed_off()
        provider.fail_cancel = ProviderUnavailableError("down", provider="memory")

        expired = await ExpirySweeper(storage, provider, config).sweep_once(
            now=_after_hold(config)
        )

        assert expired == 1
        assert (await storage.drafts.get(draft_id)).status == DraftStatus.EXPIRED

    @pytest.mark.asyncio
    async def test_promoted_drafts_are_never_expired(
        self, handed_off, reconciler, storage, provider, config
    ):
        draft_id, session_id = await handed_off()
        await reconciler.handle_provider_callback(
            provider.signal_for(session_id, SignalOutcome.APPROVED)
        )

        assert await ExpirySweeper(storage, provider, config).sweep_once(
            now=_after_hold(config)
        ) == 0
        assert (await storage.drafts.get(draft_id)).status == DraftStatus.PROMOTED

    @pytest.mark.asyncio
    async def test_lost_race_is_skipped(self, wizard, storage, config, monkeypatch):
        await wizard.save_step(None, make_selection())
        sweeper = ExpirySweeper(storage, config=config)

        async def already_changed(draft, from_status):
            return False

        monkeypatch.setattr(storage.drafts, "transition", already_changed)

        assert await sweeper.sweep_once(now=_after_hold(config)) == 0
        assert sweeper.get_stats()["races_lost"] == 1

    @pytest.mark.asyncio
    async def test_batch_size(self, wizard, storage, config):
        for _ in range(3):
            await wizard.save_step(None, make_selection())
        config = dataclasses.replace(config, sweep_batch_size=2)
        sweeper = ExpirySweeper(storage, config=config)

        assert await sweeper.sweep_once(now=_after_hold(config)) == 2
        assert await sweeper.sweep_once(now=_after_hold(config)) == 1
        assert sweeper.get_stats()["drafts_expired"] == 3

    @pytest.mark.asyncio
    async def test_touch_resets_the_hold_window(self, wizard, storage, config):
        draft_id = await wizard.save_step(None, make_selection())
        sweeper = ExpirySweeper(storage, config=config)

        # Just inside the window
        assert await sweeper.sweep_once(now=_after_hold(config, extra_seconds=-60)) == 0
        assert (await storage.drafts.get(draft_id)).status == DraftStatus.COLLECTING


class TestSweeperLifecycle:
    @pytest.mark.asyncio
    async def test_start_and_stop(self, storage, config):
        config = dataclasses.replace(config, sweep_interval_seconds=0.01)
        sweeper = ExpirySweeper(storage, config=config, worker_id="sweeper-test")

        task = asyncio.create_task(sweeper.start())
        await asyncio.sleep(0.05)
        assert sweeper.get_stats()["running"]

        await sweeper.stop()
        await asyncio.wait_for(task, timeout=1.0)

        stats = sweeper.get_stats()
        assert stats["worker_id"] == "sweeper-test"
        assert not stats["running"]
        assert stats["sweeps"] >= 1

    @pytest.mark.asyncio
    async def test_errors_do_not_stop_the_loop(self, storage, config, monkeypatch):
        config = dataclasses.replace(config, sweep_interval_seconds=0.01)
        sweeper = ExpirySweeper(storage, config=config)
        calls = []

        async def broken(*args, **kwargs):
            calls.append(1)
            raise RuntimeError("database gone")

        monkeypatch.setattr(storage.drafts, "find_stale", broken)
        task = asyncio.create_task(sweeper.start())
        await asyncio.sleep(0.05)
        await sweeper.stop()
        await asyncio.wait_for(task, timeout=1.0)

        assert len(calls) >= 2
