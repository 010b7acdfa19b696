"""
Tests for the voyagez CLI.
"""

import asyncio

import pytest
from click.testing import CliRunner
from conftest import make_contact, make_selection, make_travelers
from rich.console import Console

from voyagez import cli as cli_module
from voyagez.cli import cli
from voyagez.core.config import BookingConfig
from voyagez.core.types import DraftStatus, PollResult, SignalOutcome
from voyagez.handoff import PaymentHandoff
from voyagez.providers.memory import InMemoryPaymentProvider
from voyagez.reconciler import ConfirmationReconciler
from voyagez.storage.backends.sqlite import SQLiteStorageManager
from voyagez.wizard import WizardStepWriter


@pytest.fixture
def runner(monkeypatch):
    # Wide enough that tables never wrap
    monkeypatch.setattr(cli_module, "console", Console(width=200))
    return CliRunner()


@pytest.fixture
def db_url(tmp_path):
    return f"sqlite:///{tmp_path / 'bookings.db'}"


def _seed(db_path: str, confirm: bool = True) -> str:
    """Create one handed-off draft (optionally confirmed); returns its id."""

    async def _run():
        config = BookingConfig(provider_name="memory", provider_timeout_seconds=1.0)
        provider = InMemoryPaymentProvider()
        async with SQLiteStorageManager(db_path) as storage:
            wizard = WizardStepWriter(storage, config)
            draft_id = await wizard.save_step(None, make_selection())
            await wizard.save_step(draft_id, make_travelers())
            await wizard.save_step(draft_id, make_contact())
            await PaymentHandoff(storage, provider, config).initiate_payment(draft_id)
            if confirm:
                draft = await storage.drafts.get(draft_id)
                await ConfirmationReconciler(storage, provider, config).handle_provider_callback(
                    provider.signal_for(draft.provider_session_id, SignalOutcome.APPROVED)
                )
            return draft_id

    return asyncio.run(_run())


class TestCliGroup:
    def test_help_lists_commands_in_order(self, runner):
        result = runner.invoke(cli, ["--help"])
        assert result.exit_code == 0
        commands = ["serve", "sweep", "status", "bookings", "poll"]
        positions = [result.output.index(f"  {name} ") for name in commands]
        assert positions == sorted(positions)

    def test_version(self, runner):
        result = runner.invoke(cli, ["--version"])
        assert "0.1.0" in result.output


class TestStatusCommand:
    """Tests for ``voyagez status``."""

    def test_empty_storage(self, runner, db_url):
        result = runner.invoke(cli, ["status", "--storage-url", db_url])
        assert result.exit_code == 0, result.output
        assert "healthy" in result.output
        assert "Confirmed bookings" in result.output

    def test_counts(self, runner, db_url, tmp_path):
        _seed(str(tmp_path / "bookings.db"))
        result = runner.invoke(cli, ["status", "--storage-url", db_url])
        assert result.exit_code == 0, result.output
        assert "Drafts promoted" in result.output

    def test_single_draft(self, runner, db_url, tmp_path):
        draft_id = _seed(str(tmp_path / "bookings.db"))
        result = runner.invoke(cli, ["status", "--storage-url", db_url, "--draft", draft_id])
        assert result.exit_code == 0, result.output
        assert "confirmed" in result.output
        assert "TRP-" in result.output

    def test_unknown_draft(self, runner, db_url):
        result = runner.invoke(cli, ["status", "--storage-url", db_url, "--draft", "missing"])
        assert result.exit_code == 1
        assert "missing" in result.output


class TestBookingsCommand:
    def test_no_bookings(self, runner, db_url):
        result = runner.invoke(cli, ["bookings", "--storage-url", db_url])
        assert result.exit_code == 0
        assert "No bookings yet" in result.output

    def test_lists_bookings(self, runner, db_url, tmp_path):
        _seed(str(tmp_path / "bookings.db"))
        result = runner.invoke(cli, ["bookings", "--storage-url", db_url])
        assert result.exit_code == 0, result.output
        assert "PKG-UMRAH-7" in result.output
        assert "Adult0 Alharbi" in result.output


class TestSweepCommand:
    def test_sweep_once(self, runner, db_url, tmp_path):
        db_path = str(tmp_path / "bookings.db")
        draft_id = _seed(db_path, confirm=False)

        # Keep the window tiny so the fresh draft is already stale
        result = runner.invoke(
            cli, ["sweep", "--once", "--hold-window", "0.000001", "--storage-url", db_url]
        )
        assert result.exit_code == 0, result.output
        assert "Expired 1 draft" in result.output

        async def _status():
            async with SQLiteStorageManager(db_path) as storage:
                return (await storage.drafts.get(draft_id)).status

        assert asyncio.run(_status()) == DraftStatus.EXPIRED


class TestPollCommand:
    """Tests for ``voyagez poll`` with a scripted fetcher."""

    @pytest.fixture
    def scripted(self, monkeypatch):
        def install(*results):
            def fake_fetcher(client, prefix=""):
                remaining = list(results)

                async def fetch(draft_id):
                    return remaining.pop(0) if len(remaining) > 1 else remaining[0]

                return fetch

            monkeypatch.setattr(cli_module, "http_fetcher", fake_fetcher)

        return install

    def test_confirmed(self, runner, scripted):
        scripted(
            PollResult("d-1", DraftStatus.AWAITING_PAYMENT),
            PollResult("d-1", DraftStatus.PROMOTED, "bk-1", "TRP-20261201-0042"),
        )
        result = runner.invoke(cli, ["poll", "d-1", "--interval", "0"])
        assert result.exit_code == 0, result.output
        assert "Confirmed" in result.output
        assert "TRP-20261201-0042" in result.output

    def test_delayed(self, runner, scripted):
        scripted(PollResult("d-1", DraftStatus.AWAITING_PAYMENT))
        result = runner.invoke(cli, ["poll", "d-1", "--attempts", "3", "--interval", "0"])
        assert result.exit_code == 0
        assert "Still pending after 3 polls" in result.output

    def test_cancelled(self, runner, scripted):
        scripted(PollResult("d-1", DraftStatus.CANCELLED, failure_reason="declined"))
        result = runner.invoke(cli, ["poll", "d-1", "--interval", "0"])
        assert "Cancelled: declined" in result.output

    def test_not_handed_off(self, runner, scripted):
        scripted(PollResult("d-1", DraftStatus.COLLECTING))
        result = runner.invoke(cli, ["poll", "d-1", "--interval", "0"])
        assert result.exit_code == 1
