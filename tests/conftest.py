"""
Pytest configuration and shared fixtures for booking lifecycle tests.

Storage fixtures cover the in-memory backend and SQLite ``:memory:``.
PostgreSQL tests live under tests/integration and need a running server.
"""

from datetime import date
from decimal import Decimal

import pytest

from voyagez.core.config import BookingConfig
from voyagez.core.types import PackageRates, Traveler, TravelerType
from voyagez.handoff import PaymentHandoff
from voyagez.providers.memory import InMemoryPaymentProvider
from voyagez.reconciler import ConfirmationReconciler
from voyagez.storage.backends.memory import InMemoryStorageManager
from voyagez.wizard import ContactStep, SelectionStep, TravelersStep, WizardStepWriter

# ============================================
# STEP BUILDERS
# ============================================


def make_selection(adults: int = 2, children: int = 0, infants: int = 0, **kwargs) -> SelectionStep:
    defaults = {
        "package_id": "PKG-UMRAH-7",
        "start_date": date(2026, 12, 1),
        "end_date": date(2026, 12, 8),
        "rates": PackageRates(adult=Decimal("2500.00"), title="Umrah 7 nights"),
    }
    defaults.update(kwargs)
    return SelectionStep(adults=adults, children=children, infants=infants, **defaults)


def make_travelers(adults: int = 2, children: int = 0, infants: int = 0) -> TravelersStep:
    travelers = [
        Traveler(f"Adult{i}", "Alharbi", date(1985, 5, i + 1), TravelerType.ADULT)
        for i in range(adults)
    ]
    travelers += [
        Traveler(f"Child{i}", "Alharbi", date(2016, 3, i + 1), TravelerType.CHILD)
        for i in range(children)
    ]
    travelers += [
        Traveler(f"Infant{i}", "Alharbi", date(2025, 8, i + 1), TravelerType.INFANT)
        for i in range(infants)
    ]
    return TravelersStep(travelers=travelers)


def make_contact() -> ContactStep:
    return ContactStep(email="lead@example.com", phone="+966 50 123 4567")


# ============================================
# FIXTURES
# ============================================


@pytest.fixture
def config():
    """Fast timeouts and backoff for tests."""
    return BookingConfig(
        provider_timeout_seconds=0.5,
        storage_timeout_seconds=1.0,
        retry_backoff_seconds=0.001,
        retry_backoff_max_seconds=0.01,
        poll_interval_seconds=0.0,
        provider_name="memory",
        provider_notification_token="test-notification-token",
    )


@pytest.fixture
async def storage():
    """Initialized in-memory storage manager."""
    manager = InMemoryStorageManager()
    async with manager:
        yield manager


@pytest.fixture
async def sqlite_storage():
    """Initialized SQLite ``:memory:`` storage manager."""
    from voyagez.storage.backends.sqlite import SQLiteStorageManager

    manager = SQLiteStorageManager(":memory:")
    async with manager:
        yield manager


@pytest.fixture
def provider():
    return InMemoryPaymentProvider()


@pytest.fixture
def wizard(storage, config):
    return WizardStepWriter(storage, config)


@pytest.fixture
def handoff(storage, provider, config):
    return PaymentHandoff(storage, provider, config)


@pytest.fixture
def reconciler(storage, provider, config):
    return ConfirmationReconciler(storage, provider, config)


@pytest.fixture
def ready_draft(wizard):
    """Factory for a COLLECTING draft with selection, travelers and contact."""

    async def _make(adults: int = 2, children: int = 0, infants: int = 0) -> str:
        draft_id = await wizard.save_step(None, make_selection(adults, children, infants))
        await wizard.save_step(draft_id, make_travelers(adults, children, infants))
        await wizard.save_step(draft_id, make_contact())
        return draft_id

    return _make


@pytest.fixture
def handed_off(ready_draft, handoff, storage):
    """Factory for an AWAITING_PAYMENT draft; returns (draft_id, session_id)."""

    async def _make() -> tuple[str, str]:
        draft_id = await ready_draft()
        await handoff.initiate_payment(draft_id)
        draft = await storage.drafts.get(draft_id)
        return draft_id, draft.provider_session_id

    return _make
