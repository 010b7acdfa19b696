"""
Tests for core types, state machine, pricing, configuration and errors.
"""

import re
from datetime import UTC, date, datetime
from decimal import Decimal

import pytest

from voyagez.core.config import BookingConfig, configure, get_config
from voyagez.core.env import EnvManager, parse_duration
from voyagez.core.exceptions import (
    DraftNotFoundError,
    InvalidStateError,
    InvalidStateTransitionError,
    MissingDependencyError,
    ValidationError,
)
from voyagez.core.pricing import compute_price, generate_booking_reference
from voyagez.core.state_machine import DraftStateMachine
from voyagez.core.types import (
    ConfirmedBooking,
    DateRange,
    DraftBooking,
    DraftStatus,
    Occupancy,
    PackageRates,
    PollResult,
    Selection,
    Traveler,
    TravelerType,
)


def _selection(adults=2, children=0, infants=0, **rates) -> Selection:
    return Selection(
        package_id="PKG-1",
        date_range=DateRange(date(2026, 3, 1), date(2026, 3, 5)),
        occupancy=Occupancy(adults, children, infants),
        rates=PackageRates(adult=Decimal("1000"), **rates),
    )


class TestDraftStateMachine:
    """Tests for legal and illegal draft transitions."""

    def test_hand_off_records_session_and_price(self):
        draft = DraftBooking(selection=_selection())
        before = draft.last_touched_at

        DraftStateMachine().hand_off(draft, "chk-1", Decimal("2000"), "https://pay/chk-1")

        assert draft.status == DraftStatus.AWAITING_PAYMENT
        assert draft.provider_session_id == "chk-1"
        assert draft.computed_price == Decimal("2000")
        assert draft.checkout_url == "https://pay/chk-1"
        assert draft.last_touched_at >= before

    def test_collecting_cannot_be_promoted(self):
        """A draft must pass through AWAITING_PAYMENT before promotion."""
        draft = DraftBooking()
        with pytest.raises(InvalidStateTransitionError):
            DraftStateMachine().promote(draft, "bk-1")
        assert draft.status == DraftStatus.COLLECTING

    @pytest.mark.parametrize("terminal", [DraftStatus.PROMOTED, DraftStatus.CANCELLED, DraftStatus.EXPIRED])
    def test_terminal_states_have_no_exits(self, terminal):
        draft = DraftBooking(status=terminal)
        sm = DraftStateMachine()
        for target in DraftStatus:
            assert not sm.can_transition(terminal, target)
        with pytest.raises(InvalidStateTransitionError):
            sm.expire(draft)

    def test_promoted_and_cancelled_are_exclusive(self):
        sm = DraftStateMachine()
        draft = DraftBooking(status=DraftStatus.AWAITING_PAYMENT)
        sm.promote(draft, "bk-1")
        with pytest.raises(InvalidStateTransitionError):
            sm.cancel(draft, "declined")

    def test_sources_for_expired(self):
        assert set(DraftStateMachine.sources_for(DraftStatus.EXPIRED)) == {
            DraftStatus.COLLECTING,
            DraftStatus.AWAITING_PAYMENT,
        }

    def test_on_transition_hook(self):
        seen = []
        sm = DraftStateMachine(on_transition=lambda d, old, new: seen.append((old, new)))
        draft = DraftBooking(status=DraftStatus.AWAITING_PAYMENT)
        sm.cancel(draft, reason="declined")
        assert seen == [(DraftStatus.AWAITING_PAYMENT, DraftStatus.CANCELLED)]
        assert draft.failure_reason == "declined"


class TestPricing:
    """Tests for final price computation."""

    def test_adults_only(self):
        price = compute_price(_selection(adults=2))
        assert price.total == Decimal("2000.00")
        assert price.currency == "SAR"

    def test_child_and_infant_default_shares(self):
        price = compute_price(_selection(adults=2, children=1, infants=1))
        # 2 x 1000 + 700 + 100
        assert price.total == Decimal("2800.00")
        assert [line.label for line in price.lines] == ["adult", "child", "infant"]

    def test_explicit_child_rate_wins(self):
        price = compute_price(_selection(adults=1, children=2, child=Decimal("450")))
        assert price.total == Decimal("1900.00")

    def test_live_hotel_price_added(self):
        price = compute_price(_selection(adults=1), live_hotel_price=Decimal("320.50"))
        assert price.total == Decimal("1320.50")
        assert price.to_dict()["hotel_price"] == "320.50"

    def test_missing_rates(self):
        selection = _selection()
        selection.rates = None
        with pytest.raises(ValidationError) as exc_info:
            compute_price(selection)
        assert exc_info.value.field == "rates"

    def test_booking_reference_format(self):
        reference = generate_booking_reference(datetime(2026, 1, 15, tzinfo=UTC))
        assert re.fullmatch(r"TRP-20260115-\d{4}", reference)


class TestTypes:
    """Tests for serialization and snapshots."""

    @pytest.mark.parametrize(
        ("status", "terminal"),
        [
            (DraftStatus.COLLECTING, False),
            (DraftStatus.AWAITING_PAYMENT, False),
            (DraftStatus.PROMOTED, True),
            (DraftStatus.CANCELLED, True),
            (DraftStatus.EXPIRED, True),
        ],
    )
    def test_terminal_statuses(self, status, terminal):
        assert status.is_terminal is terminal

    def test_draft_round_trip(self):
        draft = DraftBooking(
            selection=_selection(),
            travelers=[Traveler("Sara", "Ali", date(1990, 1, 1), email="s@a.co", phone="+966500")],
            special_requests="Late check-in",
        )
        restored = DraftBooking.from_dict(draft.to_dict())
        assert restored == draft

    def test_lead_traveler_is_first_adult(self):
        draft = DraftBooking(
            travelers=[
                Traveler("Kid", "Ali", date(2018, 1, 1), TravelerType.CHILD),
                Traveler("Sara", "Ali", date(1990, 1, 1), email="s@a.co", phone="+966500"),
            ]
        )
        assert draft.lead_traveler.first_name == "Sara"
        assert draft.contact.email == "s@a.co"

    def test_snapshot_copies_draft(self):
        draft = DraftBooking(
            selection=_selection(),
            travelers=[Traveler("Sara", "Ali", date(1990, 1, 1))],
            computed_price=Decimal("2000"),
            provider_session_id="chk-1",
        )
        booking = ConfirmedBooking.snapshot(draft, "TRP-20260101-0001", payment_method="tamara")

        draft.travelers[0].first_name = "Changed"
        assert booking.travelers[0].first_name == "Sara"
        assert booking.source_draft_id == draft.draft_id
        assert booking.total_price == Decimal("2000")

    def test_snapshot_requires_price(self):
        with pytest.raises(ValueError):
            ConfirmedBooking.snapshot(DraftBooking(selection=_selection()), "TRP-1")

    def test_poll_result_public_status(self):
        pending = PollResult("d-1", DraftStatus.AWAITING_PAYMENT)
        assert pending.to_dict() == {"draft_id": "d-1", "status": "pending"}
        confirmed = PollResult.from_dict(
            {"draft_id": "d-1", "status": "confirmed", "booking_id": "bk-1"}
        )
        assert confirmed.status == DraftStatus.PROMOTED
        assert confirmed.booking_id == "bk-1"


class TestConfig:
    """Tests for BookingConfig."""

    def test_defaults(self):
        config = BookingConfig()
        assert config.hold_window.total_seconds() == 24 * 3600
        assert config.provider_timeout_seconds == 10
        assert config.storage_url == "memory://"

    def test_backoff_is_capped(self):
        config = BookingConfig(retry_backoff_seconds=0.5, retry_backoff_max_seconds=1.5)
        assert [config.backoff_for(n) for n in (1, 2, 3, 4)] == [0.5, 1.0, 1.5, 1.5]

    def test_invalid_values(self):
        with pytest.raises(ValueError):
            BookingConfig(hold_window_seconds=0)
        with pytest.raises(ValueError):
            BookingConfig(promotion_max_retries=0)

    def test_from_env(self, monkeypatch):
        monkeypatch.setenv("VOYAGEZ_STORAGE_URL", "sqlite:///bookings.db")
        monkeypatch.setenv("VOYAGEZ_HOLD_WINDOW_SECONDS", "3600")
        monkeypatch.setenv("VOYAGEZ_VERIFY_ON_POLL", "true")
        monkeypatch.setenv("VOYAGEZ_NOTIFICATION_TOKEN", "secret")

        config = BookingConfig.from_env(load_dotenv=False)

        assert config.storage_url == "sqlite:///bookings.db"
        assert config.hold_window_seconds == 3600
        assert config.verify_on_poll is True
        assert config.provider_notification_token == "secret"
        assert "secret" not in repr(config)

    def test_from_env_durations(self, monkeypatch):
        monkeypatch.delenv("VOYAGEZ_HOLD_WINDOW_SECONDS", raising=False)
        monkeypatch.setenv("VOYAGEZ_HOLD_WINDOW", "6h")
        monkeypatch.setenv("VOYAGEZ_SWEEP_INTERVAL", "5m")
        monkeypatch.setenv("VOYAGEZ_INFANT_RATE_SHARE", "0.2")

        config = BookingConfig.from_env(load_dotenv=False)

        assert config.hold_window_seconds == 6 * 3600
        assert config.sweep_interval_seconds == 300
        assert config.infant_rate_share == Decimal("0.2")

    def test_configure_global(self):
        config = BookingConfig(storage_url="sqlite://")
        configure(config)
        try:
            assert get_config() is config
        finally:
            configure(BookingConfig())

    def test_with_storage_is_immutable(self):
        config = BookingConfig()
        other = config.with_storage("sqlite://")
        assert config.storage_url == "memory://"
        assert other.storage_url == "sqlite://"


class TestEnvManager:
    """Tests for prefixed environment access and .env loading."""

    def test_loads_env_file(self, tmp_path, monkeypatch):
        monkeypatch.delenv("VOYAGEZ_TEST_VALUE", raising=False)
        monkeypatch.delenv("VOYAGEZ_TEST_FLAG", raising=False)
        (tmp_path / ".env").write_text("VOYAGEZ_TEST_VALUE=42\nVOYAGEZ_TEST_FLAG=yes\n")

        env = EnvManager(project_root=tmp_path)
        assert env.load() is True
        assert env.loaded

        assert env.get_int("TEST_VALUE") == 42
        assert env.get_bool("TEST_FLAG") is True
        monkeypatch.delenv("VOYAGEZ_TEST_VALUE", raising=False)
        monkeypatch.delenv("VOYAGEZ_TEST_FLAG", raising=False)

    def test_missing_env_file(self, tmp_path):
        assert EnvManager(project_root=tmp_path).load() is False

    def test_prefixed_and_full_names(self, monkeypatch):
        monkeypatch.setenv("VOYAGEZ_CURRENCY", "AED")
        env = EnvManager()
        assert env.get("CURRENCY") == "AED"
        assert env.get("VOYAGEZ_CURRENCY") == "AED"

    def test_required_missing(self, monkeypatch):
        monkeypatch.delenv("VOYAGEZ_MISSING", raising=False)
        with pytest.raises(ValueError, match="VOYAGEZ_MISSING"):
            EnvManager().get("MISSING", required=True)

    def test_malformed_numbers_use_default(self, monkeypatch):
        monkeypatch.setenv("VOYAGEZ_POLL_ATTEMPTS", "many")
        monkeypatch.setenv("VOYAGEZ_CHILD_RATE_SHARE", "most")
        env = EnvManager()
        assert env.get_int("POLL_ATTEMPTS", 10) == 10
        assert env.get_decimal("CHILD_RATE_SHARE", Decimal("0.7")) == Decimal("0.7")

    @pytest.mark.parametrize(
        ("value", "seconds"),
        [("90", 90), ("15m", 900), ("24h", 86400), ("2d", 172800), ("1.5H", 5400)],
    )
    def test_parse_duration(self, value, seconds):
        assert parse_duration(value) == seconds

    def test_bad_duration(self):
        with pytest.raises(ValueError):
            parse_duration("soon")


class TestExceptions:
    def test_invalid_state_message(self):
        error = InvalidStateError("d-1", DraftStatus.PROMOTED, [DraftStatus.COLLECTING])
        assert "promoted" in str(error)
        assert "collecting" in str(error)

    def test_draft_not_found_by_session(self):
        error = DraftNotFoundError(provider_session_id="chk-9")
        assert "chk-9" in str(error)

    def test_missing_dependency_message(self):
        error = MissingDependencyError("asyncpg", "PostgreSQL storage")
        assert "pip install asyncpg" in str(error)
