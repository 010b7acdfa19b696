"""
Core booking lifecycle types, state machine, pricing and configuration.
"""

from voyagez.core.config import BookingConfig, configure, get_config
from voyagez.core.exceptions import (
    BookingNotFoundError,
    DraftNotFoundError,
    InvalidStateError,
    InvalidStateTransitionError,
    MissingDependencyError,
    PromotionConflictError,
    PromotionFailedError,
    ProviderUnavailableError,
    SignatureError,
    ValidationError,
    VoyagezError,
)
from voyagez.core.logger import get_logger, set_logger
from voyagez.core.pricing import PriceBreakdown, compute_price, generate_booking_reference
from voyagez.core.state_machine import DraftStateMachine
from voyagez.core.types import (
    BookingStatus,
    ConfirmedBooking,
    ContactInfo,
    DateRange,
    DraftBooking,
    DraftStatus,
    Occupancy,
    PackageRates,
    PaymentStatus,
    PollResult,
    ProviderConfirmationSignal,
    ReconcileResult,
    Selection,
    SignalOutcome,
    Traveler,
    TravelerType,
)

__all__ = [
    "BookingConfig",
    "BookingNotFoundError",
    "BookingStatus",
    "ConfirmedBooking",
    "ContactInfo",
    "DateRange",
    "DraftBooking",
    "DraftNotFoundError",
    "DraftStateMachine",
    "DraftStatus",
    "InvalidStateError",
    "InvalidStateTransitionError",
    "MissingDependencyError",
    "Occupancy",
    "PackageRates",
    "PaymentStatus",
    "PollResult",
    "PriceBreakdown",
    "PromotionConflictError",
    "PromotionFailedError",
    "ProviderConfirmationSignal",
    "ProviderUnavailableError",
    "ReconcileResult",
    "Selection",
    "SignalOutcome",
    "SignatureError",
    "Traveler",
    "TravelerType",
    "ValidationError",
    "VoyagezError",
    "compute_price",
    "configure",
    "generate_booking_reference",
    "get_config",
    "get_logger",
    "set_logger",
]
