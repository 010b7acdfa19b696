"""
Voyagez - Travel booking lifecycle with buy-now-pay-later confirmation.

A customer builds a booking step by step in a mutable draft. The draft is
handed off to a payment provider and becomes a confirmed booking only when
the provider approves payment. Webhook redeliveries and client polling may
arrive in any order and any number of times; exactly one booking is
created.

Lifecycle:
    >>> from voyagez import (
    ...     WizardStepWriter, PaymentHandoff, ConfirmationReconciler,
    ...     SelectionStep, TravelersStep, ContactStep,
    ... )
    >>> from voyagez.storage import create_storage_manager
    >>> from voyagez.providers import InMemoryPaymentProvider
    >>>
    >>> storage = create_storage_manager("sqlite:///bookings.db")
    >>> await storage.initialize()
    >>> provider = InMemoryPaymentProvider()
    >>>
    >>> wizard = WizardStepWriter(storage)
    >>> draft_id = await wizard.save_step(None, SelectionStep(...))
    >>> await wizard.save_step(draft_id, TravelersStep(travelers=[...]))
    >>> await wizard.save_step(draft_id, ContactStep(email="...", phone="..."))
    >>>
    >>> redirect_url = await PaymentHandoff(storage, provider).initiate_payment(draft_id)
    >>>
    >>> reconciler = ConfirmationReconciler(storage, provider)
    >>> result = await reconciler.handle_provider_callback(signal)  # from the webhook
    >>> poll = await reconciler.poll_status(draft_id)               # from the client

Background expiry:
    >>> from voyagez import ExpirySweeper
    >>> await ExpirySweeper(storage, provider).start()
"""

from voyagez.core import (
    BookingConfig,
    BookingNotFoundError,
    BookingStatus,
    ConfirmedBooking,
    DraftBooking,
    DraftNotFoundError,
    DraftStateMachine,
    DraftStatus,
    InvalidStateError,
    InvalidStateTransitionError,
    MissingDependencyError,
    PaymentStatus,
    PollResult,
    PromotionConflictError,
    PromotionFailedError,
    ProviderConfirmationSignal,
    ProviderUnavailableError,
    ReconcileResult,
    SignalOutcome,
    SignatureError,
    ValidationError,
    VoyagezError,
    configure,
    get_config,
    get_logger,
    set_logger,
)
from voyagez.handoff import PaymentHandoff
from voyagez.inventory import HotelCandidate, HotelInventoryAggregator
from voyagez.poller import PollOutcome, PollReport, StatusPoller
from voyagez.reconciler import ConfirmationReconciler
from voyagez.sweeper import ExpirySweeper
from voyagez.wizard import ContactStep, SelectionStep, TravelersStep, WizardStepWriter

__version__ = "0.1.0"

__all__ = [
    "BookingConfig",
    "BookingNotFoundError",
    "BookingStatus",
    "ConfirmationReconciler",
    "ConfirmedBooking",
    "ContactStep",
    "DraftBooking",
    "DraftNotFoundError",
    "DraftStateMachine",
    "DraftStatus",
    "ExpirySweeper",
    "HotelCandidate",
    "HotelInventoryAggregator",
    "InvalidStateError",
    "InvalidStateTransitionError",
    "MissingDependencyError",
    "PaymentHandoff",
    "PaymentStatus",
    "PollOutcome",
    "PollReport",
    "PollResult",
    "PromotionConflictError",
    "PromotionFailedError",
    "ProviderConfirmationSignal",
    "ProviderUnavailableError",
    "ReconcileResult",
    "SelectionStep",
    "SignalOutcome",
    "SignatureError",
    "StatusPoller",
    "TravelersStep",
    "ValidationError",
    "VoyagezError",
    "WizardStepWriter",
    "configure",
    "get_config",
    "get_logger",
    "set_logger",
]
