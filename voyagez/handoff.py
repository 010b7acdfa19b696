"""
Payment Handoff - Moves a completed draft to the payment provider.

The provider call happens first and outside any storage transaction. Only
after a session exists is the draft moved COLLECTING -> AWAITING_PAYMENT with
a compare-and-set write. If that write fails the provider session is
cancelled so no orphaned checkout stays open.

Usage:
    >>> handoff = PaymentHandoff(storage, provider, config)
    >>> redirect_url = await handoff.initiate_payment(draft_id)
"""

from __future__ import annotations

import asyncio
from decimal import Decimal

from voyagez.core.config import BookingConfig, get_config
from voyagez.core.exceptions import (
    DraftNotFoundError,
    InvalidStateError,
    ProviderUnavailableError,
    ValidationError,
)
from voyagez.core.logger import get_logger
from voyagez.core.pricing import PriceBreakdown, compute_price
from voyagez.core.state_machine import DraftStateMachine
from voyagez.core.types import DraftBooking, DraftStatus
from voyagez.inventory import HotelInventoryAggregator
from voyagez.monitoring.logging import booking_scope
from voyagez.monitoring.metrics import HANDOFF_DURATION, HANDOFFS
from voyagez.providers.base import CheckoutRequest, CheckoutSession, MerchantUrls, PaymentProvider
from voyagez.storage.core import StorageError
from voyagez.storage.manager import BaseStorageManager
from voyagez.wizard import validate_ready_for_payment

logger = get_logger(__name__)


class PaymentHandoff:
    """
    Opens provider checkout sessions for drafts.

    Attributes:
        storage: Storage manager owning the drafts
        provider: Payment provider client
        inventory: Optional hotel inventory for live hotel prices
        url_prefix: Router prefix used to build the merchant redirect URLs
    """

    def __init__(
        self,
        storage: BaseStorageManager,
        provider: PaymentProvider,
        config: BookingConfig | None = None,
        inventory: HotelInventoryAggregator | None = None,
        state_machine: DraftStateMachine | None = None,
        url_prefix: str = "",
    ):
        self.storage = storage
        self.provider = provider
        self.config = config or get_config()
        self.inventory = inventory
        self.state_machine = state_machine or DraftStateMachine()
        self.url_prefix = url_prefix

    async def initiate_payment(self, draft_id: str) -> str:
        """
        Open a provider session for a draft and return the checkout URL.

        Raises:
            DraftNotFoundError: Unknown draft id
            InvalidStateError: Draft is not COLLECTING, or a concurrent handoff won
            ValidationError: Draft is missing selection, travelers or contact
            ProviderUnavailableError: Provider failed or timed out, or the
                session could not be recorded locally
        """
        with booking_scope(draft_id=draft_id), HANDOFF_DURATION.time():
            draft = await self.storage.drafts.get(draft_id)
            if draft is None:
                raise DraftNotFoundError(draft_id)
            if draft.status != DraftStatus.COLLECTING:
                HANDOFFS.labels(result="conflict").inc()
                raise InvalidStateError(draft_id, draft.status, [DraftStatus.COLLECTING])

            validate_ready_for_payment(draft)
            price = await self.price_for(draft)

            session = await self._open_session(draft, price.total)
            with booking_scope(provider_session_id=session.session_id):
                await self._record_session(draft, session, price.total)

            HANDOFFS.labels(result="success").inc()
            logger.info(
                f"Draft {draft_id} handed off to {self.provider.name} "
                f"(session {session.session_id}, {price.total} {price.currency})"
            )
            return session.checkout_url or ""

    async def price_for(self, draft: DraftBooking) -> PriceBreakdown:
        """
        Final price of a draft, with the live hotel price when one is quoted.

        Raises:
            ValidationError: The draft has no package selection yet
        """
        if draft.selection is None:
            msg = f"Draft {draft.draft_id} has no package selection to price"
            raise ValidationError(msg, field="selection")
        hotel_price = await self._live_hotel_price(draft)
        return compute_price(
            draft.selection,
            live_hotel_price=hotel_price,
            child_share=self.config.child_rate_share,
            infant_share=self.config.infant_rate_share,
        )

    async def _live_hotel_price(self, draft: DraftBooking) -> Decimal | None:
        selection = draft.selection
        if self.inventory is None or selection is None or not selection.hotel_id:
            return None
        try:
            return await asyncio.wait_for(
                self.inventory.get_live_pricing(
                    selection.hotel_id, selection.date_range, selection.occupancy
                ),
                timeout=self.config.provider_timeout_seconds,
            )
        except Exception as e:
            # Package rates alone still price the booking
            logger.warning(
                f"Live pricing for hotel {selection.hotel_id} unavailable, "
                f"using package rates: {e}"
            )
            return None

    async def _open_session(self, draft: DraftBooking, amount: Decimal) -> CheckoutSession:
        request = CheckoutRequest.from_draft(
            draft,
            amount,
            MerchantUrls.for_draft(
                self.config.merchant_base_url, draft.draft_id, prefix=self.url_prefix
            ),
            country_code=self.config.country_code,
        )
        try:
            session = await asyncio.wait_for(
                self.provider.create_session(request),
                timeout=self.config.provider_timeout_seconds,
            )
        except TimeoutError as e:
            HANDOFFS.labels(result="provider_unavailable").inc()
            msg = f"{self.provider.name} did not answer within {self.config.provider_timeout_seconds}s"
            raise ProviderUnavailableError(msg, provider=self.provider.name, cause=e) from e
        except ProviderUnavailableError:
            HANDOFFS.labels(result="provider_unavailable").inc()
            raise

        if not session.checkout_url:
            await self._cancel_orphan(session, draft)
            HANDOFFS.labels(result="provider_unavailable").inc()
            msg = f"{self.provider.name} returned no checkout URL"
            raise ProviderUnavailableError(msg, provider=self.provider.name)
        return session

    async def _record_session(
        self, draft: DraftBooking, session: CheckoutSession, amount: Decimal
    ) -> None:
        self.state_machine.hand_off(draft, session.session_id, amount, session.checkout_url)
        try:
            recorded = await asyncio.wait_for(
                self.storage.drafts.transition(draft, DraftStatus.COLLECTING),
                timeout=self.config.storage_timeout_seconds,
            )
        except (StorageError, TimeoutError) as e:
            await self._cancel_orphan(session, draft)
            HANDOFFS.labels(result="provider_unavailable").inc()
            msg = "Payment session could not be recorded, please try again"
            raise ProviderUnavailableError(msg, provider=self.provider.name, cause=e) from e

        if recorded:
            return

        await self._cancel_orphan(session, draft)
        HANDOFFS.labels(result="conflict").inc()
        current = await self.storage.drafts.get(draft.draft_id)
        if current is None:
            raise DraftNotFoundError(draft.draft_id)
        if current.status != DraftStatus.COLLECTING:
            raise InvalidStateError(draft.draft_id, current.status, [DraftStatus.COLLECTING])
        msg = "Draft changed while the payment session was opened, please try again"
        raise ProviderUnavailableError(msg, provider=self.provider.name)

    async def _cancel_orphan(self, session: CheckoutSession, draft: DraftBooking) -> None:
        try:
            await asyncio.wait_for(
                self.provider.cancel_session(
                    session.session_id, draft.computed_price, draft.currency
                ),
                timeout=self.config.provider_timeout_seconds,
            )
            logger.info(f"Cancelled orphaned session {session.session_id}")
        except Exception as e:
            logger.error(
                f"Could not cancel orphaned session {session.session_id} "
                f"for draft {draft.draft_id}: {e}"
            )
