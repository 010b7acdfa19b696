"""
Confirmation Reconciler - Turns provider signals into exactly one booking.

Two unordered and possibly duplicated inputs decide a draft's fate: the
provider webhook and the client's polling. Only signals promote or cancel;
polling is read-only. Every write is a compare-and-set on the draft's
stored status, and promotion inserts the booking under a unique
``source_draft_id`` in the same storage transaction, so correctness holds
across processes without in-process locks.

Signal handling per draft:

    session unknown            -> acknowledged no-op (unknown_session)
    event_id already applied   -> duplicate no-op
    PROMOTED / CANCELLED       -> duplicate no-op, current state returned
    EXPIRED                    -> rejected, never promoted
    AWAITING_PAYMENT + APPROVED           -> promote (retried on storage failure)
    AWAITING_PAYMENT + DECLINED/CANCELLED -> cancel

Usage:
    >>> reconciler = ConfirmationReconciler(storage, provider, config)
    >>> result = await reconciler.handle_provider_callback(signal)
    >>> poll = await reconciler.poll_status(draft_id)
    >>> booking = await reconciler.refund_booking(booking_id)
"""

from __future__ import annotations

import asyncio
from decimal import Decimal

from voyagez.core.config import BookingConfig, get_config
from voyagez.core.exceptions import (
    BookingNotFoundError,
    DraftNotFoundError,
    InvalidStateError,
    PromotionConflictError,
    PromotionFailedError,
    ProviderUnavailableError,
    ValidationError,
)
from voyagez.core.logger import get_logger
from voyagez.core.pricing import generate_booking_reference
from voyagez.core.state_machine import DraftStateMachine
from voyagez.core.types import (
    BookingStatus,
    ConfirmedBooking,
    DraftBooking,
    DraftStatus,
    PaymentStatus,
    PollResult,
    ProviderConfirmationSignal,
    ReconcileResult,
    SignalOutcome,
)
from voyagez.monitoring.logging import booking_scope
from voyagez.monitoring.metrics import PROMOTION_FAILURES, PROMOTION_RETRIES, REFUNDS, SIGNALS
from voyagez.providers.base import PaymentProvider
from voyagez.storage.core import DuplicateKeyError, StorageError, TransactionError
from voyagez.storage.manager import BaseStorageManager

logger = get_logger(__name__)


def _copy(draft: DraftBooking) -> DraftBooking:
    return DraftBooking.from_dict(draft.to_dict())


class ConfirmationReconciler:
    """
    Applies provider confirmation signals to drafts.

    Safe to call any number of times for the same signal, concurrently and
    from different processes sharing one storage backend.
    """

    def __init__(
        self,
        storage: BaseStorageManager,
        provider: PaymentProvider | None = None,
        config: BookingConfig | None = None,
        state_machine: DraftStateMachine | None = None,
    ):
        self.storage = storage
        self.provider = provider
        self.config = config or get_config()
        self.state_machine = state_machine or DraftStateMachine()

    # =========================================================================
    # Signal path
    # =========================================================================

    async def handle_provider_callback(self, signal: ProviderConfirmationSignal) -> ReconcileResult:
        """
        Apply one provider signal.

        A signal for a session no draft owns is acknowledged as a duplicate
        with ``unknown_session`` set, so the provider stops redelivering it.

        Raises:
            PromotionFailedError: Storage kept failing; the sender should redeliver
            StorageError: Storage failed while cancelling
        """
        with booking_scope(
            provider_session_id=signal.provider_session_id, correlation_id=signal.event_id
        ):
            draft = await self.storage.drafts.get_by_session(signal.provider_session_id)
            if draft is None:
                logger.warning(f"Signal {signal.event_id} for unknown session, ignoring")
                SIGNALS.labels(outcome=signal.outcome.value, result="unknown").inc()
                return ReconcileResult(
                    draft_id=None, status=None, duplicate=True, unknown_session=True
                )

            with booking_scope(draft_id=draft.draft_id):
                if await self.storage.signals.seen(signal.event_id):
                    logger.info(f"Signal {signal.event_id} already applied")
                    SIGNALS.labels(outcome=signal.outcome.value, result="duplicate").inc()
                    # Recorded only after the write, so a re-read sees the settled draft
                    current = await self.storage.drafts.get(draft.draft_id)
                    return self._result_for(current or draft, duplicate=True)
                return await self._apply(draft, signal)

    async def _apply(
        self, draft: DraftBooking, signal: ProviderConfirmationSignal
    ) -> ReconcileResult:
        if draft.status != DraftStatus.AWAITING_PAYMENT:
            return await self._settled(draft, signal)

        if signal.outcome == SignalOutcome.APPROVED:
            result = await self._promote(draft, signal)
        else:
            result = await self._cancel(draft, signal)

        await self._record(signal, result.draft_id)
        return result

    async def _settled(
        self, draft: DraftBooking, signal: ProviderConfirmationSignal
    ) -> ReconcileResult:
        """Signal for a draft that is no longer waiting for payment."""
        if draft.status == DraftStatus.EXPIRED:
            logger.warning(
                f"Rejected {signal.outcome.value} signal {signal.event_id}: "
                f"draft {draft.draft_id} expired before confirmation"
            )
            SIGNALS.labels(outcome=signal.outcome.value, result="rejected").inc()
            await self._record(signal, draft.draft_id)
            return self._result_for(draft, rejected=True)

        if draft.status == DraftStatus.COLLECTING:
            raise InvalidStateError(draft.draft_id, draft.status, [DraftStatus.AWAITING_PAYMENT])

        logger.info(
            f"Signal {signal.event_id} ({signal.outcome.value}) for draft already "
            f"{draft.status.value}, nothing to do"
        )
        SIGNALS.labels(outcome=signal.outcome.value, result="duplicate").inc()
        await self._record(signal, draft.draft_id)
        return self._result_for(draft, duplicate=True)

    async def _promote(
        self, draft: DraftBooking, signal: ProviderConfirmationSignal
    ) -> ReconcileResult:
        attempts = self.config.promotion_max_retries
        reference = generate_booking_reference()
        last_error: Exception | None = None

        for attempt in range(1, attempts + 1):
            candidate = _copy(draft)
            booking = ConfirmedBooking.snapshot(
                candidate,
                booking_reference=reference,
                payment_method=self.provider.name if self.provider else None,
            )
            self.state_machine.promote(candidate, booking.booking_id)

            try:
                await asyncio.wait_for(
                    self.storage.promote(candidate, booking),
                    timeout=self.config.storage_timeout_seconds,
                )
            except PromotionConflictError:
                return await self._adopt_winner(draft, signal)
            except InvalidStateError as e:
                logger.info(f"Promotion of draft {draft.draft_id} lost to {e.current}")
                return await self._reread(draft.draft_id, signal)
            except DuplicateKeyError as e:
                last_error = e
                reference = generate_booking_reference()
                PROMOTION_RETRIES.inc()
                logger.info(f"Booking reference collision, retrying with {reference}")
                continue
            except (StorageError, TimeoutError) as e:
                last_error = e
                if attempt < attempts:
                    delay = self.config.backoff_for(attempt)
                    PROMOTION_RETRIES.inc()
                    logger.warning(
                        f"Promotion of draft {draft.draft_id} failed "
                        f"(attempt {attempt}/{attempts}), retrying in {delay:.2f}s: {e!r}",
                        extra={"attempt": attempt},
                    )
                    await asyncio.sleep(delay)
                continue

            SIGNALS.labels(outcome=signal.outcome.value, result="promoted").inc()
            logger.info(
                f"Draft {draft.draft_id} promoted to booking {booking.booking_id} "
                f"({booking.booking_reference})",
                extra={"booking_id": booking.booking_id},
            )
            return ReconcileResult(
                draft_id=draft.draft_id,
                status=DraftStatus.PROMOTED,
                booking_id=booking.booking_id,
            )

        PROMOTION_FAILURES.inc()
        logger.error(f"Giving up promotion of draft {draft.draft_id} after {attempts} attempts")
        raise PromotionFailedError(draft.draft_id, attempts, cause=last_error)

    async def _adopt_winner(
        self, draft: DraftBooking, signal: ProviderConfirmationSignal
    ) -> ReconcileResult:
        existing = await self.storage.bookings.get_by_source_draft(draft.draft_id)
        if existing is None:
            msg = f"Promotion conflict for draft {draft.draft_id} but no booking found"
            raise TransactionError(msg, operation="promote")
        SIGNALS.labels(outcome=signal.outcome.value, result="conflict_resolved").inc()
        logger.info(f"Draft {draft.draft_id} already promoted to {existing.booking_id}")
        return ReconcileResult(
            draft_id=draft.draft_id,
            status=DraftStatus.PROMOTED,
            booking_id=existing.booking_id,
            conflict_resolved=True,
        )

    async def _cancel(
        self, draft: DraftBooking, signal: ProviderConfirmationSignal
    ) -> ReconcileResult:
        raw_status = signal.raw.get("order_status") or signal.raw.get("status")
        candidate = self.state_machine.cancel(
            _copy(draft), reason=raw_status or signal.outcome.value
        )
        try:
            cancelled = await asyncio.wait_for(
                self.storage.drafts.transition(candidate, DraftStatus.AWAITING_PAYMENT),
                timeout=self.config.storage_timeout_seconds,
            )
        except TimeoutError as e:
            msg = f"Cancelling draft {draft.draft_id} timed out"
            raise TransactionError(msg, operation="cancel") from e

        if not cancelled:
            return await self._reread(draft.draft_id, signal)

        SIGNALS.labels(outcome=signal.outcome.value, result="cancelled").inc()
        logger.info(f"Draft {draft.draft_id} cancelled: {candidate.failure_reason}")
        return self._result_for(candidate)

    async def _reread(self, draft_id: str, signal: ProviderConfirmationSignal) -> ReconcileResult:
        current = await self.storage.drafts.get(draft_id)
        if current is None:
            raise DraftNotFoundError(draft_id)
        if current.status == DraftStatus.AWAITING_PAYMENT:
            # Only the version moved; apply again on the fresh copy
            return await self._apply(current, signal)
        return await self._settled(current, signal)

    async def _record(self, signal: ProviderConfirmationSignal, draft_id: str) -> None:
        await self.storage.signals.record(
            signal.event_id,
            signal.provider_session_id,
            signal.outcome.value,
            draft_id=draft_id,
        )

    @staticmethod
    def _result_for(
        draft: DraftBooking, duplicate: bool = False, rejected: bool = False
    ) -> ReconcileResult:
        return ReconcileResult(
            draft_id=draft.draft_id,
            status=draft.status,
            booking_id=draft.booking_id,
            duplicate=duplicate,
            rejected=rejected,
        )

    # =========================================================================
    # Poll path
    # =========================================================================

    async def poll_status(self, draft_id: str) -> PollResult:
        """
        Current confirmation state of a draft. Never writes.

        Raises:
            DraftNotFoundError: Unknown draft id
        """
        draft = await self.storage.drafts.get(draft_id)
        if draft is None:
            raise DraftNotFoundError(draft_id)

        reference = None
        if draft.status == DraftStatus.PROMOTED and draft.booking_id:
            booking = await self.storage.bookings.get(draft.booking_id)
            reference = booking.booking_reference if booking else None

        return PollResult(
            draft_id=draft.draft_id,
            status=draft.status,
            booking_id=draft.booking_id,
            booking_reference=reference,
            failure_reason=draft.failure_reason,
        )

    async def verify_with_provider(self, draft_id: str) -> PollResult:
        """
        Poll, and for a pending draft ask the provider for the session status.

        A terminal answer goes through the same signal path as a webhook.
        Provider failures leave the draft pending.
        """
        result = await self.poll_status(draft_id)
        if not result.is_pending or self.provider is None:
            return result

        draft = await self.storage.drafts.get(draft_id)
        if draft is None or not draft.provider_session_id:
            return result
        session_id = draft.provider_session_id

        try:
            session = await asyncio.wait_for(
                self.provider.get_session(session_id),
                timeout=self.config.provider_timeout_seconds,
            )
        except (ProviderUnavailableError, TimeoutError) as e:
            logger.warning(f"Could not verify session {session_id} with provider: {e!r}")
            return result

        outcome = session.outcome
        if outcome is None:
            return result

        signal = ProviderConfirmationSignal(
            provider_session_id=session_id,
            outcome=outcome,
            event_id=f"{session_id}:{session.status}",
            raw={"order_status": session.status, "source": "verify"},
        )
        await self.handle_provider_callback(signal)
        return await self.poll_status(draft_id)

    # =========================================================================
    # Refunds
    # =========================================================================

    async def refund_booking(
        self,
        booking_id: str,
        amount: Decimal | None = None,
        comment: str | None = None,
    ) -> ConfirmedBooking:
        """
        Refund a confirmed booking through its provider session.

        Without an amount the whole remaining balance is refunded. Once the
        refunds reach the booking total the payment is marked refunded and
        the booking cancelled; until then it is partially refunded and the
        booking stays confirmed.

        Raises:
            BookingNotFoundError: Unknown booking id
            ValidationError: Nothing left to refund, or a bad amount
            ProviderUnavailableError: The provider failed or timed out
        """
        booking = await self.storage.bookings.get(booking_id)
        if booking is None:
            raise BookingNotFoundError(booking_id)

        with booking_scope(draft_id=booking.source_draft_id, booking_id=booking_id):
            if booking.payment_status not in (
                PaymentStatus.PAID,
                PaymentStatus.PARTIALLY_REFUNDED,
            ):
                msg = f"Booking {booking_id} is {booking.payment_status.value}, nothing to refund"
                raise ValidationError(msg, field="payment_status")
            if self.provider is None or not booking.provider_session_id:
                msg = f"Booking {booking_id} has no provider session to refund"
                raise ValidationError(msg, field="provider_session_id")

            remaining = booking.refundable_amount
            amount = remaining if amount is None else Decimal(amount)
            if amount <= 0 or amount > remaining:
                msg = f"Refund amount must be between 0 and {remaining}"
                raise ValidationError(msg, field="amount")

            try:
                await asyncio.wait_for(
                    self.provider.refund(
                        booking.provider_session_id,
                        amount,
                        currency=booking.currency,
                        comment=comment,
                    ),
                    timeout=self.config.provider_timeout_seconds,
                )
            except TimeoutError as e:
                REFUNDS.labels(result="provider_unavailable").inc()
                msg = f"Refund for booking {booking_id} timed out"
                raise ProviderUnavailableError(msg, provider=self.provider.name, cause=e) from e
            except ProviderUnavailableError:
                REFUNDS.labels(result="provider_unavailable").inc()
                raise

            refunded = booking.refunded_amount + amount
            if refunded == booking.total_price:
                updated = await self.storage.bookings.update_payment_status(
                    booking_id,
                    PaymentStatus.REFUNDED,
                    BookingStatus.CANCELLED,
                    refunded_amount=refunded,
                )
                REFUNDS.labels(result="full").inc()
            else:
                updated = await self.storage.bookings.update_payment_status(
                    booking_id, PaymentStatus.PARTIALLY_REFUNDED, refunded_amount=refunded
                )
                REFUNDS.labels(result="partial").inc()

            logger.info(
                f"Refunded {amount} {booking.currency} on booking {booking_id} "
                f"({booking.booking_reference})"
            )
            return updated
