"""
Draft State Machine - Manages draft booking lifecycle transitions.

Ensures drafts transition through legal states only and provides a hook
for metrics and logging. Storage backends apply the same table as
compare-and-set guards, so an illegal transition is rejected loudly
rather than silently overwriting status.

Valid Transitions:
    COLLECTING → AWAITING_PAYMENT (via hand_off)
    COLLECTING → EXPIRED (via expire)
    AWAITING_PAYMENT → PROMOTED (via promote)
    AWAITING_PAYMENT → CANCELLED (via cancel)
    AWAITING_PAYMENT → EXPIRED (via expire)
"""

from collections.abc import Callable
from datetime import UTC, datetime
from decimal import Decimal
from typing import Any

from voyagez.core.exceptions import InvalidStateTransitionError
from voyagez.core.types import DraftBooking, DraftStatus


class DraftStateMachine:
    """
    State machine for the draft booking lifecycle.

    Usage:
        >>> sm = DraftStateMachine()
        >>> draft = sm.hand_off(draft, session_id="chk-123", price=Decimal("2500"))
        >>> draft = sm.promote(draft, booking_id="bk-1")
    """

    # Valid transitions: from_status -> [to_status, ...]
    VALID_TRANSITIONS = {
        DraftStatus.COLLECTING: [DraftStatus.AWAITING_PAYMENT, DraftStatus.EXPIRED],
        DraftStatus.AWAITING_PAYMENT: [
            DraftStatus.PROMOTED,
            DraftStatus.CANCELLED,
            DraftStatus.EXPIRED,
        ],
        DraftStatus.PROMOTED: [],  # Terminal state
        DraftStatus.CANCELLED: [],  # Terminal state
        DraftStatus.EXPIRED: [],  # Terminal state
    }

    def __init__(
        self,
        on_transition: Callable[[DraftBooking, DraftStatus, DraftStatus], Any] | None = None,
    ):
        self._on_transition = on_transition

    @classmethod
    def sources_for(cls, target_status: DraftStatus) -> list[DraftStatus]:
        """States from which ``target_status`` can be reached."""
        return [src for src, targets in cls.VALID_TRANSITIONS.items() if target_status in targets]

    @classmethod
    def can_transition(cls, from_status: DraftStatus, to_status: DraftStatus) -> bool:
        return to_status in cls.VALID_TRANSITIONS.get(from_status, [])

    def _validate_transition(self, draft: DraftBooking, target_status: DraftStatus) -> None:
        if not self.can_transition(draft.status, target_status):
            raise InvalidStateTransitionError(draft.draft_id, draft.status, target_status)

    def _transition(self, draft: DraftBooking, target_status: DraftStatus) -> DraftBooking:
        old_status = draft.status
        self._validate_transition(draft, target_status)

        draft.status = target_status

        if self._on_transition:
            self._on_transition(draft, old_status, target_status)

        return draft

    def hand_off(
        self,
        draft: DraftBooking,
        session_id: str,
        price: Decimal,
        checkout_url: str | None = None,
    ) -> DraftBooking:
        """
        Record the provider session and freeze the draft for payment.

        Raises:
            InvalidStateTransitionError: If draft is not COLLECTING
        """
        draft = self._transition(draft, DraftStatus.AWAITING_PAYMENT)
        draft.provider_session_id = session_id
        draft.computed_price = price
        draft.checkout_url = checkout_url
        draft.last_touched_at = datetime.now(UTC)
        return draft

    def promote(self, draft: DraftBooking, booking_id: str) -> DraftBooking:
        """
        Raises:
            InvalidStateTransitionError: If draft is not AWAITING_PAYMENT
        """
        draft = self._transition(draft, DraftStatus.PROMOTED)
        draft.booking_id = booking_id
        return draft

    def cancel(self, draft: DraftBooking, reason: str | None = None) -> DraftBooking:
        """
        Raises:
            InvalidStateTransitionError: If draft is not AWAITING_PAYMENT
        """
        draft = self._transition(draft, DraftStatus.CANCELLED)
        draft.failure_reason = reason
        return draft

    def expire(self, draft: DraftBooking) -> DraftBooking:
        """
        Raises:
            InvalidStateTransitionError: If draft is already terminal
        """
        return self._transition(draft, DraftStatus.EXPIRED)
