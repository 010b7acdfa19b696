"""
Payment provider interface.

A provider opens a checkout session for a draft, reports the session's
status on request, and delivers signed webhook notifications that are
turned into :class:`ProviderConfirmationSignal` objects.
"""

from __future__ import annotations

import hashlib
import hmac
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any
from urllib.parse import urlencode

from voyagez.core.exceptions import SignatureError, ValidationError
from voyagez.core.types import DraftBooking, ProviderConfirmationSignal, SignalOutcome


@dataclass
class MerchantUrls:
    """Browser redirect targets and server notification URL for one session."""

    success: str
    failure: str
    cancel: str
    notification: str

    @classmethod
    def for_draft(cls, base_url: str, draft_id: str, prefix: str = "") -> MerchantUrls:
        base = base_url.rstrip("/") + prefix
        query = urlencode({"draft_id": draft_id})
        return cls(
            success=f"{base}/redirect/success?{query}",
            failure=f"{base}/redirect/failure?{query}",
            cancel=f"{base}/redirect/cancel?{query}",
            notification=f"{base}/webhooks/provider",
        )


@dataclass
class CheckoutRequest:
    """
    Everything a provider needs to open a checkout session.

    Attributes:
        reference_id: Our draft id, echoed back by the provider
        order_number: Human-facing draft number
        amount: Final price fixed at handoff
        consumer: Lead traveler's name, email, phone and birth date
    """

    reference_id: str
    order_number: str
    amount: Decimal
    currency: str
    description: str
    consumer: dict[str, Any]
    merchant_urls: MerchantUrls
    item_reference: str
    country_code: str = "SA"
    locale: str = "en_US"

    @classmethod
    def from_draft(
        cls,
        draft: DraftBooking,
        amount: Decimal,
        merchant_urls: MerchantUrls,
        country_code: str = "SA",
        locale: str = "en_US",
    ) -> CheckoutRequest:
        lead = draft.lead_traveler
        if draft.selection is None or lead is None or draft.contact is None:
            msg = "Draft needs a selection and a lead adult with email and phone"
            raise ValidationError(msg, field="travelers")

        title = (draft.selection.rates.title if draft.selection.rates else "") or "Travel Package"
        return cls(
            reference_id=draft.draft_id,
            order_number=draft.booking_number,
            amount=amount,
            currency=draft.currency,
            description=f"Travel package booking - {title}",
            consumer={
                "first_name": lead.first_name,
                "last_name": lead.last_name,
                "email": lead.email,
                "phone_number": lead.phone,
                "date_of_birth": lead.date_of_birth.isoformat(),
            },
            merchant_urls=merchant_urls,
            item_reference=draft.selection.package_id,
            country_code=country_code,
            locale=locale,
        )


@dataclass
class CheckoutSession:
    """Provider-side session handle."""

    session_id: str
    checkout_url: str | None = None
    status: str = "new"
    raw: dict[str, Any] = field(default_factory=dict)

    @property
    def outcome(self) -> SignalOutcome | None:
        """Terminal outcome of the session, or None while it is still open."""
        return outcome_for_status(self.status)


# Provider status -> confirmation outcome; anything else is still pending
_STATUS_OUTCOMES = {
    "approved": SignalOutcome.APPROVED,
    "authorised": SignalOutcome.APPROVED,
    "fully_captured": SignalOutcome.APPROVED,
    "declined": SignalOutcome.DECLINED,
    "canceled": SignalOutcome.CANCELLED,
    "cancelled": SignalOutcome.CANCELLED,
    "expired": SignalOutcome.CANCELLED,
}


def outcome_for_status(status: str | None) -> SignalOutcome | None:
    return _STATUS_OUTCOMES.get((status or "").lower())


def hmac_signature(secret: str, body: bytes) -> str:
    """Hex HMAC-SHA256 of the raw request body."""
    return hmac.new(secret.encode(), body, hashlib.sha256).hexdigest()


class PaymentProvider(ABC):
    """
    Common interface for payment providers.

    Implementations must not retry internally. Callers wrap every call in an
    explicit timeout and translate failures into ``ProviderUnavailableError``.
    """

    name = "provider"

    def __init__(self, notification_token: str | None = None):
        self._notification_token = notification_token

    @abstractmethod
    async def create_session(self, request: CheckoutRequest) -> CheckoutSession:
        """Open a checkout session and return its id and redirect URL."""
        ...

    @abstractmethod
    async def get_session(self, session_id: str) -> CheckoutSession:
        """Fetch the current status of a session."""
        ...

    @abstractmethod
    async def cancel_session(
        self, session_id: str, amount: Decimal | None = None, currency: str = "SAR"
    ) -> None:
        """Cancel a session that will not be completed."""
        ...

    @abstractmethod
    async def refund(
        self,
        session_id: str,
        amount: Decimal,
        currency: str = "SAR",
        comment: str | None = None,
    ) -> dict[str, Any]:
        """Refund all or part of a captured payment."""
        ...

    @abstractmethod
    def parse_webhook(self, payload: dict[str, Any]) -> ProviderConfirmationSignal | None:
        """
        Turn a webhook body into a confirmation signal.

        Returns:
            None for notifications that carry no terminal outcome

        Raises:
            ValidationError: If required fields are missing
        """
        ...

    def verify_signature(self, body: bytes, signature: str | None) -> None:
        """
        Check the webhook signature against the raw body.

        Raises:
            SignatureError: If no signing key is configured, or the signature
                is missing or does not match
        """
        if not self._notification_token:
            msg = f"No notification token configured for {self.name} webhooks"
            raise SignatureError(msg)
        if not signature:
            msg = "Missing webhook signature"
            raise SignatureError(msg)
        expected = hmac_signature(self._notification_token, body)
        if not hmac.compare_digest(expected, signature.strip().lower()):
            msg = "Webhook signature mismatch"
            raise SignatureError(msg)

    async def close(self) -> None:  # noqa: B027
        pass
