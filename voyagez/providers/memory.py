"""
In-memory payment provider for tests and local development.

Sessions live in a dictionary. Failures and latency can be injected to
exercise the handoff's timeout and rollback paths.
"""

from __future__ import annotations

import asyncio
import json
import uuid
from decimal import Decimal
from typing import Any

from voyagez.core.exceptions import ProviderUnavailableError, ValidationError
from voyagez.core.types import ProviderConfirmationSignal, SignalOutcome
from voyagez.providers.base import (
    CheckoutRequest,
    CheckoutSession,
    PaymentProvider,
    hmac_signature,
    outcome_for_status,
)


class InMemoryPaymentProvider(PaymentProvider):
    """
    Fake provider.

    Usage:
        >>> provider = InMemoryPaymentProvider(notification_token="secret")
        >>> session = await provider.create_session(request)
        >>> signal = provider.signal_for(session.session_id, SignalOutcome.APPROVED)
    """

    name = "memory"

    def __init__(
        self,
        notification_token: str | None = "test-notification-token",
        checkout_base_url: str = "https://checkout.example.test",
    ):
        super().__init__(notification_token=notification_token)
        self.checkout_base_url = checkout_base_url
        self.sessions: dict[str, CheckoutSession] = {}
        self.requests: list[CheckoutRequest] = []
        self.cancelled: list[str] = []
        self.fail_create: Exception | None = None
        self.fail_cancel: Exception | None = None
        self.refunds: list[tuple[str, Decimal]] = []
        self.fail_refund: Exception | None = None
        self.create_delay: float = 0.0

    async def create_session(self, request: CheckoutRequest) -> CheckoutSession:
        if self.create_delay:
            await asyncio.sleep(self.create_delay)
        if self.fail_create is not None:
            raise self.fail_create

        session_id = f"chk-{uuid.uuid4().hex[:12]}"
        session = CheckoutSession(
            session_id=session_id,
            checkout_url=f"{self.checkout_base_url}/{session_id}",
            status="new",
            raw={"order_reference_id": request.reference_id, "amount": str(request.amount)},
        )
        self.sessions[session_id] = session
        self.requests.append(request)
        return session

    async def get_session(self, session_id: str) -> CheckoutSession:
        session = self.sessions.get(session_id)
        if session is None:
            msg = f"Unknown session {session_id}"
            raise ProviderUnavailableError(msg, provider=self.name)
        return session

    async def cancel_session(
        self, session_id: str, amount: Decimal | None = None, currency: str = "SAR"
    ) -> None:
        if self.fail_cancel is not None:
            raise self.fail_cancel
        self.cancelled.append(session_id)
        if session_id in self.sessions:
            self.sessions[session_id].status = "canceled"

    async def refund(
        self,
        session_id: str,
        amount: Decimal,
        currency: str = "SAR",
        comment: str | None = None,
    ) -> dict[str, Any]:
        if self.fail_refund is not None:
            raise self.fail_refund
        self.refunds.append((session_id, amount))
        return {"order_id": session_id, "refund_id": f"rfd-{uuid.uuid4().hex[:12]}"}

    def set_status(self, session_id: str, status: str) -> None:
        """Simulate the customer finishing (or abandoning) checkout."""
        self.sessions[session_id].status = status

    def parse_webhook(self, payload: dict[str, Any]) -> ProviderConfirmationSignal | None:
        session_id = payload.get("session_id")
        status = payload.get("status")
        if not session_id or not status:
            msg = "Webhook payload needs session_id and status"
            raise ValidationError(msg, field="session_id")
        outcome = outcome_for_status(status)
        if outcome is None:
            return None
        return ProviderConfirmationSignal(
            provider_session_id=session_id,
            outcome=outcome,
            event_id=payload.get("event_id") or f"{session_id}:{status}",
            raw=payload,
        )

    def webhook_body(
        self, session_id: str, status: str, event_id: str | None = None
    ) -> tuple[bytes, str]:
        """Signed webhook body and signature, as the provider would send them."""
        payload = {"session_id": session_id, "status": status}
        if event_id:
            payload["event_id"] = event_id
        body = json.dumps(payload).encode()
        return body, hmac_signature(self._notification_token or "", body)

    @staticmethod
    def signal_for(
        session_id: str, outcome: SignalOutcome, event_id: str | None = None
    ) -> ProviderConfirmationSignal:
        return ProviderConfirmationSignal(
            provider_session_id=session_id,
            outcome=outcome,
            event_id=event_id or f"evt-{uuid.uuid4().hex[:12]}",
        )
