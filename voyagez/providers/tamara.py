"""
Tamara-style buy-now-pay-later provider over REST.

Endpoints used:
    POST /checkout/sessions          open a checkout session
    GET  /checkout/sessions/{id}     session status
    POST /orders/{id}/cancel         cancel an unfinished order
    POST /orders/{id}/authorise      acknowledge an approved order
    POST /orders/{id}/capture        capture an authorised order
    POST /orders/{id}/refund         refund a captured order
    GET  /checkout/payment-options   instalment plans for an amount

Authentication is a bearer API token. Webhooks are signed with a hex
HMAC-SHA256 of the raw body keyed by the notification token and sent in the
``Tamara-Signature`` header.
"""

from __future__ import annotations

from decimal import Decimal
from typing import Any

import httpx

from voyagez.core.exceptions import ProviderUnavailableError, ValidationError
from voyagez.core.logger import get_logger
from voyagez.core.types import ProviderConfirmationSignal
from voyagez.providers.base import (
    CheckoutRequest,
    CheckoutSession,
    PaymentProvider,
    outcome_for_status,
)

logger = get_logger(__name__)

SANDBOX_URL = "https://api-sandbox.tamara.co"
SIGNATURE_HEADER = "Tamara-Signature"


def _money(amount: Decimal, currency: str) -> dict[str, str]:
    return {"amount": f"{amount:.2f}", "currency": currency}


class TamaraProvider(PaymentProvider):
    """
    HTTP client for a Tamara-compatible checkout API.

    Example:
        >>> provider = TamaraProvider(api_token="...", notification_token="...")
        >>> session = await provider.create_session(request)
        >>> session.checkout_url
        'https://checkout-sandbox.tamara.co/...'
    """

    name = "tamara"

    def __init__(
        self,
        api_token: str | None = None,
        notification_token: str | None = None,
        base_url: str = SANDBOX_URL,
        timeout: float = 10.0,
        instalments: int = 3,
        client: httpx.AsyncClient | None = None,
    ):
        super().__init__(notification_token=notification_token)
        self.base_url = base_url
        self.instalments = instalments
        self._client = client or httpx.AsyncClient(base_url=base_url, timeout=timeout)
        if api_token:
            self._client.headers["Authorization"] = f"Bearer {api_token}"

    async def _request(self, method: str, path: str, **kwargs) -> dict[str, Any]:
        try:
            response = await self._client.request(method, path, **kwargs)
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            msg = f"Tamara {method} {path} returned {e.response.status_code}"
            logger.warning(f"{msg}: {e.response.text[:500]}")
            raise ProviderUnavailableError(msg, provider=self.name, cause=e) from e
        except httpx.HTTPError as e:
            msg = f"Tamara {method} {path} failed: {type(e).__name__}"
            logger.warning(msg)
            raise ProviderUnavailableError(msg, provider=self.name, cause=e) from e

        if not response.content:
            return {}
        try:
            return response.json()
        except ValueError as e:
            msg = f"Tamara {method} {path} returned a non-JSON body"
            raise ProviderUnavailableError(msg, provider=self.name, cause=e) from e

    def _order_payload(self, request: CheckoutRequest) -> dict[str, Any]:
        consumer = request.consumer
        address = {
            "first_name": consumer["first_name"],
            "last_name": consumer["last_name"],
            "line1": "Travel Package Booking",
            "city": "Riyadh",
            "country_code": request.country_code,
        }
        total = _money(request.amount, request.currency)
        return {
            "order_reference_id": request.reference_id,
            "order_number": request.order_number,
            "total_amount": total,
            "description": request.description[:255],
            "country_code": request.country_code,
            "payment_type": "PAY_BY_INSTALMENTS",
            "instalments": self.instalments,
            "locale": request.locale,
            "items": [
                {
                    "reference_id": request.item_reference[:50],
                    "type": "Digital",
                    "name": request.description[:255],
                    "sku": request.item_reference[:50],
                    "quantity": 1,
                    "unit_price": total,
                    "total_amount": total,
                }
            ],
            "consumer": consumer,
            "shipping_address": address,
            "billing_address": address,
            "merchant_url": {
                "success": request.merchant_urls.success,
                "failure": request.merchant_urls.failure,
                "cancel": request.merchant_urls.cancel,
                "notification": request.merchant_urls.notification,
            },
            "platform": "web",
            "is_mobile": False,
        }

    async def create_session(self, request: CheckoutRequest) -> CheckoutSession:
        data = await self._request("POST", "/checkout/sessions", json=self._order_payload(request))
        order_id = data.get("order_id")
        if not order_id:
            msg = "Tamara checkout response has no order_id"
            raise ProviderUnavailableError(msg, provider=self.name)
        return CheckoutSession(
            session_id=order_id,
            checkout_url=data.get("checkout_url"),
            status=data.get("status", "new"),
            raw=data,
        )

    async def get_session(self, session_id: str) -> CheckoutSession:
        data = await self._request("GET", f"/checkout/sessions/{session_id}")
        return CheckoutSession(
            session_id=session_id,
            checkout_url=data.get("checkout_url"),
            status=data.get("status") or data.get("order_status") or "new",
            raw=data,
        )

    async def cancel_session(
        self, session_id: str, amount: Decimal | None = None, currency: str = "SAR"
    ) -> None:
        body: dict[str, Any] = {"comment": "Order cancelled by merchant"}
        if amount is not None:
            body["total_amount"] = _money(amount, currency)
        await self._request("POST", f"/orders/{session_id}/cancel", json=body)

    async def refund(
        self,
        session_id: str,
        amount: Decimal,
        currency: str = "SAR",
        comment: str | None = None,
    ) -> dict[str, Any]:
        body = {
            "total_amount": _money(amount, currency),
            "comment": comment or "Refund processed by merchant",
        }
        return await self._request("POST", f"/orders/{session_id}/refund", json=body)

    async def authorise_order(self, order_id: str) -> dict[str, Any]:
        """Acknowledge an approved order so it can be captured."""
        return await self._request("POST", f"/orders/{order_id}/authorise")

    async def capture_order(
        self, order_id: str, amount: Decimal | None = None, currency: str = "SAR"
    ) -> dict[str, Any]:
        """Capture an authorised order, in full unless an amount is given."""
        body: dict[str, Any] = {}
        if amount is not None:
            body["total_amount"] = _money(amount, currency)
        return await self._request("POST", f"/orders/{order_id}/capture", json=body)

    async def get_payment_options(self, amount: Decimal, currency: str = "SAR") -> dict[str, Any]:
        """Available instalment plans for an amount."""
        return await self._request(
            "GET",
            "/checkout/payment-options",
            params={"amount": f"{amount:.2f}", "currency": currency},
        )

    def parse_webhook(self, payload: dict[str, Any]) -> ProviderConfirmationSignal | None:
        order_id = payload.get("order_id")
        status = payload.get("order_status")
        if not order_id or not status:
            msg = "Webhook payload needs order_id and order_status"
            raise ValidationError(msg, field="order_id" if not order_id else "order_status")

        outcome = outcome_for_status(status)
        if outcome is None:
            logger.info(f"Ignoring Tamara notification for {order_id} with status {status}")
            return None

        # Redeliveries of the same status share an event id
        event_id = payload.get("event_id") or payload.get("notification_id") or f"{order_id}:{status}"
        return ProviderConfirmationSignal(
            provider_session_id=order_id,
            outcome=outcome,
            event_id=str(event_id),
            raw=payload,
        )

    async def close(self) -> None:
        await self._client.aclose()
