"""
Tests for payment providers: the Tamara REST client and the in-memory fake.
"""

import json
from datetime import date
from decimal import Decimal

import httpx
import pytest

from voyagez.core.config import BookingConfig
from voyagez.core.exceptions import ProviderUnavailableError, SignatureError, ValidationError
from voyagez.core.types import (
    DateRange,
    DraftBooking,
    Occupancy,
    PackageRates,
    Selection,
    SignalOutcome,
    Traveler,
)
from voyagez.providers import (
    CheckoutRequest,
    InMemoryPaymentProvider,
    MerchantUrls,
    TamaraProvider,
    create_provider,
    hmac_signature,
    outcome_for_status,
)


def _draft() -> DraftBooking:
    return DraftBooking(
        selection=Selection(
            package_id="PKG-UMRAH-7",
            date_range=DateRange(date(2026, 12, 1), date(2026, 12, 8)),
            occupancy=Occupancy(adults=1),
            rates=PackageRates(adult=Decimal("2500"), title="Umrah 7 nights"),
        ),
        travelers=[
            Traveler(
                "Sara",
                "Alharbi",
                date(1990, 4, 2),
                email="sara@example.com",
                phone="+966501234567",
            )
        ],
    )


def _request(draft: DraftBooking | None = None) -> CheckoutRequest:
    draft = draft or _draft()
    return CheckoutRequest.from_draft(
        draft,
        Decimal("2500"),
        MerchantUrls.for_draft("https://shop.example.com", draft.draft_id, prefix="/booking"),
    )


def _tamara(handler, notification_token: str | None = "notify-secret") -> TamaraProvider:
    client = httpx.AsyncClient(
        base_url="https://api-sandbox.tamara.co", transport=httpx.MockTransport(handler)
    )
    return TamaraProvider(api_token="tok", notification_token=notification_token, client=client)


class TestCheckoutRequest:
    """Tests for building the provider request from a draft."""

    def test_from_draft(self):
        draft = _draft()
        request = _request(draft)

        assert request.reference_id == draft.draft_id
        assert request.order_number == draft.booking_number
        assert request.consumer["email"] == "sara@example.com"
        assert request.consumer["date_of_birth"] == "1990-04-02"
        assert request.description == "Travel package booking - Umrah 7 nights"
        assert request.item_reference == "PKG-UMRAH-7"

    def test_merchant_urls_carry_draft_id(self):
        urls = MerchantUrls.for_draft("https://shop.example.com/", "d-1", prefix="/booking")
        assert urls.success == "https://shop.example.com/booking/redirect/success?draft_id=d-1"
        assert urls.notification == "https://shop.example.com/booking/webhooks/provider"

    def test_needs_lead_contact(self):
        draft = _draft()
        draft.travelers[0].email = None
        with pytest.raises(ValidationError):
            _request(draft)


class TestStatusMapping:
    @pytest.mark.parametrize(
        ("status", "outcome"),
        [
            ("approved", SignalOutcome.APPROVED),
            ("fully_captured", SignalOutcome.APPROVED),
            ("DECLINED", SignalOutcome.DECLINED),
            ("canceled", SignalOutcome.CANCELLED),
            ("expired", SignalOutcome.CANCELLED),
            ("new", None),
            (None, None),
        ],
    )
    def test_outcome_for_status(self, status, outcome):
        assert outcome_for_status(status) is outcome


class TestTamaraProvider:
    """Tests for the Tamara REST client over a mocked transport."""

    @pytest.mark.asyncio
    async def test_create_session(self):
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["path"] = request.url.path
            seen["auth"] = request.headers.get("Authorization")
            seen["body"] = json.loads(request.content)
            return httpx.Response(
                200,
                json={
                    "order_id": "ord-123",
                    "checkout_id": "chk-9",
                    "checkout_url": "https://checkout-sandbox.tamara.co/ord-123",
                    "status": "new",
                },
            )

        provider = _tamara(handler)
        session = await provider.create_session(_request())

        assert session.session_id == "ord-123"
        assert session.checkout_url.endswith("ord-123")
        assert seen["path"] == "/checkout/sessions"
        assert seen["auth"] == "Bearer tok"

        body = seen["body"]
        assert body["total_amount"] == {"amount": "2500.00", "currency": "SAR"}
        assert body["payment_type"] == "PAY_BY_INSTALMENTS"
        assert body["instalments"] == 3
        assert body["items"][0]["sku"] == "PKG-UMRAH-7"
        assert body["merchant_url"]["notification"].endswith("/booking/webhooks/provider")
        await provider.close()

    @pytest.mark.asyncio
    async def test_create_session_without_order_id(self):
        provider = _tamara(lambda request: httpx.Response(200, json={"checkout_url": "x"}))
        with pytest.raises(ProviderUnavailableError):
            await provider.create_session(_request())

    @pytest.mark.asyncio
    async def test_http_error_is_provider_unavailable(self):
        provider = _tamara(lambda request: httpx.Response(503, text="maintenance"))
        with pytest.raises(ProviderUnavailableError) as exc_info:
            await provider.create_session(_request())
        assert "503" in str(exc_info.value)

    @pytest.mark.asyncio
    async def test_transport_error_is_provider_unavailable(self):
        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        provider = _tamara(handler)
        with pytest.raises(ProviderUnavailableError):
            await provider.get_session("ord-1")

    @pytest.mark.asyncio
    async def test_get_session_reads_order_status(self):
        provider = _tamara(
            lambda request: httpx.Response(200, json={"order_status": "approved"})
        )
        session = await provider.get_session("ord-1")
        assert session.status == "approved"
        assert session.outcome == SignalOutcome.APPROVED

    @pytest.mark.asyncio
    async def test_cancel_session(self):
        seen = {}

        def handler(request):
            seen["path"] = request.url.path
            seen["body"] = json.loads(request.content)
            return httpx.Response(200, json={})

        provider = _tamara(handler)
        await provider.cancel_session("ord-1", Decimal("99.5"), "SAR")

        assert seen["path"] == "/orders/ord-1/cancel"
        assert seen["body"]["total_amount"] == {"amount": "99.50", "currency": "SAR"}

    @pytest.mark.asyncio
    async def test_payment_options(self):
        seen = {}

        def handler(request):
            seen["params"] = dict(request.url.params)
            return httpx.Response(200, json={"available_payment_labels": []})

        provider = _tamara(handler)
        await provider.get_payment_options(Decimal("1200"))
        assert seen["params"] == {"amount": "1200.00", "currency": "SAR"}

    @pytest.mark.asyncio
    async def test_own_client_is_authenticated(self):
        provider = TamaraProvider(api_token="tok", base_url="https://tamara.example.test")
        try:
            assert provider._client.headers["Authorization"] == "Bearer tok"
            assert str(provider._client.base_url).startswith("https://tamara.example.test")
        finally:
            await provider.close()

    @pytest.mark.asyncio
    async def test_injected_client_without_token_is_untouched(self):
        seen = {}

        def handler(request):
            seen["auth"] = request.headers.get("Authorization")
            return httpx.Response(200, json={"status": "new"})

        client = httpx.AsyncClient(
            base_url="https://api-sandbox.tamara.co", transport=httpx.MockTransport(handler)
        )
        provider = TamaraProvider(client=client)
        await provider.get_session("ord-1")
        assert seen["auth"] is None

    @pytest.mark.asyncio
    async def test_refund(self):
        seen = {}

        def handler(request):
            seen["path"] = request.url.path
            seen["auth"] = request.headers.get("Authorization")
            seen["body"] = json.loads(request.content)
            return httpx.Response(200, json={"refund_id": "rfd-1"})

        provider = _tamara(handler)
        data = await provider.refund("ord-1", Decimal("500"))

        assert data == {"refund_id": "rfd-1"}
        assert seen["path"] == "/orders/ord-1/refund"
        assert seen["auth"] == "Bearer tok"
        assert seen["body"] == {
            "total_amount": {"amount": "500.00", "currency": "SAR"},
            "comment": "Refund processed by merchant",
        }

    @pytest.mark.asyncio
    async def test_refund_rejected_is_provider_unavailable(self):
        provider = _tamara(lambda request: httpx.Response(400, json={"message": "too much"}))
        with pytest.raises(ProviderUnavailableError):
            await provider.refund("ord-1", Decimal("99999"), comment="Customer request")

    @pytest.mark.asyncio
    async def test_authorise_and_capture(self):
        calls = []

        def handler(request):
            calls.append((request.url.path, request.content))
            return httpx.Response(200, json={"order_id": "ord-1"})

        provider = _tamara(handler)
        await provider.authorise_order("ord-1")
        await provider.capture_order("ord-1", Decimal("2500"))
        await provider.capture_order("ord-1")

        assert [path for path, _ in calls] == [
            "/orders/ord-1/authorise",
            "/orders/ord-1/capture",
            "/orders/ord-1/capture",
        ]
        assert json.loads(calls[1][1]) == {
            "total_amount": {"amount": "2500.00", "currency": "SAR"}
        }
        assert json.loads(calls[2][1]) == {}

    def test_parse_webhook(self):
        provider = _tamara(lambda request: httpx.Response(200))
        signal = provider.parse_webhook({"order_id": "ord-1", "order_status": "approved"})

        assert signal.provider_session_id == "ord-1"
        assert signal.outcome == SignalOutcome.APPROVED
        assert signal.event_id == "ord-1:approved"

    def test_parse_webhook_prefers_event_id(self):
        provider = _tamara(lambda request: httpx.Response(200))
        signal = provider.parse_webhook(
            {"order_id": "ord-1", "order_status": "declined", "event_id": "evt-7"}
        )
        assert signal.event_id == "evt-7"
        assert signal.outcome == SignalOutcome.DECLINED

    def test_parse_webhook_ignores_non_terminal(self):
        provider = _tamara(lambda request: httpx.Response(200))
        assert provider.parse_webhook({"order_id": "ord-1", "order_status": "new"}) is None

    def test_parse_webhook_missing_fields(self):
        provider = _tamara(lambda request: httpx.Response(200))
        with pytest.raises(ValidationError) as exc_info:
            provider.parse_webhook({"order_id": "ord-1"})
        assert exc_info.value.field == "order_status"


class TestSignatures:
    """Tests for webhook signature checks."""

    def test_valid_signature(self):
        provider = _tamara(lambda request: httpx.Response(200))
        body = b'{"order_id": "ord-1"}'
        provider.verify_signature(body, hmac_signature("notify-secret", body))

    def test_signature_mismatch(self):
        provider = _tamara(lambda request: httpx.Response(200))
        with pytest.raises(SignatureError):
            provider.verify_signature(b"{}", hmac_signature("other-secret", b"{}"))

    def test_missing_signature(self):
        provider = _tamara(lambda request: httpx.Response(200))
        with pytest.raises(SignatureError):
            provider.verify_signature(b"{}", None)

    def test_unconfigured_token_rejects_everything(self):
        provider = _tamara(lambda request: httpx.Response(200), notification_token=None)
        with pytest.raises(SignatureError):
            provider.verify_signature(b"{}", hmac_signature("", b"{}"))


class TestInMemoryPaymentProvider:
    @pytest.mark.asyncio
    async def test_session_lifecycle(self):
        provider = InMemoryPaymentProvider()
        session = await provider.create_session(_request())

        assert session.checkout_url.endswith(session.session_id)
        provider.set_status(session.session_id, "approved")
        assert (await provider.get_session(session.session_id)).outcome == SignalOutcome.APPROVED

        await provider.cancel_session(session.session_id)
        assert provider.cancelled == [session.session_id]

    @pytest.mark.asyncio
    async def test_refund_recorded(self):
        provider = InMemoryPaymentProvider()
        data = await provider.refund("chk-1", Decimal("100"))

        assert provider.refunds == [("chk-1", Decimal("100"))]
        assert data["order_id"] == "chk-1"

    @pytest.mark.asyncio
    async def test_injected_failure(self):
        provider = InMemoryPaymentProvider()
        provider.fail_create = ProviderUnavailableError("down", provider="memory")
        with pytest.raises(ProviderUnavailableError):
            await provider.create_session(_request())

    def test_webhook_body_round_trip(self):
        provider = InMemoryPaymentProvider(notification_token="secret")
        body, signature = provider.webhook_body("chk-1", "approved", event_id="evt-1")

        provider.verify_signature(body, signature)
        signal = provider.parse_webhook(json.loads(body))
        assert signal.event_id == "evt-1"
        assert signal.outcome == SignalOutcome.APPROVED


class TestCreateProvider:
    def test_memory(self):
        provider = create_provider(BookingConfig(provider_name="memory"))
        assert isinstance(provider, InMemoryPaymentProvider)

    def test_tamara(self):
        provider = create_provider(BookingConfig(provider_name="tamara"))
        assert isinstance(provider, TamaraProvider)

    def test_unknown(self):
        with pytest.raises(ValueError):
            create_provider(BookingConfig(provider_name="paypal"))
