"""
FastAPI integration for Voyagez.

Provides:
- Router factory with the wizard, payment, webhook, polling, redirect,
  booking lookup and refund endpoints
- Exception handlers mapping lifecycle errors to HTTP status codes
- Middleware for correlation ID propagation
- App factory with a lifespan that opens and closes storage

Example:
    from voyagez.integrations.fastapi import create_booking_app

    app = create_booking_app(BookingService.from_config(BookingConfig.from_env()))
"""

from __future__ import annotations

import json
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from datetime import date
from decimal import Decimal

from fastapi import APIRouter, FastAPI, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from voyagez.core.exceptions import BookingNotFoundError, ValidationError, VoyagezError
from voyagez.core.logger import get_logger
from voyagez.core.types import PackageRates, Traveler, TravelerType
from voyagez.integrations._base import (
    CORRELATION_HEADER,
    BookingService,
    error_body,
    generate_correlation_id,
    http_status_for,
)
from voyagez.monitoring.logging import booking_scope
from voyagez.providers.tamara import SIGNATURE_HEADER
from voyagez.storage.core import StorageError
from voyagez.wizard import ContactStep, SelectionStep, TravelersStep

logger = get_logger(__name__)

__all__ = [
    "ContactStepIn",
    "RefundIn",
    "SelectionStepIn",
    "TravelersStepIn",
    "create_booking_app",
    "create_booking_router",
    "install_error_handlers",
]

REDIRECT_KINDS = ("success", "failure", "cancel")


# =============================================================================
# Request models
# =============================================================================


class SelectionStepIn(BaseModel):
    draft_id: str | None = None
    package_id: str
    start_date: date
    end_date: date
    adults: int = 1
    children: int = 0
    infants: int = 0
    adult_rate: Decimal | None = None
    child_rate: Decimal | None = None
    infant_rate: Decimal | None = None
    currency: str = "SAR"
    package_title: str = ""
    hotel_id: str | None = None

    def to_step(self) -> SelectionStep:
        rates = None
        if self.adult_rate is not None:
            rates = PackageRates(
                adult=self.adult_rate,
                child=self.child_rate,
                infant=self.infant_rate,
                currency=self.currency,
                title=self.package_title,
            )
        return SelectionStep(
            package_id=self.package_id,
            start_date=self.start_date,
            end_date=self.end_date,
            adults=self.adults,
            children=self.children,
            infants=self.infants,
            rates=rates,
            hotel_id=self.hotel_id,
        )


class TravelerIn(BaseModel):
    first_name: str
    last_name: str
    date_of_birth: date
    traveler_type: TravelerType = TravelerType.ADULT
    nationality: str | None = None
    passport_number: str | None = None
    email: str | None = None
    phone: str | None = None

    def to_traveler(self) -> Traveler:
        return Traveler(**self.model_dump())


class TravelersStepIn(BaseModel):
    draft_id: str | None = None
    travelers: list[TravelerIn]

    def to_step(self) -> TravelersStep:
        return TravelersStep(travelers=[t.to_traveler() for t in self.travelers])


class ContactStepIn(BaseModel):
    draft_id: str | None = None
    email: str
    phone: str
    special_requests: str | None = None

    def to_step(self) -> ContactStep:
        return ContactStep(
            email=self.email, phone=self.phone, special_requests=self.special_requests
        )


class RefundIn(BaseModel):
    amount: Decimal | None = None
    comment: str | None = None


# =============================================================================
# Router
# =============================================================================


def create_booking_router(service: BookingService, url_prefix: str = "") -> APIRouter:
    """
    Create a FastAPI router for the booking lifecycle.

    Lifecycle errors propagate to the handlers registered by
    :func:`install_error_handlers`.

    Args:
        service: Wired booking components
        url_prefix: URL prefix for all endpoints

    Returns:
        APIRouter instance

    Example:
        app = FastAPI()
        install_error_handlers(app)
        app.include_router(create_booking_router(service, "/api"))
    """
    router = APIRouter(prefix=url_prefix, tags=["bookings"])

    @router.post("/drafts/steps/selection")
    async def save_selection(body: SelectionStepIn):
        draft_id = await service.wizard.save_step(body.draft_id, body.to_step())
        return {"draft_id": draft_id}

    @router.post("/drafts/steps/travelers")
    async def save_travelers(body: TravelersStepIn):
        draft_id = await service.wizard.save_step(body.draft_id, body.to_step())
        return {"draft_id": draft_id}

    @router.post("/drafts/steps/contact")
    async def save_contact(body: ContactStepIn):
        draft_id = await service.wizard.save_step(body.draft_id, body.to_step())
        return {"draft_id": draft_id}

    @router.get("/drafts/{draft_id}")
    async def get_draft(draft_id: str):
        draft = await service.wizard.get_draft(draft_id)
        return draft.to_dict()

    @router.post("/drafts/{draft_id}/payment")
    async def initiate_payment(draft_id: str):
        redirect_url = await service.handoff.initiate_payment(draft_id)
        return {"draft_id": draft_id, "redirect_url": redirect_url}

    @router.get("/drafts/{draft_id}/status")
    async def poll_status(draft_id: str):
        result = await service.status(draft_id)
        return result.to_dict()

    @router.post("/webhooks/provider")
    async def provider_webhook(request: Request):
        """
        Provider notification. Signed with HMAC-SHA256 over the raw body.

        Redeliveries are safe: a signal already applied is acknowledged
        again without side effects.
        """
        body = await request.body()
        service.provider.verify_signature(body, request.headers.get(SIGNATURE_HEADER))

        try:
            payload = json.loads(body)
        except ValueError as e:
            msg = "Webhook body is not valid JSON"
            raise ValidationError(msg) from e
        if not isinstance(payload, dict):
            msg = "Webhook body must be a JSON object"
            raise ValidationError(msg)

        signal = service.provider.parse_webhook(payload)
        if signal is None:
            logger.debug("Webhook without terminal outcome acknowledged")
            return {"status": "ignored"}

        result = await service.reconciler.handle_provider_callback(signal)
        return result.to_dict()

    @router.get("/redirect/{kind}")
    async def browser_redirect(kind: str, draft_id: str):
        """Browser lands here after checkout. Carries no trust; only reads."""
        if kind not in REDIRECT_KINDS:
            return JSONResponse(status_code=404, content={"error": "NotFound", "kind": kind})
        result = await service.status(draft_id)
        return {"redirect": kind, **result.to_dict()}

    @router.get("/bookings/{booking_id}")
    async def get_booking(booking_id: str):
        booking = await service.storage.bookings.get(booking_id)
        if booking is None:
            raise BookingNotFoundError(booking_id)
        return booking.to_dict()

    @router.post("/bookings/{booking_id}/refund")
    async def refund_booking(booking_id: str, body: RefundIn | None = None):
        body = body or RefundIn()
        booking = await service.reconciler.refund_booking(
            booking_id, amount=body.amount, comment=body.comment
        )
        return booking.to_dict()

    return router


def install_error_handlers(app: FastAPI) -> None:
    """Translate lifecycle and storage errors into JSON error responses."""

    async def handle(request: Request, exc: Exception) -> JSONResponse:
        status_code = http_status_for(exc)
        if status_code >= 500:
            logger.error(f"{request.method} {request.url.path} failed: {exc}")
        return JSONResponse(status_code=status_code, content=error_body(exc))

    app.add_exception_handler(VoyagezError, handle)
    app.add_exception_handler(StorageError, handle)


def create_booking_app(service: BookingService, url_prefix: str = "") -> FastAPI:
    """
    Build a FastAPI app serving the booking router.

    Storage is initialized on startup and closed, together with the
    provider client, on shutdown.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        await service.startup()
        yield
        await service.shutdown()

    app = FastAPI(title="voyagez", lifespan=lifespan)
    install_error_handlers(app)
    app.include_router(create_booking_router(service, url_prefix))

    @app.middleware("http")
    async def correlation_middleware(request: Request, call_next):
        correlation_id = request.headers.get(CORRELATION_HEADER) or generate_correlation_id()
        with booking_scope(correlation_id=correlation_id):
            response = await call_next(request)
        response.headers[CORRELATION_HEADER] = correlation_id
        return response

    @app.get("/health")
    async def health():
        result = await service.storage.health_check()
        status_code = 200 if result.is_healthy else 503
        return JSONResponse(status_code=status_code, content=result.to_dict())

    return app
