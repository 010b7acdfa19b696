"""
Booking lifecycle types.

Drafts, confirmed bookings and provider confirmation signals, with the
enums that describe their lifecycles.

Draft lifecycle:

    ┌────────────┐  initiate_payment()  ┌──────────────────┐
    │ COLLECTING │ ───────────────────► │ AWAITING_PAYMENT │
    └─────┬──────┘                      └────────┬─────────┘
          │ hold window                          │
          ▼                       ┌──────────────┼──────────────┐
     ┌─────────┐                  ▼              ▼              ▼
     │ EXPIRED │ ◄──────── ┌──────────┐   ┌───────────┐   ┌─────────┐
     └─────────┘  hold     │ PROMOTED │   │ CANCELLED │   │ EXPIRED │
                  window   └──────────┘   └───────────┘   └─────────┘

Quick Start:
    >>> from voyagez.core.types import DraftBooking, Selection, DateRange, Occupancy
    >>>
    >>> draft = DraftBooking(
    ...     selection=Selection(
    ...         package_id="PKG-1",
    ...         date_range=DateRange(date(2026, 3, 1), date(2026, 3, 5)),
    ...         occupancy=Occupancy(adults=2),
    ...     ),
    ... )
"""

import uuid
from dataclasses import dataclass, field
from datetime import UTC, date, datetime
from decimal import Decimal
from enum import Enum
from typing import Any


class DraftStatus(Enum):
    """Status of a draft booking in its lifecycle."""

    COLLECTING = "collecting"
    """Wizard is still collecting selection, traveler and contact data"""

    AWAITING_PAYMENT = "awaiting_payment"
    """Handed off to the payment provider, waiting for confirmation"""

    PROMOTED = "promoted"
    """Converted into a confirmed booking"""

    CANCELLED = "cancelled"
    """Payment declined or cancelled by the customer"""

    EXPIRED = "expired"
    """Hold window elapsed before confirmation"""

    @property
    def is_terminal(self) -> bool:
        return self in (DraftStatus.PROMOTED, DraftStatus.CANCELLED, DraftStatus.EXPIRED)


class PaymentStatus(Enum):
    PAID = "paid"
    PENDING = "pending"
    FAILED = "failed"
    PARTIALLY_REFUNDED = "partially_refunded"
    REFUNDED = "refunded"


class BookingStatus(Enum):
    CONFIRMED = "confirmed"
    CANCELLED = "cancelled"


class SignalOutcome(Enum):
    """Outcome reported by the payment provider for a session."""

    APPROVED = "approved"
    DECLINED = "declined"
    CANCELLED = "cancelled"


class TravelerType(Enum):
    ADULT = "adult"
    CHILD = "child"
    INFANT = "infant"


@dataclass
class DateRange:
    start: date
    end: date

    @property
    def nights(self) -> int:
        return (self.end - self.start).days

    def to_dict(self) -> dict[str, Any]:
        return {"start": self.start.isoformat(), "end": self.end.isoformat()}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "DateRange":
        return cls(start=_parse_date(data["start"]), end=_parse_date(data["end"]))


@dataclass
class Occupancy:
    adults: int = 1
    children: int = 0
    infants: int = 0

    @property
    def total(self) -> int:
        return self.adults + self.children + self.infants

    def to_dict(self) -> dict[str, Any]:
        return {"adults": self.adults, "children": self.children, "infants": self.infants}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Occupancy":
        return cls(
            adults=int(data.get("adults", 1)),
            children=int(data.get("children", 0)),
            infants=int(data.get("infants", 0)),
        )


@dataclass
class PackageRates:
    """
    Per-person package rates captured when the package is selected.

    Child and infant rates fall back to a share of the adult rate when the
    package does not price them explicitly.
    """

    adult: Decimal
    child: Decimal | None = None
    infant: Decimal | None = None
    currency: str = "SAR"
    title: str = ""

    def to_dict(self) -> dict[str, Any]:
        return {
            "adult": str(self.adult),
            "child": str(self.child) if self.child is not None else None,
            "infant": str(self.infant) if self.infant is not None else None,
            "currency": self.currency,
            "title": self.title,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "PackageRates":
        return cls(
            adult=Decimal(str(data["adult"])),
            child=Decimal(str(data["child"])) if data.get("child") is not None else None,
            infant=Decimal(str(data["infant"])) if data.get("infant") is not None else None,
            currency=data.get("currency", "SAR"),
            title=data.get("title", ""),
        )


@dataclass
class Selection:
    """Package/hotel choice, travel dates and occupancy."""

    package_id: str
    date_range: DateRange
    occupancy: Occupancy = field(default_factory=Occupancy)
    rates: PackageRates | None = None
    hotel_id: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "package_id": self.package_id,
            "date_range": self.date_range.to_dict(),
            "occupancy": self.occupancy.to_dict(),
            "rates": self.rates.to_dict() if self.rates else None,
            "hotel_id": self.hotel_id,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Selection":
        return cls(
            package_id=data["package_id"],
            date_range=DateRange.from_dict(data["date_range"]),
            occupancy=Occupancy.from_dict(data.get("occupancy", {})),
            rates=PackageRates.from_dict(data["rates"]) if data.get("rates") else None,
            hotel_id=data.get("hotel_id"),
        )


@dataclass
class Traveler:
    first_name: str
    last_name: str
    date_of_birth: date
    traveler_type: TravelerType = TravelerType.ADULT
    nationality: str | None = None
    passport_number: str | None = None
    email: str | None = None
    phone: str | None = None

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}"

    def to_dict(self) -> dict[str, Any]:
        return {
            "first_name": self.first_name,
            "last_name": self.last_name,
            "date_of_birth": self.date_of_birth.isoformat(),
            "traveler_type": self.traveler_type.value,
            "nationality": self.nationality,
            "passport_number": self.passport_number,
            "email": self.email,
            "phone": self.phone,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Traveler":
        return cls(
            first_name=data["first_name"],
            last_name=data["last_name"],
            date_of_birth=_parse_date(data["date_of_birth"]),
            traveler_type=TravelerType(data.get("traveler_type", "adult")),
            nationality=data.get("nationality"),
            passport_number=data.get("passport_number"),
            email=data.get("email"),
            phone=data.get("phone"),
        )


@dataclass
class ContactInfo:
    email: str
    phone: str

    def to_dict(self) -> dict[str, Any]:
        return {"email": self.email, "phone": self.phone}


@dataclass
class DraftBooking:
    """
    In-progress booking owned by the draft store until promotion.

    Attributes:
        draft_id: Opaque identifier of the wizard session
        selection: Package/hotel, dates and occupancy (None until the first step)
        travelers: Ordered travelers; the first adult carries contact details
        special_requests: Free-form customer notes
        computed_price: Final price fixed at payment handoff
        provider_session_id: Provider correlation id, set at handoff
        status: Lifecycle status
        booking_number: Human-facing draft number
        checkout_url: Provider redirect URL returned at handoff
        booking_id: Confirmed booking id, set on promotion
        failure_reason: Provider outcome that cancelled the draft
        version: Optimistic concurrency counter for wizard merges
    """

    selection: Selection | None = None
    travelers: list[Traveler] = field(default_factory=list)
    special_requests: str | None = None
    computed_price: Decimal | None = None
    currency: str = "SAR"
    provider_session_id: str | None = None
    status: DraftStatus = DraftStatus.COLLECTING
    draft_id: str = field(default_factory=lambda: str(uuid.uuid4()))
    booking_number: str = field(default_factory=lambda: f"TRP{uuid.uuid4().hex[:12].upper()}")
    checkout_url: str | None = None
    booking_id: str | None = None
    failure_reason: str | None = None
    version: int = 0
    created_at: datetime = field(default_factory=lambda: datetime.now(UTC))
    last_touched_at: datetime = field(default_factory=lambda: datetime.now(UTC))

    @property
    def lead_traveler(self) -> Traveler | None:
        """First adult traveler, who carries the booking's contact details."""
        for traveler in self.travelers:
            if traveler.traveler_type == TravelerType.ADULT:
                return traveler
        return None

    @property
    def contact(self) -> ContactInfo | None:
        lead = self.lead_traveler
        if lead and lead.email and lead.phone:
            return ContactInfo(email=lead.email, phone=lead.phone)
        return None

    def to_dict(self) -> dict[str, Any]:
        """Convert draft to dictionary for serialization."""
        return {
            "draft_id": self.draft_id,
            "booking_number": self.booking_number,
            "selection": self.selection.to_dict() if self.selection else None,
            "travelers": [t.to_dict() for t in self.travelers],
            "special_requests": self.special_requests,
            "computed_price": str(self.computed_price) if self.computed_price is not None else None,
            "currency": self.currency,
            "provider_session_id": self.provider_session_id,
            "status": self.status.value,
            "checkout_url": self.checkout_url,
            "booking_id": self.booking_id,
            "failure_reason": self.failure_reason,
            "version": self.version,
            "created_at": self.created_at.isoformat(),
            "last_touched_at": self.last_touched_at.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "DraftBooking":
        """Create draft from dictionary."""
        price = data.get("computed_price")
        return cls(
            draft_id=data["draft_id"],
            booking_number=data.get("booking_number") or f"TRP{uuid.uuid4().hex[:12].upper()}",
            selection=Selection.from_dict(data["selection"]) if data.get("selection") else None,
            travelers=[Traveler.from_dict(t) for t in data.get("travelers", [])],
            special_requests=data.get("special_requests"),
            computed_price=Decimal(str(price)) if price is not None else None,
            currency=data.get("currency", "SAR"),
            provider_session_id=data.get("provider_session_id"),
            status=DraftStatus(data.get("status", "collecting")),
            checkout_url=data.get("checkout_url"),
            booking_id=data.get("booking_id"),
            failure_reason=data.get("failure_reason"),
            version=int(data.get("version", 0)),
            created_at=_parse_datetime(data.get("created_at")) or datetime.now(UTC),
            last_touched_at=_parse_datetime(data.get("last_touched_at")) or datetime.now(UTC),
        )


@dataclass
class ConfirmedBooking:
    """
    Booking record of the system, snapshot of the draft at promotion time.

    Never re-reads the draft after creation. Only ``payment_status``,
    ``booking_status`` and ``refunded_amount`` change afterwards.
    """

    source_draft_id: str
    booking_reference: str
    selection: Selection
    travelers: list[Traveler]
    total_price: Decimal
    currency: str = "SAR"
    special_requests: str | None = None
    contact: ContactInfo | None = None
    provider_session_id: str | None = None
    payment_method: str | None = None
    payment_status: PaymentStatus = PaymentStatus.PAID
    booking_status: BookingStatus = BookingStatus.CONFIRMED
    refunded_amount: Decimal = Decimal("0")
    booking_id: str = field(default_factory=lambda: str(uuid.uuid4()))
    created_at: datetime = field(default_factory=lambda: datetime.now(UTC))
    updated_at: datetime = field(default_factory=lambda: datetime.now(UTC))

    @classmethod
    def snapshot(
        cls,
        draft: DraftBooking,
        booking_reference: str,
        payment_method: str | None = None,
    ) -> "ConfirmedBooking":
        """Copy the draft's selection, travelers and price into a new booking."""
        if draft.selection is None or draft.computed_price is None:
            msg = f"Draft {draft.draft_id} has no selection or price to snapshot"
            raise ValueError(msg)
        return cls(
            source_draft_id=draft.draft_id,
            booking_reference=booking_reference,
            selection=Selection.from_dict(draft.selection.to_dict()),
            travelers=[Traveler.from_dict(t.to_dict()) for t in draft.travelers],
            total_price=draft.computed_price,
            currency=draft.currency,
            special_requests=draft.special_requests,
            contact=draft.contact,
            provider_session_id=draft.provider_session_id,
            payment_method=payment_method,
        )

    @property
    def refundable_amount(self) -> Decimal:
        return self.total_price - self.refunded_amount

    def to_dict(self) -> dict[str, Any]:
        return {
            "booking_id": self.booking_id,
            "booking_reference": self.booking_reference,
            "source_draft_id": self.source_draft_id,
            "selection": self.selection.to_dict(),
            "travelers": [t.to_dict() for t in self.travelers],
            "total_price": str(self.total_price),
            "currency": self.currency,
            "special_requests": self.special_requests,
            "contact": self.contact.to_dict() if self.contact else None,
            "provider_session_id": self.provider_session_id,
            "payment_method": self.payment_method,
            "payment_status": self.payment_status.value,
            "booking_status": self.booking_status.value,
            "refunded_amount": str(self.refunded_amount),
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ConfirmedBooking":
        contact = data.get("contact")
        return cls(
            booking_id=data["booking_id"],
            booking_reference=data["booking_reference"],
            source_draft_id=data["source_draft_id"],
            selection=Selection.from_dict(data["selection"]),
            travelers=[Traveler.from_dict(t) for t in data.get("travelers", [])],
            total_price=Decimal(str(data["total_price"])),
            currency=data.get("currency", "SAR"),
            special_requests=data.get("special_requests"),
            contact=ContactInfo(**contact) if contact else None,
            provider_session_id=data.get("provider_session_id"),
            payment_method=data.get("payment_method"),
            payment_status=PaymentStatus(data.get("payment_status", "paid")),
            booking_status=BookingStatus(data.get("booking_status", "confirmed")),
            refunded_amount=Decimal(str(data.get("refunded_amount", "0"))),
            created_at=_parse_datetime(data.get("created_at")) or datetime.now(UTC),
            updated_at=_parse_datetime(data.get("updated_at")) or datetime.now(UTC),
        )


@dataclass
class ProviderConfirmationSignal:
    """
    Confirmation input from the payment provider. Not persisted as an entity.

    ``event_id`` is provider-assigned and used for duplicate suppression.
    """

    provider_session_id: str
    outcome: SignalOutcome
    event_id: str
    raw: dict[str, Any] = field(default_factory=dict)


@dataclass
class PollResult:
    """Read-only view of a draft's confirmation state returned to the client."""

    draft_id: str
    status: DraftStatus
    booking_id: str | None = None
    booking_reference: str | None = None
    failure_reason: str | None = None

    @property
    def public_status(self) -> str:
        return _PUBLIC_STATUS[self.status]

    @property
    def is_pending(self) -> bool:
        return self.status == DraftStatus.AWAITING_PAYMENT

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"draft_id": self.draft_id, "status": self.public_status}
        if self.booking_id:
            data["booking_id"] = self.booking_id
        if self.booking_reference:
            data["booking_reference"] = self.booking_reference
        if self.failure_reason:
            data["failure_reason"] = self.failure_reason
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "PollResult":
        """Parse the public poll response (``pending``, ``confirmed``, ...)."""
        by_public = {public: status for status, public in _PUBLIC_STATUS.items()}
        return cls(
            draft_id=data["draft_id"],
            status=by_public[data["status"]],
            booking_id=data.get("booking_id"),
            booking_reference=data.get("booking_reference"),
            failure_reason=data.get("failure_reason"),
        )


@dataclass
class ReconcileResult:
    """
    Outcome of feeding one confirmation signal through the reconciler.

    Attributes:
        duplicate: Signal was already applied; nothing was re-processed
        rejected: Signal arrived for an expired draft and was refused
        conflict_resolved: Lost a concurrent promotion race and adopted the winner
        unknown_session: No draft owns the session; acknowledged and dropped
    """

    draft_id: str | None
    status: DraftStatus | None
    booking_id: str | None = None
    duplicate: bool = False
    rejected: bool = False
    conflict_resolved: bool = False
    unknown_session: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {
            "draft_id": self.draft_id,
            "status": _PUBLIC_STATUS[self.status] if self.status else "unknown",
            "booking_id": self.booking_id,
            "duplicate": self.duplicate,
            "rejected": self.rejected,
            "conflict_resolved": self.conflict_resolved,
            "unknown_session": self.unknown_session,
        }


_PUBLIC_STATUS = {
    DraftStatus.COLLECTING: "collecting",
    DraftStatus.AWAITING_PAYMENT: "pending",
    DraftStatus.PROMOTED: "confirmed",
    DraftStatus.CANCELLED: "cancelled",
    DraftStatus.EXPIRED: "expired",
}


def _parse_date(value: str | date) -> date:
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    return date.fromisoformat(value[:10])


def _parse_datetime(value: str | datetime | None) -> datetime | None:
    if isinstance(value, str):
        value = datetime.fromisoformat(value)
    if isinstance(value, datetime) and value.tzinfo is None:
        value = value.replace(tzinfo=UTC)
    return value
