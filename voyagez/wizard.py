"""
Wizard Step Writer - Collects booking data into a draft, one step at a time.

The first step (package selection) creates the draft. Later steps merge
travelers and contact details into it while it is COLLECTING. The wizard
never talks to the payment provider.

Merges are optimistic: the draft is read, changed in memory and written
back with a compare-and-set on its version. A concurrent edit makes the
write fail and the merge is retried on a fresh copy.

Usage:
    >>> writer = WizardStepWriter(storage)
    >>> draft_id = await writer.save_step(None, SelectionStep(...))
    >>> await writer.save_step(draft_id, TravelersStep(travelers=[...]))
    >>> await writer.save_step(draft_id, ContactStep(email="a@b.co", phone="+966..."))
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from datetime import UTC, date, datetime

from voyagez.core.config import BookingConfig, get_config
from voyagez.core.exceptions import DraftNotFoundError, InvalidStateError, ValidationError
from voyagez.core.logger import get_logger
from voyagez.core.types import (
    DateRange,
    DraftBooking,
    DraftStatus,
    Occupancy,
    PackageRates,
    Selection,
    Traveler,
    TravelerType,
)
from voyagez.monitoring.metrics import DRAFTS_CREATED
from voyagez.storage.core import ConcurrencyError
from voyagez.storage.manager import BaseStorageManager

logger = get_logger(__name__)

EMAIL_PATTERN = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
PHONE_PATTERN = re.compile(r"^\+?[0-9 ()-]{6,20}$")


@dataclass
class SelectionStep:
    """Package/hotel choice, travel dates and occupancy."""

    package_id: str
    start_date: date
    end_date: date
    adults: int = 1
    children: int = 0
    infants: int = 0
    rates: PackageRates | None = None
    hotel_id: str | None = None

    def validate(self) -> None:
        if not self.package_id:
            msg = "A package must be selected"
            raise ValidationError(msg, field="package_id")
        if self.end_date <= self.start_date:
            msg = "End date must be after start date"
            raise ValidationError(msg, field="end_date")
        if self.adults < 1:
            msg = "At least one adult is required"
            raise ValidationError(msg, field="adults")
        if self.children < 0 or self.infants < 0:
            msg = "Traveler counts cannot be negative"
            raise ValidationError(msg, field="children" if self.children < 0 else "infants")
        if self.rates is not None and self.rates.adult <= 0:
            msg = "Adult rate must be positive"
            raise ValidationError(msg, field="rates")

    def to_selection(self) -> Selection:
        return Selection(
            package_id=self.package_id,
            date_range=DateRange(self.start_date, self.end_date),
            occupancy=Occupancy(self.adults, self.children, self.infants),
            rates=self.rates,
            hotel_id=self.hotel_id,
        )


@dataclass
class TravelersStep:
    """Ordered traveler list. The first adult is the lead traveler."""

    travelers: list[Traveler] = field(default_factory=list)

    def validate(self, today: date | None = None) -> None:
        today = today or datetime.now(UTC).date()
        if not self.travelers:
            msg = "At least one traveler is required"
            raise ValidationError(msg, field="travelers")
        for index, traveler in enumerate(self.travelers):
            if not traveler.first_name.strip() or not traveler.last_name.strip():
                msg = f"Traveler {index + 1} needs a first and last name"
                raise ValidationError(msg, field=f"travelers[{index}].name")
            if traveler.date_of_birth > today:
                msg = f"Traveler {index + 1} has a date of birth in the future"
                raise ValidationError(msg, field=f"travelers[{index}].date_of_birth")
            if traveler.email:
                _check_email(traveler.email, f"travelers[{index}].email")
        if not any(t.traveler_type == TravelerType.ADULT for t in self.travelers):
            msg = "At least one adult traveler is required"
            raise ValidationError(msg, field="travelers")


@dataclass
class ContactStep:
    """Lead traveler's contact details and free-form special requests."""

    email: str
    phone: str
    special_requests: str | None = None

    def validate(self) -> None:
        _check_email(self.email, "email")
        if not PHONE_PATTERN.match(self.phone.strip()):
            msg = "Phone number is malformed"
            raise ValidationError(msg, field="phone")


StepPayload = SelectionStep | TravelersStep | ContactStep


def _check_email(value: str, field_name: str) -> None:
    if not EMAIL_PATTERN.match(value.strip()):
        msg = f"Email address {value!r} is malformed"
        raise ValidationError(msg, field=field_name)


def check_travelers_match(draft: DraftBooking) -> None:
    """
    Raises:
        ValidationError: If traveler counts per type differ from the occupancy
    """
    if draft.selection is None:
        return
    occupancy = draft.selection.occupancy
    counts = {kind: 0 for kind in TravelerType}
    for traveler in draft.travelers:
        counts[traveler.traveler_type] += 1
    expected = {
        TravelerType.ADULT: occupancy.adults,
        TravelerType.CHILD: occupancy.children,
        TravelerType.INFANT: occupancy.infants,
    }
    for kind, wanted in expected.items():
        if counts[kind] != wanted:
            msg = f"Expected {wanted} {kind.value} traveler(s), got {counts[kind]}"
            raise ValidationError(msg, field="travelers")


def validate_ready_for_payment(draft: DraftBooking) -> None:
    """
    Check that a draft carries everything the payment handoff needs.

    Raises:
        ValidationError: If selection, travelers or lead contact are missing
    """
    if draft.selection is None:
        msg = "Draft has no package selection"
        raise ValidationError(msg, field="selection")
    if draft.selection.rates is None:
        msg = "Selected package has no rates"
        raise ValidationError(msg, field="rates")
    if not draft.travelers:
        msg = "Draft has no travelers"
        raise ValidationError(msg, field="travelers")
    check_travelers_match(draft)
    if draft.contact is None:
        msg = "Lead traveler needs an email and phone number"
        raise ValidationError(msg, field="contact")


def apply_step(draft: DraftBooking, payload: StepPayload) -> DraftBooking:
    """Merge one validated step into a draft in memory."""
    if isinstance(payload, SelectionStep):
        draft.selection = payload.to_selection()
        if payload.rates is not None:
            draft.currency = payload.rates.currency
    elif isinstance(payload, TravelersStep):
        # Contact details already collected stay on the lead adult
        previous = draft.contact
        draft.travelers = payload.travelers
        check_travelers_match(draft)
        lead = draft.lead_traveler
        if previous and lead and not (lead.email or lead.phone):
            lead.email, lead.phone = previous.email, previous.phone
    elif isinstance(payload, ContactStep):
        lead = draft.lead_traveler
        if lead is None:
            msg = "Travelers must be entered before contact details"
            raise ValidationError(msg, field="travelers")
        lead.email = payload.email.strip()
        lead.phone = payload.phone.strip()
        if payload.special_requests is not None:
            draft.special_requests = payload.special_requests.strip() or None
    else:
        msg = f"Unsupported wizard step: {type(payload).__name__}"
        raise ValidationError(msg)
    return draft


class WizardStepWriter:
    """
    Writes wizard steps into drafts.

    Only COLLECTING drafts accept steps. Once a draft is handed off to
    payment it is read-only to the wizard.
    """

    def __init__(self, storage: BaseStorageManager, config: BookingConfig | None = None):
        self.storage = storage
        self.config = config or get_config()

    async def save_step(self, draft_id: str | None, payload: StepPayload) -> str:
        """
        Create or update a draft with one wizard step.

        Args:
            draft_id: Existing draft, or None to open a new one
            payload: The step data

        Returns:
            The (possibly newly created) draft id

        Raises:
            ValidationError: Malformed step, or first step is not a selection
            DraftNotFoundError: Unknown draft id
            InvalidStateError: Draft is no longer COLLECTING
            ConcurrencyError: Draft kept changing underneath every retry
        """
        payload.validate()

        if draft_id is None:
            return await self._create(payload)

        last_error: ConcurrencyError | None = None
        for attempt in range(1, self.config.wizard_max_retries + 1):
            draft = await self.storage.drafts.get(draft_id)
            if draft is None:
                raise DraftNotFoundError(draft_id)
            if draft.status != DraftStatus.COLLECTING:
                raise InvalidStateError(draft_id, draft.status, [DraftStatus.COLLECTING])

            apply_step(draft, payload)
            draft.last_touched_at = datetime.now(UTC)
            try:
                await self.storage.drafts.save(draft)
            except ConcurrencyError as e:
                last_error = e
                logger.debug(f"Draft {draft_id} changed concurrently, retrying merge ({attempt})")
                continue

            logger.debug(f"Saved {type(payload).__name__} on draft {draft_id}")
            return draft_id

        logger.warning(f"Giving up merge on draft {draft_id} after concurrent edits")
        assert last_error is not None
        raise last_error

    async def _create(self, payload: StepPayload) -> str:
        if not isinstance(payload, SelectionStep):
            msg = "A new booking must start with the package selection step"
            raise ValidationError(msg, field="step")

        draft = apply_step(DraftBooking(currency=self.config.currency), payload)
        await self.storage.drafts.create(draft)
        DRAFTS_CREATED.inc()
        logger.info(f"Draft {draft.draft_id} created for package {payload.package_id}")
        return draft.draft_id

    async def get_draft(self, draft_id: str) -> DraftBooking:
        """
        Raises:
            DraftNotFoundError: Unknown draft id
        """
        draft = await self.storage.drafts.get(draft_id)
        if draft is None:
            raise DraftNotFoundError(draft_id)
        return draft
