"""
Final price computation and booking reference codes.

The package total is priced per traveler type. Child and infant rates fall
back to a share of the adult rate when the package leaves them unset. A live
hotel price from the inventory aggregator, when available, is added on top.
"""

import secrets
from dataclasses import dataclass, field
from datetime import UTC, datetime
from decimal import ROUND_HALF_UP, Decimal
from typing import Any

from voyagez.core.exceptions import ValidationError
from voyagez.core.types import Selection

CENTS = Decimal("0.01")
DEFAULT_CHILD_SHARE = Decimal("0.7")
DEFAULT_INFANT_SHARE = Decimal("0.1")


@dataclass
class PriceLine:
    label: str
    count: int
    unit_price: Decimal

    @property
    def total(self) -> Decimal:
        return (self.unit_price * self.count).quantize(CENTS, rounding=ROUND_HALF_UP)

    def to_dict(self) -> dict[str, Any]:
        return {
            "label": self.label,
            "count": self.count,
            "unit_price": str(self.unit_price),
            "total": str(self.total),
        }


@dataclass
class PriceBreakdown:
    """Itemized price fixed at payment handoff."""

    currency: str
    lines: list[PriceLine] = field(default_factory=list)
    hotel_price: Decimal | None = None

    @property
    def total(self) -> Decimal:
        total = sum((line.total for line in self.lines), Decimal("0"))
        if self.hotel_price is not None:
            total += self.hotel_price
        return total.quantize(CENTS, rounding=ROUND_HALF_UP)

    def to_dict(self) -> dict[str, Any]:
        return {
            "currency": self.currency,
            "lines": [line.to_dict() for line in self.lines],
            "hotel_price": str(self.hotel_price) if self.hotel_price is not None else None,
            "total": str(self.total),
        }


def compute_price(
    selection: Selection,
    live_hotel_price: Decimal | None = None,
    child_share: Decimal = DEFAULT_CHILD_SHARE,
    infant_share: Decimal = DEFAULT_INFANT_SHARE,
) -> PriceBreakdown:
    """
    Price a selection.

    Args:
        selection: Package selection carrying unit rates and occupancy
        live_hotel_price: Optional live hotel total for the stay
        child_share: Fraction of the adult rate used when no child rate is set
        infant_share: Fraction of the adult rate used when no infant rate is set

    Raises:
        ValidationError: If the selection carries no package rates
    """
    rates = selection.rates
    if rates is None:
        msg = f"Package {selection.package_id} has no rates"
        raise ValidationError(msg, field="rates")

    child_rate = rates.child if rates.child is not None else rates.adult * child_share
    infant_rate = rates.infant if rates.infant is not None else rates.adult * infant_share

    occupancy = selection.occupancy
    lines = [PriceLine("adult", occupancy.adults, rates.adult)]
    if occupancy.children:
        lines.append(PriceLine("child", occupancy.children, child_rate))
    if occupancy.infants:
        lines.append(PriceLine("infant", occupancy.infants, infant_rate))

    return PriceBreakdown(currency=rates.currency, lines=lines, hotel_price=live_hotel_price)


def generate_booking_reference(now: datetime | None = None) -> str:
    """Human-facing booking reference: ``TRP-YYYYMMDD-NNNN``."""
    now = now or datetime.now(UTC)
    return f"TRP-{now:%Y%m%d}-{secrets.randbelow(10000):04d}"
