from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from enum import Enum
from typing import Any

from .errors import InvalidPayment, NonPositiveDuration, UnknownRateTier
from .intervals import Granularity, TimeWindow, duration_units
from .records import RateCard, ResourceType


class PricingTier(str, Enum):
    MEMBER = "member"
    GUEST = "guest"


class PaymentStatus(str, Enum):
    PAID = "PAID"
    HALF_PAID = "HALF_PAID"
    UNPAID = "UNPAID"


@dataclass(frozen=True)
class PaymentSummary:
    status: PaymentStatus
    total: Decimal
    paid: Decimal
    owed: Decimal

    def to_dict(self) -> dict[str, str]:
        return {
            "payment_status": self.status.value,
            "total": str(self.total),
            "paid": str(self.paid),
            "owed": str(self.owed),
        }


def parse_tier(tier: Any) -> PricingTier:
    if isinstance(tier, PricingTier):
        return tier
    try:
        return PricingTier(str(tier).strip().lower())
    except ValueError:
        raise UnknownRateTier(f"Unknown pricing tier: {tier!r}", {"tier": str(tier)}) from None


def unit_rate(rate_card: RateCard, tier: PricingTier | str) -> Decimal:
    if parse_tier(tier) is PricingTier.MEMBER:
        return rate_card.member
    return rate_card.guest


def require_positive_duration(window: TimeWindow) -> None:
    if window.end <= window.start:
        raise NonPositiveDuration("Check-out must be after check-in.", {"window": window.to_dict()})


def compute_price(resource_type: ResourceType, tier: PricingTier | str, window: TimeWindow) -> Decimal:
    """Total charge for occupying one instance of ``resource_type`` for ``window``.

    Night-based types charge per night; slot and event types charge a flat rate
    per allocation.
    """
    rate = unit_rate(resource_type.rate_card, tier)
    require_positive_duration(window)

    units = duration_units(window, resource_type.granularity)
    if resource_type.granularity is Granularity.NIGHT and units <= 0:
        raise NonPositiveDuration("Booking must cover at least one night.", {"window": window.to_dict()})

    return rate * units


def settle_payment(total: Decimal, status: PaymentStatus | str, paid_amount: Any = None) -> PaymentSummary:
    try:
        payment_status = PaymentStatus(str(getattr(status, "value", status)).strip().upper())
    except ValueError:
        raise InvalidPayment(f"Unknown payment status: {status!r}") from None

    if payment_status is PaymentStatus.PAID:
        return PaymentSummary(payment_status, total, total, Decimal("0"))
    if payment_status is PaymentStatus.UNPAID:
        return PaymentSummary(payment_status, total, Decimal("0"), total)

    try:
        paid = Decimal(str(paid_amount if paid_amount is not None else 0))
    except InvalidOperation:
        raise InvalidPayment(f"Paid amount is not a number: {paid_amount!r}") from None
    if paid <= 0:
        raise InvalidPayment("Paid amount must be greater than 0 for half-paid status")
    if paid >= total:
        raise InvalidPayment("Paid amount must be less than total price for half-paid status")
    return PaymentSummary(payment_status, total, paid, total - paid)
