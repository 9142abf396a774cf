import unittest
from datetime import date
from decimal import Decimal

from allocation_engine import (
    Granularity,
    InvalidPayment,
    NonPositiveDuration,
    PaymentStatus,
    PricingTier,
    RateCard,
    ResourceType,
    Slot,
    TimeWindow,
    UnknownRateTier,
    compute_price,
    settle_payment,
)

ROOM = ResourceType("room", Granularity.NIGHT, RateCard(Decimal("3000"), Decimal("4500")))
HALL = ResourceType("hall", Granularity.SLOT, RateCard(Decimal("50000"), Decimal("80000")))


class TestComputePrice(unittest.TestCase):
    def test_member_rate_is_charged_per_night(self) -> None:
        window = TimeWindow.for_nights(date(2025, 6, 10), date(2025, 6, 13))
        self.assertEqual(compute_price(ROOM, PricingTier.MEMBER, window), Decimal("9000"))

    def test_guest_rate_is_charged_per_night(self) -> None:
        window = TimeWindow.for_nights(date(2025, 6, 10), date(2025, 6, 12))
        self.assertEqual(compute_price(ROOM, "guest", window), Decimal("9000"))

    def test_slot_resource_charges_flat_rate(self) -> None:
        window = TimeWindow.for_slot(date(2025, 7, 3), Slot.EVENING)
        self.assertEqual(compute_price(HALL, "member", window), Decimal("50000"))
        self.assertEqual(compute_price(HALL, "GUEST", window), Decimal("80000"))

    def test_same_day_check_out_is_rejected_not_free(self) -> None:
        window = TimeWindow.for_nights(date(2025, 6, 10), date(2025, 6, 10))
        with self.assertRaises(NonPositiveDuration):
            compute_price(ROOM, "member", window)

    def test_reversed_window_is_rejected(self) -> None:
        window = TimeWindow.for_nights(date(2025, 6, 12), date(2025, 6, 10))
        with self.assertRaises(NonPositiveDuration):
            compute_price(HALL, "member", window)

    def test_unknown_tier_is_rejected(self) -> None:
        window = TimeWindow.for_nights(date(2025, 6, 10), date(2025, 6, 12))
        with self.assertRaises(UnknownRateTier) as raised:
            compute_price(ROOM, "corporate", window)
        self.assertEqual(raised.exception.details["tier"], "corporate")


class TestSettlePayment(unittest.TestCase):
    def test_paid_settles_full_amount(self) -> None:
        summary = settle_payment(Decimal("9000"), "PAID")
        self.assertEqual(summary.paid, Decimal("9000"))
        self.assertEqual(summary.owed, Decimal("0"))

    def test_unpaid_owes_full_amount(self) -> None:
        summary = settle_payment(Decimal("9000"), PaymentStatus.UNPAID, paid_amount="500")
        self.assertEqual(summary.paid, Decimal("0"))
        self.assertEqual(summary.owed, Decimal("9000"))

    def test_half_paid_records_remaining_balance(self) -> None:
        summary = settle_payment(Decimal("9000"), "half_paid", paid_amount="4000")
        self.assertIs(summary.status, PaymentStatus.HALF_PAID)
        self.assertEqual(summary.owed, Decimal("5000"))
        self.assertEqual(summary.to_dict()["payment_status"], "HALF_PAID")

    def test_half_paid_amount_must_be_inside_total(self) -> None:
        for paid in (None, "0", "9000", "12000", "abc"):
            with self.subTest(paid=paid):
                with self.assertRaises(InvalidPayment):
                    settle_payment(Decimal("9000"), "HALF_PAID", paid_amount=paid)

    def test_unknown_status_is_rejected(self) -> None:
        with self.assertRaises(InvalidPayment):
            settle_payment(Decimal("9000"), "REFUNDED")


if __name__ == "__main__":
    unittest.main()
