from __future__ import annotations

from datetime import datetime
from decimal import Decimal

from django.test import SimpleTestCase, override_settings

from frontdesk.charges import (
    extension_fee,
    extension_quote,
    late_fee,
    one_night_rate,
    promotion_discount,
    room_charge,
    service_charge,
    tagged_total,
)
from frontdesk.exceptions import ConflictError
from frontdesk.normalizer import EXTENSION_FEE, LATE_FEE, SERVICE, RoomLine, ServiceLine

CHECKOUT = datetime(2026, 3, 3, 12, 0)


def service(total, tag=SERVICE, quantity="1"):
    return ServiceLine(service_id=None, combo_id=None, quantity=Decimal(quantity), unit_price=Decimal(total), line_total=None, tag=tag)


class RoomChargeTests(SimpleTestCase):
    def test_rate_times_nights_less_discount(self):
        lines = [
            RoomLine(room_id="101", nightly_rate=Decimal("500000"), nights=2),
            RoomLine(room_id="102", nightly_rate=Decimal("300000"), nights=1, promotion_discount=Decimal("30000")),
        ]
        self.assertEqual(room_charge(lines), Decimal("1270000"))

    def test_explicit_gross_wins_and_never_goes_negative(self):
        line = RoomLine(room_id="101", nightly_rate=Decimal("500000"), nights=2, gross_amount=Decimal("800000"))
        self.assertEqual(room_charge([line]), Decimal("800000"))
        over = RoomLine(room_id="101", nightly_rate=Decimal("100"), nights=1, promotion_discount=Decimal("500"))
        self.assertEqual(room_charge([over]), Decimal("0"))

    def test_no_lines(self):
        self.assertEqual(room_charge([]), Decimal("0"))


class ServiceChargeTests(SimpleTestCase):
    def test_fee_lines_are_excluded(self):
        lines = [service(150000), service(50000, tag=LATE_FEE), service(165000, tag=EXTENSION_FEE)]
        self.assertEqual(service_charge(lines), Decimal("150000"))
        self.assertEqual(tagged_total(lines, LATE_FEE), Decimal("50000"))
        self.assertEqual(tagged_total(lines, EXTENSION_FEE), Decimal("165000"))

    def test_quantity_times_unit_price(self):
        self.assertEqual(service_charge([service(75000, quantity="2")]), Decimal("150000"))

    def test_explicit_line_total(self):
        line = ServiceLine(service_id="DV1", combo_id=None, quantity=Decimal("3"), unit_price=Decimal("10"), line_total=Decimal("25"))
        self.assertEqual(service_charge([line]), Decimal("25"))


class PromotionDiscountTests(SimpleTestCase):
    def test_percent(self):
        self.assertEqual(promotion_discount({"discount_type": "percent", "value": 10}, 1000000), Decimal("100000"))

    def test_flat_amount_capped_at_base(self):
        self.assertEqual(promotion_discount({"discount_type": "amount", "value": 50000}, 1000000), Decimal("50000"))
        self.assertEqual(promotion_discount({"discount_type": "fixed", "value": 5000000}, 1000000), Decimal("1000000"))

    def test_missing_or_inactive(self):
        self.assertEqual(promotion_discount(None, 1000000), Decimal("0"))
        self.assertEqual(promotion_discount({"discount_type": "percent", "value": 10, "active": False}, 1000000), Decimal("0"))


class ExtensionFeeTests(SimpleTestCase):
    def test_checkout_at_standard_hour_costs_nothing(self):
        self.assertEqual(extension_fee(CHECKOUT, CHECKOUT, 500000), 0)

    def test_same_day_tiers(self):
        self.assertEqual(extension_fee(CHECKOUT, CHECKOUT.replace(hour=15), 500000), 165000)
        self.assertEqual(extension_fee(CHECKOUT, CHECKOUT.replace(hour=18), 500000), 275000)
        self.assertEqual(extension_fee(CHECKOUT, CHECKOUT.replace(hour=23, minute=59), 500000), 550000)

    def test_explicit_percent_rate(self):
        quote = extension_quote(CHECKOUT, CHECKOUT.replace(hour=14), 500000, percent_rate=20)
        self.assertEqual((quote.mode, quote.base, quote.vat, quote.total), ("same_day", 100000, 10000, 110000))

    def test_extra_nights(self):
        quote = extension_quote(CHECKOUT, CHECKOUT.replace(day=5), 500000)
        self.assertEqual((quote.mode, quote.nights, quote.total), ("extra_night", 2, 1100000))

    def test_earlier_checkout_is_a_conflict(self):
        with self.assertRaises(ConflictError):
            extension_fee(CHECKOUT, CHECKOUT.replace(hour=10), 500000)

    def test_vat_applied_before_the_single_rounding(self):
        # 333,333 * 30% = 99,999.9; with VAT 109,999.89, rounded once to 110,000
        self.assertEqual(extension_fee(CHECKOUT, CHECKOUT.replace(hour=15), 333333), 110000)

    @override_settings(FRONTDESK={"VAT_RATE": Decimal("0.08")})
    def test_vat_rate_from_settings(self):
        self.assertEqual(extension_fee(CHECKOUT, CHECKOUT.replace(hour=15), 500000), 162000)


class LateFeeTests(SimpleTestCase):
    def test_no_overrun(self):
        self.assertEqual(late_fee(CHECKOUT, CHECKOUT, 500000), 0)
        self.assertEqual(late_fee(CHECKOUT.replace(hour=11), CHECKOUT, 500000), 0)
        self.assertEqual(late_fee(None, CHECKOUT, 500000), 0)

    def test_tiers(self):
        self.assertEqual(late_fee(CHECKOUT.replace(hour=14), CHECKOUT, 500000), 150000)
        self.assertEqual(late_fee(CHECKOUT.replace(hour=15), CHECKOUT, 500000), 150000)
        self.assertEqual(late_fee(CHECKOUT.replace(hour=17), CHECKOUT, 500000), 250000)
        self.assertEqual(late_fee(CHECKOUT.replace(hour=20), CHECKOUT, 500000), 500000)

    def test_backend_surcharge_wins(self):
        self.assertEqual(late_fee(CHECKOUT.replace(hour=20), CHECKOUT, 500000, surcharge=Decimal("50000")), 50000)
        self.assertEqual(late_fee(CHECKOUT.replace(hour=14), CHECKOUT, 500000, surcharge=0), 150000)

    def test_late_fee_carries_no_vat(self):
        self.assertEqual(late_fee(CHECKOUT.replace(hour=13), CHECKOUT, 100001), 30000)

    def test_one_night_rate(self):
        self.assertEqual(one_night_rate(1000001, 2), 500001)
        self.assertEqual(one_night_rate(700000, 0), 700000)
