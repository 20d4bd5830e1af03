from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal

from django.test import SimpleTestCase

from frontdesk.normalizer import (
    EXTENSION_FEE,
    LATE_FEE,
    SERVICE,
    lookup,
    normalize,
    normalize_service_line,
    to_decimal,
)


class ToDecimalTests(SimpleTestCase):
    def test_accepts_formatted_strings(self):
        self.assertEqual(to_decimal("1,100,000"), Decimal("1100000"))
        self.assertEqual(to_decimal(" 500000đ"), Decimal("500000"))
        self.assertEqual(to_decimal(2.5), Decimal("2.5"))

    def test_unreadable_values_become_zero(self):
        for value in (None, "", "abc", "NaN", "Infinity", True):
            self.assertEqual(to_decimal(value), Decimal("0"), value)


class NormalizeTests(SimpleTestCase):
    def test_missing_record_gives_empty_defaults(self):
        record = normalize(None)
        self.assertEqual(record.deposit, Decimal("0"))
        self.assertEqual(record.room_lines, ())
        self.assertIsNone(record.confirmed_total)
        self.assertEqual(record.note_text, "")

    def test_backend_naming_is_canonicalized(self):
        record = normalize({
            "IDDatPhong": "DP001",
            "TienCoc": "200000",
            "TrangThai": 3,
            "GhiChu": "late checkout requested",
            "ChiTietDatPhongs": [{"IDPhong": "P101", "GiaPhong": 500000, "SoDem": 2}],
            "HoaDon": {
                "TienThanhToan": 300000,
                "TongTien": 1100000,
                "Cthddvs": [{"IddichVu": "DV01", "SoLuong": 2, "DonGia": 75000}],
            },
        })
        self.assertEqual(record.booking_id, "DP001")
        self.assertEqual(record.deposit, Decimal("200000"))
        self.assertEqual(record.status, 3)
        self.assertEqual(record.paid_amount, Decimal("300000"))
        self.assertEqual(record.confirmed_total, Decimal("1100000"))
        self.assertEqual(record.room_lines[0].room_id, "P101")
        self.assertEqual(record.room_lines[0].nights, 2)
        self.assertEqual(record.service_lines[0].quantity, Decimal("2"))

    def test_record_wins_over_money_block_and_money_over_invoice(self):
        record = {"deposit": 100, "money": {"deposit": 200, "paidAmount": 50}, "invoice": {"paidAmount": 999}}
        self.assertEqual(lookup(record, ("deposit",)), 100)
        self.assertEqual(lookup(record, ("paidAmount",)), 50)

    def test_empty_strings_fall_through_to_next_name(self):
        record = normalize({"paidAmount": "", "TienThanhToan": "75000"})
        self.assertEqual(record.paid_amount, Decimal("75000"))

    def test_first_invoice_of_a_list_is_searched(self):
        record = normalize({"invoices": [{"id": 7, "paidAmount": 40}, {"id": 8}]})
        self.assertEqual(record.paid_amount, Decimal("40"))
        self.assertEqual(record.invoice_ids, ("7", "8"))

    def test_dates_and_hours(self):
        record = normalize({"checkOut": "2026-03-02", "checkoutHour": 15, "actualCheckout": "2026-03-02T16:30:00"})
        self.assertEqual(record.checkout_date, date(2026, 3, 2))
        self.assertEqual(record.checkout_hour, 15)
        self.assertEqual(record.actual_checkout, datetime(2026, 3, 2, 16, 30))
        self.assertIsNone(record.expected_checkout)


class LineTagTests(SimpleTestCase):
    def test_explicit_tag(self):
        self.assertEqual(normalize_service_line({"tag": LATE_FEE, "unitPrice": 1}).tag, LATE_FEE)

    def test_sentinel_service_ids(self):
        self.assertEqual(normalize_service_line({"serviceId": "DV_LATE_FEE"}).tag, LATE_FEE)
        self.assertEqual(normalize_service_line({"IddichVu": "dv_extend"}).tag, EXTENSION_FEE)

    def test_description_text_never_decides_the_tag(self):
        line = normalize_service_line({"serviceId": "DV07", "description": "Late checkout fee", "unitPrice": 50000})
        self.assertEqual(line.tag, SERVICE)

    def test_quantity_defaults_to_one(self):
        line = normalize_service_line({"unitPrice": 10})
        self.assertEqual(line.quantity, Decimal("1"))
        self.assertIsNone(line.line_total)
