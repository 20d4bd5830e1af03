from __future__ import annotations

from datetime import datetime, time, timedelta
from decimal import Decimal
from unittest import mock

from django.db import DatabaseError
from django.test import TestCase
from django.utils import timezone

from frontdesk.exceptions import ConflictError, StateError, TransportError, ValidationError
from frontdesk.forms import BookingForm
from frontdesk.models import Booking, Customer, Invoice, Promotion, Refund, Room, Service, ServiceChargeLine
from frontdesk.presenters import BookingPresenter
from frontdesk.settlement import compute_settlement


class PresenterTestCase(TestCase):
    def setUp(self):
        self.presenter = BookingPresenter()
        self.today = timezone.localdate()
        self.room = Room.objects.create(number="101", type=Room.Type.DOUBLE, price_per_night=Decimal("500000"))
        self.cheap_room = Room.objects.create(number="102", type=Room.Type.SINGLE, price_per_night=Decimal("409091"))
        self.customer = Customer.objects.create(first_name="Lan", last_name="Nguyen", email="lan@example.com")
        self.breakfast = Service.objects.create(name="Breakfast", unit_price=Decimal("150000"))

    def make_booking(self, start=1, nights=2, room=None, status=Booking.Status.CONFIRMED, **extra):
        check_in = self.today + timedelta(days=start)
        return Booking.objects.create(
            customer=self.customer,
            room=room or self.room,
            check_in=check_in,
            check_out=check_in + timedelta(days=nights),
            status=status,
            **extra,
        )

    def in_use(self, start=-2, nights=2, **extra):
        return self.make_booking(start=start, nights=nights, status=Booking.Status.IN_USE, **extra)

    def breakfast_line(self, quantity=1):
        return {"service": self.breakfast, "quantity": Decimal(quantity), "unit_price": self.breakfast.unit_price,
                "description": "Breakfast"}


class BookingCreationTests(PresenterTestCase):
    def test_invoice_and_room_line_created_with_booking(self):
        booking = self.make_booking()
        invoice = booking.invoice
        self.assertEqual(invoice.room_lines.count(), 1)
        self.assertEqual(invoice.room_lines.get().line_total, Decimal("1000000"))
        self.assertEqual(invoice.number, 1)
        self.assertEqual(self.presenter.settle(booking).grand_total, 1100000)

    def test_create_booking_from_form_records_deposit(self):
        form = BookingForm(data={
            "customer": self.customer.pk,
            "room": self.room.pk,
            "check_in": (self.today + timedelta(days=1)).isoformat(),
            "check_out": (self.today + timedelta(days=3)).isoformat(),
            "deposit": "200000",
            "notes": "",
        })
        booking = self.presenter.create_booking(form)
        booking.refresh_from_db()
        self.assertEqual(booking.status, Booking.Status.PENDING_CONFIRMATION)
        self.assertEqual(booking.payment_status, Booking.PaymentStatus.DEPOSITED)
        self.assertEqual(Invoice.objects.get(booking=booking).total, Decimal("1100000"))
        self.assertEqual(self.presenter.settle(booking).amount_due, 900000)

    def test_overlapping_booking_rejected_by_form(self):
        self.make_booking()
        form = BookingForm(data={
            "customer": self.customer.pk,
            "room": self.room.pk,
            "check_in": (self.today + timedelta(days=2)).isoformat(),
            "check_out": (self.today + timedelta(days=4)).isoformat(),
            "deposit": "0",
        })
        self.assertFalse(form.is_valid())

    def test_room_type_promotion_applies_to_room_line(self):
        Promotion.objects.create(
            name="Low season", discount_type=Promotion.DiscountType.PERCENT, value=Decimal("10"),
            room_type=Room.Type.DOUBLE, start_date=self.today, end_date=self.today + timedelta(days=30),
        )
        booking = self.make_booking()
        line = booking.invoice.room_lines.get()
        self.assertEqual(line.promotion_discount, Decimal("100000"))
        self.assertEqual(self.presenter.settle(booking).grand_total, 990000)

    def test_create_invoice_is_idempotent(self):
        booking = self.make_booking()
        invoice = self.presenter.create_invoice(booking, payment_method="card")
        again = self.presenter.create_invoice(booking)
        self.assertEqual(invoice.pk, again.pk)
        self.assertEqual(again.payment_method, "card")
        self.assertEqual(again.total, Decimal("1100000"))


class LifecycleTests(PresenterTestCase):
    def test_confirm_is_idempotent_and_logged(self):
        booking = self.make_booking(status=Booking.Status.PENDING_CONFIRMATION)
        with self.assertLogs("frontdesk.presenters", level="INFO"):
            self.presenter.confirm(booking)
        self.assertEqual(self.presenter.confirm(booking).status, Booking.Status.CONFIRMED)

    def test_check_in_occupies_room_and_retries_are_no_ops(self):
        booking = self.make_booking(start=0)
        self.presenter.check_in(booking)
        booking.refresh_from_db()
        self.room.refresh_from_db()
        self.assertEqual(booking.status, Booking.Status.IN_USE)
        self.assertIsNotNone(booking.checked_in_at)
        self.assertEqual(self.room.status, Room.Status.OCCUPIED)
        self.assertEqual(self.presenter.check_in(booking).status, Booking.Status.IN_USE)

    def test_check_in_into_occupied_room_offers_alternatives(self):
        self.in_use(start=-3, nights=3)
        arriving = self.make_booking(start=0, nights=2)
        with self.assertRaises(ConflictError) as ctx:
            self.presenter.check_in(arriving)
        self.assertEqual([room["number"] for room in ctx.exception.alternatives], ["102"])
        arriving.refresh_from_db()
        self.assertEqual(arriving.status, Booking.Status.CONFIRMED)

    def test_check_in_requires_confirmation(self):
        booking = self.make_booking(status=Booking.Status.PENDING_CONFIRMATION)
        with self.assertRaises(StateError):
            self.presenter.check_in(booking)

    def test_cancel(self):
        booking = self.make_booking(status=Booking.Status.PENDING_CONFIRMATION)
        self.assertEqual(self.presenter.cancel(booking).status, Booking.Status.CANCELLED)
        self.assertEqual(self.presenter.cancel(booking).status, Booking.Status.CANCELLED)
        with self.assertRaises(StateError):
            self.presenter.cancel(self.in_use(start=-1, nights=1, room=self.cheap_room))

    def test_unknown_booking(self):
        with self.assertRaises(ValidationError):
            self.presenter.confirm(999)
        with self.assertRaises(ValidationError):
            self.presenter.settle(None)

    def test_direct_status_change_syncs_room_via_signals(self):
        booking = self.make_booking()
        booking.status = Booking.Status.IN_USE
        booking.save(update_fields=["status"])
        self.room.refresh_from_db()
        self.assertEqual(self.room.status, Room.Status.OCCUPIED)

        booking.status = Booking.Status.COMPLETED
        booking.save(update_fields=["status"])
        self.room.refresh_from_db()
        self.assertEqual(self.room.status, Room.Status.CLEANING)


class OverdueAndCheckoutTests(PresenterTestCase):
    def test_mark_overdue_records_late_fee(self):
        booking = self.in_use()
        now = booking.expected_checkout + timedelta(hours=2)
        settlement = self.presenter.mark_overdue(booking, now=now)
        self.assertEqual((settlement.late_fee, settlement.extension_fee), (150000, 0))
        self.assertEqual(settlement.grand_total, 1250000)
        self.assertEqual(settlement.fee_path, Booking.FeePath.LATE)

        booking.refresh_from_db()
        self.room.refresh_from_db()
        self.assertEqual(booking.status, Booking.Status.OVERDUE)
        self.assertEqual(self.room.status, Room.Status.OVERDUE)

        again = self.presenter.mark_overdue(booking, now=now)
        self.assertEqual(again, settlement)
        self.assertEqual(booking.invoice.service_lines.filter(tag=ServiceChargeLine.Tag.LATE_FEE).count(), 1)

    def test_mark_overdue_before_checkout_time(self):
        booking = self.in_use()
        with self.assertRaises(StateError):
            self.presenter.mark_overdue(booking, now=booking.expected_checkout - timedelta(hours=1))

    def test_sweep_marks_only_stays_past_checkout(self):
        due = self.in_use()
        later = self.in_use(start=-1, nights=2, room=self.cheap_room)
        now = timezone.make_aware(datetime.combine(self.today, time(15, 0)))
        self.assertEqual(self.presenter.mark_overdue_bookings(now=now), [due.pk])
        later.refresh_from_db()
        self.assertEqual(later.status, Booking.Status.IN_USE)

    def test_checkout_recomputes_late_fee_and_freezes_invoice(self):
        booking = self.in_use()
        self.presenter.mark_overdue(booking, now=booking.expected_checkout + timedelta(hours=2))
        settlement = self.presenter.check_out(booking, now=booking.expected_checkout + timedelta(hours=5))
        self.assertEqual(settlement.late_fee, 250000)
        self.assertEqual(settlement.grand_total, 1350000)

        booking.refresh_from_db()
        self.room.refresh_from_db()
        self.assertEqual(booking.status, Booking.Status.COMPLETED)
        self.assertEqual(self.room.status, Room.Status.CLEANING)
        invoice = Invoice.objects.get(booking=booking)
        self.assertTrue(invoice.locked)
        self.assertEqual(invoice.total, Decimal("1350000"))

        with self.assertRaises(StateError):
            self.presenter.add_services(booking, [self.breakfast_line()])
        paid = self.presenter.confirm_paid(booking)
        self.assertEqual((paid.grand_total, paid.amount_due), (1350000, 0))
        booking.refresh_from_db()
        self.assertEqual(booking.payment_status, Booking.PaymentStatus.PAID)

    def test_overdue_after_paid_extension_bills_the_overstay_as_extension(self):
        booking = self.in_use()
        self.presenter.extend_stay(booking, "same_day", new_checkout_hour=15)
        paid = self.presenter.confirm_paid(booking)
        self.assertEqual((paid.grand_total, paid.amount_due), (1265000, 0))

        booking.refresh_from_db()
        settlement = self.presenter.mark_overdue(booking, now=booking.expected_checkout + timedelta(hours=1))
        # 16:00 falls in the 50% tier; 30% was already billed.
        self.assertEqual((settlement.extension_fee, settlement.late_fee), (275000, 0))
        self.assertEqual(settlement.grand_total, 1375000)
        self.assertEqual((settlement.amount_due, settlement.refund_due), (110000, 0))
        self.assertEqual(settlement.fee_path, Booking.FeePath.EXTENSION)
        booking.refresh_from_db()
        self.assertEqual((booking.status, booking.fee_path), (Booking.Status.OVERDUE, Booking.FeePath.EXTENSION))

        settlement = self.presenter.check_out(booking, now=booking.expected_checkout + timedelta(hours=4))
        self.assertEqual((settlement.extension_fee, settlement.late_fee, settlement.grand_total), (550000, 0, 1650000))
        invoice = Invoice.objects.get(booking=booking)
        self.assertEqual(invoice.service_lines.filter(description__startswith="Overstay").count(), 1)
        self.assertFalse(invoice.service_lines.filter(tag=ServiceChargeLine.Tag.LATE_FEE).exists())

    def test_checkout_at_standard_hour_has_no_fee(self):
        booking = self.in_use()
        settlement = self.presenter.check_out(booking, now=booking.expected_checkout)
        self.assertEqual((settlement.extension_fee, settlement.late_fee, settlement.grand_total), (0, 0, 1100000))
        self.assertEqual(settlement.lifecycle_state, "completed")
        self.assertEqual(self.presenter.check_out(booking).grand_total, 1100000)


class MoneyTests(PresenterTestCase):
    def test_services_payment_and_downgrade_to_unpaid(self):
        booking = self.in_use(start=-1)
        settlement = self.presenter.add_services(booking, [self.breakfast_line()])
        self.assertEqual((settlement.subtotal, settlement.vat, settlement.grand_total), (1150000, 115000, 1265000))

        self.presenter.confirm_paid(booking, Decimal("1265000"), method="card")
        booking.refresh_from_db()
        self.assertEqual(booking.payment_status, Booking.PaymentStatus.PAID)
        self.assertEqual(booking.invoice.payments.count(), 1)

        settlement = self.presenter.add_services(booking, [self.breakfast_line(quantity=2)])
        booking.refresh_from_db()
        self.assertEqual(settlement.amount_due, 330000)
        self.assertEqual(booking.payment_status, Booking.PaymentStatus.UNPAID)

    def test_overpayment_rejected(self):
        booking = self.make_booking()
        with self.assertRaises(ValidationError):
            self.presenter.confirm_paid(booking, Decimal("2000000"))
        with self.assertRaises(ValidationError):
            self.presenter.add_services(booking, [])

    def test_preview_does_not_write(self):
        booking = self.make_booking()
        preview = self.presenter.preview_services(booking, [self.breakfast_line()])
        self.assertTrue(preview.tentative)
        self.assertEqual(preview.grand_total, 1265000)
        self.assertEqual(booking.invoice.service_lines.count(), 0)
        self.assertEqual(self.presenter.settle(booking).grand_total, 1100000)

    def test_reassignment_before_arrival_leaves_refund(self):
        booking = self.make_booking()
        self.presenter.confirm_paid(booking, Decimal("1100000"))
        result = self.presenter.reassign_room(booking, self.cheap_room)
        self.assertEqual(result["new_room"], "102")
        self.assertEqual((result["total"], result["price_delta"], result["refund_amount"]), (900000, -200000, 200000))
        self.assertEqual(booking.invoice.room_lines.get().room, self.cheap_room)

        settlement = self.presenter.refund(booking, Decimal("200000"), "Room downgrade")
        self.assertEqual((settlement.refund_due, settlement.amount_due), (0, 0))
        self.assertEqual(Refund.objects.filter(invoice__booking=booking).count(), 1)
        with self.assertRaises(ValidationError):
            self.presenter.refund(booking, Decimal("1"), "Again")

    def test_mid_stay_reassignment_splits_nights(self):
        booking = self.in_use(start=-1, nights=3)
        cheaper = Room.objects.create(number="103", price_per_night=Decimal("300000"))
        result = self.presenter.reassign_room(booking, cheaper)
        lines = list(booking.invoice.room_lines.order_by("id"))
        self.assertEqual([(line.room.number, line.nights) for line in lines], [("101", 1), ("103", 2)])
        self.assertEqual(result["total"], 1210000)
        self.assertEqual(result["price_delta"], 1210000 - 1650000)

        self.room.refresh_from_db()
        cheaper.refresh_from_db()
        self.assertEqual(self.room.status, Room.Status.CLEANING)
        self.assertEqual(cheaper.status, Room.Status.OCCUPIED)

    def test_reassignment_after_extra_nights_does_not_charge_them_twice(self):
        booking = self.in_use(start=-1, nights=2)
        self.assertEqual(self.presenter.extend_stay(booking, "extra_nights", extra_nights=1)["total"], 1650000)
        same_rate = Room.objects.create(number="104", price_per_night=Decimal("500000"))
        result = self.presenter.reassign_room(booking, same_rate)
        self.assertEqual((result["total"], result["price_delta"]), (1650000, 0))
        lines = list(Invoice.objects.get(booking=booking).room_lines.order_by("id"))
        self.assertEqual([(line.room.number, line.nights) for line in lines], [("101", 1), ("104", 1)])

    def test_reassignment_into_booked_room(self):
        booking = self.make_booking()
        self.make_booking(room=self.cheap_room)
        with self.assertRaises(ConflictError):
            self.presenter.reassign_room(booking, self.cheap_room)

    def test_same_day_extension(self):
        booking = self.in_use()
        result = self.presenter.extend_stay(booking, "same_day", new_checkout_hour=15)
        self.assertEqual((result["extend_fee"], result["vat_amount"]), (150000, 15000))
        self.assertEqual(result["total"], 1265000)
        booking.refresh_from_db()
        self.assertEqual((booking.checkout_hour, booking.fee_path), (15, Booking.FeePath.EXTENSION))

        noop = self.presenter.extend_stay(booking, "same_day", new_checkout_hour=14)
        self.assertEqual((noop["extend_fee"], noop["total"]), (0, 1265000))
        with self.assertRaises(ConflictError):
            self.presenter.extend_stay(booking, "same_day", new_checkout_hour=18)

    def test_extra_nights_extension(self):
        booking = self.in_use(start=-1, nights=2)
        old_checkout = booking.check_out
        result = self.presenter.extend_stay(booking, "extra_nights", extra_nights=1)
        self.assertEqual((result["extend_fee"], result["vat_amount"], result["total"]), (500000, 50000, 1650000))
        booking.refresh_from_db()
        self.assertEqual(booking.check_out, old_checkout + timedelta(days=1))

    def test_extension_blocked_by_next_booking(self):
        booking = self.in_use(start=-1, nights=2)
        self.make_booking(start=1, nights=2)
        with self.assertRaises(ConflictError):
            self.presenter.extend_stay(booking, "extra_nights", extra_nights=1)

    def test_overdue_stay_cannot_be_extended(self):
        booking = self.in_use()
        self.presenter.mark_overdue(booking, now=booking.expected_checkout + timedelta(hours=1))
        with self.assertRaises(StateError):
            self.presenter.extend_stay(booking, "same_day", new_checkout_hour=18)

    def test_database_failure_applies_nothing(self):
        booking = self.in_use(start=-1)
        with mock.patch.object(ServiceChargeLine.objects, "create", side_effect=DatabaseError("disk I/O error")):
            with self.assertRaises(TransportError):
                self.presenter.add_services(booking, [self.breakfast_line()])
        self.assertEqual(booking.invoice.service_lines.count(), 0)
        self.assertEqual(self.presenter.settle(booking).grand_total, 1100000)


class SummaryTests(PresenterTestCase):
    def test_summary_shape_round_trips_through_the_engine(self):
        booking = self.in_use(start=-1, deposit=Decimal("200000"))
        self.presenter.add_services(booking, [self.breakfast_line()])
        summary = self.presenter.get_summary(booking)

        self.assertEqual(summary["idDatPhong"], booking.pk)
        self.assertEqual(summary["customer"], {"name": "Lan Nguyen", "email": "lan@example.com"})
        self.assertEqual(summary["dates"]["soDem"], 2)
        self.assertEqual(len(summary["items"]), 1)
        self.assertEqual(summary["services"][0]["tag"], "service")
        self.assertEqual(summary["money"]["tongTien"], 1265000)
        self.assertEqual(summary["money"]["remaining"], 1065000)
        self.assertEqual(len(summary["invoices"]), 1)

        again = compute_settlement(summary)
        self.assertEqual((again.grand_total, again.amount_due, again.total_source), (1265000, 1065000, "confirmed"))

    def test_available_rooms(self):
        self.make_booking()
        rooms = self.presenter.available_rooms(self.today + timedelta(days=1), self.today + timedelta(days=3))
        self.assertEqual([(r["number"], r["total_price"]) for r in rooms], [("102", 818182)])
        with self.assertRaises(ValidationError):
            self.presenter.available_rooms(self.today, self.today)
