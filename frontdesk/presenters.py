from __future__ import annotations

import logging
from contextlib import contextmanager
from datetime import date, datetime, time, timedelta
from decimal import Decimal
from typing import Iterable, Iterator

from django.core.exceptions import ValidationError as DjangoValidationError
from django.db import DatabaseError, transaction
from django.utils import timezone

from . import conf
from .charges import extension_quote, late_fee, one_night_rate, promotion_discount, room_charge
from .exceptions import ConflictError, StateError, TransportError, ValidationError
from .lifecycle import advance, ensure_mutable
from .models import (
    ACTIVE_STATUSES,
    Booking,
    Invoice,
    Payment,
    Refund,
    Room,
    RoomChargeLine,
    ServiceChargeLine,
)
from .settlement import Settlement, compute_settlement

logger = logging.getLogger(__name__)

# Statuses in which a guest is physically in the room.
STAYING = [Booking.Status.IN_USE, Booking.Status.OVERDUE]

# Description prefix of the extension line billing an extended stay's overstay.
OVERSTAY = "Overstay"


def _booking_pk(booking) -> int:
    pk = getattr(booking, "pk", booking)
    if pk is None or pk == "":
        raise ValidationError("Booking id is required.")
    return pk


def _checkout_at(day: date, hour: int) -> datetime:
    checkout_time = time(23, 59) if hour >= 24 else time(hour, 0)
    return timezone.make_aware(datetime.combine(day, checkout_time))


def payment_status_for(settlement: Settlement) -> int:
    if settlement.amount_due == 0 and settlement.grand_total > 0:
        return Booking.PaymentStatus.PAID
    if settlement.deposit > 0 and settlement.paid_amount <= 0:
        return Booking.PaymentStatus.DEPOSITED
    return Booking.PaymentStatus.UNPAID


class BookingPresenter:
    """
    Presenter that orchestrates the booking lifecycle and its money:
    - create / confirm / check-in / cancel / mark overdue / check-out
    - add services, take payments, issue refunds
    - reassign room, extend stay

    Every mutation locks the booking row, applies its change, then asks
    ``compute_settlement`` for the new money state. ``_persist_settlement`` is
    the only place an invoice total or a payment status is written.
    """

    # ---- plumbing ----

    @contextmanager
    def _mutation(self, booking, action: str) -> Iterator[Booking]:
        pk = _booking_pk(booking)
        try:
            with transaction.atomic():
                try:
                    locked = Booking.objects.select_for_update().select_related("room", "customer").get(pk=pk)
                except Booking.DoesNotExist:
                    raise ValidationError(f"Booking {pk} does not exist.") from None
                yield locked
        except DjangoValidationError as exc:
            raise ValidationError("; ".join(exc.messages)) from exc
        except DatabaseError as exc:
            logger.exception("Booking %s: %s failed at the database", pk, action)
            raise TransportError(f"Could not {action} booking {pk}; nothing was applied.") from exc

    def _invoice(self, booking: Booking) -> Invoice:
        try:
            return Invoice.objects.select_for_update().get(booking=booking)
        except Invoice.DoesNotExist:
            raise ValidationError(f"Booking {booking.pk} has no invoice.") from None

    def _compute(self, booking: Booking, invoice: Invoice | None, **kwargs) -> Settlement:
        return compute_settlement(booking.as_record(), invoice.as_record() if invoice else None, **kwargs)

    def _persist_settlement(self, booking: Booking, invoice: Invoice) -> Settlement:
        settlement = self._compute(booking, invoice)
        status = payment_status_for(settlement)
        fields = ["status"]
        if not invoice.locked:
            invoice.total = Decimal(settlement.grand_total)
            fields.append("total")
        invoice.status = status
        invoice.save(update_fields=fields)
        if booking.payment_status != status:
            booking.payment_status = status
            booking.save(update_fields=["payment_status", "updated_at"])
        return settlement

    def _room_alternatives(self, booking: Booking, check_in: date | None = None, check_out: date | None = None) -> list[dict]:
        return self.available_rooms(check_in or booking.check_in, check_out or booking.check_out, exclude=booking.room_id)

    def _record_late_fee(self, booking: Booking, invoice: Invoice, at: datetime) -> int:
        """Replace the booking's late fee line with the fee owed for leaving at ``at``."""
        lines = [line.to_line() for line in invoice.room_lines.select_related("room")]
        nights = sum(line.nights for line in lines) or booking.nights
        fee = late_fee(at, booking.expected_checkout, one_night_rate(room_charge(lines), nights))
        invoice.service_lines.filter(tag=ServiceChargeLine.Tag.LATE_FEE).delete()
        if fee > 0:
            ServiceChargeLine.objects.create(
                invoice=invoice,
                description=f"Late checkout fee ({booking.expected_checkout:%Y-%m-%d %H:%M})",
                unit_price=Decimal(fee),
                tag=ServiceChargeLine.Tag.LATE_FEE,
            )
        return fee

    def _record_overstay(self, booking: Booking, invoice: Invoice, at: datetime) -> int:
        """
        Replace the overstay line of an extended stay with what leaving at
        ``at`` costs beyond the extension already billed. Priced like an
        extension from the standard checkout, VAT included.
        """
        at = timezone.localtime(at)
        rate = booking.room.price_per_night
        standard = _checkout_at(booking.check_out, conf.setting("STANDARD_CHECKOUT_HOUR"))
        billed = extension_quote(standard, booking.expected_checkout, rate).total
        fee = max(0, extension_quote(standard, max(at, booking.expected_checkout), rate).total - billed)
        invoice.service_lines.filter(tag=ServiceChargeLine.Tag.EXTENSION_FEE, description__startswith=OVERSTAY).delete()
        if fee > 0:
            ServiceChargeLine.objects.create(
                invoice=invoice,
                description=f"{OVERSTAY} past {booking.expected_checkout:%Y-%m-%d %H:%M}",
                unit_price=Decimal(fee),
                tag=ServiceChargeLine.Tag.EXTENSION_FEE,
            )
        return fee

    # ---- queries ----

    def _get(self, booking) -> Booking:
        pk = _booking_pk(booking)
        try:
            return Booking.objects.select_related("room", "customer").get(pk=pk)
        except Booking.DoesNotExist:
            raise ValidationError(f"Booking {pk} does not exist.") from None

    def settle(self, booking) -> Settlement:
        booking = self._get(booking)
        invoices = list(Invoice.objects.filter(booking=booking))
        return self._compute(booking, invoices[0] if invoices else None, invoices=invoices)

    def preview_services(self, booking, lines: Iterable[dict]) -> Settlement:
        """Tentative settlement with ``lines`` added, nothing written."""
        booking = self._get(booking)
        invoice = Invoice.objects.filter(booking=booking).first()
        tentative = [
            {
                "serviceId": line["service"].pk if line.get("service") else None,
                "comboId": line.get("combo_code") or None,
                "quantity": line.get("quantity", Decimal("1")),
                "unitPrice": line["unit_price"],
            }
            for line in lines
        ]
        return self._compute(booking, invoice, tentative_lines=tentative)

    def get_summary(self, booking) -> dict:
        """Booking summary in the billing backend's shape."""
        settlement = self.settle(booking)
        booking = self._get(booking)
        invoice = Invoice.objects.filter(booking=booking).first()
        items, services, invoices = [], [], []
        if invoice is not None:
            for line in invoice.room_lines.select_related("room"):
                items.append({
                    "roomId": line.room.number,
                    "roomType": line.room.type,
                    "nightlyRate": int(line.nightly_rate),
                    "nights": line.nights,
                    "promotion": line.promotion.name if line.promotion else None,
                    "promotionDiscount": str(line.promotion_discount),
                    "lineTotal": str(line.line_total),
                })
            for line in invoice.service_lines.all():
                services.append({
                    "serviceId": str(line.service_id) if line.service_id else None,
                    "comboId": line.combo_code or None,
                    "description": line.description,
                    "quantity": str(line.quantity),
                    "unitPrice": int(line.unit_price),
                    "lineTotal": str(line.line_total),
                    "tag": line.tag,
                })
            invoices.append({
                "id": invoice.pk,
                "series": invoice.series,
                "number": invoice.number,
                "paymentMethod": invoice.payment_method,
                "paymentStatus": invoice.status,
                "locked": invoice.locked,
            })
        return {
            "idDatPhong": booking.pk,
            "status": booking.status,
            "feePath": settlement.fee_path,
            "customer": {"name": booking.customer.full_name, "email": booking.customer.email},
            "dates": {
                "checkin": booking.check_in.isoformat(),
                "checkout": booking.check_out.isoformat(),
                "soDem": booking.nights,
            },
            "expectedCheckout": booking.expected_checkout.isoformat(),
            "actualCheckout": booking.checked_out_at.isoformat() if booking.checked_out_at else None,
            "money": {
                "roomTotal": settlement.room_total,
                "serviceTotal": settlement.service_total,
                "subTotal": settlement.subtotal,
                "vat": settlement.vat,
                "extendFee": settlement.extension_fee,
                "lateFee": settlement.late_fee,
                "deposit": settlement.deposit,
                "paidAmount": settlement.paid_amount,
                "tongTien": settlement.grand_total,
                "remaining": settlement.amount_due,
                "refundDue": settlement.refund_due,
                "currency": conf.setting("CURRENCY"),
            },
            "items": items,
            "services": services,
            "invoices": invoices,
        }

    def available_rooms(self, check_in: date, check_out: date, room_type: str | None = None, exclude: int | None = None) -> list[dict]:
        if not check_in or not check_out or not check_in < check_out:
            raise ValidationError("Provide valid start and end dates (start < end).")
        overlapping = Booking.objects.filter(
            status__in=ACTIVE_STATUSES,
            check_in__lt=check_out,
            check_out__gt=check_in,
        ).values_list("room_id", flat=True)

        rooms_qs = Room.objects.exclude(id__in=overlapping).exclude(status=Room.Status.OVERDUE)
        if room_type:
            rooms_qs = rooms_qs.filter(type=room_type)
        if exclude:
            rooms_qs = rooms_qs.exclude(pk=exclude)

        nights = (check_out - check_in).days
        rooms = []
        for r in rooms_qs.order_by("number"):
            base = r.price_per_night * nights
            discount = promotion_discount(r.active_promotion(check_in), base)
            rooms.append({**r.as_dict(), "nights": nights, "total_price": int(base - discount)})
        return rooms

    # ---- lifecycle ----

    def create_booking(self, form) -> Booking:
        if not form.is_valid():
            raise ValidationError("Form must be valid before creating a booking.")
        try:
            with transaction.atomic():
                booking: Booking = form.save(commit=False)
                booking.status = Booking.Status.PENDING_CONFIRMATION
                booking.save()
                # The invoice and first room line come from the post_save signal.
                self._persist_settlement(booking, booking.invoice)
        except DjangoValidationError as exc:
            raise ValidationError("; ".join(exc.messages)) from exc
        except DatabaseError as exc:
            logger.exception("Creating a booking failed at the database")
            raise TransportError("Could not create the booking; nothing was applied.") from exc
        logger.info("Booking %s created for room %s", booking.pk, booking.room.number)
        return booking

    def create_invoice(self, booking, payment_method: str | None = None) -> Invoice:
        with self._mutation(booking, "invoice") as b:
            ensure_mutable(b.status, "invoice")
            invoice, created = Invoice.objects.get_or_create(booking=b, defaults={"customer": b.customer})
            if created:
                invoice.add_room_line(b.room, b.nights, b.check_in)
            if payment_method and payment_method != invoice.payment_method:
                invoice.payment_method = payment_method
                invoice.save(update_fields=["payment_method"])
            self._persist_settlement(b, invoice)
        logger.info("Booking %s: invoice %s-%s ready", b.pk, invoice.series, invoice.number)
        return invoice

    def confirm(self, booking) -> Booking:
        with self._mutation(booking, "confirm") as b:
            if advance(b.status, Booking.Status.CONFIRMED):
                b.status = Booking.Status.CONFIRMED
                b.save(update_fields=["status", "updated_at"])
                logger.info("Booking %s confirmed", b.pk)
        return b

    def check_in(self, booking, now: datetime | None = None) -> Booking:
        with self._mutation(booking, "check in") as b:
            if not advance(b.status, Booking.Status.IN_USE):
                return b
            busy = Booking.objects.filter(room=b.room, status__in=STAYING).exclude(pk=b.pk).exists()
            if busy or b.room.status == Room.Status.OVERDUE:
                raise ConflictError(
                    f"Room {b.room.number} is still occupied; reassign the guest to another room.",
                    alternatives=self._room_alternatives(b),
                )
            b.status = Booking.Status.IN_USE
            b.checked_in_at = now or timezone.now()
            b.save(update_fields=["status", "checked_in_at", "updated_at"])
        logger.info("Booking %s checked in to room %s", b.pk, b.room.number)
        return b

    def cancel(self, booking) -> Booking:
        with self._mutation(booking, "cancel") as b:
            if advance(b.status, Booking.Status.CANCELLED):
                b.status = Booking.Status.CANCELLED
                b.save(update_fields=["status", "updated_at"])
                logger.info("Booking %s cancelled", b.pk)
        return b

    def mark_overdue(self, booking, now: datetime | None = None) -> Settlement:
        now = now or timezone.now()
        with self._mutation(booking, "mark overdue") as b:
            invoice = self._invoice(b)
            if not advance(b.status, Booking.Status.OVERDUE):
                return self._compute(b, invoice)
            if now <= b.expected_checkout:
                raise StateError(f"Booking {b.pk} is not past its checkout time yet.")
            b.status = Booking.Status.OVERDUE
            if b.fee_path == Booking.FeePath.EXTENSION:
                b.save(update_fields=["status", "updated_at"])
                fee = self._record_overstay(b, invoice, now)
            else:
                b.fee_path = Booking.FeePath.LATE
                b.save(update_fields=["status", "fee_path", "updated_at"])
                fee = self._record_late_fee(b, invoice, now)
            settlement = self._persist_settlement(b, invoice)
        logger.info("Booking %s overdue; %s fee %s", b.pk, b.fee_path, fee)
        return settlement

    def mark_overdue_bookings(self, now: datetime | None = None) -> list[int]:
        """Sweep in-use stays past their effective checkout. Returns the ids marked overdue."""
        now = now or timezone.now()
        marked = []
        candidates = Booking.objects.filter(status=Booking.Status.IN_USE, check_out__lte=timezone.localdate(now))
        for booking in candidates.order_by("check_out", "pk"):
            if now <= booking.expected_checkout:
                continue
            try:
                self.mark_overdue(booking, now=now)
            except StateError as exc:
                # Changed state since the sweep started.
                logger.info("Booking %s skipped by overdue sweep: %s", booking.pk, exc)
                continue
            marked.append(booking.pk)
        if marked:
            logger.warning("Overdue sweep marked %d booking(s): %s", len(marked), marked)
        return marked

    def check_out(self, booking, now: datetime | None = None) -> Settlement:
        now = now or timezone.now()
        with self._mutation(booking, "check out") as b:
            invoice = self._invoice(b)
            if not advance(b.status, Booking.Status.COMPLETED):
                return self._compute(b, invoice)
            if b.status == Booking.Status.OVERDUE or now > b.expected_checkout:
                if b.fee_path == Booking.FeePath.EXTENSION:
                    self._record_overstay(b, invoice, now)
                else:
                    b.fee_path = Booking.FeePath.LATE
                    self._record_late_fee(b, invoice, now)
            b.status = Booking.Status.COMPLETED
            b.checked_out_at = now
            b.save(update_fields=["status", "fee_path", "checked_out_at", "updated_at"])
            settlement = self._persist_settlement(b, invoice)
            invoice.locked = True
            invoice.save(update_fields=["locked"])
        logger.info("Booking %s checked out; grand total %s, due %s", b.pk, settlement.grand_total, settlement.amount_due)
        return settlement

    # ---- money ----

    def add_services(self, booking, lines: Iterable[dict]) -> Settlement:
        lines = list(lines)
        if not lines:
            raise ValidationError("No service lines given.")
        with self._mutation(booking, "add services to") as b:
            ensure_mutable(b.status, "add services to")
            invoice = self._invoice(b)
            for line in lines:
                quantity = Decimal(line.get("quantity") or 1)
                unit_price = Decimal(line["unit_price"])
                if quantity <= 0 or unit_price < 0:
                    raise ValidationError("Quantity must be positive and unit price non-negative.")
                ServiceChargeLine.objects.create(
                    invoice=invoice,
                    service=line.get("service"),
                    combo_code=line.get("combo_code") or "",
                    description=line.get("description") or "Service",
                    quantity=quantity,
                    unit_price=unit_price,
                    tag=ServiceChargeLine.Tag.SERVICE,
                )
            settlement = self._persist_settlement(b, invoice)
        logger.info("Booking %s: %d service line(s) added; due %s", b.pk, len(lines), settlement.amount_due)
        return settlement

    def confirm_paid(self, booking, amount: Decimal | int | None = None, method: str | None = None) -> Settlement:
        with self._mutation(booking, "take payment for") as b:
            if b.status == Booking.Status.CANCELLED:
                raise StateError("Cannot take payment for a cancelled booking.")
            invoice = self._invoice(b)
            current = self._compute(b, invoice)
            if amount is None:
                if current.amount_due == 0:
                    return self._persist_settlement(b, invoice)
                amount = current.amount_due
            amount = Decimal(amount)
            if amount <= 0:
                raise ValidationError("Payment amount must be positive.")
            if amount > current.amount_due:
                raise ValidationError(f"Payment {amount} exceeds the amount due ({current.amount_due}).")
            Payment.objects.create(invoice=invoice, amount=amount, method=method or invoice.payment_method)
            invoice.paid_amount += amount
            if method:
                invoice.payment_method = method
            invoice.save(update_fields=["paid_amount", "payment_method"])
            settlement = self._persist_settlement(b, invoice)
        logger.info("Booking %s: payment %s recorded; due %s", b.pk, amount, settlement.amount_due)
        return settlement

    def refund(
        self,
        booking,
        amount: Decimal | int,
        reason: str,
        method: str | None = None,
        on: date | None = None,
    ) -> Settlement:
        if not reason:
            raise ValidationError("A refund needs a reason.")
        amount = Decimal(amount)
        if amount <= 0:
            raise ValidationError("Refund amount must be positive.")
        with self._mutation(booking, "refund") as b:
            invoice = self._invoice(b)
            current = self._compute(b, invoice)
            if current.refund_due <= 0:
                raise ValidationError(f"Nothing to refund on booking {b.pk}.")
            if amount > current.refund_due:
                raise ValidationError(f"Refund {amount} exceeds the refund due ({current.refund_due}).")
            Refund.objects.create(
                invoice=invoice,
                amount=amount,
                reason=reason,
                method=method or invoice.payment_method,
                date=on or timezone.localdate(),
            )
            invoice.refunded_amount += amount
            invoice.save(update_fields=["refunded_amount"])
            settlement = self._persist_settlement(b, invoice)
        logger.info("Booking %s: refunded %s (%s)", b.pk, amount, reason)
        return settlement

    def reassign_room(self, booking, new_room, today: date | None = None) -> dict:
        today = today or timezone.localdate()
        with self._mutation(booking, "reassign") as b:
            ensure_mutable(b.status, "reassign")
            try:
                room = Room.objects.select_for_update().get(pk=getattr(new_room, "pk", new_room))
            except Room.DoesNotExist:
                raise ValidationError(f"Room {new_room} does not exist.") from None
            invoice = self._invoice(b)
            before = self._compute(b, invoice)
            if room.pk == b.room_id:
                return {"new_room": room.number, "total": before.grand_total, "price_delta": 0,
                        "refund_amount": before.refund_due, "settlement": before}

            stay_start = today if b.status in STAYING else b.check_in
            stay_start = min(max(stay_start, b.check_in), b.check_out - timedelta(days=1))
            busy = b.overlapping(room_id=room.pk, check_in=stay_start).exists()
            if busy or room.status == Room.Status.OVERDUE:
                raise ConflictError(
                    f"Room {room.number} is not available for this stay.",
                    alternatives=self._room_alternatives(b, check_in=stay_start),
                )

            old_lines = list(invoice.room_lines.select_related("room", "promotion"))
            invoice.room_lines.all().delete()
            # Nights added by an extension stay on their extension line.
            sold = sum(line.nights for line in old_lines) or b.nights
            used = min((stay_start - b.check_in).days, sold) if b.status in STAYING else 0
            if used > 0:
                self._carry_used_nights(invoice, old_lines, used)
            if sold > used:
                invoice.add_room_line(room, sold - used, b.check_in + timedelta(days=used))

            old_number = b.room.number
            b.room = room
            b.save(update_fields=["room", "updated_at"])
            after = self._persist_settlement(b, invoice)
        logger.info(
            "Booking %s moved from room %s to %s; total %s -> %s",
            b.pk, old_number, room.number, before.grand_total, after.grand_total,
        )
        return {
            "new_room": room.number,
            "total": after.grand_total,
            "price_delta": after.grand_total - before.grand_total,
            "refund_amount": after.refund_due,
            "settlement": after,
        }

    def _carry_used_nights(self, invoice: Invoice, old_lines: list[RoomChargeLine], used: int) -> None:
        """Re-issue the nights already spent at the rates they were sold at."""
        for line in old_lines:
            if used <= 0:
                break
            nights = min(line.nights, used)
            used -= nights
            RoomChargeLine.objects.create(
                invoice=invoice,
                room=line.room,
                nightly_rate=line.nightly_rate,
                nights=nights,
                promotion=line.promotion,
                promotion_discount=promotion_discount(line.promotion, line.nightly_rate * nights).quantize(Decimal("0.01")),
            )

    def extend_stay(
        self,
        booking,
        extend_type: str,
        new_checkout_hour: int | None = None,
        extra_nights: int | None = None,
        payment_method: str | None = None,
    ) -> dict:
        with self._mutation(booking, "extend") as b:
            if b.status == Booking.Status.OVERDUE:
                raise StateError(f"Booking {b.pk} is overdue; a late fee applies instead of an extension.")
            if b.status != Booking.Status.IN_USE:
                raise StateError("Only stays in use can be extended.")
            invoice = self._invoice(b)
            old_checkout = b.expected_checkout
            rate = b.room.price_per_night

            if extend_type == "same_day":
                hour = int(new_checkout_hour or 0)
                if hour <= b.checkout_hour or hour <= conf.setting("STANDARD_CHECKOUT_HOUR"):
                    current = self._compute(b, invoice)
                    return {"new_checkout": old_checkout.isoformat(), "total": current.grand_total,
                            "extend_fee": 0, "vat_amount": 0, "settlement": current}
                if b.same_day_extended:
                    raise ConflictError(f"Booking {b.pk} already has a same-day extension.")
                new_checkout = _checkout_at(b.check_out, hour)
                quote = extension_quote(old_checkout, new_checkout, rate)
                b.checkout_hour = hour
                b.same_day_extended = True
                description = f"Same-day extension until {new_checkout:%H:%M} ({quote.percent}%)"
            elif extend_type == "extra_nights":
                nights = int(extra_nights or 0)
                if nights < 1:
                    raise ValidationError("Extra nights must be at least 1.")
                new_out = b.check_out + timedelta(days=nights)
                if b.overlapping(check_in=b.check_out, check_out=new_out).exists():
                    raise ConflictError(
                        f"Room {b.room.number} is booked after {b.check_out}.",
                        alternatives=self._room_alternatives(b, check_in=b.check_out, check_out=new_out),
                    )
                new_checkout = _checkout_at(new_out, b.checkout_hour)
                quote = extension_quote(old_checkout, new_checkout, rate)
                b.check_out = new_out
                description = f"Extension: {nights} extra night(s)"
            else:
                raise ValidationError(f"Unknown extension type {extend_type!r}.")

            b.fee_path = Booking.FeePath.EXTENSION
            b.save(update_fields=["check_out", "checkout_hour", "same_day_extended", "fee_path", "updated_at"])
            if quote.total > 0:
                ServiceChargeLine.objects.create(
                    invoice=invoice,
                    description=description,
                    unit_price=Decimal(quote.total),
                    tag=ServiceChargeLine.Tag.EXTENSION_FEE,
                )
            if payment_method and payment_method != invoice.payment_method:
                invoice.payment_method = payment_method
                invoice.save(update_fields=["payment_method"])
            settlement = self._persist_settlement(b, invoice)
        logger.info("Booking %s extended to %s; fee %s", b.pk, new_checkout, quote.total)
        return {
            "new_checkout": new_checkout.isoformat(),
            "total": settlement.grand_total,
            "extend_fee": quote.base,
            "vat_amount": quote.vat,
            "settlement": settlement,
        }
