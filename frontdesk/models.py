from __future__ import annotations

from datetime import date, datetime, time
from decimal import Decimal

from django.core.exceptions import ValidationError
from django.db import models
from django.db.models import F, Q
from django.utils import timezone

from . import conf
from .charges import promotion_discount, room_line_total
from .lifecycle import BookingStatus, FeePath, PaymentStatus
from .normalizer import EXTENSION_FEE, LATE_FEE, SERVICE, RoomLine

MONEY = {"max_digits": 14, "decimal_places": 0, "default": Decimal("0")}

# Statuses that hold a room for their dates.
ACTIVE_STATUSES = [
    BookingStatus.PENDING_CONFIRMATION,
    BookingStatus.CONFIRMED,
    BookingStatus.IN_USE,
    BookingStatus.OVERDUE,
]


def default_invoice_series() -> str:
    return conf.setting("INVOICE_SERIES")


class Room(models.Model):
    class Type(models.TextChoices):
        SINGLE = "single", "Single"
        DOUBLE = "double", "Double"
        TWIN = "twin", "Twin"
        SUITE = "suite", "Suite"
        DELUXE = "deluxe", "Deluxe"

    class Status(models.TextChoices):
        AVAILABLE = "available", "Available"
        OCCUPIED = "occupied", "Occupied"
        CLEANING = "cleaning", "Cleaning"
        OVERDUE = "overdue", "Overdue"

    number = models.CharField(max_length=10, unique=True)
    type = models.CharField(max_length=20, choices=Type.choices, default=Type.DOUBLE)
    price_per_night = models.DecimalField(**MONEY)
    status = models.CharField(max_length=15, choices=Status.choices, default=Status.AVAILABLE)

    class Meta:
        ordering = ["number"]

    def __str__(self) -> str:  # pragma: no cover
        return f"Room {self.number} - {self.get_type_display()} ({self.get_status_display()})"

    def active_promotion(self, d: date) -> "Promotion | None":
        """
        Most specific active promotion covering ``d``:
        1) a promotion attached to this room
        2) a promotion for this room type
        Ties go to the larger value.
        """
        base = Promotion.objects.filter(active=True, start_date__lte=d, end_date__gte=d)
        promo = base.filter(rooms=self).order_by("-value").first()
        if promo:
            return promo
        return base.filter(room_type=self.type).order_by("-value").first()

    def as_dict(self) -> dict:
        return {
            "id": self.pk,
            "number": self.number,
            "type": self.type,
            "price_per_night": int(self.price_per_night),
            "status": self.status,
        }


class Promotion(models.Model):
    """
    Room promotion. Attached to specific rooms, or to a whole room type when
    ``room_type`` is set.
    """
    class DiscountType(models.TextChoices):
        PERCENT = "percent", "Percentage"
        AMOUNT = "amount", "Flat amount"

    name = models.CharField(max_length=100)
    discount_type = models.CharField(max_length=10, choices=DiscountType.choices, default=DiscountType.PERCENT)
    value = models.DecimalField(max_digits=14, decimal_places=2, default=Decimal("0"))
    rooms = models.ManyToManyField(Room, blank=True, related_name="promotions")
    room_type = models.CharField(max_length=20, choices=Room.Type.choices, null=True, blank=True)
    start_date = models.DateField()
    end_date = models.DateField()
    active = models.BooleanField(default=True)

    class Meta:
        ordering = ["start_date"]

    def __str__(self) -> str:  # pragma: no cover
        return f"{self.name} ({self.value} {self.get_discount_type_display()})"

    def clean(self):
        if self.start_date and self.end_date and self.start_date > self.end_date:
            raise ValidationError({"end_date": "End date must not be before start date."})
        if self.discount_type == self.DiscountType.PERCENT and self.value > 100:
            raise ValidationError({"value": "A percentage cannot exceed 100."})


class Customer(models.Model):
    first_name = models.CharField(max_length=100)
    last_name = models.CharField(max_length=100, blank=True)
    email = models.EmailField(blank=True, null=True)
    phone = models.CharField(max_length=30, blank=True, null=True)
    document_id = models.CharField("ID/Passport", max_length=50, blank=True, null=True)

    def __str__(self) -> str:  # pragma: no cover
        return self.full_name

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()


class Service(models.Model):
    name = models.CharField(max_length=100)
    unit_price = models.DecimalField(**MONEY)
    active = models.BooleanField(default=True)

    def __str__(self) -> str:  # pragma: no cover
        return self.name


class Booking(models.Model):
    Status = BookingStatus
    PaymentStatus = PaymentStatus
    FeePath = FeePath

    customer = models.ForeignKey(Customer, on_delete=models.PROTECT, related_name="bookings")
    room = models.ForeignKey(Room, on_delete=models.PROTECT, related_name="bookings")
    check_in = models.DateField()
    check_out = models.DateField()
    status = models.IntegerField(choices=BookingStatus.choices, default=BookingStatus.PENDING_CONFIRMATION)
    payment_status = models.IntegerField(choices=PaymentStatus.choices, default=PaymentStatus.UNPAID)
    deposit = models.DecimalField(**MONEY)
    notes = models.TextField(blank=True, default="")
    # Effective checkout hour on the checkout date; 24 means 23:59.
    checkout_hour = models.PositiveSmallIntegerField(default=12)
    fee_path = models.CharField(max_length=10, choices=FeePath.choices, blank=True, default=FeePath.NONE)
    same_day_extended = models.BooleanField(default=False)
    checked_in_at = models.DateTimeField(blank=True, null=True)
    checked_out_at = models.DateTimeField(blank=True, null=True)

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        constraints = [
            models.CheckConstraint(name="booking_check_in_before_check_out", condition=Q(check_in__lt=F("check_out"))),
            models.CheckConstraint(name="booking_deposit_not_negative", condition=Q(deposit__gte=0)),
        ]
        ordering = ["-created_at"]

    def __str__(self) -> str:  # pragma: no cover
        return f"Booking #{self.pk or 'new'} - Room {self.room.number} for {self.customer} [{self.check_in} → {self.check_out}]"

    @property
    def nights(self) -> int:
        return max(0, (self.check_out - self.check_in).days)

    @property
    def expected_checkout(self) -> datetime:
        hour = self.checkout_hour
        checkout_time = time(23, 59) if hour >= 24 else time(hour, 0)
        return timezone.make_aware(datetime.combine(self.check_out, checkout_time))

    def overlapping(self, room_id: int | None = None, check_in: date | None = None, check_out: date | None = None):
        return (
            Booking.objects.filter(room_id=room_id or self.room_id)
            .exclude(pk=self.pk)
            .filter(
                status__in=ACTIVE_STATUSES,
                check_in__lt=check_out or self.check_out,
                check_out__gt=check_in or self.check_in,
            )
        )

    def clean(self) -> None:
        if self.check_in and self.check_out and self.check_in >= self.check_out:
            raise ValidationError({"check_out": "Check-out must be after check-in."})
        if self.deposit is not None and self.deposit < 0:
            raise ValidationError({"deposit": "Deposit cannot be negative."})

        # Only bookings that still hold the room are checked for overlaps.
        if self.room_id and self.check_in and self.check_out and self.status in ACTIVE_STATUSES:
            if self.overlapping().exists():
                raise ValidationError("Selected room is not available for the given dates.")

    def save(self, *args, **kwargs):
        self.full_clean()
        super().save(*args, **kwargs)

    def as_record(self) -> dict:
        return {
            "bookingId": str(self.pk),
            "customerRef": self.customer_id,
            "status": self.status,
            "paymentStatus": self.payment_status,
            "feePath": self.fee_path,
            "deposit": self.deposit,
            "notes": self.notes,
            "checkIn": self.check_in.isoformat(),
            "checkOut": self.check_out.isoformat(),
            "checkoutHour": self.checkout_hour,
            "expectedCheckout": self.expected_checkout.isoformat(),
            "actualCheckout": self.checked_out_at.isoformat() if self.checked_out_at else None,
            "nights": self.nights,
        }


class Invoice(models.Model):
    class PaymentMethod(models.TextChoices):
        CASH = "cash", "Cash"
        CARD = "card", "Card"
        TRANSFER = "transfer", "Bank Transfer / QR"

    booking = models.OneToOneField(Booking, on_delete=models.CASCADE, related_name="invoice")
    customer = models.ForeignKey(Customer, on_delete=models.PROTECT, related_name="invoices")
    series = models.CharField(max_length=10, default=default_invoice_series)
    number = models.PositiveIntegerField(blank=True, null=True)
    issue_date = models.DateTimeField(auto_now_add=True)
    payment_method = models.CharField(max_length=20, choices=PaymentMethod.choices, default=PaymentMethod.CASH)

    vat_rate = models.DecimalField(max_digits=4, decimal_places=2, default=Decimal("0.10"))
    paid_amount = models.DecimalField(**MONEY)
    refunded_amount = models.DecimalField(**MONEY)
    # Written only from BookingPresenter._persist_settlement.
    total = models.DecimalField(**MONEY)
    status = models.IntegerField(choices=PaymentStatus.choices, default=PaymentStatus.UNPAID)
    locked = models.BooleanField(default=False)
    notes = models.TextField(blank=True, default="")

    class Meta:
        ordering = ["-issue_date"]
        constraints = [
            models.UniqueConstraint(fields=["series", "number"], name="uniq_invoice_series_number"),
        ]

    def __str__(self) -> str:  # pragma: no cover
        label = f"{self.series}-{self.number}" if self.number else f"#{self.pk or 'new'}"
        return f"Invoice {label} for {self.customer} ({self.total})"

    def assign_sequential_number(self):
        """
        Assign next sequential number within the same series if number is empty.
        """
        if self.number is None:
            last = Invoice.objects.filter(series=self.series).aggregate(models.Max("number"))["number__max"] or 0
            self.number = int(last) + 1

    def save(self, *args, **kwargs):
        self.assign_sequential_number()
        super().save(*args, **kwargs)

    def add_room_line(self, room: Room, nights: int, on_date: date) -> "RoomChargeLine":
        """Charge ``nights`` in ``room`` at its current rate, applying the promotion active on ``on_date``."""
        promotion = room.active_promotion(on_date)
        return RoomChargeLine.objects.create(
            invoice=self,
            room=room,
            nightly_rate=room.price_per_night,
            nights=nights,
            promotion=promotion,
            promotion_discount=promotion_discount(promotion, room.price_per_night * nights).quantize(Decimal("0.01")),
        )

    def as_record(self) -> dict:
        record = {
            "id": str(self.pk),
            "bookingRef": str(self.booking_id),
            "roomLines": [line.as_record() for line in self.room_lines.all()],
            "serviceLines": [line.as_record() for line in self.service_lines.all()],
            "vatRate": self.vat_rate,
            "paidAmount": self.paid_amount,
            "refundedAmount": self.refunded_amount,
            "paymentStatus": self.status,
            "notes": self.notes,
        }
        # A live invoice is always recomputed from its lines; only a frozen
        # one carries an authoritative total.
        if self.locked:
            record["total"] = self.total
        return record


class RoomChargeLine(models.Model):
    invoice = models.ForeignKey(Invoice, on_delete=models.CASCADE, related_name="room_lines")
    room = models.ForeignKey(Room, on_delete=models.PROTECT, related_name="charge_lines")
    nightly_rate = models.DecimalField(**MONEY)
    nights = models.PositiveIntegerField(default=1)
    promotion = models.ForeignKey(Promotion, on_delete=models.SET_NULL, null=True, blank=True)
    promotion_discount = models.DecimalField(max_digits=14, decimal_places=2, default=Decimal("0"))
    line_total = models.DecimalField(max_digits=14, decimal_places=2, default=Decimal("0"))

    class Meta:
        ordering = ["id"]

    def __str__(self):  # pragma: no cover
        return f"Room {self.room.number} x {self.nights} @ {self.nightly_rate}"

    def to_line(self) -> RoomLine:
        return RoomLine(
            room_id=self.room.number,
            nightly_rate=self.nightly_rate,
            nights=self.nights,
            promotion_discount=self.promotion_discount,
        )

    def save(self, *args, **kwargs):
        self.line_total = room_line_total(self.to_line())
        super().save(*args, **kwargs)

    def as_record(self) -> dict:
        return {
            "roomId": self.room.number,
            "nightlyRate": self.nightly_rate,
            "nights": self.nights,
            "promotionDiscount": self.promotion_discount,
        }


class ServiceChargeLine(models.Model):
    class Tag(models.TextChoices):
        SERVICE = SERVICE, "Service"
        EXTENSION_FEE = EXTENSION_FEE, "Extension fee"
        LATE_FEE = LATE_FEE, "Late fee"

    invoice = models.ForeignKey(Invoice, on_delete=models.CASCADE, related_name="service_lines")
    service = models.ForeignKey(Service, on_delete=models.SET_NULL, null=True, blank=True)
    combo_code = models.CharField(max_length=30, blank=True, default="")
    description = models.CharField(max_length=200)
    quantity = models.DecimalField(max_digits=8, decimal_places=2, default=Decimal("1.00"))
    unit_price = models.DecimalField(**MONEY)
    line_total = models.DecimalField(max_digits=14, decimal_places=2, default=Decimal("0"))
    tag = models.CharField(max_length=20, choices=Tag.choices, default=Tag.SERVICE)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ["id"]

    def __str__(self):  # pragma: no cover
        return f"{self.description} x {self.quantity} @ {self.unit_price}"

    def save(self, *args, **kwargs):
        self.line_total = self.quantity * self.unit_price
        super().save(*args, **kwargs)

    def as_record(self) -> dict:
        return {
            "serviceId": str(self.service_id) if self.service_id else None,
            "comboId": self.combo_code or None,
            "quantity": self.quantity,
            "unitPrice": self.unit_price,
            "lineTotal": self.line_total,
            "tag": self.tag,
        }


class Payment(models.Model):
    invoice = models.ForeignKey(Invoice, on_delete=models.CASCADE, related_name="payments")
    amount = models.DecimalField(**MONEY)
    method = models.CharField(max_length=20, choices=Invoice.PaymentMethod.choices, default=Invoice.PaymentMethod.CASH)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ["id"]


class Refund(models.Model):
    invoice = models.ForeignKey(Invoice, on_delete=models.CASCADE, related_name="refunds")
    amount = models.DecimalField(**MONEY)
    reason = models.CharField(max_length=255)
    method = models.CharField(max_length=20, choices=Invoice.PaymentMethod.choices, default=Invoice.PaymentMethod.CASH)
    date = models.DateField(default=timezone.localdate)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ["id"]

    def __str__(self) -> str:  # pragma: no cover
        return f"Refund {self.amount} on invoice #{self.invoice_id}"
