from django.contrib import admin

from .models import (
    Booking, Customer, Invoice, Payment, Promotion, Refund, Room, RoomChargeLine, Service, ServiceChargeLine,
)


@admin.register(Room)
class RoomAdmin(admin.ModelAdmin):
    list_display = ("number", "type", "price_per_night", "status")
    list_filter = ("type", "status")
    search_fields = ("number",)
    actions = ["mark_as_available"]

    def mark_as_available(self, request, queryset):
        queryset.update(status=Room.Status.AVAILABLE)
    mark_as_available.short_description = "Mark selected rooms as cleaned and available"


@admin.register(Customer)
class CustomerAdmin(admin.ModelAdmin):
    list_display = ("first_name", "last_name", "email", "phone")
    search_fields = ("first_name", "last_name", "email", "document_id")


@admin.register(Promotion)
class PromotionAdmin(admin.ModelAdmin):
    list_display = ("name", "discount_type", "value", "room_type", "start_date", "end_date", "active")
    list_filter = ("discount_type", "active", "room_type")
    filter_horizontal = ("rooms",)


@admin.register(Service)
class ServiceAdmin(admin.ModelAdmin):
    list_display = ("name", "unit_price", "active")
    list_filter = ("active",)


@admin.register(Booking)
class BookingAdmin(admin.ModelAdmin):
    list_display = ("id", "customer", "room", "check_in", "check_out", "status", "payment_status", "deposit", "fee_path")
    list_filter = ("status", "payment_status", "fee_path", "room__type")
    search_fields = ("customer__first_name", "customer__last_name", "room__number")
    # Status and money move through BookingPresenter only.
    readonly_fields = ("status", "payment_status", "fee_path", "checkout_hour", "same_day_extended",
                       "checked_in_at", "checked_out_at", "created_at", "updated_at")


class RoomChargeLineInline(admin.TabularInline):
    model = RoomChargeLine
    extra = 0
    fields = ("room", "nightly_rate", "nights", "promotion", "promotion_discount", "line_total")
    readonly_fields = fields


class ServiceChargeLineInline(admin.TabularInline):
    model = ServiceChargeLine
    extra = 0
    fields = ("description", "tag", "quantity", "unit_price", "line_total")
    readonly_fields = fields


class PaymentInline(admin.TabularInline):
    model = Payment
    extra = 0
    readonly_fields = ("amount", "method", "created_at")


class RefundInline(admin.TabularInline):
    model = Refund
    extra = 0
    readonly_fields = ("amount", "reason", "method", "date")


@admin.register(Invoice)
class InvoiceAdmin(admin.ModelAdmin):
    list_display = ("get_number", "customer", "booking", "issue_date", "payment_method", "total", "status", "locked")
    list_filter = ("issue_date", "payment_method", "status", "locked")
    search_fields = ("customer__first_name", "customer__last_name", "series", "number")
    inlines = [RoomChargeLineInline, ServiceChargeLineInline, PaymentInline, RefundInline]
    readonly_fields = ("total", "paid_amount", "refunded_amount", "status", "locked")

    def get_number(self, obj):
        return f"{obj.series}-{obj.number}" if obj.number else f"#{obj.pk or 'new'}"
    get_number.short_description = "Invoice No."
