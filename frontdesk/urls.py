from __future__ import annotations

from django.urls import path

from .views import (
    AvailabilityAPI, CustomerQuickCreateAPI,
    BookingCreateAPI, BookingSummaryAPI, BookingSettlementAPI,
    BookingConfirmAPI, BookingCheckInAPI, BookingCancelAPI, BookingMarkOverdueAPI, BookingCheckOutAPI,
    BookingInvoiceAPI, BookingServicesAPI, BookingPaymentAPI, BookingRefundAPI,
    BookingReassignAPI, BookingExtendAPI,
)

urlpatterns = [
    # Lookups
    path("api/availability/", AvailabilityAPI.as_view(), name="api_availability"),
    path("api/customers/quick-create/", CustomerQuickCreateAPI.as_view(), name="api_customer_quick_create"),

    # Bookings
    path("bookings/", BookingCreateAPI.as_view(), name="booking_create"),
    path("bookings/<int:pk>/summary/", BookingSummaryAPI.as_view(), name="booking_summary"),
    path("bookings/<int:pk>/settlement/", BookingSettlementAPI.as_view(), name="booking_settlement"),

    # Lifecycle
    path("bookings/<int:pk>/confirm/", BookingConfirmAPI.as_view(), name="booking_confirm"),
    path("bookings/<int:pk>/check-in/", BookingCheckInAPI.as_view(), name="booking_check_in"),
    path("bookings/<int:pk>/cancel/", BookingCancelAPI.as_view(), name="booking_cancel"),
    path("bookings/<int:pk>/overdue/", BookingMarkOverdueAPI.as_view(), name="booking_mark_overdue"),
    path("bookings/<int:pk>/check-out/", BookingCheckOutAPI.as_view(), name="booking_check_out"),

    # Money
    path("bookings/<int:pk>/invoice/", BookingInvoiceAPI.as_view(), name="booking_invoice"),
    path("bookings/<int:pk>/services/", BookingServicesAPI.as_view(), name="booking_services"),
    path("bookings/<int:pk>/payments/", BookingPaymentAPI.as_view(), name="booking_payments"),
    path("bookings/<int:pk>/refunds/", BookingRefundAPI.as_view(), name="booking_refunds"),
    path("bookings/<int:pk>/reassign/", BookingReassignAPI.as_view(), name="booking_reassign"),
    path("bookings/<int:pk>/extend/", BookingExtendAPI.as_view(), name="booking_extend"),
]
