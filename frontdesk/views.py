from __future__ import annotations

import json
import logging
from functools import wraps

from django.contrib.auth.decorators import login_required
from django.http import HttpRequest, JsonResponse, QueryDict
from django.shortcuts import get_object_or_404
from django.utils.decorators import method_decorator
from django.views import View

from .exceptions import ConflictError, ReconciliationMismatch, StateError, TransportError, ValidationError
from .forms import (
    AvailabilityForm,
    BookingForm,
    CustomerForm,
    ExtendStayForm,
    PaymentForm,
    ReassignForm,
    RefundForm,
    ServiceLineForm,
)
from .models import Booking
from .presenters import BookingPresenter

logger = logging.getLogger(__name__)


def _payload(request: HttpRequest):
    """Accept JSON or form-encoded bodies. Returns None when the JSON is malformed."""
    if request.content_type and "application/json" in request.content_type:
        try:
            data = json.loads(request.body.decode() or "{}")
        except (UnicodeDecodeError, json.JSONDecodeError):
            return None
        return data if isinstance(data, dict) else None
    return request.POST


def _form_errors(form) -> JsonResponse:
    return JsonResponse({"error": "Invalid request.", "fields": form.errors.get_json_data()}, status=400)


def _settlement_response(settlement, status: int = 200, **extra) -> JsonResponse:
    return JsonResponse({**extra, "settlement": settlement.as_dict()}, status=status)


def domain_errors(view):
    """Translate front-desk exceptions into JSON responses."""
    @wraps(view)
    def wrapper(*args, **kwargs):
        try:
            return view(*args, **kwargs)
        except ValidationError as exc:
            return JsonResponse({"error": str(exc)}, status=400)
        except ConflictError as exc:
            return JsonResponse({"error": str(exc), "alternatives": exc.alternatives}, status=409)
        except ReconciliationMismatch as exc:
            return JsonResponse(
                {"error": str(exc), "computed": exc.computed, "confirmed": exc.confirmed, "retry": True},
                status=409,
            )
        except StateError as exc:
            return JsonResponse({"error": str(exc)}, status=409)
        except TransportError as exc:
            logger.warning("Transport failure: %s", exc)
            return JsonResponse({"error": str(exc), "retry": True}, status=503)
    return wrapper


class BookingActionView(View):
    """Base for POST endpoints acting on one booking."""
    presenter_class = BookingPresenter
    form_class = None

    def setup(self, request, *args, **kwargs):
        super().setup(request, *args, **kwargs)
        self.presenter = self.presenter_class()

    @method_decorator(login_required)
    @method_decorator(domain_errors)
    def post(self, request: HttpRequest, pk: int) -> JsonResponse:
        booking = get_object_or_404(Booking, pk=pk)
        data = _payload(request)
        if data is None:
            return JsonResponse({"error": "Invalid JSON payload."}, status=400)
        form = self.form_class(data) if self.form_class else None
        if form is not None and not form.is_valid():
            return _form_errors(form)
        return self.act(booking, form.cleaned_data if form is not None else data)

    def act(self, booking: Booking, data) -> JsonResponse:  # pragma: no cover
        raise NotImplementedError


# ---- queries ----

class AvailabilityAPI(View):
    """
    Returns JSON list of available rooms for a given date range and optional type.
    GET params: start=YYYY-MM-DD, end=YYYY-MM-DD, type=<Room.Type value>
    """

    @method_decorator(domain_errors)
    def get(self, request: HttpRequest) -> JsonResponse:
        form = AvailabilityForm(request.GET)
        if not form.is_valid():
            return _form_errors(form)
        start, end = form.cleaned_data["start"], form.cleaned_data["end"]
        rooms = BookingPresenter().available_rooms(start, end, room_type=form.cleaned_data.get("type") or None)
        return JsonResponse({"start": start.isoformat(), "end": end.isoformat(), "rooms": rooms})


class BookingSummaryAPI(View):
    @method_decorator(domain_errors)
    def get(self, request: HttpRequest, pk: int) -> JsonResponse:
        booking = get_object_or_404(Booking, pk=pk)
        return JsonResponse(BookingPresenter().get_summary(booking))


class BookingSettlementAPI(View):
    @method_decorator(domain_errors)
    def get(self, request: HttpRequest, pk: int) -> JsonResponse:
        booking = get_object_or_404(Booking, pk=pk)
        return _settlement_response(BookingPresenter().settle(booking))


# ---- creation ----

@method_decorator(login_required, name="dispatch")
class CustomerQuickCreateAPI(View):
    """
    Quick JSON endpoint to create a Customer.
    Expected POST body (JSON or form-encoded): first_name, last_name, phone, email (all but first_name optional)
    Returns: {"id": <int>, "name": "First Last"}
    """

    def post(self, request: HttpRequest) -> JsonResponse:
        data = _payload(request)
        if data is None:
            return JsonResponse({"error": "Invalid JSON payload."}, status=400)
        form = CustomerForm(data)
        if not form.is_valid():
            return _form_errors(form)
        customer = form.save()
        return JsonResponse({"id": customer.id, "name": customer.full_name}, status=201)


@method_decorator(login_required, name="dispatch")
class BookingCreateAPI(View):
    @method_decorator(domain_errors)
    def post(self, request: HttpRequest) -> JsonResponse:
        data = _payload(request)
        if data is None:
            return JsonResponse({"error": "Invalid JSON payload."}, status=400)
        form = BookingForm(data)
        if not form.is_valid():
            return _form_errors(form)
        presenter = BookingPresenter()
        booking = presenter.create_booking(form)
        return _settlement_response(presenter.settle(booking), status=201, id=booking.pk, bookingStatus=booking.status)


# ---- lifecycle ----

class BookingConfirmAPI(BookingActionView):
    def act(self, booking, data):
        booking = self.presenter.confirm(booking)
        return JsonResponse({"id": booking.pk, "status": booking.status})


class BookingCheckInAPI(BookingActionView):
    def act(self, booking, data):
        booking = self.presenter.check_in(booking)
        return JsonResponse({"id": booking.pk, "status": booking.status, "room": booking.room.number})


class BookingCancelAPI(BookingActionView):
    def act(self, booking, data):
        booking = self.presenter.cancel(booking)
        return JsonResponse({"id": booking.pk, "status": booking.status})


class BookingMarkOverdueAPI(BookingActionView):
    def act(self, booking, data):
        return _settlement_response(self.presenter.mark_overdue(booking))


class BookingCheckOutAPI(BookingActionView):
    def act(self, booking, data):
        return _settlement_response(self.presenter.check_out(booking))


# ---- money ----

class BookingInvoiceAPI(BookingActionView):
    def act(self, booking, data):
        invoice = self.presenter.create_invoice(booking, payment_method=data.get("payment_method") or None)
        return JsonResponse({"id": invoice.pk, "series": invoice.series, "number": invoice.number, "total": int(invoice.total)})


class BookingServicesAPI(BookingActionView):
    """
    POST {"lines": [{"service": <id>, "quantity": 2}, {"combo_code": "SPA1", "unit_price": 300000}], "preview": false}
    With ``preview`` the tentative settlement is returned and nothing is saved.
    """

    def act(self, booking, data):
        raw_lines = data.get("lines") if isinstance(data, dict) else None
        if isinstance(data, QueryDict):
            raw_lines = [data]
        if not raw_lines or not isinstance(raw_lines, list):
            return JsonResponse({"error": "Provide at least one service line."}, status=400)
        lines = []
        for raw in raw_lines:
            form = ServiceLineForm(raw if isinstance(raw, dict) else {})
            if not form.is_valid():
                return _form_errors(form)
            lines.append(form.cleaned_data)
        if data.get("preview") in (True, "1", "true"):
            return _settlement_response(self.presenter.preview_services(booking, lines))
        return _settlement_response(self.presenter.add_services(booking, lines), status=201)


class BookingPaymentAPI(BookingActionView):
    form_class = PaymentForm

    def act(self, booking, data):
        settlement = self.presenter.confirm_paid(booking, data.get("amount"), method=data.get("method") or None)
        return _settlement_response(settlement, status=201)


class BookingRefundAPI(BookingActionView):
    form_class = RefundForm

    def act(self, booking, data):
        settlement = self.presenter.refund(
            booking, data["amount"], data["reason"], method=data.get("method") or None, on=data["date"],
        )
        return _settlement_response(settlement, status=201)


class BookingReassignAPI(BookingActionView):
    form_class = ReassignForm

    def act(self, booking, data):
        result = self.presenter.reassign_room(booking, data["room"])
        settlement = result.pop("settlement")
        return _settlement_response(settlement, **result)


class BookingExtendAPI(BookingActionView):
    form_class = ExtendStayForm

    def act(self, booking, data):
        result = self.presenter.extend_stay(
            booking,
            data["extend_type"],
            new_checkout_hour=data.get("new_checkout_hour"),
            extra_nights=data.get("extra_nights"),
            payment_method=data.get("payment_method") or None,
        )
        settlement = result.pop("settlement")
        return _settlement_response(settlement, **result)
