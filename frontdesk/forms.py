from __future__ import annotations

from decimal import Decimal

from django import forms
from django.core.exceptions import ValidationError
from django.utils import timezone

from .models import Booking, Customer, Invoice, Room, Service


class CustomerForm(forms.ModelForm):
    class Meta:
        model = Customer
        fields = ["first_name", "last_name", "email", "phone", "document_id"]


class BookingForm(forms.ModelForm):
    class Meta:
        model = Booking
        fields = ["customer", "room", "check_in", "check_out", "deposit", "notes"]

    def clean(self):
        cleaned = super().clean()
        # Delegate to model validation for overlap; capture to form errors nicely
        instance = Booking(
            customer=cleaned.get("customer"),
            room=cleaned.get("room"),
            check_in=cleaned.get("check_in"),
            check_out=cleaned.get("check_out"),
            deposit=cleaned.get("deposit") or Decimal("0"),
        )
        try:
            instance.clean()
        except ValidationError as e:
            self.add_error(None, e)
        return cleaned


class ServiceLineForm(forms.Form):
    """One service or combo line of an ``add_services`` request."""
    service = forms.ModelChoiceField(queryset=Service.objects.filter(active=True), required=False)
    combo_code = forms.CharField(max_length=30, required=False)
    description = forms.CharField(max_length=200, required=False)
    quantity = forms.DecimalField(max_digits=8, decimal_places=2, min_value=Decimal("0.01"), required=False)
    unit_price = forms.DecimalField(max_digits=14, decimal_places=0, min_value=0, required=False)

    def clean(self):
        cleaned = super().clean()
        service = cleaned.get("service")
        if not service and not cleaned.get("combo_code"):
            raise ValidationError("Each line needs a service or a combo code.")
        if cleaned.get("unit_price") is None:
            if not service:
                raise ValidationError({"unit_price": "Unit price is required for combo lines."})
            cleaned["unit_price"] = service.unit_price
        if not cleaned.get("description"):
            cleaned["description"] = service.name if service else cleaned["combo_code"]
        if cleaned.get("quantity") is None:
            cleaned["quantity"] = Decimal("1")
        return cleaned


class PaymentForm(forms.Form):
    """Without an amount the whole amount due is paid."""
    amount = forms.DecimalField(max_digits=14, decimal_places=0, min_value=1, required=False)
    method = forms.ChoiceField(choices=Invoice.PaymentMethod.choices, required=False)


class RefundForm(forms.Form):
    amount = forms.DecimalField(max_digits=14, decimal_places=0, min_value=1)
    reason = forms.CharField(max_length=255)
    method = forms.ChoiceField(choices=Invoice.PaymentMethod.choices, required=False)
    date = forms.DateField(required=False)

    def clean_date(self):
        return self.cleaned_data.get("date") or timezone.localdate()


class ReassignForm(forms.Form):
    room = forms.ModelChoiceField(queryset=Room.objects.all())


class ExtendStayForm(forms.Form):
    SAME_DAY = "same_day"
    EXTRA_NIGHTS = "extra_nights"

    extend_type = forms.ChoiceField(choices=[(SAME_DAY, "Same day"), (EXTRA_NIGHTS, "Extra nights")])
    new_checkout_hour = forms.IntegerField(min_value=1, max_value=24, required=False)
    extra_nights = forms.IntegerField(min_value=1, required=False)
    payment_method = forms.ChoiceField(choices=Invoice.PaymentMethod.choices, required=False)

    def clean(self):
        cleaned = super().clean()
        if cleaned.get("extend_type") == self.SAME_DAY and cleaned.get("new_checkout_hour") is None:
            raise ValidationError({"new_checkout_hour": "Required for a same-day extension."})
        if cleaned.get("extend_type") == self.EXTRA_NIGHTS and cleaned.get("extra_nights") is None:
            raise ValidationError({"extra_nights": "Required when adding nights."})
        return cleaned


class AvailabilityForm(forms.Form):
    start = forms.DateField()
    end = forms.DateField()
    type = forms.ChoiceField(choices=Room.Type.choices, required=False)

    def clean(self):
        cleaned = super().clean()
        start, end = cleaned.get("start"), cleaned.get("end")
        if start and end and not start < end:
            raise ValidationError("Provide valid start and end dates (start < end).")
        return cleaned
