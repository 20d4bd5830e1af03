"""
App settings for the front desk, overridable through ``settings.FRONTDESK``:

    FRONTDESK = {
        "VAT_RATE": Decimal("0.10"),
        "STANDARD_CHECKOUT_HOUR": 12,
        ...
    }
"""
from __future__ import annotations

from decimal import Decimal

from django.conf import settings

DEFAULTS = {
    "VAT_RATE": Decimal("0.10"),
    "STANDARD_CHECKOUT_HOUR": 12,
    # (checkout until hour, percent of one night)
    "SAME_DAY_EXTENSION_TIERS": ((15, 30), (18, 50), (24, 100)),
    # (overrun up to hours, percent of one night); beyond the last tier a full night
    "LATE_FEE_TIERS": ((3, 30), (6, 50)),
    "RECONCILIATION_TOLERANCE": 1,
    "CURRENCY": "VND",
    "INVOICE_SERIES": "HD",
}


def setting(name: str):
    overrides = getattr(settings, "FRONTDESK", None) or {}
    if name in overrides:
        return overrides[name]
    return DEFAULTS[name]
