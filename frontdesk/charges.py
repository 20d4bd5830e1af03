"""
Charge calculators. Pure functions over the canonical shapes from
``normalizer``; no VAT is applied here except where a fee is defined as
VAT-inclusive (the extension fee).
"""
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, time
from decimal import ROUND_HALF_UP, Decimal
from typing import Any, Iterable

from . import conf
from .exceptions import ConflictError
from .normalizer import FEE_TAGS, RoomLine, ServiceLine, to_decimal

ZERO = Decimal("0")

PERCENT = "percent"
FLAT_TYPES = ("amount", "fixed")


def round_half_up(value: Decimal) -> int:
    return int(Decimal(value).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def room_line_total(line: RoomLine) -> Decimal:
    gross = line.gross_amount if line.gross_amount is not None else line.nightly_rate * line.nights
    return max(ZERO, gross - line.promotion_discount)


def room_charge(lines: Iterable[RoomLine]) -> Decimal:
    return sum((room_line_total(line) for line in lines), ZERO)


def service_line_total(line: ServiceLine) -> Decimal:
    if line.line_total is not None:
        return max(ZERO, line.line_total)
    return max(ZERO, line.quantity * line.unit_price)


def service_charge(lines: Iterable[ServiceLine], exclude_tags: Iterable[str] = FEE_TAGS) -> Decimal:
    excluded = frozenset(exclude_tags)
    return sum((service_line_total(line) for line in lines if line.tag not in excluded), ZERO)


def tagged_total(lines: Iterable[ServiceLine], tag: str) -> Decimal:
    return sum((service_line_total(line) for line in lines if line.tag == tag), ZERO)


def _promotion_field(promotion: Any, names: tuple[str, ...]) -> Any:
    for name in names:
        if isinstance(promotion, dict):
            if promotion.get(name) is not None:
                return promotion[name]
        elif getattr(promotion, name, None) is not None:
            return getattr(promotion, name)
    return None


def promotion_discount(promotion: Any, base: Decimal | int) -> Decimal:
    """
    Discount granted by a promotion on ``base``.

    Percentage promotions take ``base * value / 100``; flat ones take
    ``value``. The result is capped so the discounted price never drops
    below zero. Missing or inactive promotions give no discount.
    """
    base = to_decimal(base)
    if promotion is None or base <= 0:
        return ZERO
    if _promotion_field(promotion, ("active", "is_active", "IsActive")) is False:
        return ZERO
    kind = str(_promotion_field(promotion, ("discount_type", "discountType", "LoaiGiamGia")) or "").lower()
    value = to_decimal(_promotion_field(promotion, ("value", "GiaTriGiam")))
    if value <= 0:
        return ZERO
    if kind == PERCENT:
        amount = base * value / Decimal("100")
    elif kind in FLAT_TYPES:
        amount = value
    else:
        return ZERO
    return min(amount, base)


def one_night_rate(room_total: Decimal | int, nights: int) -> int:
    room_total = to_decimal(room_total)
    if nights and nights > 0:
        return round_half_up(room_total / nights)
    return round_half_up(room_total)


def _tier_percent(tiers, measure: Decimal, default: int = 100) -> int:
    for limit, percent in tiers:
        if measure <= Decimal(limit):
            return int(percent)
    return default


def _hours(value: time) -> Decimal:
    return Decimal(value.hour) + Decimal(value.minute) / Decimal(60)


@dataclass(frozen=True)
class ExtensionQuote:
    mode: str  # "none", "same_day" or "extra_night"
    base: int
    vat: int
    total: int
    nights: int = 0
    percent: int = 0


def extension_quote(
    old_checkout: datetime,
    new_checkout: datetime,
    nightly_rate: Decimal | int,
    percent_rate: int | None = None,
    vat_rate: Decimal | None = None,
) -> ExtensionQuote:
    if new_checkout < old_checkout:
        raise ConflictError("New checkout is earlier than the current checkout.")
    vat_rate = conf.setting("VAT_RATE") if vat_rate is None else Decimal(vat_rate)
    rate = to_decimal(nightly_rate)
    standard = time(conf.setting("STANDARD_CHECKOUT_HOUR"), 0)

    if new_checkout.date() > old_checkout.date():
        nights = (new_checkout.date() - old_checkout.date()).days
        base = rate * nights
        mode, percent = "extra_night", 100
    elif new_checkout == old_checkout or new_checkout.time() <= standard:
        return ExtensionQuote(mode="none", base=0, vat=0, total=0)
    else:
        nights = 0
        if percent_rate is None:
            percent_rate = _tier_percent(conf.setting("SAME_DAY_EXTENSION_TIERS"), _hours(new_checkout.time()))
        percent = int(percent_rate)
        base = rate * Decimal(percent) / Decimal("100")
        mode = "same_day"

    total = round_half_up(base * (Decimal("1") + vat_rate))
    base_rounded = round_half_up(base)
    return ExtensionQuote(mode=mode, base=base_rounded, vat=total - base_rounded, total=total, nights=nights, percent=percent)


def extension_fee(
    old_checkout: datetime,
    new_checkout: datetime,
    nightly_rate: Decimal | int,
    percent_rate: int | None = None,
    vat_rate: Decimal | None = None,
) -> int:
    """VAT-inclusive fee for moving the checkout from ``old_checkout`` to ``new_checkout``."""
    return extension_quote(old_checkout, new_checkout, nightly_rate, percent_rate, vat_rate).total


def late_fee_percent(actual_checkout: datetime, expected_checkout: datetime) -> int:
    overrun = actual_checkout - expected_checkout
    if overrun.total_seconds() <= 0:
        return 0
    hours = Decimal(int(overrun.total_seconds())) / Decimal(3600)
    return _tier_percent(conf.setting("LATE_FEE_TIERS"), hours)


def late_fee(
    actual_checkout: datetime | None,
    expected_checkout: datetime | None,
    nightly_rate: Decimal | int,
    surcharge: Decimal | int | None = None,
) -> int:
    """
    Penalty for leaving after the expected checkout, outside VAT.
    A surcharge already computed by the billing backend takes precedence.
    """
    if surcharge is not None and to_decimal(surcharge) > 0:
        return round_half_up(to_decimal(surcharge))
    if actual_checkout is None or expected_checkout is None:
        return 0
    percent = late_fee_percent(actual_checkout, expected_checkout)
    if percent <= 0:
        return 0
    return round_half_up(to_decimal(nightly_rate) * Decimal(percent) / Decimal("100"))
