"""
Settlement engine: aggregation, payment reconciliation and the single
facade every screen and endpoint goes through.

    compute_settlement(booking_record, invoice_record) -> Settlement

The facade never touches the database. Callers hand it plain records
(``Booking.as_record()``, ``Invoice.as_record()``, or a summary payload) and
render the returned value as-is.
"""
from __future__ import annotations

import logging
from dataclasses import asdict, dataclass
from datetime import datetime, time
from decimal import Decimal
from typing import Iterable, Mapping

from . import conf
from .charges import (
    late_fee,
    one_night_rate,
    room_charge,
    round_half_up,
    service_charge,
    tagged_total,
)
from .exceptions import ReconciliationMismatch, SettlementError, ValidationError
from .lifecycle import FeePath, fee_branch, state_name
from .normalizer import (
    EXTENSION_FEE,
    LATE_FEE,
    MoneyRecord,
    normalize,
    normalize_service_line,
)

logger = logging.getLogger(__name__)

ZERO = Decimal("0")


@dataclass(frozen=True)
class Totals:
    subtotal: int
    vat: int
    grand_total: int


@dataclass(frozen=True)
class Balance:
    amount_due: int
    refund_due: int


@dataclass(frozen=True)
class Settlement:
    room_total: int
    service_total: int
    subtotal: int
    vat: int
    extension_fee: int
    late_fee: int
    grand_total: int
    deposit: int
    paid_amount: int
    amount_due: int
    refund_due: int
    lifecycle_state: str
    fee_path: str
    total_source: str = "computed"
    tentative: bool = False

    def as_dict(self) -> dict:
        data = asdict(self)
        return {
            "roomTotal": data["room_total"],
            "serviceTotal": data["service_total"],
            "subtotal": data["subtotal"],
            "vat": data["vat"],
            "extensionFee": data["extension_fee"],
            "lateFee": data["late_fee"],
            "grandTotal": data["grand_total"],
            "deposit": data["deposit"],
            "paidAmount": data["paid_amount"],
            "amountDue": data["amount_due"],
            "refundDue": data["refund_due"],
            "lifecycleState": data["lifecycle_state"],
            "feePath": data["fee_path"],
            "totalSource": data["total_source"],
            "tentative": data["tentative"],
        }


def aggregate(
    room_total: Decimal | int,
    service_total: Decimal | int,
    extension_fee: int = 0,
    late_fee: int = 0,
    vat_rate: Decimal | None = None,
) -> Totals:
    """
    subtotal = room + services, VAT on the subtotal only. The extension fee
    already carries its VAT and the late fee is outside VAT, so both are
    added after rounding.
    """
    if extension_fee and late_fee:
        raise SettlementError("Extension fee and late fee cannot both apply to one settlement.")
    vat_rate = conf.setting("VAT_RATE") if vat_rate is None else Decimal(vat_rate)
    subtotal = round_half_up(Decimal(room_total) + Decimal(service_total))
    vat = round_half_up(subtotal * vat_rate)
    grand_total = round_half_up(Decimal(subtotal + vat)) + int(extension_fee) + int(late_fee)
    return Totals(subtotal=subtotal, vat=vat, grand_total=grand_total)


def reconcile(grand_total: int, deposit: Decimal | int, paid_amount: Decimal | int) -> Balance:
    collected = round_half_up(Decimal(deposit) + Decimal(paid_amount))
    return Balance(
        amount_due=max(0, grand_total - collected),
        refund_due=max(0, collected - grand_total),
    )


def resolve_grand_total(
    computed: int,
    confirmed: Decimal | int | None,
    strict: bool = False,
    booking_id: str | None = None,
) -> tuple[int, str]:
    """
    Pick the grand total to settle against. A confirmed total wins only when
    it is strictly positive; zero or missing means "not set yet".
    """
    if confirmed is None or Decimal(confirmed) <= 0:
        return computed, "computed"
    confirmed = round_half_up(Decimal(confirmed))
    if abs(confirmed - computed) > int(conf.setting("RECONCILIATION_TOLERANCE")):
        mismatch = ReconciliationMismatch(computed=computed, confirmed=confirmed, resolved=confirmed)
        if strict:
            raise mismatch
        logger.warning("Booking %s: %s", booking_id or "?", mismatch)
    return confirmed, "confirmed"


def ensure_single_invoice(invoices: Iterable, booking_id: str | None = None) -> None:
    invoices = list(invoices)
    if len(invoices) > 1:
        raise ValidationError(
            f"Booking {booking_id or '?'} has {len(invoices)} invoices; exactly one is allowed."
        )


def _first_nonzero(*values: Decimal) -> Decimal:
    for value in values:
        if value:
            return value
    return ZERO


def _comparable(a: datetime | None, b: datetime | None) -> tuple[datetime | None, datetime | None]:
    if a is None or b is None:
        return a, b
    if (a.tzinfo is None) != (b.tzinfo is None):
        return a.replace(tzinfo=None), b.replace(tzinfo=None)
    return a, b


def _expected_checkout(record: MoneyRecord) -> datetime | None:
    if record.expected_checkout is not None:
        return record.expected_checkout
    if record.checkout_date is None:
        return None
    hour = record.checkout_hour or conf.setting("STANDARD_CHECKOUT_HOUR")
    checkout_time = time(23, 59) if hour >= 24 else time(hour, 0)
    return datetime.combine(record.checkout_date, checkout_time)


def compute_settlement(
    booking: Mapping,
    invoice: Mapping | None = None,
    *,
    invoices: Iterable[Mapping] | None = None,
    strict: bool = False,
    tentative_lines: Iterable[Mapping] = (),
) -> Settlement:
    """
    The one place a booking's money is worked out.

    ``booking`` and ``invoice`` are raw records in any supported naming
    convention; a summary payload carrying both can be passed alone.
    ``invoices``, when given, is every invoice found for the booking and must
    hold at most one. ``tentative_lines`` adds not-yet-committed service lines
    and marks the result as a preview.
    """
    b = normalize(booking)
    inv = normalize(invoice) if invoice is not None else b
    booking_id = b.booking_id or inv.booking_id

    if invoices is not None:
        ensure_single_invoice(invoices, booking_id)
    if len(b.invoice_ids) > 1:
        ensure_single_invoice(b.invoice_ids, booking_id)

    room_lines = inv.room_lines or b.room_lines
    service_lines = inv.service_lines or b.service_lines
    pending = tuple(normalize_service_line(line) for line in tentative_lines)
    service_lines = tuple(service_lines) + pending

    room_total = room_charge(room_lines)
    service_total = service_charge(service_lines)

    branch = fee_branch(b.status, b.fee_path)
    extension_amount = 0
    late_amount = 0
    if branch == FeePath.LATE:
        nights = sum(line.nights for line in room_lines) or b.nights
        actual, expected = _comparable(b.actual_checkout, _expected_checkout(b))
        quoted = _first_nonzero(inv.late_fee_quote, b.late_fee_quote, tagged_total(service_lines, LATE_FEE))
        late_amount = late_fee(actual, expected, one_night_rate(room_total, nights), surcharge=quoted or None)
    else:
        quoted = _first_nonzero(inv.extension_fee_quote, b.extension_fee_quote, tagged_total(service_lines, EXTENSION_FEE))
        extension_amount = round_half_up(quoted)

    totals = aggregate(room_total, service_total, extension_amount, late_amount)
    confirmed = inv.confirmed_total if invoice is not None else b.confirmed_total
    grand_total, source = resolve_grand_total(totals.grand_total, confirmed, strict=strict, booking_id=booking_id)

    deposit = _first_nonzero(b.deposit, inv.deposit)
    paid = _first_nonzero(inv.paid_amount, b.paid_amount) - _first_nonzero(inv.refunded_amount, b.refunded_amount)
    balance = reconcile(grand_total, deposit, paid)

    return Settlement(
        room_total=round_half_up(room_total),
        service_total=round_half_up(service_total),
        subtotal=totals.subtotal,
        vat=totals.vat,
        extension_fee=extension_amount,
        late_fee=late_amount,
        grand_total=grand_total,
        deposit=round_half_up(deposit),
        paid_amount=round_half_up(paid),
        amount_due=balance.amount_due,
        refund_due=balance.refund_due,
        lifecycle_state=state_name(b.status),
        fee_path=str(branch.value),
        total_source=source,
        tentative=bool(pending),
    )
