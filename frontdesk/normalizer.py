"""
Money normalizer.

Upstream records (our own ``as_record()`` payloads, invoice payloads from the
billing backend, the booking summary endpoint) spell the same fields in
several ways: lowerCamel, snake_case, PascalCase and the Vietnamese backend
names. Everything downstream works on the canonical shape produced here.

Lookup order for every field is the tuple listed next to it below. Each
lookup searches, in order: the record itself, its ``money`` block, then its
nested invoice (``invoice`` / ``HoaDon`` / ``hoaDon``) and finally the first
element of ``invoices``. The first value that is neither ``None`` nor ``""``
wins. Missing values become ``0`` / ``None`` / ``""``; nothing here raises
and nothing here does arithmetic.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime, time
from decimal import Decimal, InvalidOperation
from typing import Any, Iterable, Mapping

SERVICE = "service"
EXTENSION_FEE = "extension_fee"
LATE_FEE = "late_fee"
FEE_TAGS = frozenset({EXTENSION_FEE, LATE_FEE})

# Service ids the billing backend uses for fee lines stored as services.
SENTINEL_SERVICE_TAGS = {
    "DV_LATE_FEE": LATE_FEE,
    "DV_EXTEND": EXTENSION_FEE,
    "DV_EXTEND_FEE": EXTENSION_FEE,
}

ROOM_LINES = ("roomLines", "room_lines", "items", "ChiTietDatPhongs", "chiTietDatPhongs")
SERVICE_LINES = ("serviceLines", "service_lines", "services", "Cthddvs", "cthddvs")
NESTED_INVOICE = ("invoice", "HoaDon", "hoaDon")
INVOICE_LIST = ("invoices", "HoaDons", "hoaDons")

ROOM_ID = ("roomId", "room_id", "IDPhong", "idPhong", "IdPhong", "Idphong", "SoPhong", "soPhong")
NIGHTLY_RATE = ("nightlyRate", "nightly_rate", "GiaPhong", "giaPhong")
NIGHTS = ("nights", "SoDem", "soDem")
PROMOTION_DISCOUNT = ("promotionDiscount", "promotion_discount", "GiamGia", "giamGia", "discount")
ROOM_GROSS = ("grossAmount", "gross_amount", "ThanhTien", "thanhTien", "Tien")

SERVICE_ID = ("serviceId", "service_id", "IddichVu", "IdDichVu", "idDichVu")
COMBO_ID = ("comboId", "combo_id", "IdCombo", "idCombo")
QUANTITY = ("quantity", "SoLuong", "soLuong")
UNIT_PRICE = ("unitPrice", "unit_price", "DonGia", "donGia")
LINE_TOTAL = ("lineTotal", "line_total", "TienDichVu", "tienDichVu", "ThanhTien", "thanhTien", "TongTien")
TAG = ("tag", "chargeTag", "charge_tag")

DEPOSIT = ("deposit", "TienCoc", "tienCoc")
PAID_AMOUNT = ("paidAmount", "paid_amount", "TienThanhToan", "tienThanhToan")
REFUNDED_AMOUNT = ("refundedAmount", "refunded_amount", "TienHoan", "tienHoan")
NOTE_TEXT = ("noteText", "notes", "note", "GhiChu", "ghiChu")
CONFIRMED_TOTAL = ("confirmedTotal", "grandTotal", "total", "tongTien", "TongTien")
LATE_FEE_QUOTE = ("lateFee", "latefee", "late_fee", "surchargeAmount", "surcharge")
EXTENSION_FEE_QUOTE = ("extendFee", "extensionFee", "extension_fee", "phiGiaHan", "ExtendFee")
STATUS = ("status", "TrangThai", "trangThai")
FEE_PATH = ("feePath", "fee_path")
BOOKING_ID = ("bookingId", "bookingRef", "booking_id", "IDDatPhong", "IddatPhong", "idDatPhong")
INVOICE_ID = ("id", "invoiceId", "IDHoaDon", "IdHoaDon", "IdhoaDon", "idHoaDon")
CHECK_OUT = ("checkOut", "check_out", "checkout", "NgayTraPhong", "ngayTraPhong")
CHECKOUT_HOUR = ("checkoutHour", "checkout_hour")
EXPECTED_CHECKOUT = ("expectedCheckout", "expected_checkout")
ACTUAL_CHECKOUT = ("actualCheckout", "actual_checkout", "checkedOutAt", "checked_out_at")


@dataclass(frozen=True)
class RoomLine:
    room_id: str | None
    nightly_rate: Decimal
    nights: int
    promotion_discount: Decimal = Decimal("0")
    gross_amount: Decimal | None = None


@dataclass(frozen=True)
class ServiceLine:
    service_id: str | None
    combo_id: str | None
    quantity: Decimal
    unit_price: Decimal
    line_total: Decimal | None
    tag: str = SERVICE


@dataclass(frozen=True)
class MoneyRecord:
    booking_id: str | None = None
    room_lines: tuple[RoomLine, ...] = ()
    service_lines: tuple[ServiceLine, ...] = ()
    deposit: Decimal = Decimal("0")
    paid_amount: Decimal = Decimal("0")
    refunded_amount: Decimal = Decimal("0")
    note_text: str = ""
    confirmed_total: Decimal | None = None
    late_fee_quote: Decimal = Decimal("0")
    extension_fee_quote: Decimal = Decimal("0")
    status: int | None = None
    fee_path: str = ""
    nights: int = 0
    expected_checkout: datetime | None = None
    checkout_date: date | None = None
    checkout_hour: int | None = None
    actual_checkout: datetime | None = None
    invoice_ids: tuple[str, ...] = field(default=())


def to_decimal(value: Any) -> Decimal:
    """Coerce a money-ish value to Decimal; anything unreadable is 0."""
    if value is None or isinstance(value, bool):
        return Decimal("0")
    if isinstance(value, Decimal):
        return value
    if isinstance(value, int):
        return Decimal(value)
    if isinstance(value, float):
        return Decimal(str(value))
    text = str(value).strip().replace(",", "").replace("_", "").replace(" ", "").rstrip("đ")
    if not text:
        return Decimal("0")
    try:
        parsed = Decimal(text)
    except InvalidOperation:
        return Decimal("0")
    return parsed if parsed.is_finite() else Decimal("0")


def to_int(value: Any, default: int | None = 0) -> int | None:
    if value is None or value == "":
        return default
    try:
        return int(to_decimal(value))
    except (InvalidOperation, ValueError, OverflowError):
        return default


def to_datetime(value: Any) -> datetime | None:
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value
    if isinstance(value, date):
        return datetime.combine(value, time.min)
    try:
        return datetime.fromisoformat(str(value).strip())
    except ValueError:
        return None


def _to_date(value: Any) -> date | None:
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    parsed = to_datetime(value)
    return parsed.date() if parsed else None


def _pick(mapping: Any, keys: Iterable[str]) -> Any:
    if not isinstance(mapping, Mapping):
        return None
    for key in keys:
        value = mapping.get(key)
        if value is not None and value != "":
            return value
    return None


def _containers(record: Mapping) -> list[Mapping]:
    found = [record]
    money = record.get("money")
    if isinstance(money, Mapping):
        found.append(money)
    nested = _pick(record, NESTED_INVOICE)
    if isinstance(nested, Mapping):
        found.append(nested)
    invoices = _pick(record, INVOICE_LIST)
    if isinstance(invoices, (list, tuple)) and invoices and isinstance(invoices[0], Mapping):
        found.append(invoices[0])
    return found


def lookup(record: Mapping, keys: Iterable[str]) -> Any:
    keys = tuple(keys)
    for container in _containers(record):
        value = _pick(container, keys)
        if value is not None:
            return value
    return None


def _tag_for(raw: Mapping) -> str:
    tag = _pick(raw, TAG)
    if tag in (SERVICE, EXTENSION_FEE, LATE_FEE):
        return tag
    service_id = _pick(raw, SERVICE_ID)
    if service_id is not None:
        return SENTINEL_SERVICE_TAGS.get(str(service_id).upper(), SERVICE)
    return SERVICE


def normalize_room_line(raw: Mapping) -> RoomLine:
    room_id = _pick(raw, ROOM_ID)
    gross = _pick(raw, ROOM_GROSS)
    return RoomLine(
        room_id=str(room_id) if room_id is not None else None,
        nightly_rate=to_decimal(_pick(raw, NIGHTLY_RATE)),
        nights=to_int(_pick(raw, NIGHTS), default=1),
        promotion_discount=to_decimal(_pick(raw, PROMOTION_DISCOUNT)),
        gross_amount=to_decimal(gross) if gross is not None else None,
    )


def normalize_service_line(raw: Mapping) -> ServiceLine:
    service_id = _pick(raw, SERVICE_ID)
    combo_id = _pick(raw, COMBO_ID)
    total = _pick(raw, LINE_TOTAL)
    quantity = _pick(raw, QUANTITY)
    return ServiceLine(
        service_id=str(service_id) if service_id is not None else None,
        combo_id=str(combo_id) if combo_id is not None else None,
        quantity=to_decimal(quantity) if quantity is not None else Decimal("1"),
        unit_price=to_decimal(_pick(raw, UNIT_PRICE)),
        line_total=to_decimal(total) if total is not None else None,
        tag=_tag_for(raw),
    )


def _lines(record: Mapping, keys: tuple[str, ...]) -> list[Mapping]:
    raw = lookup(record, keys)
    if not isinstance(raw, (list, tuple)):
        return []
    return [item for item in raw if isinstance(item, Mapping)]


def invoice_ids(record: Mapping) -> tuple[str, ...]:
    invoices = _pick(record, INVOICE_LIST)
    if not isinstance(invoices, (list, tuple)):
        return ()
    ids = []
    for item in invoices:
        value = _pick(item, INVOICE_ID)
        if value is not None:
            ids.append(str(value))
    return tuple(ids)


def normalize(record: Mapping | None) -> MoneyRecord:
    """Canonicalize one upstream record (booking, invoice or summary)."""
    if not isinstance(record, Mapping):
        return MoneyRecord()
    confirmed = lookup(record, CONFIRMED_TOTAL)
    status = lookup(record, STATUS)
    note = lookup(record, NOTE_TEXT)
    booking_id = lookup(record, BOOKING_ID)
    return MoneyRecord(
        booking_id=str(booking_id) if booking_id is not None else None,
        room_lines=tuple(normalize_room_line(r) for r in _lines(record, ROOM_LINES)),
        service_lines=tuple(normalize_service_line(s) for s in _lines(record, SERVICE_LINES)),
        deposit=to_decimal(lookup(record, DEPOSIT)),
        paid_amount=to_decimal(lookup(record, PAID_AMOUNT)),
        refunded_amount=to_decimal(lookup(record, REFUNDED_AMOUNT)),
        note_text=str(note) if note is not None else "",
        confirmed_total=to_decimal(confirmed) if confirmed is not None else None,
        late_fee_quote=to_decimal(lookup(record, LATE_FEE_QUOTE)),
        extension_fee_quote=to_decimal(lookup(record, EXTENSION_FEE_QUOTE)),
        status=to_int(status, default=None) if status is not None else None,
        fee_path=str(lookup(record, FEE_PATH) or ""),
        nights=to_int(lookup(record, NIGHTS), default=0),
        expected_checkout=to_datetime(lookup(record, EXPECTED_CHECKOUT)),
        checkout_date=_to_date(lookup(record, CHECK_OUT)),
        checkout_hour=to_int(lookup(record, CHECKOUT_HOUR), default=None),
        actual_checkout=to_datetime(lookup(record, ACTUAL_CHECKOUT)),
        invoice_ids=invoice_ids(record),
    )
