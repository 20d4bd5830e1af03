from __future__ import annotations

from django.db import models

from .exceptions import StateError


class BookingStatus(models.IntegerChoices):
    CANCELLED = 0, "Cancelled"
    PENDING_CONFIRMATION = 1, "Pending confirmation"
    CONFIRMED = 2, "Confirmed"
    IN_USE = 3, "In use"
    COMPLETED = 4, "Completed"
    OVERDUE = 5, "Overdue"


class PaymentStatus(models.IntegerChoices):
    DEPOSITED = 0, "Deposited"
    UNPAID = 1, "Unpaid"
    PAID = 2, "Paid"


class FeePath(models.TextChoices):
    NONE = "", "None"
    EXTENSION = "extension", "Extension fee"
    LATE = "late", "Late fee"


TRANSITIONS: dict[int, frozenset[int]] = {
    BookingStatus.PENDING_CONFIRMATION: frozenset({BookingStatus.CONFIRMED, BookingStatus.CANCELLED}),
    BookingStatus.CONFIRMED: frozenset({BookingStatus.IN_USE, BookingStatus.CANCELLED}),
    BookingStatus.IN_USE: frozenset({BookingStatus.OVERDUE, BookingStatus.COMPLETED}),
    BookingStatus.OVERDUE: frozenset({BookingStatus.COMPLETED}),
    BookingStatus.COMPLETED: frozenset(),
    BookingStatus.CANCELLED: frozenset(),
}

FROZEN = frozenset({BookingStatus.COMPLETED, BookingStatus.CANCELLED})


def state_name(status: int | None) -> str:
    try:
        return BookingStatus(status).name.lower()
    except ValueError:
        return "unknown"


def can_transition(current: int, target: int) -> bool:
    return target in TRANSITIONS.get(current, frozenset())


def advance(current: int, target: int) -> bool:
    """
    Validate ``current -> target``. Returns False when the booking is already
    in ``target`` (a retried action is a no-op), True when the transition
    should be applied.
    """
    if current == target:
        return False
    if not can_transition(current, target):
        raise StateError(f"Cannot move a booking from {state_name(current)} to {state_name(target)}.")
    return True


def ensure_mutable(status: int, action: str) -> None:
    if status in FROZEN:
        raise StateError(f"Cannot {action} a {state_name(status)} booking.")


def fee_branch(status: int | None, fee_path: str = "") -> str:
    """
    Which dedicated fee applies to a settlement: late fee for overdue stays
    (including ones completed after going overdue), extension fee otherwise.
    A stay that was extended keeps the extension fee even once overdue; its
    overstay is billed as further extension.
    """
    if fee_path == FeePath.EXTENSION:
        return FeePath.EXTENSION
    if status == BookingStatus.OVERDUE:
        return FeePath.LATE
    if status == BookingStatus.COMPLETED and fee_path == FeePath.LATE:
        return FeePath.LATE
    return FeePath.EXTENSION
