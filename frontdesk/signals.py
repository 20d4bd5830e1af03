from __future__ import annotations

import logging

from django.db.models.signals import post_save, pre_save
from django.dispatch import receiver

from .models import Booking, Invoice, Room

logger = logging.getLogger(__name__)

# Statuses in which a guest is physically in the room.
STAYING = [Booking.Status.IN_USE, Booking.Status.OVERDUE]


def _set_room_status(room: Room, status: str) -> None:
    if room.status != status:
        room.status = status
        room.save(update_fields=["status"])


def _release_room(room: Room, status: str) -> None:
    """Hand the room back to housekeeping unless another stay still occupies it."""
    if not Booking.objects.filter(room=room, status__in=STAYING).exists():
        _set_room_status(room, status)


@receiver(pre_save, sender=Booking)
def _booking_track_old_state(sender, instance: Booking, **kwargs):
    """
    Store old status and room on the instance so we can compare in post_save.
    """
    instance._old_status = None  # type: ignore[attr-defined]
    instance._old_room_id = None  # type: ignore[attr-defined]
    if instance.pk:
        old = Booking.objects.filter(pk=instance.pk).values("status", "room_id").first()
        if old:
            instance._old_status = old["status"]  # type: ignore[attr-defined]
            instance._old_room_id = old["room_id"]  # type: ignore[attr-defined]


@receiver(post_save, sender=Booking)
def _booking_post_save(sender, instance: Booking, created: bool, **kwargs):
    """
    - Auto-create the booking's single Invoice and its first room line.
    - Sync Room housekeeping status when the booking status or room changes.
    """
    if created and not Invoice.objects.filter(booking=instance).exists():
        invoice = Invoice.objects.create(booking=instance, customer=instance.customer)
        invoice.add_room_line(instance.room, instance.nights, instance.check_in)
        logger.info("Booking %s: invoice %s-%s opened", instance.pk, invoice.series, invoice.number)

    old_room_id = getattr(instance, "_old_room_id", None)
    if old_room_id and old_room_id != instance.room_id and instance.status in STAYING:
        _release_room(Room.objects.get(pk=old_room_id), Room.Status.CLEANING)
        _set_room_status(instance.room, Room.Status.OCCUPIED)

    old_status = getattr(instance, "_old_status", None)
    if old_status == instance.status:
        return
    room = instance.room
    if instance.status == Booking.Status.IN_USE:
        _set_room_status(room, Room.Status.OCCUPIED)
    elif instance.status == Booking.Status.OVERDUE:
        _set_room_status(room, Room.Status.OVERDUE)
    elif instance.status == Booking.Status.COMPLETED:
        _release_room(room, Room.Status.CLEANING)
    elif instance.status == Booking.Status.CANCELLED and room.status != Room.Status.CLEANING:
        _release_room(room, Room.Status.AVAILABLE)
