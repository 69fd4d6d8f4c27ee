"""Availability and booking on top of the pure slot calculator.

Everything here works in the shop's local time zone (``settings.TIME_ZONE``):
opening hours are wall-clock times, so appointments are converted to minutes
of the local day before :mod:`booking.slots` sees them.
"""
from __future__ import annotations

import logging
from datetime import date, datetime, time, timedelta
from typing import Dict, List, Optional

import pytz
from django.conf import settings
from django.db import IntegrityError, transaction
from django.utils import timezone

from booking import slots
from booking.models import Appointment, Client, Service, Shop, Staff, StaffDayOff
from booking.notifications import notify_new_appointment
from users.phone_utils import normalize_phone

logger = logging.getLogger(__name__)

STATUS_TRANSITIONS = {
    Appointment.Status.SCHEDULED: {
        Appointment.Status.CONFIRMED,
        Appointment.Status.COMPLETED,
        Appointment.Status.CANCELED,
    },
    Appointment.Status.CONFIRMED: {
        Appointment.Status.COMPLETED,
        Appointment.Status.CANCELED,
    },
    Appointment.Status.COMPLETED: set(),
    Appointment.Status.CANCELED: set(),
}


def shop_timezone():
    return pytz.timezone(settings.TIME_ZONE)


def local_datetime(day: date, minute: int) -> datetime:
    """Aware datetime for ``minute`` minutes after local midnight of ``day``."""
    naive = datetime.combine(day, time.min) + timedelta(minutes=minute)
    return shop_timezone().localize(naive)


def _day_bounds(day: date):
    return local_datetime(day, 0), local_datetime(day + timedelta(days=1), 0)


def minute_of_day(value: datetime, day: date) -> int:
    """Minutes since local midnight of ``day``, clamped to that day."""
    local = value.astimezone(shop_timezone())
    if local.date() < day:
        return 0
    if local.date() > day:
        return slots.MINUTES_PER_DAY
    return local.hour * 60 + local.minute


def staff_in_scope(shop: Shop, staff: Optional[Staff] = None) -> List[Staff]:
    if staff is None:
        return list(shop.staff.filter(is_active=True).order_by('name', 'id'))
    if staff.shop_id != shop.pk:
        raise ValueError('The staff member does not work at this shop.')
    if not staff.is_active:
        raise ValueError('The staff member is not taking bookings.')
    return [staff]


def busy_intervals(shop: Shop, day: date, staff_members) -> Dict[int, List[slots.Interval]]:
    """Busy windows per staff id for ``day``: live appointments and days off."""
    busy: Dict[int, List[slots.Interval]] = {member.pk: [] for member in staff_members}
    if not busy:
        return busy

    day_start, day_end = _day_bounds(day)
    appointments = (
        Appointment.objects
        .active()
        .filter(shop=shop, staff_id__in=busy.keys())
        .overlapping(day_start, day_end)
        .only('staff_id', 'start_time', 'end_time')
    )
    for appointment in appointments:
        busy[appointment.staff_id].append(slots.Interval(
            minute_of_day(appointment.start_time, day),
            minute_of_day(appointment.end_time, day),
        ))

    for day_off in StaffDayOff.objects.filter(staff_id__in=busy.keys(), date=day):
        if day_off.is_whole_day:
            window = slots.Interval(0, slots.MINUTES_PER_DAY)
        else:
            window = slots.Interval(slots.parse_clock(day_off.from_time), slots.parse_clock(day_off.to_time))
        busy[day_off.staff_id].append(window)

    return busy


def _check_service(shop: Shop, service: Service) -> None:
    if service.shop_id != shop.pk or not service.is_active:
        raise ValueError('The service is not offered by this shop.')


def available_slots(shop: Shop, service: Service, day: date, staff: Optional[Staff] = None) -> List[slots.Slot]:
    """Candidate start times for ``service`` on ``day``.

    ``staff=None`` asks for any active staff member of the shop. Start times
    already in the past are reported as occupied.
    """
    _check_service(shop, service)
    members = staff_in_scope(shop, staff)
    busy = busy_intervals(shop, day, members)
    scope = slots.ANY_STAFF if staff is None else staff.pk

    result = slots.compute_slots(
        shop.opening_time,
        shop.closing_time,
        shop.slot_step,
        service.duration_minutes,
        busy,
        staff=scope,
    )

    now_local = timezone.now().astimezone(shop_timezone())
    if day > now_local.date():
        return result
    if day < now_local.date():
        return [slots.Slot(slot.time, True) for slot in result]
    current_minute = now_local.hour * 60 + now_local.minute
    return [
        slots.Slot(slot.time, slot.occupied or slots.parse_clock(slot.time) <= current_minute)
        for slot in result
    ]


def _upsert_client(shop: Shop, name: str, phone: str, email: str, created_by) -> Optional[Client]:
    if not phone:
        return None

    client, created = Client.objects.get_or_create(
        shop=shop,
        phone=phone,
        defaults={'name': name, 'email': email or '', 'created_by': created_by},
    )
    if not created:
        updates = []
        if name and client.name != name:
            client.name = name
            updates.append('name')
        if email and client.email != email:
            client.email = email
            updates.append('email')
        if updates:
            client.save(update_fields=updates)
    return client


def book_appointment(
    shop: Shop,
    service: Service,
    start: datetime,
    staff: Optional[Staff] = None,
    *,
    client_name: str,
    client_phone: str = '',
    client_email: str = '',
    notes: str = '',
    created_by=None,
    status: str = Appointment.Status.SCHEDULED,
    allow_past: bool = False,
) -> Appointment:
    """Create an appointment after re-checking the slot under a row lock.

    The staff rows in scope are locked for the duration of the transaction so
    two concurrent requests for the same staff member are serialized and the
    second one sees the first booking. With ``staff=None`` the first free
    staff member (by name) is assigned.

    Raises :class:`booking.slots.InvalidTimeError` for times outside opening
    hours and :class:`booking.slots.SlotUnavailable` for conflicts.
    """
    _check_service(shop, service)
    if not (client_name or '').strip():
        raise ValueError('Client name is required.')

    tz = shop_timezone()
    if timezone.is_naive(start):
        start = tz.localize(start)
    local_start = start.astimezone(tz).replace(second=0, microsecond=0)
    if not allow_past and local_start < timezone.now():
        raise slots.InvalidTimeError('The selected time is in the past.')

    day = local_start.date()
    start_minute = local_start.hour * 60 + local_start.minute
    duration = service.duration_minutes
    phone = normalize_phone(client_phone)
    creator = created_by if getattr(created_by, 'is_authenticated', False) else None

    with transaction.atomic():
        scope = staff_in_scope(shop, staff)
        members = list(
            Staff.objects
            .select_for_update()
            .filter(pk__in=[member.pk for member in scope])
            .order_by('name', 'id')
        )
        busy = busy_intervals(shop, day, members)

        if staff is not None:
            slots.check_booking(shop.opening_time, shop.closing_time, start_minute, duration, busy[staff.pk])
            chosen = members[0]
        else:
            slots.check_booking(shop.opening_time, shop.closing_time, start_minute, duration, [])
            free = slots.free_staff(start_minute, duration, busy, shop.closing_time)
            if not free:
                raise slots.SlotUnavailable('No staff member is free at the selected time.')
            chosen = next(member for member in members if member.pk == free[0])

        client = _upsert_client(shop, client_name.strip(), phone, client_email, creator)

        try:
            with transaction.atomic():
                appointment = Appointment.objects.create(
                    shop=shop,
                    service=service,
                    staff=chosen,
                    client=client,
                    client_name=client_name.strip(),
                    client_phone=phone,
                    start_time=local_start,
                    end_time=local_start + service.duration,
                    status=status,
                    price=service.price,
                    notes=notes,
                    created_by=creator,
                )
        except IntegrityError as exc:
            raise slots.SlotUnavailable('The selected time was just booked by someone else.') from exc

        transaction.on_commit(lambda: notify_new_appointment(appointment))

    logger.info(
        "Booked appointment %s for shop %s with staff %s at %s",
        appointment.pk, shop.pk, chosen.pk, local_start.isoformat(),
    )
    return appointment


def change_status(appointment: Appointment, new_status: str) -> Appointment:
    allowed = STATUS_TRANSITIONS.get(appointment.status, set())
    if new_status not in allowed:
        raise ValueError(
            f"Cannot change an appointment from {appointment.status} to {new_status}."
        )
    appointment.status = new_status
    appointment.save(update_fields=['status', 'updated_at'])
    logger.info("Appointment %s is now %s", appointment.pk, new_status)
    return appointment
