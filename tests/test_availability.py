from datetime import time, timedelta
from unittest import mock

import pytest
from django.core.exceptions import ValidationError
from django.utils import timezone

from booking import availability
from booking.availability import (
    available_slots,
    book_appointment,
    busy_intervals,
    change_status,
)
from booking.models import Appointment, Client, Service, StaffDayOff
from booking.notifications import appointment_message, send_telegram
from booking.slots import Interval, InvalidTimeError, SlotUnavailable

pytestmark = pytest.mark.django_db


def occupied(slots):
    return {slot.time for slot in slots if slot.occupied}


def make_appointment(shop, service, staff, start, **extra):
    return Appointment.objects.create(
        shop=shop,
        service=service,
        staff=staff,
        client_name=extra.pop("client_name", "Walk-in"),
        start_time=start,
        **extra,
    )


class TestBusyIntervals:
    def test_appointments_and_days_off(self, shop, haircut, alice, bruno, at, future_day):
        make_appointment(shop, haircut, alice, at("10:00"))
        StaffDayOff.objects.create(staff=bruno, date=future_day, from_time=time(12, 0), to_time=time(13, 0))

        busy = busy_intervals(shop, future_day, [alice, bruno])

        assert busy == {alice.pk: [Interval(600, 630)], bruno.pk: [Interval(720, 780)]}

    def test_canceled_appointments_are_ignored(self, shop, haircut, alice, at, future_day):
        make_appointment(shop, haircut, alice, at("10:00"), status=Appointment.Status.CANCELED)
        assert busy_intervals(shop, future_day, [alice]) == {alice.pk: []}

    def test_appointment_from_previous_evening_is_clamped(self, shop, alice, at, future_day):
        late = Service.objects.create(shop=shop, name="Late shave", duration_minutes=60)
        make_appointment(shop, late, alice, at("23:30", day=future_day - timedelta(days=1)))

        assert busy_intervals(shop, future_day, [alice]) == {alice.pk: [Interval(0, 30)]}

    def test_whole_day_off(self, shop, alice, future_day):
        StaffDayOff.objects.create(staff=alice, date=future_day)
        assert busy_intervals(shop, future_day, [alice]) == {alice.pk: [Interval(0, 1440)]}


class TestAvailableSlots:
    def test_specific_staff(self, shop, haircut, alice, bruno, at, future_day):
        make_appointment(shop, haircut, alice, at("10:00"))

        slots = available_slots(shop, haircut, future_day, staff=alice)

        assert {"09:45", "10:00", "10:15", "17:45"} <= occupied(slots)
        assert "09:30" not in occupied(slots)
        assert "10:30" not in occupied(slots)

    def test_any_staff_needs_everyone_busy(self, shop, haircut, alice, bruno, at, future_day):
        make_appointment(shop, haircut, alice, at("10:00"))
        assert "10:00" not in occupied(available_slots(shop, haircut, future_day))

        make_appointment(shop, haircut, bruno, at("10:00"))
        assert "10:00" in occupied(available_slots(shop, haircut, future_day))

    def test_inactive_staff_are_out_of_scope(self, shop, haircut, alice, bruno, at, future_day):
        bruno.is_active = False
        bruno.save(update_fields=["is_active"])
        make_appointment(shop, haircut, alice, at("10:00"))

        assert "10:00" in occupied(available_slots(shop, haircut, future_day))

    def test_day_off_blocks_the_staff_member(self, shop, haircut, alice, future_day):
        StaffDayOff.objects.create(staff=alice, date=future_day)
        slots = available_slots(shop, haircut, future_day, staff=alice)
        assert all(slot.occupied for slot in slots)

    def test_past_day_is_fully_occupied(self, shop, haircut, alice):
        yesterday = timezone.localdate() - timedelta(days=1)
        slots = available_slots(shop, haircut, yesterday, staff=alice)
        assert all(slot.occupied for slot in slots)

    def test_service_of_other_shop(self, shop, haircut, alice, owner):
        other = type(shop).objects.create(owner=owner, name="Other")
        with pytest.raises(ValueError):
            available_slots(other, haircut, timezone.localdate(), staff=alice)

    def test_staff_of_other_shop(self, shop, haircut, owner):
        other = type(shop).objects.create(owner=owner, name="Other")
        stranger = other.staff.create(name="Zé")
        with pytest.raises(ValueError):
            available_slots(shop, haircut, timezone.localdate(), staff=stranger)


class TestBookAppointment:
    def test_books_specific_staff(self, shop, haircut, alice, at):
        appointment = book_appointment(
            shop, haircut, at("10:00"), alice,
            client_name="João", client_phone="912 345 678",
        )

        assert appointment.staff == alice
        assert appointment.end_time == at("10:30")
        assert appointment.price == haircut.price
        assert appointment.client_phone == "+351912345678"
        assert appointment.client.phone == "+351912345678"

    def test_any_staff_takes_first_free_by_name(self, shop, haircut, alice, bruno, at):
        first = book_appointment(shop, haircut, at("10:00"), client_name="A", client_phone="911111111")
        second = book_appointment(shop, haircut, at("10:00"), client_name="B", client_phone="922222222")

        assert first.staff == alice
        assert second.staff == bruno
        with pytest.raises(SlotUnavailable):
            book_appointment(shop, haircut, at("10:15"), client_name="C", client_phone="933333333")

    def test_conflict_for_specific_staff(self, shop, haircut, alice, at):
        book_appointment(shop, haircut, at("10:00"), alice, client_name="A")
        with pytest.raises(SlotUnavailable):
            book_appointment(shop, haircut, at("09:45"), alice, client_name="B")

    def test_touching_bookings_are_allowed(self, shop, haircut, alice, at):
        book_appointment(shop, haircut, at("10:00"), alice, client_name="A")
        appointment = book_appointment(shop, haircut, at("10:30"), alice, client_name="B")
        assert appointment.start_time == at("10:30")

    def test_canceled_slot_can_be_rebooked(self, shop, haircut, alice, at):
        first = book_appointment(shop, haircut, at("10:00"), alice, client_name="A")
        change_status(first, Appointment.Status.CANCELED)

        again = book_appointment(shop, haircut, at("10:00"), alice, client_name="B")
        assert again.pk != first.pk

    def test_outside_opening_hours(self, shop, haircut, alice, at):
        with pytest.raises(InvalidTimeError):
            book_appointment(shop, haircut, at("08:30"), alice, client_name="A")

    def test_running_past_closing(self, shop, haircut, alice, at):
        with pytest.raises(SlotUnavailable):
            book_appointment(shop, haircut, at("17:45"), alice, client_name="A")

    def test_past_time_is_refused_unless_allowed(self, shop, haircut, alice):
        yesterday = timezone.localdate() - timedelta(days=1)
        start = availability.local_datetime(yesterday, 600)
        with pytest.raises(InvalidTimeError):
            book_appointment(shop, haircut, start, alice, client_name="A")

        appointment = book_appointment(shop, haircut, start, alice, client_name="A", allow_past=True)
        assert appointment.pk

    def test_client_is_reused_by_phone(self, shop, haircut, alice, at):
        book_appointment(shop, haircut, at("10:00"), alice, client_name="Rui", client_phone="912345678")
        book_appointment(
            shop, haircut, at("11:00"), alice,
            client_name="Rui Costa", client_phone="+351 912 345 678", client_email="rui@example.com",
        )

        client = Client.objects.get(shop=shop)
        assert client.name == "Rui Costa"
        assert client.email == "rui@example.com"
        assert client.appointments.count() == 2

    def test_blank_client_name(self, shop, haircut, alice, at):
        with pytest.raises(ValueError):
            book_appointment(shop, haircut, at("10:00"), alice, client_name="  ")

    def test_staff_is_notified_after_commit(self, shop, haircut, alice, at, django_capture_on_commit_callbacks):
        with mock.patch("booking.availability.notify_new_appointment") as notify:
            with django_capture_on_commit_callbacks(execute=True):
                appointment = book_appointment(shop, haircut, at("10:00"), alice, client_name="A")

        notify.assert_called_once_with(appointment)


class TestAppointmentModel:
    def test_overlap_is_rejected_on_save(self, shop, haircut, alice, at):
        make_appointment(shop, haircut, alice, at("10:00"))
        with pytest.raises(ValidationError):
            make_appointment(shop, haircut, alice, at("10:15"))

    def test_staff_must_belong_to_shop(self, shop, haircut, owner, at):
        other = type(shop).objects.create(owner=owner, name="Other")
        stranger = other.staff.create(name="Zé")
        with pytest.raises(ValidationError):
            make_appointment(shop, haircut, stranger, at("10:00"))


class TestChangeStatus:
    def test_allowed_transitions(self, shop, haircut, alice, at):
        appointment = make_appointment(shop, haircut, alice, at("10:00"))

        change_status(appointment, Appointment.Status.CONFIRMED)
        change_status(appointment, Appointment.Status.COMPLETED)

        appointment.refresh_from_db()
        assert appointment.status == Appointment.Status.COMPLETED

    def test_completed_is_final(self, shop, haircut, alice, at):
        appointment = make_appointment(shop, haircut, alice, at("10:00"), status=Appointment.Status.COMPLETED)
        with pytest.raises(ValueError):
            change_status(appointment, Appointment.Status.CANCELED)


class TestNotifications:
    def test_skipped_without_bot_token(self):
        assert send_telegram(12345, "hello") is False

    def test_skipped_without_chat(self, settings):
        settings.TELEGRAM_BOT_TOKEN = "123:abc"
        assert send_telegram(None, "hello") is False

    def test_sends_through_bot(self, settings):
        settings.TELEGRAM_BOT_TOKEN = "123:abc"
        with mock.patch("booking.notifications._send", new=mock.AsyncMock()) as send:
            assert send_telegram(42, "hello") is True
        send.assert_awaited_once_with(42, "hello")

    def test_delivery_failure_is_reported(self, settings):
        settings.TELEGRAM_BOT_TOKEN = "123:abc"
        with mock.patch("booking.notifications._send", new=mock.AsyncMock(side_effect=RuntimeError("down"))):
            assert send_telegram(42, "hello") is False

    def test_message(self, shop, haircut, alice, at):
        appointment = make_appointment(
            shop, haircut, alice, at("10:00"), client_name="Rui", client_phone="+351912345678",
        )
        text = appointment_message(appointment)
        assert "Haircut (30 min)" in text
        assert "Rui" in text
        assert "+351912345678" in text

    def test_message_escapes_client_text(self, shop, haircut, alice, at):
        haircut.name = "Cut & <b>style</b>"
        haircut.save()
        appointment = book_appointment(
            shop, haircut, at("10:00"), alice,
            client_name="Tom & <Jerry>", notes="a<b",
        )

        text = appointment_message(appointment)

        assert "Client: Tom &amp; &lt;Jerry&gt;" in text
        assert "Notes: a&lt;b" in text
        assert "Cut &amp; &lt;b&gt;style&lt;/b&gt;" in text
        assert text.startswith("<b>New booking</b>")
