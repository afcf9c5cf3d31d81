# tests/test_status_and_manage.py
from datetime import datetime, time, timedelta, timezone

import pytest

from carebook.exceptions import InvalidInput, NotFound, SlotConflict, Unavailable
from carebook.models import AppointmentStatus
from carebook.schemas import AppointmentStatusUpdate, RescheduleCommand
from carebook.services import booking_service


@pytest.fixture
def booked(store, provider, booking_command, now):
    """A pending 09:00 booking on MONDAY, made at `now`."""
    result = booking_service.submit_booking(store, booking_command(), now)
    with store.unit_of_work() as uow:
        appointment = uow.get_appointment(result.appointment_id)
        uow.update_appointment(appointment, created_at=now)
    return appointment


def _events(store, event_type):
    with store.unit_of_work() as uow:
        return [dict(e.payload) for e in uow.list_pending_events(100) if e.event_type == event_type]


# --- Provider status changes ---

def test_confirm_then_complete(store, provider, booked):
    confirmed = booking_service.update_appointment_status(
        store, provider.id, booked.id, AppointmentStatusUpdate(status="confirmed", notes="Bring reports"))
    assert confirmed.status == AppointmentStatus.confirmed
    assert confirmed.notes == "Bring reports"

    completed = booking_service.update_appointment_status(
        store, provider.id, booked.id, AppointmentStatusUpdate(status="completed"))
    assert completed.status == AppointmentStatus.completed

    [first, second] = _events(store, booking_service.STATUS_CHANGED)
    assert (first["previous_status"], first["status"]) == ("pending", "confirmed")
    assert (second["previous_status"], second["status"]) == ("confirmed", "completed")


def test_provider_cancel_frees_the_slot(store, provider, booked, booking_command, now):
    booking_service.update_appointment_status(
        store, provider.id, booked.id,
        AppointmentStatusUpdate(status="cancelled", cancel_reason="Doctor unavailable"))

    [event] = _events(store, booking_service.STATUS_CHANGED)
    assert event["cancel_reason"] == "Doctor unavailable"

    result = booking_service.submit_booking(store, booking_command(whatsapp="+919866666666"), now)
    assert result.appointment_id != booked.id


def test_terminal_status_is_final(store, provider, booked):
    booking_service.update_appointment_status(store, provider.id, booked.id,
                                              AppointmentStatusUpdate(status="cancelled"))

    with pytest.raises(InvalidInput):
        booking_service.update_appointment_status(store, provider.id, booked.id,
                                                  AppointmentStatusUpdate(status="confirmed"))


def test_cannot_go_back_to_pending(store, provider, booked):
    booking_service.update_appointment_status(store, provider.id, booked.id,
                                              AppointmentStatusUpdate(status="confirmed"))

    with pytest.raises(InvalidInput):
        booking_service.update_appointment_status(store, provider.id, booked.id,
                                                  AppointmentStatusUpdate(status="pending"))


def test_same_status_records_no_event(store, provider, booked):
    booking_service.update_appointment_status(store, provider.id, booked.id,
                                              AppointmentStatusUpdate(status="pending", notes="Called"))

    assert _events(store, booking_service.STATUS_CHANGED) == []


def test_other_providers_appointment_is_not_found(store, provider, seed_provider, booked):
    other = seed_provider(store, slug="dr-other")

    with pytest.raises(NotFound):
        booking_service.update_appointment_status(store, other.id, booked.id,
                                                  AppointmentStatusUpdate(status="confirmed"))


def test_dashboard_listing_pairs_patients(store, provider, booked, booking_command, now):
    booking_service.submit_booking(store, booking_command(time_slot="11:00", whatsapp="+919877777777",
                                                          full_name="Leela Nair"), now)

    rows = booking_service.list_provider_appointments(store, provider.id)
    assert [(a.time_slot, p.full_name) for a, p in rows] == [("11:00", "Leela Nair"), ("09:00", "Ravi Kumar")]

    pending = booking_service.list_provider_appointments(store, provider.id, status="pending", limit=1)
    assert len(pending) == 1


# --- Patient self-service ---

def test_manage_view_offers_reschedule_options(store, provider, booked, now, monday):
    managed = booking_service.get_managed_appointment(store, booked.edit_token, now)

    assert managed.can_modify
    assert managed.modify_deadline == now + timedelta(hours=8)
    assert managed.patient.full_name == "Ravi Kumar"
    # Only Mondays have hours; MONDAY's 09:00 is taken by this booking
    dates = [o["date"] for o in managed.reschedule_options]
    assert dates == [monday.isoformat(), (monday + timedelta(days=7)).isoformat()]
    assert "09:00" not in managed.reschedule_options[0]["slots"]
    assert "09:00" in managed.reschedule_options[1]["slots"]


def test_manage_view_after_window(store, booked, now):
    managed = booking_service.get_managed_appointment(store, booked.edit_token, now + timedelta(hours=9))

    assert managed.can_modify is False
    assert managed.reschedule_options == []


def test_unknown_token(store, booked, now):
    with pytest.raises(NotFound):
        booking_service.get_managed_appointment(store, "not-a-token", now)


def test_reschedule_moves_the_booking(store, provider, booked, monday, now):
    with store.unit_of_work() as uow:
        uow.claim_reminder(booked.id, "reminder_sent_24h")

    moved = booking_service.reschedule_appointment(
        store, booked.edit_token, RescheduleCommand(appointment_date=monday, time_slot="11:30"), now)

    assert moved.time_slot == "11:30"
    assert moved.end_time == "12:00"
    assert moved.reminder_sent_24h is False
    [event] = _events(store, booking_service.RESCHEDULED)
    assert (event["previous_time_slot"], event["time_slot"]) == ("09:00", "11:30")

    with store.unit_of_work() as uow:
        assert uow.find_active_appointment(provider.id, monday, "09:00") is None


def test_reschedule_into_taken_slot(store, booked, booking_command, monday, now):
    booking_service.submit_booking(store, booking_command(time_slot="10:00", whatsapp="+919888888888"), now)

    with pytest.raises(SlotConflict):
        booking_service.reschedule_appointment(
            store, booked.edit_token, RescheduleCommand(appointment_date=monday, time_slot="10:00"), now)


def test_reschedule_off_grid(store, booked, monday, now):
    with pytest.raises(InvalidInput):
        booking_service.reschedule_appointment(
            store, booked.edit_token,
            RescheduleCommand(appointment_date=monday + timedelta(days=1), time_slot="10:00"), now)


def test_reschedule_after_window(store, booked, monday, now):
    with pytest.raises(Unavailable):
        booking_service.reschedule_appointment(
            store, booked.edit_token, RescheduleCommand(appointment_date=monday, time_slot="11:00"),
            now + timedelta(hours=8, minutes=1))


def test_patient_cancel(store, provider, booked, monday, now):
    cancelled = booking_service.cancel_by_patient(store, booked.edit_token, now=now)

    assert cancelled.status == AppointmentStatus.cancelled
    assert cancelled.cancel_reason == "Cancelled by patient"
    [event] = _events(store, booking_service.CANCELLED_BY_PATIENT)
    assert event["appointment_id"] == booked.id

    with pytest.raises(InvalidInput):
        booking_service.cancel_by_patient(store, booked.edit_token, "again", now=now)


def test_patient_cancel_after_window(store, booked, now):
    later = datetime.combine(now.date() + timedelta(days=1), time(0, 0), tzinfo=timezone.utc)

    with pytest.raises(Unavailable):
        booking_service.cancel_by_patient(store, booked.edit_token, now=later)
