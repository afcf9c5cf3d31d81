# tests/test_api.py
import pytest
from httpx import ASGITransport, AsyncClient

from carebook.config import get_settings
from carebook.dependencies import get_dispatcher, get_store
from carebook.main import app

API = "/api/v1"
MONDAY = "2030-01-07"


def _booking(**overrides):
    payload = {
        "provider_slug": "dr-asha",
        "appointment_date": MONDAY,
        "time_slot": "09:00",
        "full_name": "Ravi Kumar",
        "whatsapp_number": "+919811111111",
        "email": "ravi.kumar@gmail.com",
        "reason": "Persistent cough",
    }
    payload.update(overrides)
    return payload


def _book(client, **overrides):
    response = client.post(f"{API}/booking/submit", json=_booking(**overrides))
    assert response.status_code == 201, response.text
    return response.json()


def test_health(client):
    response = client.get(f"{API}/health")
    assert response.status_code == 200
    assert response.json()["status"] == "healthy"
    assert response.json()["storage"] == "memory"


# --- Public booking ---

def test_public_profile(client):
    response = client.get(f"{API}/booking/dr-asha")
    assert response.status_code == 200
    data = response.json()
    assert data["provider"]["slug"] == "dr-asha"
    assert data["availability"][0]["day_of_week"] == 1
    assert data["subscription_plan"] == "premium"


def test_available_slots(client):
    response = client.get(f"{API}/booking/available-slots", params={"provider_slug": "dr-asha", "date": MONDAY})
    assert response.status_code == 200
    data = response.json()
    assert data["is_available"] is True
    assert [s["time"] for s in data["slots"]][:2] == ["09:00", "09:30"]


def test_available_slots_errors(client):
    missing = client.get(f"{API}/booking/available-slots", params={"provider_slug": "dr-nobody", "date": MONDAY})
    assert missing.status_code == 404
    assert missing.json() == {"success": False, "error": "Doctor not found", "code": "NOT_FOUND"}

    bad_date = client.get(f"{API}/booking/available-slots", params={"provider_slug": "dr-asha", "date": "2030-13-01"})
    assert bad_date.status_code == 400
    assert bad_date.json()["code"] == "INVALID_INPUT"


def test_submit_booking_and_conflict(client, twilio_client, pusher_client):
    data = _book(client)
    assert data["appointment_id"]
    assert "/appointment/manage/" in data["edit_link"]

    # The outbox is flushed after the response
    assert len(twilio_client.messages.sent) == 2
    assert len(pusher_client.events) == 2

    slots = client.get(f"{API}/booking/available-slots", params={"provider_slug": "dr-asha", "date": MONDAY}).json()
    assert slots["slots"][0]["is_booked"] is True

    again = client.post(f"{API}/booking/submit", json=_booking(whatsapp_number="+919833333333"))
    assert again.status_code == 409
    assert again.json()["success"] is False
    assert again.json()["code"] == "SLOT_CONFLICT"


def test_submit_booking_validation(client):
    response = client.post(f"{API}/booking/submit", json=_booking(reason="hi"))
    assert response.status_code == 400
    assert response.json()["code"] == "INVALID_INPUT"

    off_grid = client.post(f"{API}/booking/submit", json=_booking(time_slot="09:10"))
    assert off_grid.status_code == 400


def test_quota_exceeded(client, api_store):
    with api_store.unit_of_work() as uow:
        provider = uow.get_provider_by_slug("dr-asha")
        uow.update_provider(provider, subscription_plan="free_trial", patient_count_this_month=20)

    response = client.post(f"{API}/booking/submit", json=_booking())
    assert response.status_code == 403
    assert response.json()["code"] == "QUOTA_EXCEEDED"


def test_manage_reschedule_and_cancel(client, sendgrid_client):
    token = _book(client)["edit_link"].rsplit("/", 1)[-1]

    view = client.get(f"{API}/booking/manage/{token}")
    assert view.status_code == 200
    assert view.json()["can_modify"] is True
    assert view.json()["appointment"]["time_slot"] == "09:00"

    moved = client.patch(f"{API}/booking/manage/{token}", json={"appointment_date": MONDAY, "time_slot": "10:00"})
    assert moved.status_code == 200
    assert moved.json()["time_slot"] == "10:00"

    cancelled = client.post(f"{API}/booking/manage/{token}/cancel", json={"reason": "Feeling better"})
    assert cancelled.status_code == 200
    assert cancelled.json()["status"] == "cancelled"
    assert cancelled.json()["cancel_reason"] == "Feeling better"

    again = client.post(f"{API}/booking/manage/{token}/cancel")
    assert again.status_code == 400

    subjects = [m["subject"] for m in sendgrid_client.sent]
    assert subjects == ["Appointment Confirmed", "Appointment Rescheduled", "Appointment Cancelled"]


def test_manage_unknown_token(client):
    response = client.get(f"{API}/booking/manage/nope")
    assert response.status_code == 404


# --- Provider dashboard ---

def test_provider_endpoints_require_token(client):
    assert client.get(f"{API}/availability").status_code == 401
    assert client.get(f"{API}/appointments").status_code == 401
    bad = {"Authorization": "Bearer not-a-jwt"}
    assert client.get(f"{API}/blocked-periods", headers=bad).status_code == 401


def test_availability_rules(client, auth_headers):
    response = client.put(f"{API}/availability/2", headers=auth_headers,
                          json={"start_time": "14:00", "end_time": "16:00", "slot_duration": 60})
    assert response.status_code == 200
    rule = response.json()
    assert (rule["day_of_week"], rule["slot_duration"]) == (2, 60)

    # Same day again replaces the rule
    client.put(f"{API}/availability/2", headers=auth_headers,
               json={"start_time": "15:00", "end_time": "16:00", "slot_duration": 30})
    rules = client.get(f"{API}/availability", headers=auth_headers).json()
    assert [(r["day_of_week"], r["start_time"]) for r in rules] == [(1, "09:00"), (2, "15:00")]

    assert client.delete(f"{API}/availability/{rule['id']}", headers=auth_headers).status_code == 204
    assert len(client.get(f"{API}/availability", headers=auth_headers).json()) == 1


def test_availability_rule_validation(client, auth_headers):
    out_of_range = client.put(f"{API}/availability/7", headers=auth_headers,
                              json={"start_time": "09:00", "end_time": "10:00"})
    assert out_of_range.status_code == 400

    backwards = client.put(f"{API}/availability/3", headers=auth_headers,
                           json={"start_time": "10:00", "end_time": "09:00"})
    assert backwards.status_code == 400

    foreign_clinic = client.put(f"{API}/availability/3", headers=auth_headers,
                                json={"clinic_id": 42, "start_time": "09:00", "end_time": "10:00"})
    assert foreign_clinic.status_code == 404


def test_blocked_periods(client, auth_headers, pusher_client):
    created = client.post(f"{API}/blocked-periods", headers=auth_headers,
                          json={"date": MONDAY, "is_all_day": True, "reason": "Conference"})
    assert created.status_code == 201
    block = created.json()
    # Open booking pages are told to refresh
    assert [(c, n) for c, n, _ in pusher_client.events] == [("booking-dr-asha", "availability-updated")]
    assert (block["start_time"], block["end_time"]) == ("00:00", "23:59")

    slots = client.get(f"{API}/booking/available-slots", params={"provider_slug": "dr-asha", "date": MONDAY}).json()
    assert slots["is_available"] is False

    listed = client.get(f"{API}/blocked-periods", headers=auth_headers,
                        params={"start_date": MONDAY, "end_date": MONDAY}).json()
    assert [b["id"] for b in listed] == [block["id"]]

    assert client.delete(f"{API}/blocked-periods/{block['id']}", headers=auth_headers).status_code == 204
    assert client.delete(f"{API}/blocked-periods/{block['id']}", headers=auth_headers).status_code == 404


def test_partial_block_needs_times(client, auth_headers):
    response = client.post(f"{API}/blocked-periods", headers=auth_headers, json={"date": MONDAY})
    assert response.status_code == 400


def test_appointments_dashboard(client, auth_headers, twilio_client):
    appointment_id = _book(client)["appointment_id"]

    listed = client.get(f"{API}/appointments", headers=auth_headers).json()
    assert [a["id"] for a in listed] == [appointment_id]
    assert listed[0]["patient"]["full_name"] == "Ravi Kumar"

    twilio_client.messages.sent.clear()
    confirmed = client.patch(f"{API}/appointments/{appointment_id}/status", headers=auth_headers,
                             json={"status": "confirmed"})
    assert confirmed.status_code == 200
    assert confirmed.json()["status"] == "confirmed"
    [message] = twilio_client.messages.sent
    assert "Confirmed" in message["body"]

    pending = client.get(f"{API}/appointments", headers=auth_headers, params={"status": "pending"}).json()
    assert pending == []

    bad = client.patch(f"{API}/appointments/{appointment_id}/status", headers=auth_headers,
                       json={"status": "pending"})
    assert bad.status_code == 400


# --- Scheduled jobs ---

def test_cron_endpoints(client):
    reminders = client.get(f"{API}/cron/reminders")
    assert reminders.status_code == 200
    assert reminders.json()["reminders_24h"] == 0

    flushed = client.post(f"{API}/cron/dispatch-outbox")
    assert flushed.json() == {"dispatched": 0, "failed": 0}


def test_cron_secret(client, monkeypatch):
    monkeypatch.setattr(get_settings(), "cron_secret", "s3cret-value")

    assert client.get(f"{API}/cron/reminders").status_code == 401
    assert client.get(f"{API}/cron/reminders", headers={"Authorization": "Bearer wrong"}).status_code == 401
    assert client.get(f"{API}/cron/reminders", headers={"Authorization": "Bearer s3cret-value"}).status_code == 200


@pytest.mark.asyncio
async def test_booking_over_asgi(api_store, dispatcher):
    app.dependency_overrides[get_store] = lambda: api_store
    app.dependency_overrides[get_dispatcher] = lambda: dispatcher
    try:
        transport = ASGITransport(app=app)
        async with AsyncClient(transport=transport, base_url="http://test") as ac:
            response = await ac.post(f"{API}/booking/submit", json=_booking(time_slot="11:30"))
            slots = await ac.get(f"{API}/booking/available-slots",
                                 params={"provider_slug": "dr-asha", "date": MONDAY})
    finally:
        app.dependency_overrides.clear()

    assert response.status_code == 201
    assert slots.json()["slots"][-1]["is_booked"] is True
