# tests/conftest.py
import os

os.environ.setdefault("SECRET_KEY", "test-secret-key-that-is-at-least-32-characters")
os.environ["RATE_LIMIT_ENABLED"] = "false"
os.environ["STORAGE_BACKEND"] = "memory"
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["SCHEDULER_ENABLED"] = "false"

from datetime import date, datetime, time, timedelta, timezone

import pytest
from fastapi.testclient import TestClient

from carebook.dependencies import get_dispatcher, get_email_service, get_store, get_whatsapp_service
from carebook.main import app
from carebook.models import SubscriptionPlan
from carebook.security import create_access_token
from carebook.services.email_service import EmailService
from carebook.services.notification_dispatcher import NotificationDispatcher
from carebook.services.realtime_service import RealtimeService
from carebook.services.whatsapp_service import WhatsAppService
from carebook.storage.memory import MemoryBookingStore
from carebook.storage.sql import SqlBookingStore

# First Monday of 2030; far enough ahead that API tests running on the real
# clock always see it as a future date.
_BASE = date(2030, 1, 1)
MONDAY = _BASE + timedelta(days=(0 - _BASE.weekday()) % 7)


# --- Fake provider clients ---

class FakeTwilioMessages:
    def __init__(self, fail=False):
        self.sent = []
        self.fail = fail

    def create(self, body, from_, to):
        if self.fail:
            raise RuntimeError("twilio down")
        self.sent.append({"body": body, "from": from_, "to": to})
        return type("Message", (), {"sid": f"SM{len(self.sent)}"})()


class FakeTwilioClient:
    def __init__(self, fail=False):
        self.messages = FakeTwilioMessages(fail)


class FakeSendGridClient:
    def __init__(self):
        self.sent = []

    def send(self, mail):
        self.sent.append(mail.get())
        return type("Response", (), {"status_code": 202})()


class FakePusherClient:
    def __init__(self):
        self.events = []

    def trigger(self, channel, event, data):
        self.events.append((channel, event, data))


# --- Stores ---

@pytest.fixture
def memory_store():
    return MemoryBookingStore()


@pytest.fixture
def sql_store():
    store = SqlBookingStore("sqlite://")
    store.create_schema()
    yield store
    store.dispose()


@pytest.fixture
def file_store(tmp_path):
    """SQLite on disk: every session gets its own connection, as in production."""
    store = SqlBookingStore(f"sqlite:///{tmp_path / 'carebook.db'}")
    store.create_schema()
    yield store
    store.dispose()


@pytest.fixture(params=["memory", "sql"])
def store(request):
    if request.param == "memory":
        yield MemoryBookingStore()
        return
    sql = SqlBookingStore("sqlite://")
    sql.create_schema()
    yield sql
    sql.dispose()


@pytest.fixture
def monday():
    return MONDAY


@pytest.fixture
def now():
    """Monday a week before MONDAY, 10:00 in Asia/Kolkata."""
    return datetime.combine(MONDAY - timedelta(days=7), time(4, 30), tzinfo=timezone.utc)


@pytest.fixture
def seed_provider():
    """Factory: a provider with a Monday 09:00-12:00 rule (30 minute slots)."""

    def _seed(store, slug="dr-asha", plan=SubscriptionPlan.premium, **overrides):
        fields = dict(
            slug=slug,
            full_name="Asha Rao",
            phone="+919800000001",
            clinic_name="Rao Family Clinic",
            subscription_plan=plan,
            timezone="Asia/Kolkata",
            monthly_reset_date=datetime.combine(MONDAY - timedelta(days=7), time(0, 0), tzinfo=timezone.utc),
        )
        fields.update(overrides)
        with store.unit_of_work() as uow:
            provider = uow.add_provider(**fields)
            uow.add_rule(provider_id=provider.id, day_of_week=1, start_time="09:00",
                         end_time="12:00", slot_duration=30)
        return provider

    return _seed


@pytest.fixture
def provider(store, seed_provider):
    return seed_provider(store)


@pytest.fixture
def booking_command():
    """Factory for BookingCommand payloads."""
    from carebook.schemas import BookingCommand

    def _command(slug="dr-asha", time_slot="09:00", whatsapp="+919811111111", **overrides):
        fields = dict(
            provider_slug=slug,
            appointment_date=MONDAY,
            time_slot=time_slot,
            full_name="Ravi Kumar",
            whatsapp_number=whatsapp,
            email="ravi.kumar@gmail.com",
            reason="Persistent cough",
        )
        fields.update(overrides)
        return BookingCommand(**fields)

    return _command


# --- Notification channels ---

@pytest.fixture
def twilio_client():
    return FakeTwilioClient()


@pytest.fixture
def sendgrid_client():
    return FakeSendGridClient()


@pytest.fixture
def pusher_client():
    return FakePusherClient()


@pytest.fixture
def whatsapp(twilio_client):
    return WhatsAppService(client=twilio_client)


@pytest.fixture
def broken_whatsapp():
    return WhatsAppService(client=FakeTwilioClient(fail=True))


@pytest.fixture
def email(sendgrid_client):
    return EmailService(client=sendgrid_client)


@pytest.fixture
def realtime(pusher_client):
    return RealtimeService(client=pusher_client)


@pytest.fixture
def dispatcher(whatsapp, email, realtime):
    return NotificationDispatcher(whatsapp, email, realtime)


# --- API ---

@pytest.fixture
def api_store(memory_store, seed_provider):
    seed_provider(memory_store)
    return memory_store


@pytest.fixture
def client(api_store, dispatcher, whatsapp, email):
    app.dependency_overrides[get_store] = lambda: api_store
    app.dependency_overrides[get_dispatcher] = lambda: dispatcher
    app.dependency_overrides[get_whatsapp_service] = lambda: whatsapp
    app.dependency_overrides[get_email_service] = lambda: email
    with TestClient(app) as c:
        yield c
    app.dependency_overrides.clear()


@pytest.fixture
def auth_headers(api_store):
    with api_store.unit_of_work() as uow:
        provider = uow.get_provider_by_slug("dr-asha")
    token = create_access_token({"sub": str(provider.id), "role": "doctor"})
    return {"Authorization": f"Bearer {token}"}
