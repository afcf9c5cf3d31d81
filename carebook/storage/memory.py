# carebook/storage/memory.py - In-process backend (demo mode, tests)
import copy
import itertools
import threading
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Any, Dict, List, Optional

from ..exceptions import QuotaExceeded, SlotConflict
from ..models import AppointmentStatus, OutboxStatus, SubscriptionPlan, utcnow
from ..plans import UNLIMITED
from .base import BookingStore, REMINDER_FLAGS, UnitOfWork


@dataclass
class ProviderRecord:
    id: int
    slug: str
    full_name: str
    email: Optional[str] = None
    phone: Optional[str] = None
    specialization: Optional[str] = None
    bio: Optional[str] = None
    clinic_name: Optional[str] = None
    subscription_plan: SubscriptionPlan = SubscriptionPlan.free_trial
    subscription_end: Optional[datetime] = None
    patient_count_this_month: int = 0
    monthly_reset_date: Optional[datetime] = field(default_factory=utcnow)
    timezone: str = "Asia/Kolkata"
    is_active: bool = True
    created_at: datetime = field(default_factory=utcnow)


@dataclass
class ClinicRecord:
    id: int
    provider_id: int
    name: str
    address: Optional[str] = None
    phone: Optional[str] = None
    is_active: bool = True
    created_at: datetime = field(default_factory=utcnow)


@dataclass
class RuleRecord:
    id: int
    provider_id: int
    day_of_week: int
    start_time: str
    end_time: str
    clinic_id: Optional[int] = None
    slot_duration: int = 30
    is_active: bool = True
    created_at: datetime = field(default_factory=utcnow)


@dataclass
class BlockedPeriodRecord:
    id: int
    provider_id: int
    date: date
    start_time: str
    end_time: str
    clinic_id: Optional[int] = None
    is_all_day: bool = False
    reason: Optional[str] = None
    created_at: datetime = field(default_factory=utcnow)


@dataclass
class PatientRecord:
    id: int
    full_name: str
    whatsapp_number: str
    created_by_provider_id: int
    email: Optional[str] = None
    phone: Optional[str] = None
    edit_token: Optional[str] = None
    edit_token_expiry: Optional[datetime] = None
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)


@dataclass
class AppointmentRecord:
    id: int
    provider_id: int
    patient_id: int
    appointment_date: date
    time_slot: str
    end_time: str
    clinic_id: Optional[int] = None
    duration: int = 30
    status: AppointmentStatus = AppointmentStatus.pending
    reason: Optional[str] = None
    notes: Optional[str] = None
    cancel_reason: Optional[str] = None
    edit_token: Optional[str] = None
    reminder_sent_24h: bool = False
    reminder_sent_1h: bool = False
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)


@dataclass
class FormTemplateRecord:
    id: int
    provider_id: int
    form_name: str
    fields: List[Dict[str, Any]] = field(default_factory=list)
    is_active: bool = True
    is_default: bool = False
    created_at: datetime = field(default_factory=utcnow)


@dataclass
class FormSubmissionRecord:
    id: int
    appointment_id: int
    patient_id: int
    data: Dict[str, Any]
    form_template_id: Optional[int] = None
    submitted_at: datetime = field(default_factory=utcnow)


@dataclass
class OutboxEventRecord:
    id: int
    event_type: str
    payload: Dict[str, Any]
    status: OutboxStatus = OutboxStatus.pending
    attempts: int = 0
    last_error: Optional[str] = None
    created_at: datetime = field(default_factory=utcnow)
    claimed_at: Optional[datetime] = None
    dispatched_at: Optional[datetime] = None


TABLES = (
    "providers", "clinics", "rules", "blocked_periods", "patients",
    "appointments", "form_templates", "form_submissions", "outbox_events",
)


class MemoryUnitOfWork(UnitOfWork):

    def __init__(self, state: Dict[str, Dict[int, Any]], ids):
        self.state = state
        self._ids = ids

    def _insert(self, table, record_cls, fields):
        record = record_cls(id=next(self._ids[table]), **fields)
        self.state[table][record.id] = record
        return record

    @staticmethod
    def _update(record, fields):
        for key, value in fields.items():
            if not hasattr(record, key):
                raise AttributeError(f"{type(record).__name__} has no field '{key}'")
            setattr(record, key, value)
        if hasattr(record, "updated_at"):
            record.updated_at = utcnow()
        return record

    def _rows(self, table):
        return list(self.state[table].values())

    # --- Providers & clinics ---
    def get_provider(self, provider_id):
        return self.state["providers"].get(provider_id)

    def get_provider_by_slug(self, slug):
        return next((p for p in self._rows("providers") if p.slug == slug), None)

    def list_active_providers(self):
        return [p for p in self._rows("providers") if p.is_active]

    def add_provider(self, **fields):
        if self.get_provider_by_slug(fields.get("slug")):
            raise ValueError(f"Provider slug '{fields.get('slug')}' already exists")
        return self._insert("providers", ProviderRecord, fields)

    def update_provider(self, provider, **fields):
        return self._update(provider, fields)

    def increment_patient_count(self, provider, limit=UNLIMITED):
        if limit != UNLIMITED and provider.patient_count_this_month >= limit:
            raise QuotaExceeded()
        provider.patient_count_this_month += 1
        return provider.patient_count_this_month

    def get_clinic(self, clinic_id):
        return self.state["clinics"].get(clinic_id)

    def list_clinics(self, provider_id):
        return [c for c in self._rows("clinics") if c.provider_id == provider_id and c.is_active]

    def add_clinic(self, **fields):
        return self._insert("clinics", ClinicRecord, fields)

    # --- Availability rules ---
    def get_rule(self, rule_id):
        return self.state["rules"].get(rule_id)

    def list_rules(self, provider_id, day_of_week=None, active_only=False):
        rules = [
            r for r in self._rows("rules")
            if r.provider_id == provider_id
            and (day_of_week is None or r.day_of_week == day_of_week)
            and (r.is_active or not active_only)
        ]
        return sorted(rules, key=lambda r: (r.day_of_week, r.id))

    def find_rule(self, provider_id, clinic_id, day_of_week):
        return next((
            r for r in self.list_rules(provider_id, day_of_week)
            if r.clinic_id == clinic_id
        ), None)

    def add_rule(self, **fields):
        return self._insert("rules", RuleRecord, fields)

    def update_rule(self, rule, **fields):
        return self._update(rule, fields)

    def delete_rule(self, rule):
        self.state["rules"].pop(rule.id, None)

    # --- Blocked periods ---
    def get_blocked_period(self, block_id):
        return self.state["blocked_periods"].get(block_id)

    def list_blocked_periods(self, provider_id, start_date=None, end_date=None):
        blocks = [
            b for b in self._rows("blocked_periods")
            if b.provider_id == provider_id
            and (start_date is None or b.date >= start_date)
            and (end_date is None or b.date <= end_date)
        ]
        return sorted(blocks, key=lambda b: (b.date, b.start_time))

    def add_blocked_period(self, **fields):
        return self._insert("blocked_periods", BlockedPeriodRecord, fields)

    def delete_blocked_period(self, block):
        self.state["blocked_periods"].pop(block.id, None)

    # --- Patients ---
    def get_patient(self, patient_id):
        return self.state["patients"].get(patient_id)

    def find_patient(self, provider_id, whatsapp_number):
        return next((
            p for p in self._rows("patients")
            if p.created_by_provider_id == provider_id and p.whatsapp_number == whatsapp_number
        ), None)

    def add_patient(self, **fields):
        if self.find_patient(fields["created_by_provider_id"], fields["whatsapp_number"]):
            raise SlotConflict()
        return self._insert("patients", PatientRecord, fields)

    def update_patient(self, patient, **fields):
        return self._update(patient, fields)

    # --- Appointment ledger ---
    def get_appointment(self, appointment_id):
        return self.state["appointments"].get(appointment_id)

    def get_appointment_by_token(self, token):
        return next((a for a in self._rows("appointments") if a.edit_token == token), None)

    def find_active_appointment(self, provider_id, appointment_date, time_slot):
        return next((
            a for a in self._rows("appointments")
            if a.provider_id == provider_id
            and a.appointment_date == appointment_date
            and a.time_slot == time_slot
            and a.status != AppointmentStatus.cancelled
        ), None)

    def list_active_appointments(self, provider_id, appointment_date):
        appointments = [
            a for a in self._rows("appointments")
            if a.provider_id == provider_id
            and a.appointment_date == appointment_date
            and a.status != AppointmentStatus.cancelled
        ]
        return sorted(appointments, key=lambda a: a.time_slot)

    def list_appointments(self, provider_id, status=None, start_date=None, end_date=None, skip=0, limit=50):
        appointments = [
            a for a in self._rows("appointments")
            if a.provider_id == provider_id
            and (status is None or a.status == status)
            and (start_date is None or a.appointment_date >= start_date)
            and (end_date is None or a.appointment_date <= end_date)
        ]
        appointments.sort(key=lambda a: (a.appointment_date, a.time_slot), reverse=True)
        return appointments[skip:skip + limit]

    def _check_slot_free(self, appointment_id, fields):
        # Mirrors the partial unique index on live appointments
        if fields.get("status", AppointmentStatus.pending) == AppointmentStatus.cancelled:
            return
        holder = self.find_active_appointment(fields["provider_id"], fields["appointment_date"], fields["time_slot"])
        if holder is not None and holder.id != appointment_id:
            raise SlotConflict()

    def add_appointment(self, **fields):
        if fields.get("edit_token") and self.get_appointment_by_token(fields["edit_token"]):
            raise SlotConflict()
        self._check_slot_free(None, fields)
        return self._insert("appointments", AppointmentRecord, fields)

    def update_appointment(self, appointment, **fields):
        merged = {
            "provider_id": appointment.provider_id,
            "appointment_date": appointment.appointment_date,
            "time_slot": appointment.time_slot,
            "status": appointment.status,
        }
        merged.update({k: v for k, v in fields.items() if k in merged})
        self._check_slot_free(appointment.id, merged)
        return self._update(appointment, fields)

    def list_reminder_candidates(self, provider_id, appointment_date, flag, slot_from=None, slot_to=None):
        self._check_flag(flag)
        candidates = [
            a for a in self._rows("appointments")
            if a.provider_id == provider_id
            and a.appointment_date == appointment_date
            and a.status in (AppointmentStatus.pending, AppointmentStatus.confirmed)
            and not getattr(a, flag)
            and (slot_from is None or a.time_slot >= slot_from)
            and (slot_to is None or a.time_slot < slot_to)
        ]
        return sorted(candidates, key=lambda a: a.time_slot)

    def claim_reminder(self, appointment_id, flag):
        self._check_flag(flag)
        appointment = self.get_appointment(appointment_id)
        if appointment is None or getattr(appointment, flag):
            return False
        setattr(appointment, flag, True)
        return True

    @staticmethod
    def _check_flag(flag):
        if flag not in REMINDER_FLAGS:
            raise ValueError(f"Unknown reminder flag: {flag}")

    # --- Forms ---
    def get_default_form_template(self, provider_id):
        templates = sorted(
            (t for t in self._rows("form_templates") if t.provider_id == provider_id and t.is_active),
            key=lambda t: t.id,
        )
        return next((t for t in templates if t.is_default), templates[0] if templates else None)

    def add_form_template(self, **fields):
        return self._insert("form_templates", FormTemplateRecord, fields)

    def add_form_submission(self, **fields):
        return self._insert("form_submissions", FormSubmissionRecord, fields)

    # --- Outbox ---
    def add_outbox_event(self, event_type, payload):
        return self._insert("outbox_events", OutboxEventRecord, {"event_type": event_type, "payload": payload})

    def list_pending_events(self, limit=50):
        events = [e for e in self._rows("outbox_events") if e.status == OutboxStatus.pending]
        return sorted(events, key=lambda e: e.id)[:limit]

    def claim_event(self, event_id):
        event = self.state["outbox_events"].get(event_id)
        if event is None or event.status != OutboxStatus.pending:
            return False
        event.status = OutboxStatus.processing
        event.attempts += 1
        event.claimed_at = utcnow()
        return True

    def mark_event(self, event_id, status, error=None):
        event = self.state["outbox_events"].get(event_id)
        if event is None:
            return
        event.status = OutboxStatus(status)
        event.last_error = error
        if event.status == OutboxStatus.dispatched:
            event.dispatched_at = utcnow()

    def reclaim_stale_events(self, claimed_before, max_attempts):
        stale = [
            e for e in self._rows("outbox_events")
            if e.status == OutboxStatus.processing and e.claimed_at is not None and e.claimed_at < claimed_before
        ]
        for event in stale:
            if event.attempts >= max_attempts:
                event.status = OutboxStatus.failed
                event.last_error = f"Abandoned in processing after {max_attempts} attempts"
            else:
                event.status = OutboxStatus.pending
                event.claimed_at = None
        return len(stale)


class MemoryBookingStore(BookingStore):
    """Single-process store. Units of work are serialised by one lock and
    rolled back by restoring a snapshot taken when the unit began."""

    name = "memory"

    def __init__(self):
        self._lock = threading.RLock()
        self._state = {table: {} for table in TABLES}
        self._ids = {table: itertools.count(1) for table in TABLES}

    @contextmanager
    def unit_of_work(self):
        with self._lock:
            snapshot = copy.deepcopy(self._state)
            try:
                yield MemoryUnitOfWork(self._state, self._ids)
            except Exception:
                # Restore in place; units of work hold a reference to this dict
                self._state.clear()
                self._state.update(snapshot)
                raise

    def count(self, table: str) -> int:
        with self._lock:
            return len(self._state[table])
