# carebook/services/booking_service.py
"""Booking write path: public booking, provider status changes and patient
self-service through the appointment's edit token.

Every operation runs inside one storage unit of work and only records an
outbox event for its side effects; nothing here talks to WhatsApp, email or
the real-time bus.
"""
import secrets
from datetime import date, datetime, time, timedelta
from typing import List, Optional

import structlog

from .. import plans
from ..config import get_settings
from ..exceptions import InvalidInput, NotFound, QuotaExceeded, SlotConflict, Unavailable
from ..models import AppointmentStatus
from ..schemas import AppointmentStatusUpdate, BookingCommand, BookingResult, RescheduleCommand
from ..storage.base import BookingStore, UnitOfWork
from ..timeutils import ensure_aware, format_minutes, get_timezone, local_now, parse_hhmm, utcnow
from .slot_service import compute_day, ensure_accepting_bookings, resolve_provider

logger = structlog.get_logger(__name__)

# Outbox event types
BOOKING_CREATED = "booking.created"
STATUS_CHANGED = "appointment.status_changed"
RESCHEDULED = "appointment.rescheduled"
CANCELLED_BY_PATIENT = "appointment.cancelled"

ALLOWED_TRANSITIONS = {
    AppointmentStatus.pending: {AppointmentStatus.confirmed, AppointmentStatus.cancelled, AppointmentStatus.completed},
    AppointmentStatus.confirmed: {AppointmentStatus.cancelled, AppointmentStatus.completed},
    AppointmentStatus.cancelled: set(),
    AppointmentStatus.completed: set(),
}

RESCHEDULE_HORIZON_DAYS = 14


def new_token() -> str:
    return secrets.token_urlsafe(32)


def edit_link(token: str) -> str:
    return f"{get_settings().app_url.rstrip('/')}/appointment/manage/{token}"


def reset_monthly_counter_if_due(uow: UnitOfWork, provider, now: datetime) -> None:
    last_reset = provider.monthly_reset_date
    if last_reset is None:
        uow.update_provider(provider, monthly_reset_date=now)
        return
    last_reset = ensure_aware(last_reset)
    if (last_reset.year, last_reset.month) < (now.year, now.month):
        logger.info("patient_counter_reset", provider_id=provider.id, previous=provider.patient_count_this_month)
        uow.update_provider(provider, patient_count_this_month=0, monthly_reset_date=now)


def check_bookable(day, time_slot: str) -> None:
    """The requested time must be a live slot of the day's grid."""
    slot = day.slot(time_slot)
    if slot is None:
        raise InvalidInput("Selected time is not available for booking on this date")
    if slot.is_blocked:
        raise InvalidInput("Selected time is blocked by the doctor")
    if slot.is_past:
        raise InvalidInput("Selected time has already passed")


def _appointment_payload(provider, patient, appointment, clinic=None, **extra) -> dict:
    payload = {
        "appointment_id": appointment.id,
        "provider_id": provider.id,
        "provider_slug": provider.slug,
        "provider_name": provider.full_name,
        "provider_phone": provider.phone,
        "plan": str(getattr(provider.subscription_plan, "value", provider.subscription_plan)),
        "clinic_name": clinic.name if clinic is not None else provider.clinic_name,
        "patient_id": patient.id,
        "patient_name": patient.full_name,
        "patient_whatsapp": patient.whatsapp_number,
        "patient_email": patient.email,
        "patient_phone": patient.phone,
        "date": appointment.appointment_date.isoformat(),
        "time_slot": appointment.time_slot,
        "status": str(getattr(appointment.status, "value", appointment.status)),
        "reason": appointment.reason,
    }
    payload.update(extra)
    return payload


# --- 1. Public booking ---

def submit_booking(store: BookingStore, command: BookingCommand, now: Optional[datetime] = None) -> BookingResult:
    """Claim one slot for one patient, atomically.

    Failures, in the order they are checked: NotFound (slug/clinic),
    Unavailable, InvalidInput (not a live slot), QuotaExceeded (new contacts
    only), SlotConflict. A concurrent winner detected at insert time also
    surfaces as SlotConflict and nothing from this attempt is kept.
    """
    settings = get_settings()
    now = ensure_aware(now or utcnow())

    with store.unit_of_work() as uow:
        provider = resolve_provider(uow, command.provider_slug, command.clinic_id)
        ensure_accepting_bookings(provider, now, settings.subscription_grace_days)

        day = compute_day(uow, provider, command.appointment_date, command.clinic_id, now)
        check_bookable(day, command.time_slot)

        reset_monthly_counter_if_due(uow, provider, now)
        patient = uow.find_patient(provider.id, command.whatsapp_number)
        if patient is None and not plans.can_add_patient(provider.subscription_plan, provider.patient_count_this_month):
            logger.info("booking_quota_exceeded", provider_id=provider.id, count=provider.patient_count_this_month)
            raise QuotaExceeded()

        if uow.find_active_appointment(provider.id, command.appointment_date, command.time_slot) is not None:
            raise SlotConflict()

        token_expiry = now + timedelta(days=settings.patient_token_ttl_days)
        if patient is not None:
            patient = uow.update_patient(
                patient,
                full_name=command.full_name,
                email=command.email or patient.email,
                phone=command.phone or patient.phone,
                edit_token=new_token(),
                edit_token_expiry=token_expiry,
            )
        else:
            patient = uow.add_patient(
                full_name=command.full_name,
                email=command.email,
                phone=command.phone,
                whatsapp_number=command.whatsapp_number,
                created_by_provider_id=provider.id,
                edit_token=new_token(),
                edit_token_expiry=token_expiry,
            )
            uow.increment_patient_count(provider, plans.get_plan_limits(provider.subscription_plan).max_patients)

        duration = day.slot_duration
        start = parse_hhmm(command.time_slot)
        appointment = uow.add_appointment(
            provider_id=provider.id,
            clinic_id=command.clinic_id,
            patient_id=patient.id,
            appointment_date=command.appointment_date,
            time_slot=command.time_slot,
            end_time=format_minutes(start + duration),
            duration=duration,
            status=AppointmentStatus.pending,
            reason=command.reason,
            edit_token=new_token(),
        )

        if command.form_data:
            template = uow.get_default_form_template(provider.id)
            uow.add_form_submission(
                form_template_id=template.id if template is not None else None,
                appointment_id=appointment.id,
                patient_id=patient.id,
                data=command.form_data,
            )

        link = edit_link(appointment.edit_token)
        clinic = uow.get_clinic(command.clinic_id) if command.clinic_id is not None else None
        uow.add_outbox_event(BOOKING_CREATED, _appointment_payload(provider, patient, appointment, clinic, edit_link=link))

    logger.info(
        "booking_created",
        appointment_id=appointment.id,
        provider_id=provider.id,
        date=appointment.appointment_date.isoformat(),
        time_slot=appointment.time_slot,
    )
    return BookingResult(appointment_id=appointment.id, edit_link=link)


# --- 2. Provider-side status changes ---

def update_appointment_status(store: BookingStore, provider_id: int, appointment_id: int,
                              update: AppointmentStatusUpdate):
    with store.unit_of_work() as uow:
        appointment = uow.get_appointment(appointment_id)
        if appointment is None or appointment.provider_id != provider_id:
            raise NotFound("Appointment not found")

        current = AppointmentStatus(appointment.status)
        target = update.status
        if current.is_terminal:
            raise InvalidInput(f"Appointment is already {current.value}")
        if target != current and target not in ALLOWED_TRANSITIONS[current]:
            raise InvalidInput(f"Cannot change status from {current.value} to {target.value}")

        update_data = update.model_dump(exclude_unset=True)
        if target != AppointmentStatus.cancelled:
            update_data.pop("cancel_reason", None)
        appointment = uow.update_appointment(appointment, **update_data)

        if target != current:
            provider = uow.get_provider(appointment.provider_id)
            patient = uow.get_patient(appointment.patient_id)
            uow.add_outbox_event(STATUS_CHANGED, _appointment_payload(
                provider, patient, appointment,
                previous_status=current.value,
                cancel_reason=appointment.cancel_reason,
            ))

    logger.info("appointment_status_updated", appointment_id=appointment_id,
                previous=current.value, status=target.value)
    return appointment


def list_provider_appointments(store: BookingStore, provider_id: int, status: Optional[str] = None,
                               start_date: Optional[date] = None, end_date: Optional[date] = None,
                               skip: int = 0, limit: int = 50):
    """Appointments for the provider's dashboard, each paired with its patient."""
    with store.unit_of_work() as uow:
        appointments = uow.list_appointments(provider_id, status=status, start_date=start_date,
                                              end_date=end_date, skip=skip, limit=limit)
        return [(a, uow.get_patient(a.patient_id)) for a in appointments]


# --- 3. Patient self-service ---

class ManagedAppointment:
    """An appointment as seen through its edit link."""

    def __init__(self, appointment, provider, patient, modify_deadline: datetime, can_modify: bool,
                 reschedule_options: Optional[List[dict]] = None):
        self.appointment = appointment
        self.provider = provider
        self.patient = patient
        self.modify_deadline = modify_deadline
        self.can_modify = can_modify
        self.reschedule_options = reschedule_options or []


def _starts_at(provider, appointment) -> datetime:
    tz = get_timezone(provider.timezone, get_settings().default_timezone)
    minutes = parse_hhmm(appointment.time_slot)
    naive = datetime.combine(appointment.appointment_date, time(minutes // 60, minutes % 60))
    return tz.localize(naive)


def _load_managed(uow: UnitOfWork, token: str, now: datetime):
    appointment = uow.get_appointment_by_token(token) if token else None
    if appointment is None:
        raise NotFound("Appointment not found")
    provider = uow.get_provider(appointment.provider_id)
    patient = uow.get_patient(appointment.patient_id)

    deadline = ensure_aware(appointment.created_at) + timedelta(hours=get_settings().modify_window_hours)
    can_modify = (
        now < deadline
        and _starts_at(provider, appointment) > now
        and not AppointmentStatus(appointment.status).is_terminal
    )
    return appointment, provider, patient, deadline, can_modify


def _ensure_modifiable(appointment, deadline: datetime, now: datetime) -> None:
    if AppointmentStatus(appointment.status).is_terminal:
        raise InvalidInput(f"Appointment is already {AppointmentStatus(appointment.status).value}")
    if now > deadline:
        raise Unavailable("Modification window has expired")


def get_managed_appointment(store: BookingStore, token: str, now: Optional[datetime] = None) -> ManagedAppointment:
    now = ensure_aware(now or utcnow())
    with store.unit_of_work() as uow:
        appointment, provider, patient, deadline, can_modify = _load_managed(uow, token, now)

        options = []
        if can_modify:
            today = local_now(provider.timezone, now, get_settings().default_timezone).date()
            for offset in range(1, RESCHEDULE_HORIZON_DAYS + 1):
                day = compute_day(uow, provider, today + timedelta(days=offset), appointment.clinic_id, now)
                free = [s.time for s in day.slots if s.is_available]
                if free:
                    options.append({"date": day.date.isoformat(), "slots": free})

    return ManagedAppointment(appointment, provider, patient, deadline, can_modify, options)


def reschedule_appointment(store: BookingStore, token: str, command: RescheduleCommand,
                           now: Optional[datetime] = None):
    now = ensure_aware(now or utcnow())
    with store.unit_of_work() as uow:
        appointment, provider, patient, deadline, _ = _load_managed(uow, token, now)
        _ensure_modifiable(appointment, deadline, now)

        day = compute_day(uow, provider, command.appointment_date, appointment.clinic_id, now)
        check_bookable(day, command.time_slot)
        holder = uow.find_active_appointment(provider.id, command.appointment_date, command.time_slot)
        if holder is not None and holder.id != appointment.id:
            raise SlotConflict()

        old_date, old_slot = appointment.appointment_date, appointment.time_slot
        start = parse_hhmm(command.time_slot)
        appointment = uow.update_appointment(
            appointment,
            appointment_date=command.appointment_date,
            time_slot=command.time_slot,
            duration=day.slot_duration,
            end_time=format_minutes(start + day.slot_duration),
            reminder_sent_24h=False,
            reminder_sent_1h=False,
        )
        uow.add_outbox_event(RESCHEDULED, _appointment_payload(
            provider, patient, appointment,
            previous_date=old_date.isoformat(),
            previous_time_slot=old_slot,
        ))

    logger.info("appointment_rescheduled", appointment_id=appointment.id,
                date=appointment.appointment_date.isoformat(), time_slot=appointment.time_slot)
    return appointment


def cancel_by_patient(store: BookingStore, token: str, reason: Optional[str] = None,
                      now: Optional[datetime] = None):
    now = ensure_aware(now or utcnow())
    with store.unit_of_work() as uow:
        appointment, provider, patient, deadline, _ = _load_managed(uow, token, now)
        _ensure_modifiable(appointment, deadline, now)

        appointment = uow.update_appointment(
            appointment,
            status=AppointmentStatus.cancelled,
            cancel_reason=reason or "Cancelled by patient",
        )
        uow.add_outbox_event(CANCELLED_BY_PATIENT, _appointment_payload(
            provider, patient, appointment, cancel_reason=appointment.cancel_reason,
        ))

    logger.info("appointment_cancelled_by_patient", appointment_id=appointment.id)
    return appointment
