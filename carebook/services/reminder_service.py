# carebook/services/reminder_service.py
"""Hourly reminder sweep.

Each appointment gets at most one 24h and one 1h reminder. The flag is claimed
with a conditional update before anything is sent, so overlapping sweeps never
double-send and a failed delivery is not retried.
"""
from datetime import datetime, timedelta
from typing import Optional

import structlog

from .. import plans
from ..config import get_settings
from ..models import AppointmentStatus
from ..schemas import ReminderSweepResult
from ..storage.base import BookingStore
from ..timeutils import ensure_aware, format_minutes, local_now, utcnow
from .email_service import EmailService
from .whatsapp_service import WhatsAppService

logger = structlog.get_logger(__name__)

FLAG_24H = "reminder_sent_24h"
FLAG_1H = "reminder_sent_1h"


def next_hour_window(local: datetime):
    """[(H+1):00, (H+2):00) as HH:MM bounds, or None when the next hour is past midnight."""
    start_hour = local.hour + 1
    if start_hour > 23:
        return None
    # 24:00 sorts after every valid HH:MM
    return format_minutes(start_hour * 60), format_minutes((start_hour + 1) * 60)


def run_reminder_sweep(store: BookingStore, whatsapp: Optional[WhatsAppService],
                       email: Optional[EmailService], now: Optional[datetime] = None) -> ReminderSweepResult:
    settings = get_settings()
    now = ensure_aware(now or utcnow())
    result = ReminderSweepResult(timestamp=now)

    with store.unit_of_work() as uow:
        providers = uow.list_active_providers()

    for provider in providers:
        local = local_now(provider.timezone, now, settings.default_timezone)
        today = local.date()
        tomorrow = today + timedelta(days=1)

        with store.unit_of_work() as uow:
            due_24h = [a.id for a in uow.list_reminder_candidates(provider.id, tomorrow, FLAG_24H)]
            window = next_hour_window(local)
            due_1h = []
            if window is not None:
                due_1h = [a.id for a in uow.list_reminder_candidates(provider.id, today, FLAG_1H, *window)]

        for appointment_id in due_24h:
            if _claim_and_send(store, provider, appointment_id, FLAG_24H, 24, whatsapp, email):
                result.reminders_24h += 1
        for appointment_id in due_1h:
            if _claim_and_send(store, provider, appointment_id, FLAG_1H, 1, whatsapp, email):
                result.reminders_1h += 1

    logger.info("reminder_sweep_finished", reminders_24h=result.reminders_24h, reminders_1h=result.reminders_1h)
    return result


def _claim_and_send(store: BookingStore, provider, appointment_id: int, flag: str, hours_until: int,
                    whatsapp: Optional[WhatsAppService], email: Optional[EmailService]) -> bool:
    """True when this sweep owned the reminder (whether or not delivery worked)."""
    with store.unit_of_work() as uow:
        if not uow.claim_reminder(appointment_id, flag):
            return False
        appointment = uow.get_appointment(appointment_id)
        status = AppointmentStatus(appointment.status)
        if status.is_terminal:
            # Cancelled or completed after the candidates were listed
            logger.info("reminder_skipped", appointment_id=appointment_id, status=status.value)
            return False
        patient = uow.get_patient(appointment.patient_id)

    date_text = appointment.appointment_date.isoformat()
    delivered = False
    if whatsapp is not None and plans.has_whatsapp(provider.subscription_plan):
        try:
            delivered = whatsapp.send_appointment_reminder(
                patient.whatsapp_number, patient.full_name, provider.full_name,
                date_text, appointment.time_slot, hours_until,
            ) or delivered
        except Exception as e:
            logger.warning("reminder_whatsapp_failed", appointment_id=appointment_id, error=str(e))
    if email is not None and patient.email:
        try:
            delivered = email.send_appointment_reminder(patient.email, {
                "patient_name": patient.full_name,
                "provider_name": provider.full_name,
                "date": date_text,
                "time_slot": appointment.time_slot,
                "hours_until": hours_until,
            }) or delivered
        except Exception as e:
            logger.warning("reminder_email_failed", appointment_id=appointment_id, error=str(e))

    logger.info("reminder_sent", appointment_id=appointment_id, flag=flag, delivered=delivered)
    return True
