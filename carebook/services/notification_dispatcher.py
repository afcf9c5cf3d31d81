# carebook/services/notification_dispatcher.py
"""Outbox consumer.

Picks up events committed by the booking service and performs their side
effects. Each channel call is best effort: a failed WhatsApp message never
stops the email or the real-time event, and nothing is re-raised to the
caller.

An event left in `processing` by a worker that died mid-dispatch is released
back to pending once it is older than `stale_after`, until it has used up
`max_attempts`.
"""
from datetime import datetime, timedelta
from typing import Optional

import structlog

from .. import plans
from ..config import get_settings
from ..models import OutboxStatus
from ..storage.base import BookingStore
from ..timeutils import ensure_aware, utcnow
from . import booking_service, schedule_service
from .email_service import EmailService
from .realtime_service import RealtimeService
from .whatsapp_service import WhatsAppService

logger = structlog.get_logger(__name__)


class NotificationDispatcher:

    def __init__(self, whatsapp: WhatsAppService, email: EmailService, realtime: RealtimeService,
                 stale_after: Optional[timedelta] = None, max_attempts: Optional[int] = None):
        settings = get_settings()
        self.whatsapp = whatsapp
        self.email = email
        self.realtime = realtime
        self.stale_after = stale_after or timedelta(minutes=settings.outbox_stale_minutes)
        self.max_attempts = max_attempts or settings.outbox_max_attempts
        self.handlers = {
            booking_service.BOOKING_CREATED: self.on_booking_created,
            booking_service.STATUS_CHANGED: self.on_status_changed,
            booking_service.RESCHEDULED: self.on_rescheduled,
            booking_service.CANCELLED_BY_PATIENT: self.on_cancelled_by_patient,
            schedule_service.AVAILABILITY_UPDATED: self.on_availability_updated,
        }

    def dispatch_pending(self, store: BookingStore, limit: int = 50, now: Optional[datetime] = None) -> dict:
        """Process up to `limit` pending events. Returns counts."""
        now = ensure_aware(now or utcnow())
        with store.unit_of_work() as uow:
            reclaimed = uow.reclaim_stale_events(now - self.stale_after, self.max_attempts)
            events = [(e.id, e.event_type, dict(e.payload)) for e in uow.list_pending_events(limit)]
        if reclaimed:
            logger.warning("outbox_stale_events_reclaimed", count=reclaimed)

        dispatched = failed = 0
        for event_id, event_type, payload in events:
            with store.unit_of_work() as uow:
                if not uow.claim_event(event_id):
                    continue  # another worker has it

            error = self.handle(event_type, payload)
            status = OutboxStatus.failed if error else OutboxStatus.dispatched
            with store.unit_of_work() as uow:
                uow.mark_event(event_id, status, error)
            if error:
                failed += 1
            else:
                dispatched += 1

        if events:
            logger.info("outbox_dispatched", dispatched=dispatched, failed=failed)
        return {"dispatched": dispatched, "failed": failed}

    def handle(self, event_type: str, payload: dict) -> Optional[str]:
        """Run the handler for one event. Returns an error string instead of raising."""
        handler = self.handlers.get(event_type)
        if handler is None:
            logger.warning("outbox_unknown_event", event_type=event_type)
            return f"Unknown event type: {event_type}"
        try:
            handler(payload)
            return None
        except Exception as e:
            logger.error("outbox_handler_failed", event_type=event_type,
                         appointment_id=payload.get("appointment_id"), error=str(e), exc_info=True)
            return str(e)

    def _attempt(self, channel: str, func, *args, **kwargs) -> bool:
        try:
            return bool(func(*args, **kwargs))
        except Exception as e:
            logger.warning("notification_failed", channel=channel, error=str(e))
            return False

    def _whatsapp_allowed(self, payload: dict) -> bool:
        return self.whatsapp is not None and plans.has_whatsapp(payload.get("plan"))

    # --- Handlers ---

    def on_booking_created(self, payload: dict) -> None:
        if self._whatsapp_allowed(payload):
            self._attempt(
                "whatsapp", self.whatsapp.send_appointment_confirmation,
                payload["patient_whatsapp"], payload["patient_name"], payload["provider_name"],
                payload["date"], payload["time_slot"], payload.get("edit_link", ""), payload.get("clinic_name"),
            )
            if payload.get("provider_phone"):
                self._attempt(
                    "whatsapp", self.whatsapp.send_doctor_booking_alert,
                    payload["provider_phone"], payload["patient_name"],
                    payload.get("patient_phone") or payload["patient_whatsapp"],
                    payload["date"], payload["time_slot"], payload.get("reason"),
                )
        if payload.get("patient_email"):
            self._attempt("email", self.email.send_booking_confirmation,
                          payload["patient_email"], payload)

        self._attempt("realtime", self.realtime.slot_booked,
                      payload["provider_slug"], payload["date"], payload["time_slot"])
        self._attempt("realtime", self.realtime.appointment_created,
                      payload["provider_id"], payload["appointment_id"], payload["patient_name"],
                      payload["date"], payload["time_slot"], payload.get("reason"))

    def on_status_changed(self, payload: dict) -> None:
        cancelled = payload["status"] == "cancelled"
        if self._whatsapp_allowed(payload):
            if cancelled:
                self._attempt(
                    "whatsapp", self.whatsapp.send_appointment_cancellation,
                    payload["patient_whatsapp"], payload["patient_name"], payload["provider_name"],
                    payload["date"], payload["time_slot"],
                )
            else:
                self._attempt(
                    "whatsapp", self.whatsapp.send_status_update,
                    payload["patient_whatsapp"], payload["patient_name"], payload["status"],
                    payload["date"], payload["time_slot"],
                )
        if cancelled:
            self._attempt("realtime", self.realtime.slot_cancelled,
                          payload["provider_slug"], payload["date"], payload["time_slot"])
        self._attempt("realtime", self.realtime.appointment_updated,
                      payload["provider_id"], payload["appointment_id"], payload["status"], payload["patient_name"])

    def on_rescheduled(self, payload: dict) -> None:
        if payload.get("patient_email"):
            self._attempt("email", self.email.send_reschedule_notice,
                          payload["patient_email"], payload)
        self._attempt("realtime", self.realtime.slot_cancelled,
                      payload["provider_slug"], payload["previous_date"], payload["previous_time_slot"])
        self._attempt("realtime", self.realtime.slot_booked,
                      payload["provider_slug"], payload["date"], payload["time_slot"])

    def on_cancelled_by_patient(self, payload: dict) -> None:
        if self._whatsapp_allowed(payload):
            self._attempt(
                "whatsapp", self.whatsapp.send_appointment_cancellation,
                payload["patient_whatsapp"], payload["patient_name"], payload["provider_name"],
                payload["date"], payload["time_slot"],
            )
        if payload.get("patient_email"):
            self._attempt("email", self.email.send_cancellation_notice,
                          payload["patient_email"], payload)
        self._attempt("realtime", self.realtime.slot_cancelled,
                      payload["provider_slug"], payload["date"], payload["time_slot"])
        self._attempt("realtime", self.realtime.appointment_updated,
                      payload["provider_id"], payload["appointment_id"], "cancelled", payload["patient_name"])

    def on_availability_updated(self, payload: dict) -> None:
        self._attempt("realtime", self.realtime.availability_updated,
                      payload["provider_slug"], payload.get("date"), payload.get("day_of_week"))
