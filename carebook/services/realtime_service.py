# carebook/services/realtime_service.py - Pusher real-time events
import logging
from typing import Any, Dict, Optional

import pusher

from ..config import Settings, get_settings

logger = logging.getLogger(__name__)

# Events
SLOT_BOOKED = "slot-booked"
SLOT_CANCELLED = "slot-cancelled"
APPOINTMENT_CREATED = "appointment-created"
APPOINTMENT_UPDATED = "appointment-updated"
AVAILABILITY_UPDATED = "availability-updated"


def booking_channel(provider_slug: str) -> str:
    """Public channel watched by patients browsing the booking page."""
    return f"booking-{provider_slug}"


def provider_channel(provider_id) -> str:
    """Private dashboard channel of one provider."""
    return f"private-doctor-{provider_id}"


class RealtimeService:

    def __init__(self, settings: Optional[Settings] = None, client: Optional[pusher.Pusher] = None):
        settings = settings or get_settings()
        if client is not None:
            self.client = client
        elif settings.realtime_enabled:
            self.client = pusher.Pusher(
                app_id=settings.pusher_app_id,
                key=settings.pusher_key,
                secret=settings.pusher_secret,
                cluster=settings.pusher_cluster,
                ssl=True,
            )
        else:
            self.client = None
        self.enabled = self.client is not None

    def trigger(self, channel: str, event: str, data: Dict[str, Any]) -> bool:
        if not self.enabled:
            return False
        try:
            self.client.trigger(channel, event, data)
            return True
        except Exception as e:
            logger.error(f"Pusher trigger {event} on {channel} failed: {e}")
            return False

    def slot_booked(self, provider_slug: str, date: str, time_slot: str) -> bool:
        # Public channel: slot coordinates only, never who booked it
        return self.trigger(booking_channel(provider_slug), SLOT_BOOKED,
                            {"date": date, "timeSlot": time_slot})

    def slot_cancelled(self, provider_slug: str, date: str, time_slot: str) -> bool:
        return self.trigger(booking_channel(provider_slug), SLOT_CANCELLED,
                            {"date": date, "timeSlot": time_slot})

    def availability_updated(self, provider_slug: str, date: Optional[str] = None,
                             day_of_week: Optional[int] = None) -> bool:
        """Tell open booking pages to reload the grid for a date or a weekday."""
        return self.trigger(booking_channel(provider_slug), AVAILABILITY_UPDATED,
                            {"date": date, "dayOfWeek": day_of_week})

    def appointment_created(self, provider_id, appointment_id, patient_name: str, date: str, time_slot: str,
                            reason: Optional[str] = None) -> bool:
        return self.trigger(provider_channel(provider_id), APPOINTMENT_CREATED, {
            "appointmentId": appointment_id,
            "patientName": patient_name,
            "date": date,
            "time": time_slot,
            "reason": reason,
        })

    def appointment_updated(self, provider_id, appointment_id, status: str, patient_name: str) -> bool:
        return self.trigger(provider_channel(provider_id), APPOINTMENT_UPDATED, {
            "appointmentId": appointment_id,
            "status": status,
            "patientName": patient_name,
        })
