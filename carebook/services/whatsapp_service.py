# carebook/services/whatsapp_service.py - Twilio WhatsApp adapter
import logging
import re
from typing import Optional

from twilio.rest import Client
from twilio.base.exceptions import TwilioRestException

from ..config import Settings, get_settings

logger = logging.getLogger(__name__)

STATUS_LABELS = {
    "confirmed": ("✅", "Confirmed"),
    "completed": ("🎉", "Completed"),
    "cancelled": ("❌", "Cancelled"),
    "pending": ("⏳", "Pending"),
}


def format_whatsapp_number(number: str) -> str:
    formatted = re.sub(r"[^0-9+]", "", number or "")
    if not formatted.startswith("+"):
        formatted = "+" + formatted
    return formatted


class WhatsAppService:
    """Outbound WhatsApp messages. Every send returns True/False and never raises."""

    def __init__(self, settings: Optional[Settings] = None, client: Optional[Client] = None):
        settings = settings or get_settings()
        self.from_number = settings.twilio_whatsapp_number
        self.enabled = client is not None or settings.whatsapp_enabled
        if client is not None:
            self.client = client
        elif self.enabled:
            self.client = Client(settings.twilio_account_sid, settings.twilio_auth_token)
        else:
            self.client = None
            logger.warning("Twilio credentials not configured - WhatsApp messages will be logged only")

    def send_message(self, to: str, body: str) -> bool:
        if not self.enabled:
            logger.info(f"WhatsApp disabled. Message for {to} not sent")
            return False

        sender = self.from_number or ""
        if not sender.startswith("whatsapp:"):
            sender = f"whatsapp:{sender}"
        try:
            message = self.client.messages.create(
                body=body,
                from_=sender,
                to=f"whatsapp:{format_whatsapp_number(to)}",
            )
            logger.info(f"WhatsApp message sent to {to} (sid={getattr(message, 'sid', None)})")
            return True
        except TwilioRestException as e:
            logger.error(f"Twilio error sending WhatsApp message to {to}: {e.msg}")
            return False
        except Exception as e:
            logger.error(f"Failed to send WhatsApp message to {to}: {e}", exc_info=True)
            return False

    # --- Message templates ---

    def send_appointment_confirmation(self, phone: str, patient_name: str, doctor_name: str, date: str,
                                      time: str, edit_link: str, clinic_name: Optional[str] = None) -> bool:
        clinic_line = f"🏢 *Clinic:* {clinic_name}\n" if clinic_name else ""
        body = (
            "🏥 *Appointment Confirmed*\n\n"
            f"Hello {patient_name}!\n\n"
            "Your appointment has been booked successfully.\n\n"
            f"📅 *Date:* {date}\n"
            f"⏰ *Time:* {time}\n"
            f"👨‍⚕️ *Doctor:* Dr. {doctor_name}\n"
            f"{clinic_line}\n"
            "Need to reschedule or cancel?\n"
            f"Click here: {edit_link}\n\n"
            "Thank you for choosing us!"
        )
        return self.send_message(phone, body)

    def send_appointment_reminder(self, phone: str, patient_name: str, doctor_name: str, date: str,
                                  time: str, hours_until: int) -> bool:
        when = "tomorrow" if hours_until == 24 else "in 1 hour"
        body = (
            "⏰ *Appointment Reminder*\n\n"
            f"Hello {patient_name}!\n\n"
            f"This is a friendly reminder that your appointment is {when}.\n\n"
            f"📅 *Date:* {date}\n"
            f"⏰ *Time:* {time}\n"
            f"👨‍⚕️ *Doctor:* Dr. {doctor_name}\n\n"
            "Please arrive 10 minutes early.\n\n"
            "See you soon!"
        )
        return self.send_message(phone, body)

    def send_doctor_booking_alert(self, phone: str, patient_name: str, patient_phone: str, date: str,
                                  time: str, reason: Optional[str] = None) -> bool:
        reason_line = f"📝 *Reason:* {reason}\n" if reason else ""
        body = (
            "📢 *New Booking Alert*\n\n"
            "You have a new appointment!\n\n"
            f"👤 *Patient:* {patient_name}\n"
            f"📱 *Phone:* {patient_phone}\n"
            f"📅 *Date:* {date}\n"
            f"⏰ *Time:* {time}\n"
            f"{reason_line}\n"
            "Log in to your dashboard to view details."
        )
        return self.send_message(phone, body)

    def send_appointment_cancellation(self, phone: str, patient_name: str, doctor_name: str,
                                      date: str, time: str) -> bool:
        body = (
            "❌ *Appointment Cancelled*\n\n"
            f"Hello {patient_name},\n\n"
            "Your appointment has been cancelled.\n\n"
            f"📅 *Date:* {date}\n"
            f"⏰ *Time:* {time}\n"
            f"👨‍⚕️ *Doctor:* Dr. {doctor_name}\n\n"
            "If you didn't request this cancellation, please contact us immediately.\n\n"
            "You can book a new appointment anytime."
        )
        return self.send_message(phone, body)

    def send_status_update(self, phone: str, patient_name: str, status: str, date: str, time: str,
                           message: Optional[str] = None) -> bool:
        emoji, label = STATUS_LABELS.get(status, ("📋", status))
        message_line = f"\n💬 *Message:* {message}\n" if message else ""
        body = (
            f"{emoji} *Appointment Update*\n\n"
            f"Hello {patient_name},\n\n"
            f"Your appointment status has been updated to: *{label}*\n\n"
            f"📅 *Date:* {date}\n"
            f"⏰ *Time:* {time}\n"
            f"{message_line}\n"
            "Thank you!"
        )
        return self.send_message(phone, body)
