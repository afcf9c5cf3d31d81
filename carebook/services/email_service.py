# carebook/services/email_service.py - SendGrid email adapter
import logging
import os
from typing import Any, Dict, Optional

import jinja2
from sendgrid import SendGridAPIClient
from sendgrid.helpers.mail import Mail

from ..config import Settings, get_settings

logger = logging.getLogger(__name__)

TEMPLATE_DIR = os.path.join(os.path.dirname(os.path.dirname(__file__)), "templates", "email")


class EmailService:
    def __init__(self, settings: Optional[Settings] = None, client: Optional[SendGridAPIClient] = None):
        settings = settings or get_settings()
        self.sender_email = settings.sender_email
        self.app_name = settings.app_name
        self.enabled = client is not None or settings.email_enabled

        if client is not None:
            self.sg = client
        elif self.enabled:
            self.sg = SendGridAPIClient(api_key=settings.sendgrid_api_key)
        else:
            self.sg = None
            logger.warning("SENDGRID_API_KEY not found - Email service disabled")

        self.template_env = jinja2.Environment(
            loader=jinja2.FileSystemLoader(TEMPLATE_DIR),
            autoescape=jinja2.select_autoescape(["html"]),
        )

    def render(self, template_name: str, context: Dict[str, Any]) -> str:
        template = self.template_env.get_template(f"{template_name}.html")
        return template.render(app_name=self.app_name, **context)

    def send_templated_email(self, to_email: str, subject: str, template_name: str,
                             context: Dict[str, Any]) -> bool:
        if not self.enabled:
            logger.info(f"Email disabled. '{subject}' for {to_email} not sent")
            return False
        try:
            mail = Mail(
                from_email=self.sender_email,
                to_emails=to_email,
                subject=subject,
                html_content=self.render(template_name, context),
            )
            response = self.sg.send(mail)
            logger.info(f"Email '{subject}' sent to {to_email} (status={getattr(response, 'status_code', None)})")
            return True
        except jinja2.TemplateError as e:
            logger.error(f"Email template '{template_name}' failed to render: {e}")
            return False
        except Exception as e:
            logger.error(f"Failed to send email to {to_email}: {e}", exc_info=True)
            return False

    def send_booking_confirmation(self, to_email: str, context: Dict[str, Any]) -> bool:
        return self.send_templated_email(to_email, "Appointment Confirmed", "booking_confirmation", context)

    def send_appointment_reminder(self, to_email: str, context: Dict[str, Any]) -> bool:
        return self.send_templated_email(to_email, "Appointment Reminder", "appointment_reminder", context)

    def send_reschedule_notice(self, to_email: str, context: Dict[str, Any]) -> bool:
        return self.send_templated_email(to_email, "Appointment Rescheduled", "appointment_rescheduled", context)

    def send_cancellation_notice(self, to_email: str, context: Dict[str, Any]) -> bool:
        return self.send_templated_email(to_email, "Appointment Cancelled", "appointment_cancelled", context)
