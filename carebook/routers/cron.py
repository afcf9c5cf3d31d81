# carebook/routers/cron.py - Endpoints for an external scheduler
import logging

from fastapi import APIRouter, Depends

from .. import schemas
from ..config import get_settings
from ..dependencies import get_dispatcher, get_email_service, get_store, get_whatsapp_service
from ..security import verify_cron_secret
from ..services import reminder_service
from ..services.email_service import EmailService
from ..services.notification_dispatcher import NotificationDispatcher
from ..services.whatsapp_service import WhatsAppService
from ..storage.base import BookingStore

logger = logging.getLogger(__name__)

router = APIRouter(
    prefix="/cron",
    tags=["cron"],
    dependencies=[Depends(verify_cron_secret)],
)


@router.get("/reminders", response_model=schemas.ReminderSweepResult)
def send_reminders(
    store: BookingStore = Depends(get_store),
    whatsapp: WhatsAppService = Depends(get_whatsapp_service),
    email: EmailService = Depends(get_email_service),
):
    """Hourly: 24h reminders for tomorrow, 1h reminders for the next clock hour."""
    return reminder_service.run_reminder_sweep(store, whatsapp, email)


@router.post("/dispatch-outbox", response_model=schemas.DispatchResult)
def dispatch_outbox(
    store: BookingStore = Depends(get_store),
    dispatcher: NotificationDispatcher = Depends(get_dispatcher),
):
    return dispatcher.dispatch_pending(store, get_settings().outbox_batch_size)
