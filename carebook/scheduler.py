# carebook/scheduler.py
"""In-process background jobs.

- Every hour at :00: reminder sweep
- Every minute: flush the notification outbox
"""
import logging
from typing import Optional

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.interval import IntervalTrigger
from pytz import utc

from .services.notification_dispatcher import NotificationDispatcher
from .services.reminder_service import run_reminder_sweep
from .storage.base import BookingStore

logger = logging.getLogger(__name__)


class BookingScheduler:

    def __init__(self, store: BookingStore, dispatcher: NotificationDispatcher,
                 enabled: bool = True, outbox_batch_size: int = 50):
        self.store = store
        self.dispatcher = dispatcher
        self.enabled = enabled
        self.outbox_batch_size = outbox_batch_size
        self._scheduler: Optional[BackgroundScheduler] = None

    @property
    def is_running(self) -> bool:
        return self._scheduler is not None and self._scheduler.running

    def start(self) -> None:
        if not self.enabled:
            logger.info("BookingScheduler is disabled, skipping start")
            return
        if self.is_running:
            logger.warning("BookingScheduler already running")
            return

        scheduler = BackgroundScheduler(timezone=utc)
        scheduler.add_job(
            self.send_reminders,
            CronTrigger(minute=0, timezone=utc),
            id="appointment_reminders",
            name="Appointment Reminders",
            replace_existing=True,
            max_instances=1,
            coalesce=True,
        )
        scheduler.add_job(
            self.flush_outbox,
            IntervalTrigger(minutes=1, timezone=utc),
            id="outbox_flush",
            name="Notification Outbox Flush",
            replace_existing=True,
            max_instances=1,
            coalesce=True,
        )
        scheduler.start()
        self._scheduler = scheduler
        logger.info("BookingScheduler started (reminders hourly at :00, outbox every minute)")

    def stop(self) -> None:
        if self.is_running:
            self._scheduler.shutdown(wait=False)
            logger.info("BookingScheduler stopped")
        self._scheduler = None

    def send_reminders(self) -> None:
        try:
            run_reminder_sweep(self.store, self.dispatcher.whatsapp, self.dispatcher.email)
        except Exception as e:
            logger.error(f"Reminder job failed: {e}", exc_info=True)

    def flush_outbox(self) -> None:
        try:
            self.dispatcher.dispatch_pending(self.store, self.outbox_batch_size)
        except Exception as e:
            logger.error(f"Outbox flush failed: {e}", exc_info=True)
