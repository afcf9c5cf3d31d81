# carebook/dependencies.py - FastAPI dependency providers
import logging
from functools import lru_cache

from .config import Settings, get_settings
from .services.email_service import EmailService
from .services.notification_dispatcher import NotificationDispatcher
from .services.realtime_service import RealtimeService
from .services.whatsapp_service import WhatsAppService
from .storage.base import BookingStore
from .storage.memory import MemoryBookingStore
from .storage.sql import SqlBookingStore

logger = logging.getLogger(__name__)


def build_store(settings: Settings) -> BookingStore:
    """Pick the storage backend once, at startup."""
    if settings.storage_backend == "memory":
        logger.info("Using in-memory booking store")
        return MemoryBookingStore()
    logger.info("Using SQL booking store")
    return SqlBookingStore(settings.database_url, echo=settings.debug)


@lru_cache()
def get_default_store() -> BookingStore:
    return build_store(get_settings())


@lru_cache()
def get_whatsapp_service() -> WhatsAppService:
    return WhatsAppService()


@lru_cache()
def get_email_service() -> EmailService:
    return EmailService()


@lru_cache()
def get_realtime_service() -> RealtimeService:
    return RealtimeService()


def get_store() -> BookingStore:
    return get_default_store()


def get_dispatcher() -> NotificationDispatcher:
    return NotificationDispatcher(get_whatsapp_service(), get_email_service(), get_realtime_service())
