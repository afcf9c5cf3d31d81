# carebook/routers/health.py
from datetime import datetime, timezone

from fastapi import APIRouter, Depends

from ..config import get_settings
from ..dependencies import get_store
from ..storage.base import BookingStore

router = APIRouter(
    prefix="/health",
    tags=["Health Checks"],
)


@router.get("")
def health_check(store: BookingStore = Depends(get_store)):
    settings = get_settings()
    return {
        "status": "healthy",
        "version": settings.app_version,
        "storage": store.name,
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }
