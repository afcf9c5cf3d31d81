# carebook/routers/blocked_periods.py
from datetime import date
from typing import List, Optional

from fastapi import APIRouter, BackgroundTasks, Depends, status

from .. import schemas
from ..config import get_settings
from ..dependencies import get_dispatcher, get_store
from ..security import ProviderIdentity, get_current_provider
from ..services import schedule_service
from ..services.notification_dispatcher import NotificationDispatcher
from ..storage.base import BookingStore

router = APIRouter(
    prefix="/blocked-periods",
    tags=["blocked-periods"],
    dependencies=[Depends(get_current_provider)],
    responses={404: {"description": "Not found"}},
)


@router.get("", response_model=List[schemas.BlockedPeriodResponse])
def read_blocked_periods(
    start_date: Optional[date] = None,
    end_date: Optional[date] = None,
    current: ProviderIdentity = Depends(get_current_provider),
    store: BookingStore = Depends(get_store),
):
    return schedule_service.list_blocked_periods(store, current.provider_id, start_date, end_date)


@router.post("", response_model=schemas.BlockedPeriodResponse, status_code=status.HTTP_201_CREATED)
def create_blocked_period(
    data: schemas.BlockedPeriodCreate,
    background_tasks: BackgroundTasks,
    current: ProviderIdentity = Depends(get_current_provider),
    store: BookingStore = Depends(get_store),
    dispatcher: NotificationDispatcher = Depends(get_dispatcher),
):
    """Block a time range (or the whole day) on one date."""
    block = schedule_service.create_blocked_period(store, current.provider_id, data)
    background_tasks.add_task(dispatcher.dispatch_pending, store, get_settings().outbox_batch_size)
    return block


@router.delete("/{block_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_blocked_period(
    block_id: int,
    background_tasks: BackgroundTasks,
    current: ProviderIdentity = Depends(get_current_provider),
    store: BookingStore = Depends(get_store),
    dispatcher: NotificationDispatcher = Depends(get_dispatcher),
):
    schedule_service.delete_blocked_period(store, current.provider_id, block_id)
    background_tasks.add_task(dispatcher.dispatch_pending, store, get_settings().outbox_batch_size)
