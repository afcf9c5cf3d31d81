# carebook/routers/schedule.py - Weekly availability rules
from typing import List

from fastapi import APIRouter, BackgroundTasks, Depends, Path, status

from .. import schemas
from ..config import get_settings
from ..dependencies import get_dispatcher, get_store
from ..security import ProviderIdentity, get_current_provider
from ..services import schedule_service
from ..services.notification_dispatcher import NotificationDispatcher
from ..storage.base import BookingStore

router = APIRouter(
    prefix="/availability",
    tags=["availability"],
    dependencies=[Depends(get_current_provider)],
    responses={404: {"description": "Not found"}},
)


@router.get("", response_model=List[schemas.AvailabilityRuleResponse])
def read_rules(
    current: ProviderIdentity = Depends(get_current_provider),
    store: BookingStore = Depends(get_store),
):
    return schedule_service.list_rules(store, current.provider_id)


@router.put("/{day_of_week}", response_model=schemas.AvailabilityRuleResponse)
def upsert_rule(
    data: schemas.AvailabilityRuleUpsert,
    background_tasks: BackgroundTasks,
    day_of_week: int = Path(..., ge=0, le=6, description="0=Sunday ... 6=Saturday"),
    current: ProviderIdentity = Depends(get_current_provider),
    store: BookingStore = Depends(get_store),
    dispatcher: NotificationDispatcher = Depends(get_dispatcher),
):
    """Create or replace the rule for one weekday (and clinic, if given)."""
    rule = schedule_service.upsert_rule(store, current.provider_id, day_of_week, data)
    background_tasks.add_task(dispatcher.dispatch_pending, store, get_settings().outbox_batch_size)
    return rule


@router.delete("/{rule_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_rule(
    rule_id: int,
    background_tasks: BackgroundTasks,
    current: ProviderIdentity = Depends(get_current_provider),
    store: BookingStore = Depends(get_store),
    dispatcher: NotificationDispatcher = Depends(get_dispatcher),
):
    schedule_service.delete_rule(store, current.provider_id, rule_id)
    background_tasks.add_task(dispatcher.dispatch_pending, store, get_settings().outbox_batch_size)
