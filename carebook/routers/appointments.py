# carebook/routers/appointments.py - Provider dashboard view of the ledger
from datetime import date
from typing import List, Optional

from fastapi import APIRouter, BackgroundTasks, Depends, Query

from .. import schemas
from ..config import get_settings
from ..dependencies import get_dispatcher, get_store
from ..models import AppointmentStatus
from ..security import ProviderIdentity, get_current_provider
from ..services import booking_service
from ..services.notification_dispatcher import NotificationDispatcher
from ..storage.base import BookingStore

router = APIRouter(
    prefix="/appointments",
    tags=["appointments"],
    dependencies=[Depends(get_current_provider)],
    responses={404: {"description": "Not found"}},
)


@router.get("", response_model=List[schemas.AppointmentWithPatient])
def read_appointments(
    status: Optional[AppointmentStatus] = None,
    start_date: Optional[date] = None,
    end_date: Optional[date] = None,
    skip: int = Query(0, ge=0),
    limit: int = Query(50, ge=1, le=200),
    current: ProviderIdentity = Depends(get_current_provider),
    store: BookingStore = Depends(get_store),
):
    rows = booking_service.list_provider_appointments(
        store, current.provider_id, status=status, start_date=start_date,
        end_date=end_date, skip=skip, limit=limit,
    )
    results = []
    for appointment, patient in rows:
        item = schemas.AppointmentWithPatient.model_validate(appointment)
        if patient is not None:
            item.patient = schemas.PatientSummary.model_validate(patient)
        results.append(item)
    return results


@router.patch("/{appointment_id}/status", response_model=schemas.AppointmentResponse)
def update_appointment_status(
    appointment_id: int,
    update: schemas.AppointmentStatusUpdate,
    background_tasks: BackgroundTasks,
    current: ProviderIdentity = Depends(get_current_provider),
    store: BookingStore = Depends(get_store),
    dispatcher: NotificationDispatcher = Depends(get_dispatcher),
):
    """Confirm, complete or cancel. Cancelling frees the slot immediately."""
    appointment = booking_service.update_appointment_status(store, current.provider_id, appointment_id, update)
    background_tasks.add_task(dispatcher.dispatch_pending, store, get_settings().outbox_batch_size)
    return appointment
