# carebook/routers/booking.py - Public booking surface (no login)
import logging
from typing import Optional

from fastapi import APIRouter, BackgroundTasks, Body, Depends, Query, Request, status

from .. import schemas
from ..config import get_settings
from ..dependencies import get_dispatcher, get_store
from ..limiter import limiter
from ..services import booking_service, slot_service
from ..services.notification_dispatcher import NotificationDispatcher
from ..storage.base import BookingStore

logger = logging.getLogger(__name__)

router = APIRouter(
    prefix="/booking",
    tags=["booking"],
    responses={404: {"description": "Not found"}},
)


def _flush_outbox(background_tasks: BackgroundTasks, dispatcher: NotificationDispatcher, store: BookingStore):
    # Runs after the response is sent; the booking is already committed
    background_tasks.add_task(dispatcher.dispatch_pending, store, get_settings().outbox_batch_size)


@router.get("/available-slots", response_model=schemas.AvailabilityResponse)
def get_available_slots(
    provider_slug: str = Query(..., min_length=1),
    date: str = Query(..., description="YYYY-MM-DD"),
    clinic_id: Optional[int] = Query(None),
    store: BookingStore = Depends(get_store),
):
    """Every slot of the day with its status, in the provider's local time."""
    with store.unit_of_work() as uow:
        day = slot_service.resolve_availability(uow, provider_slug, date, clinic_id)
    return day.to_dict()


@router.post(
    "/submit",
    response_model=schemas.BookingResult,
    status_code=status.HTTP_201_CREATED,
    responses={
        403: {"model": schemas.ErrorResponse, "description": "Provider unavailable or quota exceeded"},
        409: {"model": schemas.ErrorResponse, "description": "Slot already taken"},
    },
)
@limiter.limit(lambda: get_settings().booking_rate_limit)
def submit_booking(
    request: Request,
    command: schemas.BookingCommand,
    background_tasks: BackgroundTasks,
    store: BookingStore = Depends(get_store),
    dispatcher: NotificationDispatcher = Depends(get_dispatcher),
):
    """
    Book a slot. 409 SLOT_CONFLICT means someone else got it first: reload
    the available slots and pick again.
    """
    result = booking_service.submit_booking(store, command)
    _flush_outbox(background_tasks, dispatcher, store)
    return result


@router.get("/manage/{token}", response_model=schemas.ManagedAppointmentResponse)
def get_managed_appointment(token: str, store: BookingStore = Depends(get_store)):
    managed = booking_service.get_managed_appointment(store, token)
    return schemas.ManagedAppointmentResponse(
        appointment=schemas.AppointmentResponse.model_validate(managed.appointment),
        provider=schemas.ProviderPublic.model_validate(managed.provider),
        patient=schemas.PatientSummary.model_validate(managed.patient),
        can_modify=managed.can_modify,
        modify_deadline=managed.modify_deadline,
        reschedule_options=managed.reschedule_options,
    )


@router.patch("/manage/{token}", response_model=schemas.AppointmentResponse)
def reschedule_appointment(
    token: str,
    command: schemas.RescheduleCommand,
    background_tasks: BackgroundTasks,
    store: BookingStore = Depends(get_store),
    dispatcher: NotificationDispatcher = Depends(get_dispatcher),
):
    appointment = booking_service.reschedule_appointment(store, token, command)
    _flush_outbox(background_tasks, dispatcher, store)
    return appointment


@router.post("/manage/{token}/cancel", response_model=schemas.AppointmentResponse)
def cancel_appointment(
    token: str,
    background_tasks: BackgroundTasks,
    command: Optional[schemas.PatientCancelCommand] = Body(None),
    store: BookingStore = Depends(get_store),
    dispatcher: NotificationDispatcher = Depends(get_dispatcher),
):
    reason = command.reason if command else None
    appointment = booking_service.cancel_by_patient(store, token, reason)
    _flush_outbox(background_tasks, dispatcher, store)
    return appointment


@router.get("/{provider_slug}", response_model=schemas.PublicProfileResponse)
def get_booking_page(provider_slug: str, store: BookingStore = Depends(get_store)):
    """Public profile: provider, clinics, weekly hours and the intake form."""
    with store.unit_of_work() as uow:
        return slot_service.get_public_profile(uow, provider_slug)
