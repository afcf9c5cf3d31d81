# carebook/schemas.py
from datetime import datetime, date
from typing import Annotated, List, Optional, Dict, Any
from pydantic import AfterValidator, BaseModel, Field, EmailStr, field_validator, model_validator

from .models import AppointmentStatus, SubscriptionPlan
from .timeutils import HHMM_RE, parse_hhmm


def _check_hhmm(v):
    if v is not None and not HHMM_RE.match(v):
        raise ValueError("Invalid time format (HH:MM)")
    return v


HHMM = Annotated[str, AfterValidator(_check_hhmm)]


# --- Base Schemas ---
class BaseSchema(BaseModel):
    class Config:
        from_attributes = True


# --- Availability Rules ---
class AvailabilityRuleUpsert(BaseModel):
    """Weekly window for one day. Upserted by (clinic, day_of_week)."""
    clinic_id: Optional[int] = None
    start_time: HHMM
    end_time: HHMM
    slot_duration: int = Field(30, ge=15, le=120)
    is_active: bool = True

    @model_validator(mode='after')
    def check_window(self):
        if parse_hhmm(self.start_time) >= parse_hhmm(self.end_time):
            raise ValueError("end_time must be after start_time")
        return self


class AvailabilityRuleResponse(BaseSchema):
    id: int
    provider_id: int
    clinic_id: Optional[int] = None
    day_of_week: int
    start_time: str
    end_time: str
    slot_duration: int
    is_active: bool


# --- Blocked Periods ---
class BlockedPeriodCreate(BaseModel):
    clinic_id: Optional[int] = None
    date: date
    start_time: Optional[HHMM] = None
    end_time: Optional[HHMM] = None
    is_all_day: bool = False
    reason: Optional[str] = Field(None, max_length=500)

    @model_validator(mode='after')
    def check_range(self):
        if self.is_all_day:
            return self
        if not self.start_time or not self.end_time:
            raise ValueError("start_time and end_time are required unless is_all_day is set")
        if parse_hhmm(self.start_time) >= parse_hhmm(self.end_time):
            raise ValueError("end_time must be after start_time")
        return self


class BlockedPeriodResponse(BaseSchema):
    id: int
    provider_id: int
    clinic_id: Optional[int] = None
    date: date
    start_time: str
    end_time: str
    is_all_day: bool
    reason: Optional[str] = None


# --- Availability (resolved slots) ---
class SlotStatusResponse(BaseModel):
    time: str
    is_available: bool
    is_blocked: bool
    is_booked: bool
    is_past: bool


class AvailabilityResponse(BaseModel):
    date: date
    slots: List[SlotStatusResponse]
    is_available: bool
    slot_duration: Optional[int] = None
    timezone: Optional[str] = None


# --- Booking ---
class BookingCommand(BaseModel):
    provider_slug: str = Field(..., min_length=1)
    clinic_id: Optional[int] = None
    appointment_date: date
    time_slot: HHMM
    full_name: str = Field(..., min_length=2, max_length=255)
    whatsapp_number: str = Field(..., min_length=10, max_length=30)
    email: Optional[EmailStr] = None
    phone: Optional[str] = Field(None, max_length=30)
    reason: str = Field(..., min_length=5)
    form_data: Optional[Dict[str, Any]] = None

    @field_validator("email", mode='before')
    @classmethod
    def empty_email_is_none(cls, v):
        if isinstance(v, str) and not v.strip():
            return None
        return v


class BookingResult(BaseModel):
    appointment_id: int
    edit_link: str
    message: str = "Appointment booked successfully"


class RescheduleCommand(BaseModel):
    appointment_date: date
    time_slot: HHMM


class PatientCancelCommand(BaseModel):
    reason: Optional[str] = Field(None, max_length=500)


class AppointmentStatusUpdate(BaseModel):
    """Provider-initiated status change."""
    status: AppointmentStatus
    cancel_reason: Optional[str] = Field(None, max_length=500)
    notes: Optional[str] = None


# --- Appointment / Patient views ---
class PatientSummary(BaseSchema):
    id: int
    full_name: str
    email: Optional[str] = None
    phone: Optional[str] = None
    whatsapp_number: str


class AppointmentResponse(BaseSchema):
    id: int
    provider_id: int
    clinic_id: Optional[int] = None
    patient_id: int
    appointment_date: date
    time_slot: str
    end_time: str
    duration: int
    status: AppointmentStatus
    reason: Optional[str] = None
    notes: Optional[str] = None
    cancel_reason: Optional[str] = None
    created_at: Optional[datetime] = None


class AppointmentWithPatient(AppointmentResponse):
    patient: Optional[PatientSummary] = None


class ProviderPublic(BaseSchema):
    id: int
    slug: str
    full_name: str
    specialization: Optional[str] = None
    bio: Optional[str] = None
    clinic_name: Optional[str] = None
    timezone: str


class ClinicResponse(BaseSchema):
    id: int
    name: str
    address: Optional[str] = None
    phone: Optional[str] = None


class FormTemplateResponse(BaseSchema):
    id: int
    form_name: str
    fields: List[Dict[str, Any]] = []


class PublicProfileResponse(BaseModel):
    provider: ProviderPublic
    clinics: List[ClinicResponse]
    availability: List[AvailabilityRuleResponse]
    form_template: Optional[FormTemplateResponse] = None
    subscription_plan: SubscriptionPlan


class RescheduleOption(BaseModel):
    date: date
    slots: List[str]


class ManagedAppointmentResponse(BaseModel):
    appointment: AppointmentResponse
    provider: ProviderPublic
    patient: PatientSummary
    can_modify: bool
    modify_deadline: datetime
    reschedule_options: List[RescheduleOption] = []


# --- Jobs ---
class ReminderSweepResult(BaseModel):
    reminders_24h: int = 0
    reminders_1h: int = 0
    timestamp: Optional[datetime] = None


class DispatchResult(BaseModel):
    dispatched: int = 0
    failed: int = 0


class ErrorResponse(BaseModel):
    success: bool = False
    error: str
    code: str
