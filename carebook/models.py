# carebook/models.py
from datetime import datetime, timezone
from sqlalchemy import (
    Column, Integer, String, DateTime, ForeignKey, Text, Date,
    Enum as SQLAlchemyEnum, Boolean, JSON, Index, UniqueConstraint, text
)
from sqlalchemy.orm import relationship
from sqlalchemy.types import TypeDecorator
from .database import Base
import enum


def utcnow():
    return datetime.now(timezone.utc)


class UTCDateTime(TypeDecorator):
    """Timezone-aware datetime column; naive values read back (SQLite) are UTC."""
    impl = DateTime(timezone=True)
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is not None and value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        return value

    def process_result_value(self, value, dialect):
        if value is not None and value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        return value


class SubscriptionPlan(str, enum.Enum):
    free_trial = "free_trial"
    premium = "premium"
    advanced = "advanced"


class AppointmentStatus(str, enum.Enum):
    pending = "pending"
    confirmed = "confirmed"
    cancelled = "cancelled"
    completed = "completed"

    @property
    def is_terminal(self) -> bool:
        return self in (AppointmentStatus.cancelled, AppointmentStatus.completed)


class OutboxStatus(str, enum.Enum):
    pending = "pending"
    processing = "processing"
    dispatched = "dispatched"
    failed = "failed"


class Provider(Base):
    """A care provider (tenant) owning clinics, availability and patients"""
    __tablename__ = "providers"

    id = Column(Integer, primary_key=True, index=True)
    slug = Column(String(100), unique=True, nullable=False, index=True)
    full_name = Column(String(255), nullable=False)
    email = Column(String(255), nullable=True)
    phone = Column(String(30), nullable=True)
    specialization = Column(String(255), nullable=True)
    bio = Column(Text, nullable=True)
    clinic_name = Column(String(255), nullable=True)

    # Subscription
    subscription_plan = Column(SQLAlchemyEnum(SubscriptionPlan, name='subscription_plan', native_enum=False),
                               default=SubscriptionPlan.free_trial, nullable=False)
    subscription_end = Column(UTCDateTime, nullable=True)
    patient_count_this_month = Column(Integer, default=0, nullable=False)
    monthly_reset_date = Column(UTCDateTime, default=utcnow, nullable=True)

    # Canonical local clock for this provider's schedule
    timezone = Column(String(64), nullable=False, default="Asia/Kolkata")
    is_active = Column(Boolean, default=True, nullable=False)
    created_at = Column(UTCDateTime, default=utcnow)

    clinics = relationship("Clinic", back_populates="provider")


class Clinic(Base):
    __tablename__ = "clinics"

    id = Column(Integer, primary_key=True, index=True)
    provider_id = Column(Integer, ForeignKey("providers.id", ondelete="CASCADE"), nullable=False, index=True)
    name = Column(String(255), nullable=False)
    address = Column(Text, nullable=True)
    phone = Column(String(30), nullable=True)
    is_active = Column(Boolean, default=True, nullable=False)
    created_at = Column(UTCDateTime, default=utcnow)

    provider = relationship("Provider", back_populates="clinics")


class AvailabilityRule(Base):
    """Recurring weekly opening window for a provider (optionally one clinic)"""
    __tablename__ = "availability_rules"
    __table_args__ = (
        Index('idx_rule_provider_day', 'provider_id', 'day_of_week'),
        UniqueConstraint('provider_id', 'clinic_id', 'day_of_week', name='uq_rule_provider_clinic_day'),
    )

    id = Column(Integer, primary_key=True, index=True)
    provider_id = Column(Integer, ForeignKey("providers.id", ondelete="CASCADE"), nullable=False)
    clinic_id = Column(Integer, ForeignKey("clinics.id", ondelete="CASCADE"), nullable=True)  # NULL = all clinics

    day_of_week = Column(Integer, nullable=False)  # 0=Sunday, 6=Saturday
    start_time = Column(String(5), nullable=False)  # HH:MM
    end_time = Column(String(5), nullable=False)  # HH:MM
    slot_duration = Column(Integer, nullable=False, default=30)  # minutes
    is_active = Column(Boolean, default=True, nullable=False)
    created_at = Column(UTCDateTime, default=utcnow)


class BlockedPeriod(Base):
    """One-off exclusion: holiday, leave, personal block"""
    __tablename__ = "blocked_periods"
    __table_args__ = (
        Index('idx_blocked_provider_date', 'provider_id', 'date'),
    )

    id = Column(Integer, primary_key=True, index=True)
    provider_id = Column(Integer, ForeignKey("providers.id", ondelete="CASCADE"), nullable=False)
    clinic_id = Column(Integer, ForeignKey("clinics.id", ondelete="CASCADE"), nullable=True)
    date = Column(Date, nullable=False)
    start_time = Column(String(5), nullable=False)
    end_time = Column(String(5), nullable=False)
    is_all_day = Column(Boolean, default=False, nullable=False)
    reason = Column(Text, nullable=True)
    created_at = Column(UTCDateTime, default=utcnow)


class Patient(Base):
    __tablename__ = "patients"
    __table_args__ = (
        UniqueConstraint('created_by_provider_id', 'whatsapp_number', name='uq_patient_provider_whatsapp'),
    )

    id = Column(Integer, primary_key=True, index=True)
    full_name = Column(String(255), nullable=False)
    email = Column(String(255), nullable=True)
    phone = Column(String(30), nullable=True)
    whatsapp_number = Column(String(30), nullable=False)
    created_by_provider_id = Column(Integer, ForeignKey("providers.id", ondelete="CASCADE"), nullable=False, index=True)
    edit_token = Column(String(64), nullable=True)
    edit_token_expiry = Column(UTCDateTime, nullable=True)
    created_at = Column(UTCDateTime, default=utcnow)
    updated_at = Column(UTCDateTime, default=utcnow, onupdate=utcnow)


class Appointment(Base):
    """The appointment ledger. One live booking per (provider, date, time_slot)."""
    __tablename__ = "appointments"
    __table_args__ = (
        Index('idx_appointments_provider_date', 'provider_id', 'appointment_date'),
        Index('idx_appointments_status_date', 'status', 'appointment_date'),
        Index(
            'uq_appointments_active_slot',
            'provider_id', 'appointment_date', 'time_slot',
            unique=True,
            postgresql_where=text("status != 'cancelled'"),
            sqlite_where=text("status != 'cancelled'"),
        ),
    )

    id = Column(Integer, primary_key=True, index=True)
    provider_id = Column(Integer, ForeignKey("providers.id", ondelete="CASCADE"), nullable=False)
    clinic_id = Column(Integer, ForeignKey("clinics.id", ondelete="SET NULL"), nullable=True)
    patient_id = Column(Integer, ForeignKey("patients.id", ondelete="CASCADE"), nullable=False, index=True)

    appointment_date = Column(Date, nullable=False)
    time_slot = Column(String(5), nullable=False)  # HH:MM start
    end_time = Column(String(5), nullable=False)
    duration = Column(Integer, nullable=False, default=30)

    status = Column(SQLAlchemyEnum(AppointmentStatus, name='appointment_status', native_enum=False),
                    default=AppointmentStatus.pending, nullable=False)
    reason = Column(Text, nullable=True)
    notes = Column(Text, nullable=True)
    cancel_reason = Column(Text, nullable=True)

    edit_token = Column(String(64), unique=True, nullable=True)
    reminder_sent_24h = Column(Boolean, default=False, nullable=False)
    reminder_sent_1h = Column(Boolean, default=False, nullable=False)

    created_at = Column(UTCDateTime, default=utcnow)
    updated_at = Column(UTCDateTime, default=utcnow, onupdate=utcnow)


class FormTemplate(Base):
    __tablename__ = "form_templates"

    id = Column(Integer, primary_key=True, index=True)
    provider_id = Column(Integer, ForeignKey("providers.id", ondelete="CASCADE"), nullable=False, index=True)
    form_name = Column(String(255), nullable=False)
    fields = Column(JSON, nullable=False, default=list)
    is_active = Column(Boolean, default=True, nullable=False)
    is_default = Column(Boolean, default=False, nullable=False)
    created_at = Column(UTCDateTime, default=utcnow)


class FormSubmission(Base):
    __tablename__ = "form_submissions"

    id = Column(Integer, primary_key=True, index=True)
    form_template_id = Column(Integer, ForeignKey("form_templates.id", ondelete="SET NULL"), nullable=True)
    appointment_id = Column(Integer, ForeignKey("appointments.id", ondelete="CASCADE"), nullable=False, index=True)
    patient_id = Column(Integer, ForeignKey("patients.id", ondelete="CASCADE"), nullable=False)
    data = Column(JSON, nullable=False)
    submitted_at = Column(UTCDateTime, default=utcnow)


class OutboxEvent(Base):
    """Durable record of a committed change whose side effects are still owed"""
    __tablename__ = "outbox_events"
    __table_args__ = (
        Index('idx_outbox_status_created', 'status', 'created_at'),
    )

    id = Column(Integer, primary_key=True, index=True)
    event_type = Column(String(64), nullable=False)
    payload = Column(JSON, nullable=False)
    status = Column(SQLAlchemyEnum(OutboxStatus, name='outbox_status', native_enum=False),
                    default=OutboxStatus.pending, nullable=False)
    attempts = Column(Integer, default=0, nullable=False)
    last_error = Column(Text, nullable=True)
    created_at = Column(UTCDateTime, default=utcnow)
    claimed_at = Column(UTCDateTime, nullable=True)
    dispatched_at = Column(UTCDateTime, nullable=True)
