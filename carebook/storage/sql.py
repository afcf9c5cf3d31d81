# carebook/storage/sql.py - SQLAlchemy backend
import logging
from contextlib import contextmanager
from datetime import date
from typing import List, Optional

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from .. import models
from ..database import build_engine, build_session_factory, create_tables
from ..exceptions import BookingError, InternalError, QuotaExceeded, SlotConflict
from ..plans import UNLIMITED
from .base import BookingStore, REMINDER_FLAGS, UnitOfWork

logger = logging.getLogger(__name__)

ACTIVE_STATUSES = (models.AppointmentStatus.pending, models.AppointmentStatus.confirmed)


class SqlUnitOfWork(UnitOfWork):

    def __init__(self, db: Session):
        self.db = db

    def _add(self, obj):
        self.db.add(obj)
        self.db.flush()
        return obj

    def _update(self, obj, fields):
        for key, value in fields.items():
            setattr(obj, key, value)
        self.db.flush()
        return obj

    # --- Providers & clinics ---
    def get_provider(self, provider_id):
        return self.db.get(models.Provider, provider_id)

    def get_provider_by_slug(self, slug):
        return self.db.query(models.Provider).filter(models.Provider.slug == slug).first()

    def list_active_providers(self):
        return self.db.query(models.Provider).filter(models.Provider.is_active.is_(True)).order_by(models.Provider.id).all()

    def add_provider(self, **fields):
        return self._add(models.Provider(**fields))

    def update_provider(self, provider, **fields):
        return self._update(provider, fields)

    def increment_patient_count(self, provider, limit=UNLIMITED):
        # Guarded expression update: the limit is checked against the stored
        # value, not the one this session read earlier
        counter = models.Provider.patient_count_this_month
        stmt = update(models.Provider).where(models.Provider.id == provider.id)
        if limit != UNLIMITED:
            stmt = stmt.where(counter < limit)
        result = self.db.execute(
            stmt.values(patient_count_this_month=counter + 1).execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            raise QuotaExceeded()
        self.db.refresh(provider, ["patient_count_this_month"])
        return provider.patient_count_this_month

    def get_clinic(self, clinic_id):
        return self.db.get(models.Clinic, clinic_id)

    def list_clinics(self, provider_id):
        return self.db.query(models.Clinic).filter(
            models.Clinic.provider_id == provider_id,
            models.Clinic.is_active.is_(True),
        ).order_by(models.Clinic.id).all()

    def add_clinic(self, **fields):
        return self._add(models.Clinic(**fields))

    # --- Availability rules ---
    def get_rule(self, rule_id):
        return self.db.get(models.AvailabilityRule, rule_id)

    def list_rules(self, provider_id, day_of_week=None, active_only=False):
        query = self.db.query(models.AvailabilityRule).filter(models.AvailabilityRule.provider_id == provider_id)
        if day_of_week is not None:
            query = query.filter(models.AvailabilityRule.day_of_week == day_of_week)
        if active_only:
            query = query.filter(models.AvailabilityRule.is_active.is_(True))
        return query.order_by(models.AvailabilityRule.day_of_week, models.AvailabilityRule.id).all()

    def find_rule(self, provider_id, clinic_id, day_of_week):
        query = self.db.query(models.AvailabilityRule).filter(
            models.AvailabilityRule.provider_id == provider_id,
            models.AvailabilityRule.day_of_week == day_of_week,
        )
        if clinic_id is None:
            query = query.filter(models.AvailabilityRule.clinic_id.is_(None))
        else:
            query = query.filter(models.AvailabilityRule.clinic_id == clinic_id)
        return query.first()

    def add_rule(self, **fields):
        return self._add(models.AvailabilityRule(**fields))

    def update_rule(self, rule, **fields):
        return self._update(rule, fields)

    def delete_rule(self, rule):
        self.db.delete(rule)
        self.db.flush()

    # --- Blocked periods ---
    def get_blocked_period(self, block_id):
        return self.db.get(models.BlockedPeriod, block_id)

    def list_blocked_periods(self, provider_id, start_date=None, end_date=None):
        query = self.db.query(models.BlockedPeriod).filter(models.BlockedPeriod.provider_id == provider_id)
        if start_date:
            query = query.filter(models.BlockedPeriod.date >= start_date)
        if end_date:
            query = query.filter(models.BlockedPeriod.date <= end_date)
        return query.order_by(models.BlockedPeriod.date, models.BlockedPeriod.start_time).all()

    def add_blocked_period(self, **fields):
        return self._add(models.BlockedPeriod(**fields))

    def delete_blocked_period(self, block):
        self.db.delete(block)
        self.db.flush()

    # --- Patients ---
    def get_patient(self, patient_id):
        return self.db.get(models.Patient, patient_id)

    def find_patient(self, provider_id, whatsapp_number):
        return self.db.query(models.Patient).filter(
            models.Patient.created_by_provider_id == provider_id,
            models.Patient.whatsapp_number == whatsapp_number,
        ).first()

    def add_patient(self, **fields):
        return self._add(models.Patient(**fields))

    def update_patient(self, patient, **fields):
        return self._update(patient, fields)

    # --- Appointment ledger ---
    def get_appointment(self, appointment_id):
        return self.db.get(models.Appointment, appointment_id)

    def get_appointment_by_token(self, token):
        return self.db.query(models.Appointment).filter(models.Appointment.edit_token == token).first()

    def find_active_appointment(self, provider_id, appointment_date, time_slot):
        return self.db.query(models.Appointment).filter(
            models.Appointment.provider_id == provider_id,
            models.Appointment.appointment_date == appointment_date,
            models.Appointment.time_slot == time_slot,
            models.Appointment.status != models.AppointmentStatus.cancelled,
        ).first()

    def list_active_appointments(self, provider_id, appointment_date):
        return self.db.query(models.Appointment).filter(
            models.Appointment.provider_id == provider_id,
            models.Appointment.appointment_date == appointment_date,
            models.Appointment.status != models.AppointmentStatus.cancelled,
        ).order_by(models.Appointment.time_slot).all()

    def list_appointments(self, provider_id, status=None, start_date=None, end_date=None, skip=0, limit=50):
        query = self.db.query(models.Appointment).filter(models.Appointment.provider_id == provider_id)
        if status:
            query = query.filter(models.Appointment.status == status)
        if start_date:
            query = query.filter(models.Appointment.appointment_date >= start_date)
        if end_date:
            query = query.filter(models.Appointment.appointment_date <= end_date)
        return query.order_by(
            models.Appointment.appointment_date.desc(), models.Appointment.time_slot.desc()
        ).offset(skip).limit(limit).all()

    def add_appointment(self, **fields):
        return self._add(models.Appointment(**fields))

    def update_appointment(self, appointment, **fields):
        return self._update(appointment, fields)

    def list_reminder_candidates(self, provider_id, appointment_date, flag, slot_from=None, slot_to=None):
        flag_column = self._flag_column(flag)
        query = self.db.query(models.Appointment).filter(
            models.Appointment.provider_id == provider_id,
            models.Appointment.appointment_date == appointment_date,
            models.Appointment.status.in_(ACTIVE_STATUSES),
            flag_column.is_(False),
        )
        # HH:MM strings are fixed width, so lexical order is clock order
        if slot_from:
            query = query.filter(models.Appointment.time_slot >= slot_from)
        if slot_to:
            query = query.filter(models.Appointment.time_slot < slot_to)
        return query.order_by(models.Appointment.time_slot).all()

    def claim_reminder(self, appointment_id, flag):
        flag_column = self._flag_column(flag)
        result = self.db.execute(
            update(models.Appointment)
            .where(models.Appointment.id == appointment_id, flag_column.is_(False))
            .values({flag_column: True})
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    @staticmethod
    def _flag_column(flag):
        if flag not in REMINDER_FLAGS:
            raise ValueError(f"Unknown reminder flag: {flag}")
        return getattr(models.Appointment, flag)

    # --- Forms ---
    def get_default_form_template(self, provider_id):
        base = self.db.query(models.FormTemplate).filter(
            models.FormTemplate.provider_id == provider_id,
            models.FormTemplate.is_active.is_(True),
        )
        template = base.filter(models.FormTemplate.is_default.is_(True)).first()
        return template or base.order_by(models.FormTemplate.id).first()

    def add_form_template(self, **fields):
        return self._add(models.FormTemplate(**fields))

    def add_form_submission(self, **fields):
        return self._add(models.FormSubmission(**fields))

    # --- Outbox ---
    def add_outbox_event(self, event_type, payload):
        return self._add(models.OutboxEvent(event_type=event_type, payload=payload))

    def list_pending_events(self, limit=50):
        return self.db.query(models.OutboxEvent).filter(
            models.OutboxEvent.status == models.OutboxStatus.pending
        ).order_by(models.OutboxEvent.id).limit(limit).all()

    def claim_event(self, event_id):
        result = self.db.execute(
            update(models.OutboxEvent)
            .where(models.OutboxEvent.id == event_id, models.OutboxEvent.status == models.OutboxStatus.pending)
            .values(status=models.OutboxStatus.processing, attempts=models.OutboxEvent.attempts + 1,
                    claimed_at=models.utcnow())
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    def mark_event(self, event_id, status, error=None):
        values = {"status": models.OutboxStatus(status), "last_error": error}
        if status == models.OutboxStatus.dispatched:
            values["dispatched_at"] = models.utcnow()
        self.db.execute(
            update(models.OutboxEvent)
            .where(models.OutboxEvent.id == event_id)
            .values(**values)
            .execution_options(synchronize_session=False)
        )

    def reclaim_stale_events(self, claimed_before, max_attempts):
        stale = (
            models.OutboxEvent.status == models.OutboxStatus.processing,
            models.OutboxEvent.claimed_at < claimed_before,
        )
        failed = self.db.execute(
            update(models.OutboxEvent)
            .where(*stale, models.OutboxEvent.attempts >= max_attempts)
            .values(status=models.OutboxStatus.failed,
                    last_error=f"Abandoned in processing after {max_attempts} attempts")
            .execution_options(synchronize_session=False)
        )
        released = self.db.execute(
            update(models.OutboxEvent)
            .where(*stale)
            .values(status=models.OutboxStatus.pending, claimed_at=None)
            .execution_options(synchronize_session=False)
        )
        return failed.rowcount + released.rowcount


class SqlBookingStore(BookingStore):
    name = "sql"

    def __init__(self, database_url: str = None, engine=None, echo: bool = False):
        self.engine = engine if engine is not None else build_engine(database_url, echo=echo)
        self.SessionLocal = build_session_factory(self.engine)

    def create_schema(self):
        create_tables(self.engine)

    def dispose(self):
        self.engine.dispose()

    @contextmanager
    def unit_of_work(self):
        db = self.SessionLocal()
        try:
            yield SqlUnitOfWork(db)
            db.commit()
        except IntegrityError as e:
            db.rollback()
            # Only uniqueness can fail here: a concurrent writer took the slot (or contact) first
            logger.warning(f"Integrity conflict, transaction rolled back: {e.orig}")
            raise SlotConflict() from e
        except BookingError:
            db.rollback()
            raise
        except SQLAlchemyError as e:
            db.rollback()
            logger.error(f"Database error, transaction rolled back: {str(e)}")
            raise InternalError("A database error occurred") from e
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()
