# carebook/storage/base.py
"""Storage interface for the booking core.

Business logic talks to a `BookingStore` and the `UnitOfWork` it hands out.
Everything done through one unit of work commits together or not at all, and
a second live appointment for the same (provider, date, time_slot) makes the
unit fail with `SlotConflict`.
"""
import abc
from contextlib import contextmanager
from datetime import date, datetime
from typing import Any, Iterator, List, Optional

from ..plans import UNLIMITED


class UnitOfWork(abc.ABC):

    # --- Providers & clinics ---
    @abc.abstractmethod
    def get_provider(self, provider_id: int) -> Optional[Any]: ...

    @abc.abstractmethod
    def get_provider_by_slug(self, slug: str) -> Optional[Any]: ...

    @abc.abstractmethod
    def list_active_providers(self) -> List[Any]: ...

    @abc.abstractmethod
    def add_provider(self, **fields) -> Any: ...

    @abc.abstractmethod
    def update_provider(self, provider, **fields) -> Any: ...

    @abc.abstractmethod
    def increment_patient_count(self, provider, limit: int = UNLIMITED) -> int:
        """Atomically add one to the provider's monthly patient counter.

        The check against `limit` happens in the same statement as the
        increment; raises QuotaExceeded when the counter is already at it.
        """

    @abc.abstractmethod
    def get_clinic(self, clinic_id: int) -> Optional[Any]: ...

    @abc.abstractmethod
    def list_clinics(self, provider_id: int) -> List[Any]: ...

    @abc.abstractmethod
    def add_clinic(self, **fields) -> Any: ...

    # --- Availability rules ---
    @abc.abstractmethod
    def get_rule(self, rule_id: int) -> Optional[Any]: ...

    @abc.abstractmethod
    def list_rules(self, provider_id: int, day_of_week: Optional[int] = None,
                   active_only: bool = False) -> List[Any]: ...

    @abc.abstractmethod
    def find_rule(self, provider_id: int, clinic_id: Optional[int], day_of_week: int) -> Optional[Any]:
        """Exact match on clinic_id (None matches the all-clinics rule only)."""

    @abc.abstractmethod
    def add_rule(self, **fields) -> Any: ...

    @abc.abstractmethod
    def update_rule(self, rule, **fields) -> Any: ...

    @abc.abstractmethod
    def delete_rule(self, rule) -> None: ...

    # --- Blocked periods ---
    @abc.abstractmethod
    def get_blocked_period(self, block_id: int) -> Optional[Any]: ...

    @abc.abstractmethod
    def list_blocked_periods(self, provider_id: int, start_date: Optional[date] = None,
                             end_date: Optional[date] = None) -> List[Any]: ...

    @abc.abstractmethod
    def add_blocked_period(self, **fields) -> Any: ...

    @abc.abstractmethod
    def delete_blocked_period(self, block) -> None: ...

    # --- Patients ---
    @abc.abstractmethod
    def get_patient(self, patient_id: int) -> Optional[Any]: ...

    @abc.abstractmethod
    def find_patient(self, provider_id: int, whatsapp_number: str) -> Optional[Any]: ...

    @abc.abstractmethod
    def add_patient(self, **fields) -> Any: ...

    @abc.abstractmethod
    def update_patient(self, patient, **fields) -> Any: ...

    # --- Appointment ledger ---
    @abc.abstractmethod
    def get_appointment(self, appointment_id: int) -> Optional[Any]: ...

    @abc.abstractmethod
    def get_appointment_by_token(self, token: str) -> Optional[Any]: ...

    @abc.abstractmethod
    def find_active_appointment(self, provider_id: int, appointment_date: date,
                                time_slot: str) -> Optional[Any]: ...

    @abc.abstractmethod
    def list_active_appointments(self, provider_id: int, appointment_date: date) -> List[Any]: ...

    @abc.abstractmethod
    def list_appointments(self, provider_id: int, status: Optional[str] = None,
                          start_date: Optional[date] = None, end_date: Optional[date] = None,
                          skip: int = 0, limit: int = 50) -> List[Any]: ...

    @abc.abstractmethod
    def add_appointment(self, **fields) -> Any: ...

    @abc.abstractmethod
    def update_appointment(self, appointment, **fields) -> Any: ...

    @abc.abstractmethod
    def list_reminder_candidates(self, provider_id: int, appointment_date: date, flag: str,
                                 slot_from: Optional[str] = None,
                                 slot_to: Optional[str] = None) -> List[Any]:
        """Pending/confirmed appointments on a date whose `flag` is unset.

        When given, `slot_from` <= time_slot < `slot_to` (HH:MM strings).
        """

    @abc.abstractmethod
    def claim_reminder(self, appointment_id: int, flag: str) -> bool:
        """Set a reminder flag only if it is still unset. True if this call set it."""

    # --- Forms ---
    @abc.abstractmethod
    def get_default_form_template(self, provider_id: int) -> Optional[Any]: ...

    @abc.abstractmethod
    def add_form_template(self, **fields) -> Any: ...

    @abc.abstractmethod
    def add_form_submission(self, **fields) -> Any: ...

    # --- Outbox ---
    @abc.abstractmethod
    def add_outbox_event(self, event_type: str, payload: dict) -> Any: ...

    @abc.abstractmethod
    def list_pending_events(self, limit: int = 50) -> List[Any]: ...

    @abc.abstractmethod
    def claim_event(self, event_id: int) -> bool:
        """Move an event from pending to processing. True if this call did it."""

    @abc.abstractmethod
    def mark_event(self, event_id: int, status: str, error: Optional[str] = None) -> None: ...

    @abc.abstractmethod
    def reclaim_stale_events(self, claimed_before: datetime, max_attempts: int) -> int:
        """Release events stuck in processing since before `claimed_before`.

        Events that already used `max_attempts` are marked failed, the rest go
        back to pending. Returns how many events were touched.
        """


REMINDER_FLAGS = ("reminder_sent_24h", "reminder_sent_1h")


class BookingStore(abc.ABC):
    """Factory for units of work against one storage backend."""

    name = "abstract"

    @abc.abstractmethod
    @contextmanager
    def unit_of_work(self) -> Iterator[UnitOfWork]:
        """Commit on clean exit, roll back and re-raise on any exception."""

    def create_schema(self) -> None:
        """Prepare the backing storage. No-op unless the backend needs it."""

    def dispose(self) -> None:
        """Release resources held by the backend."""
