# carebook/services/slot_service.py
"""Slot generation and availability resolution.

All clock arithmetic is done on minutes since midnight in the provider's own
timezone; HH:MM strings only appear at the edges.
"""
from dataclasses import dataclass, asdict
from datetime import date, datetime, timedelta
from typing import List, Optional

import structlog

from ..config import get_settings
from ..exceptions import NotFound, Unavailable
from ..storage.base import UnitOfWork
from ..timeutils import day_of_week, format_minutes, local_now, parse_date, parse_hhmm, utcnow, ensure_aware

logger = structlog.get_logger(__name__)


def generate_slots(start: int, end: int, duration: int) -> List[int]:
    """Slot start offsets (minutes) of `duration` that fit entirely in [start, end]."""
    if duration <= 0 or end <= start:
        return []
    slots = []
    current = start
    while current + duration <= end:
        slots.append(current)
        current += duration
    return slots


def slot_times(start_time: str, end_time: str, duration: int) -> List[str]:
    """Same as generate_slots, on HH:MM strings."""
    return [format_minutes(m) for m in generate_slots(parse_hhmm(start_time), parse_hhmm(end_time), duration)]


@dataclass
class SlotStatus:
    time: str
    is_available: bool
    is_blocked: bool
    is_booked: bool
    is_past: bool


@dataclass
class DayAvailability:
    date: date
    slots: List[SlotStatus]
    is_available: bool
    slot_duration: Optional[int] = None
    timezone: Optional[str] = None

    def slot(self, time_slot: str) -> Optional[SlotStatus]:
        return next((s for s in self.slots if s.time == time_slot), None)

    def to_dict(self):
        return asdict(self)


def find_rule_for_day(uow: UnitOfWork, provider_id: int, clinic_id: Optional[int], weekday: int):
    """Active rule for the day. A clinic-specific rule wins over the all-clinics rule."""
    if clinic_id is not None:
        rule = uow.find_rule(provider_id, clinic_id, weekday)
        if rule is not None and rule.is_active:
            return rule
    rule = uow.find_rule(provider_id, None, weekday)
    if rule is not None and rule.is_active:
        return rule
    if clinic_id is None:
        # No shared rule: fall back to the first clinic-specific one
        rules = uow.list_rules(provider_id, day_of_week=weekday, active_only=True)
        return rules[0] if rules else None
    return None


def blocked_minutes_checker(blocks, clinic_id: Optional[int]):
    """Returns f(minute) -> bool for the blocks that apply to `clinic_id`."""
    applicable = [
        b for b in blocks
        if clinic_id is None or b.clinic_id is None or b.clinic_id == clinic_id
    ]
    if any(b.is_all_day for b in applicable):
        return lambda minute: True
    ranges = [(parse_hhmm(b.start_time), parse_hhmm(b.end_time)) for b in applicable]

    def is_blocked(minute: int) -> bool:
        # Half-open: a slot starting exactly at a block's end is free
        return any(start <= minute < end for start, end in ranges)

    return is_blocked


def resolve_provider(uow: UnitOfWork, provider_slug: str, clinic_id: Optional[int] = None):
    provider = uow.get_provider_by_slug(provider_slug)
    if provider is None:
        raise NotFound("Doctor not found")
    if clinic_id is not None:
        clinic = uow.get_clinic(clinic_id)
        if clinic is None or clinic.provider_id != provider.id:
            raise NotFound("Clinic not found")
    return provider


def ensure_accepting_bookings(provider, now: datetime, grace_days: int) -> None:
    """Inactive providers and subscriptions past their grace period take no bookings."""
    if not provider.is_active:
        raise Unavailable("This doctor is not currently accepting appointments")
    if provider.subscription_end is not None:
        lapses_at = ensure_aware(provider.subscription_end) + timedelta(days=grace_days)
        if now > lapses_at:
            raise Unavailable("This doctor is not currently accepting appointments")


def compute_day(uow: UnitOfWork, provider, target_date: date, clinic_id: Optional[int] = None,
                now: Optional[datetime] = None) -> DayAvailability:
    """Classify every candidate slot of `target_date` for an already-resolved provider."""
    settings = get_settings()
    tz_name = provider.timezone or settings.default_timezone

    rule = find_rule_for_day(uow, provider.id, clinic_id, day_of_week(target_date))
    if rule is None:
        return DayAvailability(date=target_date, slots=[], is_available=False, timezone=tz_name)

    candidates = generate_slots(parse_hhmm(rule.start_time), parse_hhmm(rule.end_time), rule.slot_duration)

    blocks = uow.list_blocked_periods(provider.id, start_date=target_date, end_date=target_date)
    is_blocked = blocked_minutes_checker(blocks, clinic_id)

    booked = {a.time_slot for a in uow.list_active_appointments(provider.id, target_date)}

    current = local_now(tz_name, now, settings.default_timezone)
    today = current.date()
    now_minutes = current.hour * 60 + current.minute

    slots = []
    for minute in candidates:
        time_slot = format_minutes(minute)
        blocked = is_blocked(minute)
        is_booked = time_slot in booked
        if target_date < today:
            past = True
        elif target_date == today:
            # A slot starting this very minute is already past
            past = minute <= now_minutes
        else:
            past = False
        slots.append(SlotStatus(
            time=time_slot,
            is_available=not blocked and not is_booked and not past,
            is_blocked=blocked,
            is_booked=is_booked,
            is_past=past,
        ))

    return DayAvailability(
        date=target_date,
        slots=slots,
        is_available=any(s.is_available for s in slots),
        slot_duration=rule.slot_duration,
        timezone=tz_name,
    )


def resolve_availability(uow: UnitOfWork, provider_slug: str, target_date, clinic_id: Optional[int] = None,
                         now: Optional[datetime] = None) -> DayAvailability:
    """Public availability for one provider/day. Read-only."""
    target_date = parse_date(target_date)
    provider = resolve_provider(uow, provider_slug, clinic_id)
    day = compute_day(uow, provider, target_date, clinic_id, now)
    logger.debug(
        "availability_resolved",
        provider_id=provider.id,
        date=str(target_date),
        slots=len(day.slots),
        available=sum(1 for s in day.slots if s.is_available),
    )
    return day


def get_public_profile(uow: UnitOfWork, provider_slug: str, now: Optional[datetime] = None) -> dict:
    """What the public booking page needs before a date is picked."""
    provider = uow.get_provider_by_slug(provider_slug)
    if provider is None or not provider.is_active:
        raise NotFound("Doctor not found")
    ensure_accepting_bookings(provider, ensure_aware(now or utcnow()), get_settings().subscription_grace_days)

    return {
        "provider": provider,
        "clinics": uow.list_clinics(provider.id),
        "availability": uow.list_rules(provider.id, active_only=True),
        "form_template": uow.get_default_form_template(provider.id),
        "subscription_plan": provider.subscription_plan,
    }
