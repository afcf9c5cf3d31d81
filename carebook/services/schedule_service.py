# carebook/services/schedule_service.py
"""Provider-owned schedule data: weekly availability rules and blocked periods.

Every change records an `availability.updated` outbox event in the same unit
of work, so open booking pages can refresh their grid once it commits.
"""
from datetime import date
from typing import Optional

import structlog

from ..exceptions import InvalidInput, NotFound
from ..schemas import AvailabilityRuleUpsert, BlockedPeriodCreate
from ..storage.base import BookingStore, UnitOfWork

logger = structlog.get_logger(__name__)

# Outbox event type
AVAILABILITY_UPDATED = "availability.updated"

ALL_DAY_START = "00:00"
ALL_DAY_END = "23:59"


def _check_clinic(uow: UnitOfWork, provider_id: int, clinic_id: Optional[int]) -> None:
    if clinic_id is None:
        return
    clinic = uow.get_clinic(clinic_id)
    if clinic is None or clinic.provider_id != provider_id:
        raise NotFound("Clinic not found")


def _record_change(uow: UnitOfWork, provider_id: int, change: str, day_of_week: Optional[int] = None,
                   on_date: Optional[date] = None) -> None:
    provider = uow.get_provider(provider_id)
    if provider is None:
        raise NotFound("Doctor not found")
    uow.add_outbox_event(AVAILABILITY_UPDATED, {
        "provider_id": provider.id,
        "provider_slug": provider.slug,
        "change": change,
        "day_of_week": day_of_week,
        "date": on_date.isoformat() if on_date is not None else None,
    })


def list_rules(store: BookingStore, provider_id: int):
    with store.unit_of_work() as uow:
        return uow.list_rules(provider_id)


def upsert_rule(store: BookingStore, provider_id: int, day_of_week: int, data: AvailabilityRuleUpsert):
    """One rule per (clinic, day): an existing rule is overwritten."""
    if not 0 <= day_of_week <= 6:
        raise InvalidInput("day_of_week must be between 0 (Sunday) and 6 (Saturday)")

    with store.unit_of_work() as uow:
        _check_clinic(uow, provider_id, data.clinic_id)
        fields = data.model_dump()
        rule = uow.find_rule(provider_id, data.clinic_id, day_of_week)
        if rule is not None:
            rule = uow.update_rule(rule, **fields)
        else:
            rule = uow.add_rule(provider_id=provider_id, day_of_week=day_of_week, **fields)
        _record_change(uow, provider_id, "rule_saved", day_of_week=day_of_week)

    logger.info("availability_rule_saved", provider_id=provider_id, day_of_week=day_of_week,
                clinic_id=data.clinic_id, rule_id=rule.id)
    return rule


def delete_rule(store: BookingStore, provider_id: int, rule_id: int) -> None:
    with store.unit_of_work() as uow:
        rule = uow.get_rule(rule_id)
        if rule is None or rule.provider_id != provider_id:
            raise NotFound("Availability rule not found")
        day_of_week = rule.day_of_week
        uow.delete_rule(rule)
        _record_change(uow, provider_id, "rule_deleted", day_of_week=day_of_week)


def list_blocked_periods(store: BookingStore, provider_id: int, start_date: Optional[date] = None,
                         end_date: Optional[date] = None):
    with store.unit_of_work() as uow:
        return uow.list_blocked_periods(provider_id, start_date=start_date, end_date=end_date)


def create_blocked_period(store: BookingStore, provider_id: int, data: BlockedPeriodCreate):
    with store.unit_of_work() as uow:
        _check_clinic(uow, provider_id, data.clinic_id)
        block = uow.add_blocked_period(
            provider_id=provider_id,
            clinic_id=data.clinic_id,
            date=data.date,
            start_time=ALL_DAY_START if data.is_all_day else data.start_time,
            end_time=ALL_DAY_END if data.is_all_day else data.end_time,
            is_all_day=data.is_all_day,
            reason=data.reason,
        )
        _record_change(uow, provider_id, "block_created", on_date=data.date)

    logger.info("blocked_period_created", provider_id=provider_id, block_id=block.id, date=str(block.date))
    return block


def delete_blocked_period(store: BookingStore, provider_id: int, block_id: int) -> None:
    with store.unit_of_work() as uow:
        block = uow.get_blocked_period(block_id)
        if block is None or block.provider_id != provider_id:
            raise NotFound("Blocked period not found")
        on_date = block.date
        uow.delete_blocked_period(block)
        _record_change(uow, provider_id, "block_deleted", on_date=on_date)
