# carebook/plans.py - Subscription plan limits
from dataclasses import dataclass

from .models import SubscriptionPlan

UNLIMITED = -1


@dataclass(frozen=True)
class PlanLimits:
    name: str
    max_patients: int
    max_clinics: int
    whatsapp_notifications: bool
    custom_forms: bool


PLAN_LIMITS = {
    SubscriptionPlan.free_trial: PlanLimits(
        name="Free Trial", max_patients=20, max_clinics=1,
        whatsapp_notifications=False, custom_forms=False,
    ),
    SubscriptionPlan.premium: PlanLimits(
        name="Premium", max_patients=300, max_clinics=UNLIMITED,
        whatsapp_notifications=True, custom_forms=True,
    ),
    SubscriptionPlan.advanced: PlanLimits(
        name="Advanced", max_patients=UNLIMITED, max_clinics=UNLIMITED,
        whatsapp_notifications=True, custom_forms=True,
    ),
}


def get_plan_limits(plan) -> PlanLimits:
    """Limits for a plan; unknown plans get the free-trial limits."""
    try:
        return PLAN_LIMITS[SubscriptionPlan(plan)]
    except ValueError:
        return PLAN_LIMITS[SubscriptionPlan.free_trial]


def can_add_patient(plan, current_count: int) -> bool:
    limit = get_plan_limits(plan).max_patients
    return limit == UNLIMITED or current_count < limit


def has_whatsapp(plan) -> bool:
    return get_plan_limits(plan).whatsapp_notifications
