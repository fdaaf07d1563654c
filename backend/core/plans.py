"""
Plan catalogue for paid subscriptions.

This module is the single source of truth for plan prices and features.
It lives in core/ so both service and API layers can import from it
without creating circular dependencies.
"""

from collections.abc import Mapping

from core.domain.subscription import PlanType

# Plan configuration; amounts are in cents
PLANS = {
    PlanType.MONTHLY: {
        "name": "Monthly",
        "description": "Full access, billed every month",
        "amount": 2000,
        "interval_months": 1,
        "features": [
            "Unlimited practice questions",
            "Full-length mock exams",
            "Personalized study plan",
            "Progress analytics",
        ],
    },
    PlanType.QUARTERLY: {
        "name": "Quarterly",
        "description": "Full access, billed every three months",
        "amount": 5000,
        "interval_months": 3,
        "features": [
            "Everything in Monthly",
            "Save 17% over monthly billing",
            "Parent progress dashboard",
        ],
    },
    PlanType.ANNUAL: {
        "name": "Annual",
        "description": "Full access, billed once a year",
        "amount": 15000,
        "interval_months": 12,
        "features": [
            "Everything in Quarterly",
            "Save 37% over monthly billing",
            "Priority support",
        ],
    },
}

CURRENCY = "usd"


def plan_amount_cents(plan: PlanType | str) -> int:
    return PLANS[PlanType(plan)]["amount"]


def plan_amount_dollars(plan: PlanType | str) -> float:
    return plan_amount_cents(plan) / 100


def plan_for_price_id(price_id: str | None, price_ids: Mapping[PlanType, str]) -> PlanType | None:
    """Reverse lookup of a processor price identifier."""
    if not price_id:
        return None
    for plan, configured in price_ids.items():
        if configured and configured == price_id:
            return plan
    return None


def parse_plan(value: str | None) -> PlanType | None:
    try:
        return PlanType(value)
    except ValueError:
        return None
