"""
Plan catalogue for organization subscriptions.

This module is the single source of truth for plan pricing and the tier
each plan grants. It lives in core/ so both service and API layers can
import from it without creating circular dependencies.
"""

from typing import Optional

# Tier an organization holds with no paid subscription
BASE_TIER = "basic"

# Amounts are in major currency units; the gateway adapter converts to cents
PLANS = {
    "pro_monthly": {
        "name": "Pro (monthly)",
        "tier": "pro",
        "amount": 49,
        "currency": "usd",
        "interval": "month",
        "features": [
            "Custom donation domain",
            "Recurring donations",
            "Donor CRM export",
        ],
    },
    "pro_yearly": {
        "name": "Pro (yearly)",
        "tier": "pro",
        "amount": 490,  # ~17% discount
        "currency": "usd",
        "interval": "year",
        "features": [
            "Custom donation domain",
            "Recurring donations",
            "Donor CRM export",
        ],
    },
    "enterprise_monthly": {
        "name": "Enterprise (monthly)",
        "tier": "enterprise",
        "amount": 199,
        "currency": "usd",
        "interval": "month",
        "features": [
            "Everything in Pro",
            "Multiple campaigns",
            "Dedicated support",
        ],
    },
    "enterprise_yearly": {
        "name": "Enterprise (yearly)",
        "tier": "enterprise",
        "amount": 1990,  # ~17% discount
        "currency": "usd",
        "interval": "year",
        "features": [
            "Everything in Pro",
            "Multiple campaigns",
            "Dedicated support",
        ],
    },
}


def get_plan(plan_code: str) -> Optional[dict]:
    """Return the plan definition for a code, or None if unknown."""
    return PLANS.get(plan_code)
