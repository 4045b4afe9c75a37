"""
Plan catalogue for the billing engine.
Defines the daily quota and feature set of each plan.
"""
from dataclasses import dataclass, field
from typing import List, Optional

from flask import current_app


@dataclass(frozen=True)
class PlanLimits:
    """Immutable plan definition."""
    daily_quota: int
    display_name: str
    features: List[str] = field(default_factory=list)


PLAN_LIMITS = {
    'free': PlanLimits(
        daily_quota=10,
        display_name='Free',
        features=['10 daily API operations', 'All basic tools'],
    ),
    'premium': PlanLimits(
        daily_quota=500,
        display_name='Premium',
        features=[
            '500 daily API operations', 'All tools included',
            '50MB max file size', 'Batch processing (10 files)',
            'Priority support',
        ],
    ),
    'pro': PlanLimits(
        daily_quota=2000,
        display_name='Pro',
        features=[
            '2000 daily API operations', 'All tools included',
            '100MB max file size', 'Batch processing (50 files)',
            'REST API access', 'Custom support',
        ],
    ),
}

# Plans that can be bought through checkout
PAID_PLANS = ('premium', 'pro')


def get_plan_limits(plan_name: str) -> PlanLimits:
    """Get limits for a given plan name. Defaults to free."""
    return PLAN_LIMITS.get(plan_name, PLAN_LIMITS['free'])


def normalize_plan(plan_name: Optional[str]) -> str:
    """Return a known plan name; anything unrecognised is 'free'."""
    return plan_name if plan_name in PLAN_LIMITS else 'free'


def price_id_for_plan(plan_name: str) -> Optional[str]:
    """Configured Stripe price id for a paid plan."""
    return {
        'premium': current_app.config.get('STRIPE_PREMIUM_PRICE_ID'),
        'pro': current_app.config.get('STRIPE_PRO_PRICE_ID'),
    }.get(plan_name)


def plan_for_price_id(price_id: Optional[str]) -> Optional[str]:
    """Reverse lookup of the configured price ids. None when unknown."""
    if not price_id:
        return None
    for plan_name in PAID_PLANS:
        if price_id_for_plan(plan_name) == price_id:
            return plan_name
    return None
