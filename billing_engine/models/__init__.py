"""
SQLAlchemy models for the billing engine.
All models are imported here for easy access.
"""
from billing_engine.models.subscription import (
    Subscription, SubscriptionPlan, SubscriptionStatus, ENTITLED_STATUSES,
)
from billing_engine.models.profile import UserProfile, EmailPreferences
from billing_engine.models.usage import DailyUsage
from billing_engine.models.webhook_event import ProcessedWebhookEvent
from billing_engine.models.notification import (
    NotificationLog, NotificationKind, NotificationOutcome,
)

__all__ = [
    'Subscription', 'SubscriptionPlan', 'SubscriptionStatus', 'ENTITLED_STATUSES',
    'UserProfile', 'EmailPreferences',
    'DailyUsage',
    'ProcessedWebhookEvent',
    'NotificationLog', 'NotificationKind', 'NotificationOutcome',
]
