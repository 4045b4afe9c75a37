"""
Services package for the billing engine.
Contains business logic separated from routes.
"""

from billing_engine.services.subscription_service import SubscriptionService
from billing_engine.services.webhook_service import WebhookService, WebhookOutcome
from billing_engine.services.quota_ledger import QuotaLedger
from billing_engine.services.notification_scheduler import NotificationScheduler

__all__ = [
    'SubscriptionService',
    'WebhookService',
    'WebhookOutcome',
    'QuotaLedger',
    'NotificationScheduler',
]
