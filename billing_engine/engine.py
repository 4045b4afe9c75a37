"""
BillingEngine: the service object that owns every engine component.

One instance is built per Flask application in ``create_app`` and reached
through ``current_engine()``. ``shutdown()`` waits for in-flight background
email deliveries; gunicorn calls it when a worker exits.
"""
import logging
import threading

from flask import current_app

from billing_engine.services.event_verifier import EventVerifier
from billing_engine.services.idempotency import IdempotencyLedger
from billing_engine.services.notification_scheduler import (
    NotificationScheduler, quota_template_data,
)
from billing_engine.services.quota_ledger import QuotaAllowed, QuotaLedger
from billing_engine.services.rate_limiter import RateLimiter
from billing_engine.services.reconciler import SubscriptionReconciler
from billing_engine.services.webhook_service import WebhookService
from billing_engine.utils.email import send_email

logger = logging.getLogger(__name__)

EXTENSION_KEY = 'billing_engine'


class BillingEngine:
    """Subscription and quota consistency engine bound to a Flask app."""

    def __init__(self, app=None):
        self.app = None
        self._threads = []
        self._lock = threading.Lock()
        self._closed = False
        if app is not None:
            self.init_app(app)

    def init_app(self, app):
        """Build the components from the app's configuration."""
        config = app.config

        self.verifier = EventVerifier(
            config.get('STRIPE_WEBHOOK_SECRET'),
            config.get('STRIPE_WEBHOOK_TOLERANCE', 300),
        )
        self.idempotency = IdempotencyLedger()
        self.reconciler = SubscriptionReconciler()
        self.quota = QuotaLedger()
        self.rate_limiter = RateLimiter(
            config.get('RATELIMIT_STORAGE_URI', 'memory://'),
            config.get('RATELIMIT_STRATEGY', 'fixed-window'),
        )
        self.notifications = NotificationScheduler(
            sender=send_email,
            dispatcher=self.run_in_background if config.get('EMAIL_ASYNC') else None,
        )
        self.webhooks = WebhookService(
            self.verifier, self.idempotency, self.reconciler, self.notifications,
        )

        self.app = app
        self._closed = False
        app.extensions[EXTENSION_KEY] = self

    def consume_quota(self, profile, day=None):
        """Meter one operation for the user and fire any warning it crosses."""
        result = self.quota.check_and_increment(profile.id, profile.plan.value, day)
        if isinstance(result, QuotaAllowed):
            for kind in result.thresholds_crossed:
                self.notifications.notify(
                    profile, kind, day,
                    quota_template_data(profile, result.count, result.limit),
                )
        return result

    def run_in_background(self, func, *args):
        """Run `func(*args)` in a daemon thread inside an app context.

        After shutdown the call runs inline instead.
        """
        if self._closed:
            func(*args)
            return None

        app = self.app

        def _run():
            with app.app_context():
                func(*args)

        thread = threading.Thread(target=_run, daemon=True)
        with self._lock:
            self._threads = [t for t in self._threads if t.is_alive()]
            self._threads.append(thread)
        thread.start()
        return thread

    def shutdown(self, timeout=10.0):
        """Stop accepting background work and wait for what is in flight."""
        with self._lock:
            self._closed = True
            threads, self._threads = self._threads, []

        pending = [t for t in threads if t.is_alive()]
        for thread in pending:
            thread.join(timeout)
        still_running = sum(1 for t in pending if t.is_alive())
        if still_running:
            logger.warning('Billing engine shutdown: %d email deliveries still running', still_running)
        else:
            logger.info('Billing engine shut down (%d deliveries drained)', len(pending))


def current_engine() -> BillingEngine:
    """The BillingEngine of the current Flask application."""
    return current_app.extensions[EXTENSION_KEY]
