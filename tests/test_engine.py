# =============================================================================
# Billing Engine - Engine Lifecycle Tests
# =============================================================================

import threading
from datetime import date
from unittest.mock import MagicMock, patch

from flask_mailman import EmailMultiAlternatives

from billing_engine import create_app
from billing_engine.engine import BillingEngine, current_engine
from billing_engine.extensions import db
from billing_engine.models.notification import NotificationKind, NotificationLog, NotificationOutcome
from billing_engine.models.usage import DailyUsage
from billing_engine.services.quota_ledger import QuotaAllowed, QuotaDenied


DAY = date(2026, 10, 18)


class TestEngineWiring:
    """Tests for BillingEngine construction."""

    def test_registered_on_app(self, app, engine):
        assert isinstance(engine, BillingEngine)
        assert current_engine() is engine
        assert engine.app is app

    def test_components_built(self, engine):
        assert engine.verifier.secret == 'whsec_test_fake_secret'
        assert engine.verifier.tolerance == 300
        assert engine.rate_limiter.storage_uri == 'memory://'
        assert engine.webhooks.scheduler is engine.notifications

    def test_async_email_uses_background_dispatch(self, app):
        app.config['EMAIL_ASYNC'] = True
        engine = BillingEngine(app)
        assert engine.notifications._dispatcher == engine.run_in_background
        engine.shutdown()

    def test_separate_apps_get_separate_engines(self, app):
        other = create_app('testing')
        assert other.extensions['billing_engine'] is not app.extensions['billing_engine']


class TestConsumeQuota:
    """Tests for BillingEngine.consume_quota."""

    def test_consume_fires_crossed_warning(self, engine, free_user):
        db.session.add(DailyUsage(user_id=free_user.id, usage_date=DAY, count=9))
        db.session.commit()

        with patch.object(EmailMultiAlternatives, 'send', return_value=1):
            result = engine.consume_quota(free_user, DAY)

        assert isinstance(result, QuotaAllowed)
        entry = NotificationLog.get(free_user.id, NotificationKind.QUOTA_WARNING_100, DAY)
        assert entry.outcome == NotificationOutcome.SENT
        # 80% boundary was passed earlier, not by this call
        assert NotificationLog.get(free_user.id, NotificationKind.QUOTA_WARNING_80, DAY) is None

    def test_denied_sends_nothing(self, engine, free_user):
        db.session.add(DailyUsage(user_id=free_user.id, usage_date=DAY, count=10))
        db.session.commit()
        engine.notifications = MagicMock()

        assert isinstance(engine.consume_quota(free_user, DAY), QuotaDenied)
        engine.notifications.notify.assert_not_called()


class TestBackgroundWork:
    """Tests for run_in_background and shutdown."""

    def test_runs_in_app_context(self, app, engine):
        seen = []
        done = threading.Event()

        def job(value):
            seen.append((value, current_engine() is engine))
            done.set()

        thread = engine.run_in_background(job, 42)
        assert done.wait(5)
        thread.join(5)
        assert seen == [(42, True)]

    def test_shutdown_drains_threads(self, engine):
        release = threading.Event()
        finished = []

        def job():
            release.wait(5)
            finished.append(True)

        engine.run_in_background(job)
        release.set()
        engine.shutdown(timeout=5)

        assert finished == [True]

    def test_after_shutdown_runs_inline(self, engine):
        engine.shutdown()
        calls = []

        assert engine.run_in_background(calls.append, 'x') is None
        assert calls == ['x']
