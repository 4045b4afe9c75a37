# =============================================================================
# Billing Engine - Notification Scheduler Tests
# =============================================================================

from datetime import date
from unittest.mock import MagicMock

import pytest

from billing_engine.extensions import db
from billing_engine.models.notification import NotificationKind, NotificationLog, NotificationOutcome
from billing_engine.models.profile import EmailPreferences
from billing_engine.models.subscription import SubscriptionPlan
from billing_engine.models.usage import DailyUsage
from billing_engine.services.notification_scheduler import NotificationScheduler, quota_template_data
from billing_engine.services.quota_ledger import QuotaLedger
from billing_engine.utils.email import build_message
from tests.conftest import make_profile


DAY = date(2026, 10, 18)


@pytest.fixture
def sender():
    return MagicMock(return_value=True)


@pytest.fixture
def scheduler(sender):
    return NotificationScheduler(sender=sender)


def _disable(profile, preference):
    prefs = EmailPreferences.get_or_create(profile.id)
    setattr(prefs, preference, False)
    db.session.commit()


# =============================================================================
# Once-per-day Gate
# =============================================================================

class TestNotify:
    """Tests for NotificationScheduler.notify."""

    def test_first_notify_sends(self, app, scheduler, sender, free_user):
        outcome = scheduler.notify(free_user, NotificationKind.WELCOME, DAY)

        assert outcome == NotificationOutcome.SENT
        sender.assert_called_once()
        kind, recipient, context = sender.call_args[0]
        assert kind == 'welcome'
        assert recipient == 'free@test.com'
        assert context['user_name'] == 'Free User'
        assert context['plan'] == 'free'
        assert NotificationLog.get(free_user.id, NotificationKind.WELCOME, DAY).outcome == NotificationOutcome.SENT

    def test_second_notify_same_day_suppressed(self, app, scheduler, sender, free_user):
        scheduler.notify(free_user, NotificationKind.WELCOME, DAY)
        assert scheduler.notify(free_user, NotificationKind.WELCOME, DAY) is None
        assert sender.call_count == 1

    def test_next_day_sends_again(self, app, scheduler, sender, free_user):
        scheduler.notify(free_user, NotificationKind.QUOTA_WARNING_80, DAY)
        scheduler.notify(free_user, NotificationKind.QUOTA_WARNING_80, date(2026, 10, 19))
        assert sender.call_count == 2

    def test_kinds_are_independent(self, app, scheduler, sender, free_user):
        scheduler.notify(free_user, NotificationKind.QUOTA_WARNING_80, DAY)
        scheduler.notify(free_user, NotificationKind.QUOTA_WARNING_100, DAY)
        assert sender.call_count == 2

    def test_template_data_merged(self, app, scheduler, sender, free_user):
        scheduler.notify(free_user, NotificationKind.QUOTA_WARNING_80, DAY, {'current_usage': 8})
        assert sender.call_args[0][2]['current_usage'] == 8

    def test_accepts_kind_string(self, app, scheduler, free_user):
        assert scheduler.notify(free_user, 'welcome', DAY) == NotificationOutcome.SENT


class TestPreferences:
    """Opt-outs suppress the matching kinds."""

    def test_quota_warnings_disabled(self, app, scheduler, sender, free_user):
        _disable(free_user, 'quota_warnings')

        outcome = scheduler.notify(free_user, NotificationKind.QUOTA_WARNING_80, DAY)

        assert outcome == NotificationOutcome.SKIPPED
        sender.assert_not_called()
        entry = NotificationLog.get(free_user.id, NotificationKind.QUOTA_WARNING_80, DAY)
        assert entry.outcome == NotificationOutcome.SKIPPED

    def test_subscription_updates_disabled(self, app, scheduler, sender, premium_user):
        _disable(premium_user, 'subscription_updates')
        outcome = scheduler.notify(premium_user, NotificationKind.SUBSCRIPTION_CANCELLATION, DAY)
        assert outcome == NotificationOutcome.SKIPPED
        sender.assert_not_called()

    def test_welcome_ignores_preferences(self, app, scheduler, sender, free_user):
        _disable(free_user, 'marketing_emails')
        _disable(free_user, 'subscription_updates')
        assert scheduler.notify(free_user, NotificationKind.WELCOME, DAY) == NotificationOutcome.SENT

    def test_default_preferences_created(self, app, scheduler, free_user):
        scheduler.notify(free_user, NotificationKind.QUOTA_WARNING_80, DAY)
        prefs = EmailPreferences.query.filter_by(user_id=free_user.id).one()
        assert prefs.quota_warnings is True


class TestDispatchFailures:
    """Transport failures are recorded, never raised."""

    def test_sender_returns_false(self, app, free_user):
        scheduler = NotificationScheduler(sender=MagicMock(return_value=False))

        outcome = scheduler.notify(free_user, NotificationKind.WELCOME, DAY)

        assert outcome == NotificationOutcome.FAILED
        assert NotificationLog.get(free_user.id, NotificationKind.WELCOME, DAY).outcome == NotificationOutcome.FAILED

    def test_sender_raises(self, app, free_user):
        scheduler = NotificationScheduler(sender=MagicMock(side_effect=ConnectionError('smtp down')))
        assert scheduler.notify(free_user, NotificationKind.WELCOME, DAY) == NotificationOutcome.FAILED

    def test_failed_kind_not_retried_same_day(self, app, free_user):
        sender = MagicMock(return_value=False)
        scheduler = NotificationScheduler(sender=sender)
        scheduler.notify(free_user, NotificationKind.WELCOME, DAY)

        assert scheduler.notify(free_user, NotificationKind.WELCOME, DAY) is None
        assert sender.call_count == 1


class TestBackgroundDispatch:

    def test_dispatcher_receives_delivery(self, app, sender, free_user):
        dispatcher = MagicMock()
        scheduler = NotificationScheduler(sender=sender, dispatcher=dispatcher)

        outcome = scheduler.notify(free_user, NotificationKind.WELCOME, DAY)

        assert outcome == NotificationOutcome.PENDING
        dispatcher.assert_called_once()
        sender.assert_not_called()
        entry = NotificationLog.get(free_user.id, NotificationKind.WELCOME, DAY)
        assert entry.outcome == NotificationOutcome.PENDING

    def test_dispatched_delivery_records_outcome(self, app, sender, free_user):
        """Running the dispatched call completes the log entry."""
        dispatcher = MagicMock(side_effect=lambda func, *args: func(*args))
        scheduler = NotificationScheduler(sender=sender, dispatcher=dispatcher)

        scheduler.notify(free_user, NotificationKind.WELCOME, DAY)

        sender.assert_called_once()
        entry = NotificationLog.get(free_user.id, NotificationKind.WELCOME, DAY)
        assert entry.outcome == NotificationOutcome.SENT


class TestMarkers:

    def test_should_notify_and_mark(self, app, scheduler, free_user):
        assert scheduler.should_notify(free_user.id, NotificationKind.QUOTA_WARNING_100, DAY)
        assert scheduler.mark_notified(free_user.id, NotificationKind.QUOTA_WARNING_100, DAY) is True
        assert not scheduler.should_notify(free_user.id, NotificationKind.QUOTA_WARNING_100, DAY)

    def test_mark_twice(self, app, scheduler, free_user):
        scheduler.mark_notified(free_user.id, NotificationKind.QUOTA_WARNING_100, DAY)
        assert scheduler.mark_notified(free_user.id, NotificationKind.QUOTA_WARNING_100, DAY) is False


# =============================================================================
# Quota Warning Sweep
# =============================================================================

class TestSweep:
    """Tests for sweep_quota_warnings."""

    @pytest.fixture
    def usage(self, app):
        """Three free users at 3/10, 8/10 and 10/10 on DAY."""
        profiles = {}
        for name, count in (('low', 3), ('near', 8), ('full', 10)):
            profile = make_profile(f'{name}@test.com')
            db.session.add(DailyUsage(user_id=profile.id, usage_date=DAY, count=count))
            profiles[name] = profile
        db.session.commit()
        return profiles

    def test_sweep_sends_due_warnings(self, app, scheduler, sender, usage):
        stats = scheduler.sweep_quota_warnings(DAY)

        assert stats == {'users_checked': 3, 'warnings_sent': 3, 'errors': []}
        sent = sorted((c[0][0], c[0][1]) for c in sender.call_args_list)
        assert sent == [
            ('quota_warning_100', 'full@test.com'),
            ('quota_warning_80', 'full@test.com'),
            ('quota_warning_80', 'near@test.com'),
        ]

    def test_sweep_is_idempotent(self, app, scheduler, sender, usage):
        scheduler.sweep_quota_warnings(DAY)
        stats = scheduler.sweep_quota_warnings(DAY)

        assert stats['warnings_sent'] == 0
        assert sender.call_count == 3

    def test_sweep_skips_already_warned(self, app, scheduler, sender, usage):
        """Warnings sent inline by the quota call are not repeated."""
        scheduler.mark_notified(usage['near'].id, NotificationKind.QUOTA_WARNING_80, DAY)
        stats = scheduler.sweep_quota_warnings(DAY)
        assert stats['warnings_sent'] == 2

    def test_sweep_respects_opt_out(self, app, scheduler, usage):
        _disable(usage['near'], 'quota_warnings')
        stats = scheduler.sweep_quota_warnings(DAY)
        assert stats['warnings_sent'] == 2
        assert stats['errors'] == []

    def test_sweep_reports_failures(self, app, usage):
        scheduler = NotificationScheduler(sender=MagicMock(return_value=False))
        stats = scheduler.sweep_quota_warnings(DAY)

        assert stats['warnings_sent'] == 0
        assert len(stats['errors']) == 3
        assert all(message.startswith('Failed to send quota_warning_') for message in stats['errors'])

    def test_sweep_bypasses_background_dispatcher(self, app, usage):
        """Failures are reported even when single sends go to the background."""
        dispatcher = MagicMock()
        scheduler = NotificationScheduler(sender=MagicMock(return_value=False), dispatcher=dispatcher)

        stats = scheduler.sweep_quota_warnings(DAY)

        dispatcher.assert_not_called()
        assert stats['warnings_sent'] == 0
        assert len(stats['errors']) == 3
        entry = NotificationLog.get(usage['full'].id, NotificationKind.QUOTA_WARNING_100, DAY)
        assert entry.outcome == NotificationOutcome.FAILED

    def test_sweep_counts_delivered_with_dispatcher(self, app, sender, usage):
        dispatcher = MagicMock()
        scheduler = NotificationScheduler(sender=sender, dispatcher=dispatcher)

        stats = scheduler.sweep_quota_warnings(DAY)

        assert stats == {'users_checked': 3, 'warnings_sent': 3, 'errors': []}
        assert sender.call_count == 3
        dispatcher.assert_not_called()

    def test_sweep_uses_plan_limit(self, app, scheduler, sender):
        """8 operations is nothing for a premium user."""
        profile = make_profile('paid@test.com', plan=SubscriptionPlan.PREMIUM)
        db.session.add(DailyUsage(user_id=profile.id, usage_date=DAY, count=8))
        db.session.commit()

        stats = scheduler.sweep_quota_warnings(DAY)

        assert stats == {'users_checked': 1, 'warnings_sent': 0, 'errors': []}
        sender.assert_not_called()

    def test_sweep_other_day_untouched(self, app, scheduler, usage):
        stats = scheduler.sweep_quota_warnings(date(2026, 10, 17))
        assert stats['users_checked'] == 0


class TestTemplateData:

    def test_quota_template_data(self, app, free_user):
        data = quota_template_data(free_user, 8, 10)
        assert data == {
            'current_usage': 8,
            'daily_limit': 10,
            'percentage': 80,
            'plan_name': 'Free',
        }

    def test_percentage_matches_quota_status(self, app, free_user):
        """Email and GET /quota report the same figure."""
        status = QuotaLedger().usage(free_user.id, 'free', DAY)
        data = quota_template_data(free_user, status.current_usage, status.daily_limit)
        assert data['percentage'] == status.percentage

        assert quota_template_data(free_user, 1, 3)['percentage'] == 33.3

    def test_percentage_rendered_without_trailing_zero(self, app, free_user):
        message = build_message('quota_warning_80', free_user.email,
                                dict(quota_template_data(free_user, 8, 10), user_name='Free'))
        assert '(80%)' in message.body
