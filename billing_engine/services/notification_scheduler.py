"""
Notification scheduler.

Decides whether an email fires, at most once per user, kind and UTC day, and
records what happened to it. Dispatch failures are logged and recorded as
``failed``; they never reach the caller.
"""
import logging
from datetime import date
from typing import Callable, Optional

from sqlalchemy.exc import SQLAlchemyError

from billing_engine.errors import NotificationDispatchFailure
from billing_engine.extensions import db
from billing_engine.models.notification import (
    NotificationKind, NotificationLog, NotificationOutcome,
)
from billing_engine.models.profile import EmailPreferences, UserProfile
from billing_engine.models.usage import DailyUsage
from billing_engine.plans import get_plan_limits
from billing_engine.services.quota_ledger import percentage_used, thresholds_reached
from billing_engine.utils.email import send_email
from billing_engine.utils.timeutil import utctoday

logger = logging.getLogger(__name__)

# Preference flag that gates each kind (None = always allowed)
PREFERENCE_FOR_KIND = {
    NotificationKind.QUOTA_WARNING_80: 'quota_warnings',
    NotificationKind.QUOTA_WARNING_100: 'quota_warnings',
    NotificationKind.SUBSCRIPTION_CONFIRMATION: 'subscription_updates',
    NotificationKind.SUBSCRIPTION_CANCELLATION: 'subscription_updates',
    NotificationKind.WELCOME: None,
}


class NotificationScheduler:
    """Once-per-day notification gate in front of the email transport.

    Args:
        sender: ``send_email(kind, recipient, template_data) -> bool``
        dispatcher: Optional ``dispatcher(func, *args)`` that runs delivery in
            the background. Without one, delivery runs inline.
    """

    def __init__(self, sender: Callable = send_email, dispatcher: Optional[Callable] = None):
        self._sender = sender
        self._dispatcher = dispatcher

    def should_notify(self, user_id: str, kind, day: Optional[date] = None) -> bool:
        return not NotificationLog.already_handled(user_id, kind, day or utctoday())

    def mark_notified(self, user_id: str, kind, day: Optional[date] = None,
                      outcome: NotificationOutcome = NotificationOutcome.SENT) -> bool:
        """Record (user, kind, day) as handled. True if this call created the record."""
        created = NotificationLog.claim(user_id, kind, day or utctoday(), outcome)
        db.session.commit()
        return created

    def notify(self, profile: UserProfile, kind: NotificationKind, day: Optional[date] = None,
               template_data: Optional[dict] = None,
               background: bool = True) -> Optional[NotificationOutcome]:
        """Send `kind` to the user unless it was already handled today.

        Args:
            background: Hand delivery to the dispatcher when one is set.
                Batch callers pass False to get the final outcome back.

        Returns:
            The recorded outcome (PENDING when handed to the background
            dispatcher), or None if the notification was already handled.
        """
        day = day or utctoday()
        kind = NotificationKind(kind)

        try:
            if not self.mark_notified(profile.id, kind, day, NotificationOutcome.PENDING):
                logger.debug('%s for user %s already handled on %s', kind.value, profile.id, day)
                return None

            preference = PREFERENCE_FOR_KIND.get(kind)
            allowed = preference is None or EmailPreferences.get_or_create(profile.id).allows(preference)
            db.session.commit()
            if not allowed:
                logger.info('%s for user %s skipped: %s disabled', kind.value, profile.id, preference)
                self._record(profile.id, kind, day, NotificationOutcome.SKIPPED)
                return NotificationOutcome.SKIPPED
        except SQLAlchemyError as e:
            db.session.rollback()
            logger.error('Could not schedule %s for user %s: %s', kind.value, profile.id, e)
            return None

        context = {
            'user_name': profile.display_name,
            'plan': profile.plan.value,
        }
        context.update(template_data or {})

        if background and self._dispatcher is not None:
            self._dispatcher(self._deliver, profile.id, profile.email, kind, day, context)
            return NotificationOutcome.PENDING
        return self._deliver(profile.id, profile.email, kind, day, context)

    def _deliver(self, user_id, recipient, kind, day, context):
        try:
            sent = self._sender(kind.value, recipient, context)
        except Exception as e:
            logger.error(str(NotificationDispatchFailure(kind.value, recipient, e)))
            sent = False
        else:
            if not sent:
                logger.error(str(NotificationDispatchFailure(kind.value, recipient)))
        outcome = NotificationOutcome.SENT if sent else NotificationOutcome.FAILED

        try:
            self._record(user_id, kind, day, outcome)
        except SQLAlchemyError as e:
            db.session.rollback()
            logger.error('Could not record %s outcome for user %s: %s', kind.value, user_id, e)
        return outcome

    @staticmethod
    def _record(user_id, kind, day, outcome):
        entry = NotificationLog.get(user_id, kind, day)
        if entry is not None:
            entry.outcome = outcome
            db.session.commit()

    # ── Periodic sweep ──────────────────────────────────────

    def sweep_quota_warnings(self, day: Optional[date] = None) -> dict:
        """Send any quota warning due for users with usage on `day`.

        Deliveries run inline, one at a time, so the summary reflects what
        the transport actually did.

        Returns:
            dict with users_checked, warnings_sent and errors (messages)
        """
        day = day or utctoday()
        stats = {'users_checked': 0, 'warnings_sent': 0, 'errors': []}

        rows = db.session.query(DailyUsage.user_id, DailyUsage.count).filter(
            DailyUsage.usage_date == day,
            DailyUsage.count > 0,
        ).order_by(DailyUsage.user_id).all()

        for user_id, count in rows:
            stats['users_checked'] += 1
            profile = db.session.get(UserProfile, user_id)
            if profile is None:
                continue
            limit = get_plan_limits(profile.plan.value).daily_quota

            for kind in thresholds_reached(count, limit):
                outcome = self.notify(
                    profile, kind, day, quota_template_data(profile, count, limit), background=False,
                )
                if outcome == NotificationOutcome.SENT:
                    stats['warnings_sent'] += 1
                elif outcome == NotificationOutcome.FAILED:
                    stats['errors'].append(f'Failed to send {kind.value} to user {user_id}')

        logger.info(
            'Quota warning sweep for %s: %d users checked, %d warnings sent, %d errors',
            day, stats['users_checked'], stats['warnings_sent'], len(stats['errors']),
        )
        return stats


def quota_template_data(profile, count, limit):
    """Template context for quota warning emails."""
    limits = get_plan_limits(profile.plan.value)
    return {
        'current_usage': count,
        'daily_limit': limit,
        'percentage': percentage_used(count, limit),
        'plan_name': limits.display_name,
    }
