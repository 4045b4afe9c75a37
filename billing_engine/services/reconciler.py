"""
Subscription reconciler.

Applies verified billing events to subscription records and keeps each
profile's plan equal to the projection of its subscriptions. The reconciler
only flushes; the webhook service owns the transaction.
"""
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import List, Optional

from billing_engine.extensions import db
from billing_engine.models.notification import NotificationKind
from billing_engine.models.profile import UserProfile
from billing_engine.models.subscription import (
    ENTITLED_STATUSES, Subscription, SubscriptionPlan, SubscriptionStatus,
)
from billing_engine.plans import get_plan_limits, plan_for_price_id
from billing_engine.services.event_verifier import (
    CheckoutCompleted, SubscriptionDeleted, SubscriptionUpdated, UnsupportedEvent,
)
from billing_engine.utils.timeutil import isoformat_utc

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PendingNotification:
    """Email to dispatch once the reconciliation has committed."""
    user_id: str
    kind: NotificationKind
    template_data: dict


@dataclass
class ReconcileResult:
    APPLIED = 'applied'
    STALE = 'stale'
    IGNORED = 'ignored'

    outcome: str
    subscription_id: Optional[str] = None
    notifications: List[PendingNotification] = field(default_factory=list)


class SubscriptionReconciler:
    """State machine from billing events to subscription and plan state."""

    def apply(self, event) -> ReconcileResult:
        if isinstance(event, CheckoutCompleted):
            return self._apply_checkout(event)
        if isinstance(event, SubscriptionUpdated):
            return self._apply_updated(event)
        if isinstance(event, SubscriptionDeleted):
            return self._apply_deleted(event)
        if isinstance(event, UnsupportedEvent):
            logger.info('Ignoring %s (%s): %s', event.event_type, event.event_id, event.reason)
            return ReconcileResult(ReconcileResult.IGNORED)
        raise TypeError(f'Unknown billing event: {type(event).__name__}')

    # ── Transitions ─────────────────────────────────────────

    def _apply_checkout(self, event: CheckoutCompleted) -> ReconcileResult:
        profile = db.session.get(UserProfile, event.user_id)
        if profile is None:
            logger.warning(
                'Checkout %s completed for unknown user_id=%s', event.event_id, event.user_id,
            )
            return ReconcileResult(ReconcileResult.IGNORED, event.subscription_id)

        record = self._find(event.subscription_id)
        if record is not None:
            # Duplicate checkout for a known subscription: treat as an update
            if self._rejects(record, event.period_end, event.created, event.event_id):
                return ReconcileResult(ReconcileResult.STALE, record.stripe_subscription_id)
            self._adopt_customer(profile, event.customer_id)
            self._assign(
                record,
                plan=event.plan,
                status=event.status,
                period_start=event.period_start,
                period_end=event.period_end,
                cancel_at_period_end=event.cancel_at_period_end,
                price_id=event.price_id,
                created=event.created,
            )
            self.project_plan(record.user)
            return ReconcileResult(ReconcileResult.APPLIED, record.stripe_subscription_id)

        record = Subscription(
            stripe_subscription_id=event.subscription_id,
            user_id=profile.id,
            plan=SubscriptionPlan(event.plan),
            status=SubscriptionStatus(event.status),
            stripe_price_id=event.price_id,
            current_period_start=event.period_start,
            current_period_end=event.period_end,
            cancel_at_period_end=event.cancel_at_period_end,
            last_event_at=event.created,
        )
        self._adopt_customer(profile, event.customer_id)
        db.session.add(record)
        db.session.flush()
        plan = self.project_plan(profile)
        logger.info('%s activated for user %s (%s)', event.plan, profile.id, event.subscription_id)

        limits = get_plan_limits(event.plan)
        notification = PendingNotification(
            user_id=profile.id,
            kind=NotificationKind.SUBSCRIPTION_CONFIRMATION,
            template_data={
                'plan_name': limits.display_name,
                'features': list(limits.features),
                'amount': _format_amount(event.amount),
                'next_billing_date': isoformat_utc(event.period_end),
                'current_plan': plan.value,
            },
        )
        return ReconcileResult(ReconcileResult.APPLIED, event.subscription_id, [notification])

    def _apply_updated(self, event: SubscriptionUpdated) -> ReconcileResult:
        record = self._find(event.subscription_id)
        if record is None:
            logger.warning(
                'Subscription update %s for unknown subscription %s',
                event.event_id, event.subscription_id,
            )
            return ReconcileResult(ReconcileResult.IGNORED, event.subscription_id)

        if self._rejects(record, event.period_end, event.created, event.event_id):
            return ReconcileResult(ReconcileResult.STALE, record.stripe_subscription_id)

        plan = event.plan or plan_for_price_id(event.price_id) or record.plan.value
        self._assign(
            record,
            plan=plan,
            status=event.status,
            period_start=event.period_start,
            period_end=event.period_end,
            cancel_at_period_end=event.cancel_at_period_end,
            price_id=event.price_id,
            created=event.created,
        )
        self.project_plan(record.user)
        logger.info(
            'Subscription %s updated: status=%s plan=%s',
            record.stripe_subscription_id, record.status.value, record.plan.value,
        )
        return ReconcileResult(ReconcileResult.APPLIED, record.stripe_subscription_id)

    def _apply_deleted(self, event: SubscriptionDeleted) -> ReconcileResult:
        record = self._find(event.subscription_id)
        if record is None:
            logger.warning(
                'Subscription deletion %s for unknown subscription %s',
                event.event_id, event.subscription_id,
            )
            return ReconcileResult(ReconcileResult.IGNORED, event.subscription_id)

        # Deletion is final and always applies, whatever its ordering
        record.status = SubscriptionStatus.CANCELED
        record.cancel_at_period_end = False
        if event.period_end is not None:
            record.current_period_end = event.period_end
        if record.last_event_at is None or event.created > record.last_event_at:
            record.last_event_at = event.created
        db.session.flush()

        profile = record.user
        plan = self.project_plan(profile)
        logger.info('Subscription %s canceled for user %s', record.stripe_subscription_id, profile.id)

        notification = PendingNotification(
            user_id=profile.id,
            kind=NotificationKind.SUBSCRIPTION_CANCELLATION,
            template_data={
                'plan_name': get_plan_limits(record.plan.value).display_name,
                'cancellation_date': isoformat_utc(record.current_period_end),
                'current_plan': plan.value,
            },
        )
        return ReconcileResult(ReconcileResult.APPLIED, record.stripe_subscription_id, [notification])

    # ── Projection ──────────────────────────────────────────

    def project_plan(self, profile: UserProfile) -> SubscriptionPlan:
        """Set profile.plan from the user's entitled subscription with the latest period end."""
        best = Subscription.query.filter(
            Subscription.user_id == profile.id,
            Subscription.status.in_(ENTITLED_STATUSES),
        ).order_by(
            Subscription.current_period_end.desc().nullslast(),
            Subscription.id.desc(),
        ).first()

        plan = best.plan if best is not None else SubscriptionPlan.FREE
        if profile.plan != plan:
            logger.info('Plan for user %s: %s -> %s', profile.id, profile.plan.value, plan.value)
            profile.plan = plan
        db.session.flush()
        return plan

    # ── Helpers ─────────────────────────────────────────────

    @staticmethod
    def _adopt_customer(profile, customer_id):
        # First customer id wins; portal sessions are opened against it
        if customer_id and not profile.stripe_customer_id:
            profile.stripe_customer_id = customer_id

    @staticmethod
    def _find(subscription_id) -> Optional[Subscription]:
        return Subscription.query.filter_by(stripe_subscription_id=subscription_id).first()

    def _rejects(self, record, period_end, created, event_id) -> bool:
        """True (and logged) if the event must not touch this record."""
        if record.is_canceled:
            logger.info(
                'Event %s ignored: subscription %s is already canceled',
                event_id, record.stripe_subscription_id,
            )
            return True
        if self.is_stale(record, period_end, created):
            logger.info(
                'Stale event %s for subscription %s discarded (period_end=%s, created=%s)',
                event_id, record.stripe_subscription_id, period_end, created,
            )
            return True
        return False

    @staticmethod
    def is_stale(record: Subscription, period_end: Optional[datetime], created: datetime) -> bool:
        """Compare (period_end, created) against what the record last applied."""
        stored_end = record.current_period_end or datetime.min
        stored_at = record.last_event_at or datetime.min
        incoming_end = period_end or stored_end
        return (incoming_end, created) < (stored_end, stored_at)

    @staticmethod
    def _assign(record, plan, status, period_start, period_end,
                cancel_at_period_end, price_id, created):
        record.plan = SubscriptionPlan(plan)
        record.status = SubscriptionStatus(status)
        if period_start is not None:
            record.current_period_start = period_start
        if period_end is not None:
            record.current_period_end = period_end
        record.cancel_at_period_end = cancel_at_period_end
        if price_id:
            record.stripe_price_id = price_id
        record.last_event_at = created
        db.session.flush()


def _format_amount(amount_cents):
    if amount_cents is None:
        return None
    return f'${amount_cents / 100:.2f}'
