"""
Subscription record: the engine's durable copy of a Stripe subscription.
Created on the first checkout, updated in place, retired as canceled (never deleted).
"""
import enum

from billing_engine.extensions import db
from billing_engine.utils.timeutil import utcnow, isoformat_utc


class SubscriptionPlan(str, enum.Enum):
    """Available subscription plans."""
    FREE = 'free'
    PREMIUM = 'premium'
    PRO = 'pro'


class SubscriptionStatus(str, enum.Enum):
    """Engine subscription statuses (Stripe statuses are folded onto these)."""
    ACTIVE = 'active'
    PAST_DUE = 'past_due'
    INCOMPLETE = 'incomplete'
    CANCELED = 'canceled'


# Statuses that still grant the subscribed plan (past_due/incomplete = grace period)
ENTITLED_STATUSES = (
    SubscriptionStatus.ACTIVE,
    SubscriptionStatus.PAST_DUE,
    SubscriptionStatus.INCOMPLETE,
)


class Subscription(db.Model):
    """One Stripe subscription owned by a user."""

    __tablename__ = 'subscriptions'

    id = db.Column(db.Integer, primary_key=True)
    stripe_subscription_id = db.Column(
        db.String(255), unique=True, nullable=False, index=True,
    )
    # Not unique: a user may hold a canceled record next to a live one
    user_id = db.Column(
        db.String(36),
        db.ForeignKey('profiles.id', ondelete='CASCADE'),
        nullable=False,
        index=True,
    )

    plan = db.Column(
        db.Enum(SubscriptionPlan, name='subscription_plan',
                values_callable=lambda x: [e.value for e in x]),
        nullable=False,
        default=SubscriptionPlan.FREE,
    )
    status = db.Column(
        db.Enum(SubscriptionStatus, name='subscription_status',
                values_callable=lambda x: [e.value for e in x]),
        nullable=False,
        default=SubscriptionStatus.ACTIVE,
    )
    stripe_price_id = db.Column(db.String(255), nullable=True)

    # Billing period
    current_period_start = db.Column(db.DateTime, nullable=True)
    current_period_end = db.Column(db.DateTime, nullable=True)
    cancel_at_period_end = db.Column(db.Boolean, nullable=False, default=False)

    # `created` of the last applied Stripe event (staleness tie-breaker)
    last_event_at = db.Column(db.DateTime, nullable=True)

    # Timestamps
    created_at = db.Column(db.DateTime, nullable=False, default=utcnow)
    updated_at = db.Column(db.DateTime, nullable=True, onupdate=utcnow)

    # Relationships
    user = db.relationship('UserProfile', back_populates='subscriptions')

    def __repr__(self):
        return (
            f'<Subscription {self.stripe_subscription_id} user={self.user_id} '
            f'plan={self.plan.value} status={self.status.value}>'
        )

    @property
    def is_entitled(self):
        """Whether this record still grants its plan."""
        return self.status in ENTITLED_STATUSES

    @property
    def is_canceled(self):
        return self.status == SubscriptionStatus.CANCELED

    def to_dict(self):
        """Serialize subscription to dict."""
        return {
            'stripe_subscription_id': self.stripe_subscription_id,
            'plan': self.plan.value,
            'status': self.status.value,
            'current_period_start': isoformat_utc(self.current_period_start),
            'current_period_end': isoformat_utc(self.current_period_end),
            'cancel_at_period_end': self.cancel_at_period_end,
        }
