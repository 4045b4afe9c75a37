"""
User profile and email preferences.
The profile carries the plan entitlement projected from subscription records.
"""
import uuid

from billing_engine.extensions import db
from billing_engine.models.subscription import SubscriptionPlan
from billing_engine.utils.db import insert_ignore
from billing_engine.utils.timeutil import utcnow


class UserProfile(db.Model):
    """Application user as seen by the billing engine."""

    __tablename__ = 'profiles'

    id = db.Column(db.String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    email = db.Column(db.String(255), unique=True, nullable=False, index=True)
    full_name = db.Column(db.String(255), nullable=True)

    # Entitlement projection (see SubscriptionReconciler.project_plan)
    plan = db.Column(
        db.Enum(SubscriptionPlan, name='subscription_plan',
                values_callable=lambda x: [e.value for e in x]),
        nullable=False,
        default=SubscriptionPlan.FREE,
    )

    # Stripe billing
    stripe_customer_id = db.Column(db.String(255), unique=True, nullable=True)

    created_at = db.Column(db.DateTime, nullable=False, default=utcnow)
    updated_at = db.Column(db.DateTime, nullable=True, onupdate=utcnow)

    # Relationships
    subscriptions = db.relationship(
        'Subscription',
        back_populates='user',
        lazy='dynamic',
        cascade='all, delete-orphan',
    )
    email_preferences = db.relationship(
        'EmailPreferences',
        back_populates='user',
        uselist=False,
        cascade='all, delete-orphan',
    )

    def __repr__(self):
        return f'<UserProfile {self.email} plan={self.plan.value}>'

    @property
    def display_name(self):
        """Name used in emails."""
        if self.full_name:
            return self.full_name
        return self.email.split('@')[0]

    @property
    def is_paid(self):
        return self.plan != SubscriptionPlan.FREE

    def to_dict(self):
        """Serialize profile to dict."""
        return {
            'id': self.id,
            'email': self.email,
            'full_name': self.full_name,
            'plan': self.plan.value,
            'has_billing_account': self.stripe_customer_id is not None,
        }


class EmailPreferences(db.Model):
    """Per-user email opt-outs. All categories default to enabled."""

    __tablename__ = 'email_preferences'

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(
        db.String(36),
        db.ForeignKey('profiles.id', ondelete='CASCADE'),
        unique=True,
        nullable=False,
    )
    marketing_emails = db.Column(db.Boolean, nullable=False, default=True)
    quota_warnings = db.Column(db.Boolean, nullable=False, default=True)
    subscription_updates = db.Column(db.Boolean, nullable=False, default=True)

    created_at = db.Column(db.DateTime, nullable=False, default=utcnow)
    updated_at = db.Column(db.DateTime, nullable=True, onupdate=utcnow)

    user = db.relationship('UserProfile', back_populates='email_preferences')

    @classmethod
    def get_or_create(cls, user_id):
        """Return the user's preferences, creating the default row on first read."""
        prefs = cls.query.filter_by(user_id=user_id).first()
        if prefs is None:
            insert_ignore(cls, ['user_id'], user_id=user_id)
            prefs = cls.query.filter_by(user_id=user_id).one()
        return prefs

    def allows(self, preference_name):
        """Check a preference flag by name. Unknown names are allowed."""
        return bool(getattr(self, preference_name, True))

    def to_dict(self):
        return {
            'marketing_emails': self.marketing_emails,
            'quota_warnings': self.quota_warnings,
            'subscription_updates': self.subscription_updates,
        }

    def __repr__(self):
        return f'<EmailPreferences user={self.user_id}>'
