"""
Notification suppression log.
Prevents the same email kind being sent to a user more than once per day.
"""
import enum

from billing_engine.extensions import db
from billing_engine.utils.db import insert_ignore
from billing_engine.utils.timeutil import utcnow


class NotificationKind(str, enum.Enum):
    """Emails the engine can send."""
    QUOTA_WARNING_80 = 'quota_warning_80'
    QUOTA_WARNING_100 = 'quota_warning_100'
    WELCOME = 'welcome'
    SUBSCRIPTION_CONFIRMATION = 'subscription_confirmation'
    SUBSCRIPTION_CANCELLATION = 'subscription_cancellation'


class NotificationOutcome(str, enum.Enum):
    PENDING = 'pending'
    SENT = 'sent'
    SKIPPED = 'skipped'
    FAILED = 'failed'


class NotificationLog(db.Model):
    """Track handled notifications to avoid duplicates."""

    __tablename__ = 'notification_log'

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(
        db.String(36),
        db.ForeignKey('profiles.id', ondelete='CASCADE'),
        nullable=False,
        index=True,
    )
    kind = db.Column(db.String(40), nullable=False)
    notify_date = db.Column(db.Date, nullable=False)
    outcome = db.Column(
        db.Enum(NotificationOutcome, name='notification_outcome',
                values_callable=lambda x: [e.value for e in x]),
        nullable=False,
        default=NotificationOutcome.PENDING,
    )
    created_at = db.Column(db.DateTime, nullable=False, default=utcnow)
    updated_at = db.Column(db.DateTime, nullable=True, onupdate=utcnow)

    __table_args__ = (
        db.UniqueConstraint(
            'user_id', 'kind', 'notify_date',
            name='uq_notification_once'
        ),
    )

    user = db.relationship(
        'UserProfile',
        backref=db.backref('notifications', lazy='dynamic', cascade='all, delete-orphan'),
    )

    @classmethod
    def already_handled(cls, user_id, kind, day):
        """Check if this kind was already handled for the user today."""
        return cls.query.filter_by(
            user_id=user_id,
            kind=_kind_value(kind),
            notify_date=day,
        ).first() is not None

    @classmethod
    def claim(cls, user_id, kind, day, outcome=NotificationOutcome.PENDING):
        """Insert the (user, kind, day) record unless present. True if created here."""
        return insert_ignore(
            cls,
            ['user_id', 'kind', 'notify_date'],
            user_id=user_id,
            kind=_kind_value(kind),
            notify_date=day,
            outcome=outcome,
        )

    @classmethod
    def get(cls, user_id, kind, day):
        return cls.query.filter_by(
            user_id=user_id,
            kind=_kind_value(kind),
            notify_date=day,
        ).first()

    def __repr__(self):
        return f'<NotificationLog {self.kind} user={self.user_id} date={self.notify_date} {self.outcome.value}>'


def _kind_value(kind):
    return kind.value if isinstance(kind, NotificationKind) else kind
