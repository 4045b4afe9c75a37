"""
Daily usage counters for quota enforcement.
One row per user per UTC day; the date in the key makes counters roll over.
"""
from billing_engine.extensions import db
from billing_engine.utils.timeutil import utcnow


class DailyUsage(db.Model):
    """Metered operations consumed by a user on one UTC day."""

    __tablename__ = 'daily_usage'

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(
        db.String(36),
        db.ForeignKey('profiles.id', ondelete='CASCADE'),
        nullable=False,
        index=True,
    )
    usage_date = db.Column(db.Date, nullable=False, index=True)
    count = db.Column(db.Integer, nullable=False, default=0)

    created_at = db.Column(db.DateTime, nullable=False, default=utcnow)
    updated_at = db.Column(db.DateTime, nullable=True, onupdate=utcnow)

    __table_args__ = (
        db.UniqueConstraint('user_id', 'usage_date', name='uq_daily_usage_user_date'),
        db.CheckConstraint('count >= 0', name='ck_daily_usage_count_nonnegative'),
    )

    user = db.relationship(
        'UserProfile',
        backref=db.backref('daily_usage', lazy='dynamic', cascade='all, delete-orphan'),
    )

    @classmethod
    def current_count(cls, user_id, day):
        """Count for (user, day); 0 when no row exists yet."""
        row = cls.query.filter_by(user_id=user_id, usage_date=day).first()
        return row.count if row else 0

    def __repr__(self):
        return f'<DailyUsage user={self.user_id} date={self.usage_date} count={self.count}>'
