"""
Ledger of processed Stripe webhook events.
The primary key on the Stripe event id is what makes redelivery a no-op.
"""
from billing_engine.extensions import db
from billing_engine.utils.timeutil import utcnow


class ProcessedWebhookEvent(db.Model):
    """A Stripe event that has been claimed by a committed webhook transaction."""

    __tablename__ = 'processed_webhook_events'

    event_id = db.Column(db.String(255), primary_key=True)
    event_type = db.Column(db.String(100), nullable=False)
    processed_at = db.Column(db.DateTime, nullable=False, default=utcnow)

    @classmethod
    def exists(cls, event_id):
        return db.session.get(cls, event_id) is not None

    def __repr__(self):
        return f'<ProcessedWebhookEvent {self.event_id} {self.event_type}>'
