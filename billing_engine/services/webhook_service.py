"""
Webhook pipeline: verify, claim, reconcile, commit, then notify.
"""
import logging
from dataclasses import dataclass

from sqlalchemy.exc import SQLAlchemyError

from billing_engine.errors import ReconciliationFailure
from billing_engine.extensions import db
from billing_engine.models.profile import UserProfile
from billing_engine.services.event_verifier import event_type_of
from billing_engine.services.idempotency import AlreadyProcessed
from billing_engine.services.reconciler import ReconcileResult

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class WebhookOutcome:
    PROCESSED = 'processed'
    DUPLICATE = 'duplicate'
    STALE = 'stale'
    IGNORED = 'ignored'

    status: str
    event_id: str
    event_type: str

    def to_dict(self):
        return {'received': True, 'status': self.status, 'event_id': self.event_id}


_RESULT_STATUS = {
    ReconcileResult.APPLIED: WebhookOutcome.PROCESSED,
    ReconcileResult.STALE: WebhookOutcome.STALE,
    ReconcileResult.IGNORED: WebhookOutcome.IGNORED,
}


class WebhookService:
    """Processes one Stripe delivery as a single unit of work.

    The idempotency claim, subscription changes and plan projection commit
    together. Any store failure rolls all of them back and is reported as
    ReconciliationFailure, so Stripe's redelivery of the same event id is
    processed from scratch. Emails go out only after the commit.
    """

    def __init__(self, verifier, ledger, reconciler, scheduler):
        self.verifier = verifier
        self.ledger = ledger
        self.reconciler = reconciler
        self.scheduler = scheduler

    def handle(self, raw_body: bytes, signature_header) -> WebhookOutcome:
        """
        Raises:
            VerificationError: delivery is not authentic or not parseable (400)
            ReconciliationFailure: transient failure, safe to redeliver (500)
        """
        event = self.verifier.verify(raw_body, signature_header)
        event_type = event_type_of(event)

        try:
            claim = self.ledger.claim(event.event_id, event_type)
            if isinstance(claim, AlreadyProcessed):
                db.session.rollback()
                logger.info('Duplicate delivery of %s (%s) acknowledged', event.event_id, event_type)
                return WebhookOutcome(WebhookOutcome.DUPLICATE, event.event_id, event_type)

            result = self.reconciler.apply(event)
            db.session.commit()
        except SQLAlchemyError as e:
            db.session.rollback()
            logger.error('Webhook %s (%s) rolled back: %s', event.event_id, event_type, e)
            raise ReconciliationFailure(event.event_id, event_type, e)

        self._dispatch(result.notifications)
        return WebhookOutcome(_RESULT_STATUS[result.outcome], event.event_id, event_type)

    def _dispatch(self, notifications):
        for pending in notifications:
            try:
                profile = db.session.get(UserProfile, pending.user_id)
                if profile is None:
                    continue
                self.scheduler.notify(profile, pending.kind, template_data=pending.template_data)
            except Exception:
                # State is committed; a lost email must not turn into a redelivery
                db.session.rollback()
                logger.exception('Post-commit %s for user %s failed', pending.kind.value, pending.user_id)
