"""
Idempotency ledger for webhook deliveries.
"""
from dataclasses import dataclass
from typing import Union

from billing_engine.models.webhook_event import ProcessedWebhookEvent
from billing_engine.utils.db import insert_ignore


@dataclass(frozen=True)
class Claimed:
    event_id: str


@dataclass(frozen=True)
class AlreadyProcessed:
    event_id: str


ClaimResult = Union[Claimed, AlreadyProcessed]


class IdempotencyLedger:
    """Claims Stripe event ids inside the caller's transaction.

    The claim must be the first write of the webhook unit of work: it commits
    together with the reconciliation, or rolls back with it so the provider's
    redelivery can claim the id again. A concurrent delivery of the same id
    blocks on the key until the first transaction finishes, then sees it.
    """

    def claim(self, event_id: str, event_type: str) -> ClaimResult:
        created = insert_ignore(
            ProcessedWebhookEvent,
            ['event_id'],
            event_id=event_id,
            event_type=event_type,
        )
        if created:
            return Claimed(event_id)
        return AlreadyProcessed(event_id)

    def is_processed(self, event_id: str) -> bool:
        return ProcessedWebhookEvent.exists(event_id)
