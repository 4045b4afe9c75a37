"""
Error taxonomy for the billing engine.

Only failures are exceptions here. Duplicate and stale events, quota denials
and rate-limit denials are ordinary outcomes returned as values.
"""


class BillingEngineError(Exception):
    """Base class for billing engine errors."""


class VerificationError(BillingEngineError):
    """Inbound webhook failed authentication or could not be parsed.

    Terminal: the sender is told 400 and must not retry the same payload.
    """

    MISSING_SIGNATURE = 'missing_signature'
    SIGNATURE_MISMATCH = 'signature_mismatch'
    MALFORMED_PAYLOAD = 'malformed_payload'

    def __init__(self, reason: str, message: str = None):
        self.reason = reason
        super().__init__(message or reason)


class ReconciliationFailure(BillingEngineError):
    """The store rejected the webhook unit of work.

    Transient: the transaction (idempotency claim included) was rolled back,
    so the provider's redelivery of the same event id is processed afresh.
    """

    def __init__(self, event_id: str, event_type: str, cause: Exception = None):
        self.event_id = event_id
        self.event_type = event_type
        self.cause = cause
        super().__init__(
            f"Reconciliation failed for {event_type} ({event_id}): "
            f"{type(cause).__name__ if cause else 'unknown error'}"
        )


class NotificationDispatchFailure(BillingEngineError):
    """Email transport could not deliver a notification. Logged, never propagated."""

    def __init__(self, kind: str, recipient: str, cause: Exception = None):
        self.kind = kind
        self.recipient = recipient
        self.cause = cause
        super().__init__(f"Failed to send {kind} to {recipient}: {cause}")


class QuotaStoreUnavailable(BillingEngineError):
    """Usage counters could not be read. Surfaces as 503."""

    def __init__(self, user_id: str, cause: Exception = None):
        self.user_id = user_id
        self.cause = cause
        super().__init__(f"Quota store unavailable for user {user_id}")


class BillingRequestError(BillingEngineError):
    """A checkout or portal request that cannot be served, with its HTTP mapping."""

    def __init__(self, code: str, message: str, status: int = 400, details: dict = None):
        self.code = code
        self.message = message
        self.status = status
        self.details = details
        super().__init__(message)
