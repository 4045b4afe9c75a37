"""
Stripe webhook verification and parsing.

Authenticates the raw request body against the webhook signing secret and
turns the Stripe event into one of a closed set of typed events. Nothing
downstream ever sees an unverified or untyped payload.
"""
import json
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Optional, Union

import stripe
from marshmallow import EXCLUDE, Schema, ValidationError, fields

from billing_engine.errors import ReconciliationFailure, VerificationError
from billing_engine.plans import PAID_PLANS
from billing_engine.utils.timeutil import from_epoch

logger = logging.getLogger(__name__)

DEFAULT_TOLERANCE = 300

CHECKOUT_COMPLETED = 'checkout.session.completed'
SUBSCRIPTION_UPDATED = 'customer.subscription.updated'
SUBSCRIPTION_DELETED = 'customer.subscription.deleted'

# Stripe subscription status -> engine status
STATUS_MAP = {
    'active': 'active',
    'trialing': 'active',
    'past_due': 'past_due',
    'unpaid': 'past_due',
    'incomplete': 'incomplete',
    'canceled': 'canceled',
    'incomplete_expired': 'canceled',
}


# ── Typed events ────────────────────────────────────────────

@dataclass(frozen=True)
class CheckoutCompleted:
    event_id: str
    created: datetime
    user_id: str
    plan: str
    subscription_id: str
    customer_id: Optional[str]
    period_start: Optional[datetime]
    period_end: Optional[datetime]
    cancel_at_period_end: bool
    price_id: Optional[str]
    amount: Optional[int]
    status: str = 'active'


@dataclass(frozen=True)
class SubscriptionUpdated:
    event_id: str
    created: datetime
    subscription_id: str
    customer_id: Optional[str]
    status: str
    plan: Optional[str]
    period_start: Optional[datetime]
    period_end: Optional[datetime]
    cancel_at_period_end: bool
    price_id: Optional[str]


@dataclass(frozen=True)
class SubscriptionDeleted:
    event_id: str
    created: datetime
    subscription_id: str
    period_end: Optional[datetime]


@dataclass(frozen=True)
class UnsupportedEvent:
    event_id: str
    created: datetime
    event_type: str
    reason: str


BillingEvent = Union[CheckoutCompleted, SubscriptionUpdated, SubscriptionDeleted, UnsupportedEvent]


# ── Payload schemas ─────────────────────────────────────────

class StripeSchema(Schema):
    """Stripe objects carry many more fields than we read."""
    class Meta:
        unknown = EXCLUDE


class EventDataSchema(StripeSchema):
    object = fields.Dict(required=True)


class EventEnvelopeSchema(StripeSchema):
    id = fields.Str(required=True)
    type = fields.Str(required=True)
    created = fields.Int(required=True)
    data = fields.Nested(EventDataSchema, required=True)


class CheckoutSessionSchema(StripeSchema):
    id = fields.Str(required=True)
    mode = fields.Str(load_default=None, allow_none=True)
    # id string, or the expanded object
    customer = fields.Raw(load_default=None, allow_none=True)
    subscription = fields.Raw(load_default=None, allow_none=True)
    metadata = fields.Dict(load_default=dict, allow_none=True)
    amount_total = fields.Int(load_default=None, allow_none=True)


class SubscriptionObjectSchema(StripeSchema):
    id = fields.Str(required=True)
    customer = fields.Raw(load_default=None, allow_none=True)
    status = fields.Str(required=True)
    cancel_at_period_end = fields.Bool(load_default=False, allow_none=True)
    current_period_start = fields.Int(load_default=None, allow_none=True)
    current_period_end = fields.Int(load_default=None, allow_none=True)
    ended_at = fields.Int(load_default=None, allow_none=True)
    items = fields.Dict(load_default=dict, allow_none=True)
    metadata = fields.Dict(load_default=dict, allow_none=True)


_envelope_schema = EventEnvelopeSchema()
_checkout_schema = CheckoutSessionSchema()
_subscription_schema = SubscriptionObjectSchema()


# ── Verifier ────────────────────────────────────────────────

class EventVerifier:
    """Verify Stripe webhook deliveries and parse them into typed events.

    Args:
        secret: Webhook signing secret (whsec_...)
        tolerance: Maximum age in seconds of the signed timestamp
        retrieve_subscription: Callable used to fetch a subscription that a
            checkout session references by id only. Defaults to the Stripe API.
    """

    def __init__(self, secret: str, tolerance: int = DEFAULT_TOLERANCE,
                 retrieve_subscription: Optional[Callable[[str], dict]] = None):
        self.secret = secret
        self.tolerance = tolerance
        self._retrieve_subscription = retrieve_subscription or _retrieve_from_stripe

    def verify(self, raw_body: bytes, signature_header: Optional[str]) -> BillingEvent:
        """Authenticate and parse one webhook delivery.

        Raises:
            VerificationError: missing_signature, signature_mismatch or malformed_payload
            ReconciliationFailure: referenced subscription could not be fetched
        """
        if not signature_header:
            raise VerificationError(VerificationError.MISSING_SIGNATURE, 'Stripe-Signature header missing')

        try:
            payload = raw_body.decode('utf-8') if isinstance(raw_body, bytes) else raw_body
        except UnicodeDecodeError:
            raise VerificationError(VerificationError.MALFORMED_PAYLOAD, 'Payload is not UTF-8')

        # Signature is computed over the exact bytes received
        try:
            stripe.WebhookSignature.verify_header(
                payload, signature_header, self.secret, self.tolerance,
            )
        except stripe.SignatureVerificationError as e:
            raise VerificationError(VerificationError.SIGNATURE_MISMATCH, str(e))

        try:
            document = json.loads(payload)
            envelope = _envelope_schema.load(document)
        except (ValueError, ValidationError) as e:
            raise VerificationError(VerificationError.MALFORMED_PAYLOAD, f'Invalid event payload: {e}')

        return self.parse(envelope)

    def parse(self, envelope: dict) -> BillingEvent:
        """Map a validated event envelope onto the typed event union."""
        event_id = envelope['id']
        event_type = envelope['type']
        created = from_epoch(envelope['created'])
        obj = envelope['data']['object']

        try:
            if event_type == CHECKOUT_COMPLETED:
                return self._parse_checkout(event_id, created, obj)
            if event_type == SUBSCRIPTION_UPDATED:
                return self._parse_subscription_updated(event_id, created, obj)
            if event_type == SUBSCRIPTION_DELETED:
                return self._parse_subscription_deleted(event_id, created, obj)
        except ValidationError as e:
            raise VerificationError(
                VerificationError.MALFORMED_PAYLOAD,
                f'Invalid {event_type} object: {e.messages}',
            )

        return UnsupportedEvent(event_id, created, event_type, 'unhandled_event_type')

    def _parse_checkout(self, event_id, created, obj):
        session = _checkout_schema.load(obj)
        metadata = session['metadata'] or {}
        user_id = metadata.get('user_id')
        plan = metadata.get('plan')

        if not user_id:
            return UnsupportedEvent(event_id, created, CHECKOUT_COMPLETED, 'missing_user_id')
        if plan not in PAID_PLANS:
            return UnsupportedEvent(event_id, created, CHECKOUT_COMPLETED, 'unknown_plan')
        if not session['subscription']:
            return UnsupportedEvent(event_id, created, CHECKOUT_COMPLETED, 'no_subscription')

        subscription = session['subscription']
        if isinstance(subscription, str):
            try:
                subscription = self._retrieve_subscription(subscription)
            except stripe.StripeError as e:
                logger.error('Could not fetch subscription %s for %s: %s', subscription, event_id, e)
                raise ReconciliationFailure(event_id, CHECKOUT_COMPLETED, e)
        sub = _subscription_schema.load(subscription)
        period_start, period_end = _period_bounds(sub)

        return CheckoutCompleted(
            event_id=event_id,
            created=created,
            user_id=str(user_id),
            plan=plan,
            subscription_id=sub['id'],
            customer_id=_object_id(session['customer']) or _object_id(sub['customer']),
            period_start=period_start,
            period_end=period_end,
            cancel_at_period_end=bool(sub['cancel_at_period_end']),
            price_id=_first_price_id(sub),
            amount=session['amount_total'],
            status=_checkout_status(sub['status']),
        )

    def _parse_subscription_updated(self, event_id, created, obj):
        sub = _subscription_schema.load(obj)
        status = STATUS_MAP.get(sub['status'])
        if status is None:
            return UnsupportedEvent(event_id, created, SUBSCRIPTION_UPDATED, f"unknown_status:{sub['status']}")

        plan = (sub['metadata'] or {}).get('plan')
        period_start, period_end = _period_bounds(sub)
        return SubscriptionUpdated(
            event_id=event_id,
            created=created,
            subscription_id=sub['id'],
            customer_id=_object_id(sub['customer']),
            status=status,
            plan=plan if plan in PAID_PLANS else None,
            period_start=period_start,
            period_end=period_end,
            cancel_at_period_end=bool(sub['cancel_at_period_end']),
            price_id=_first_price_id(sub),
        )

    def _parse_subscription_deleted(self, event_id, created, obj):
        sub = _subscription_schema.load(obj)
        _, period_end = _period_bounds(sub)
        return SubscriptionDeleted(
            event_id=event_id,
            created=created,
            subscription_id=sub['id'],
            period_end=period_end,
        )


def verify(raw_body, signature_header, secret, tolerance=DEFAULT_TOLERANCE) -> BillingEvent:
    """Verify and parse a webhook delivery with a one-off verifier."""
    return EventVerifier(secret, tolerance).verify(raw_body, signature_header)


# ── Helpers ─────────────────────────────────────────────────

def _first_item(sub):
    items = sub.get('items') or {}
    data = items.get('data') or []
    return data[0] if data else {}


def _period_bounds(sub):
    """Billing period of a subscription.

    Newer Stripe API versions moved the period onto subscription items.
    """
    start = sub.get('current_period_start')
    end = sub.get('current_period_end')
    if start is None or end is None:
        item = _first_item(sub)
        start = start if start is not None else item.get('current_period_start')
        end = end if end is not None else item.get('current_period_end')
    return from_epoch(start), from_epoch(end)


def _first_price_id(sub):
    price = _first_item(sub).get('price')
    if isinstance(price, dict):
        return price.get('id')
    return price


def _object_id(value):
    """Stripe references are either an id string or an expanded object."""
    if isinstance(value, dict):
        return value.get('id')
    return value


def _retrieve_from_stripe(subscription_id):
    subscription = stripe.Subscription.retrieve(subscription_id)
    if isinstance(subscription, dict):
        return subscription
    # StripeObject renders itself as JSON
    return json.loads(str(subscription))


def event_type_of(event: BillingEvent) -> str:
    """Stripe event type string for a typed event."""
    if isinstance(event, UnsupportedEvent):
        return event.event_type
    return {
        CheckoutCompleted: CHECKOUT_COMPLETED,
        SubscriptionUpdated: SUBSCRIPTION_UPDATED,
        SubscriptionDeleted: SUBSCRIPTION_DELETED,
    }[type(event)]


def _checkout_status(stripe_status):
    """Engine status for a freshly checked-out subscription.

    A checkout always opens an entitled record; anything that maps to
    canceled or is unknown is recorded as active and corrected by the
    subscription.updated event that follows.
    """
    status = STATUS_MAP.get(stripe_status)
    if status in (None, 'canceled'):
        return 'active'
    return status
