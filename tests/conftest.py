# =============================================================================
# Billing Engine - Pytest Fixtures Configuration
# =============================================================================

import hashlib
import hmac
import json
import time
import uuid

import pytest

from billing_engine import create_app
from billing_engine.extensions import db
from billing_engine.models.profile import UserProfile
from billing_engine.models.subscription import Subscription, SubscriptionPlan, SubscriptionStatus
from billing_engine.blueprints.api.decorators import create_access_token
from billing_engine.utils.timeutil import from_epoch


WEBHOOK_SECRET = 'whsec_test_fake_secret'
PREMIUM_PRICE = 'price_test_premium_monthly'
PRO_PRICE = 'price_test_pro_monthly'

# 2026-10-01 00:00:00 UTC; billing periods in tests are anchored here
PERIOD_START = 1790812800
MONTH = 30 * 24 * 3600


# =============================================================================
# Application Fixtures
# =============================================================================

@pytest.fixture(scope='function')
def app():
    """Create and configure test application with SQLite in-memory database."""
    application = create_app('testing')

    with application.app_context():
        db.create_all()
        yield application
        db.session.remove()
        db.drop_all()


@pytest.fixture(scope='function')
def client(app):
    """Test client for HTTP requests."""
    return app.test_client()


@pytest.fixture(scope='function')
def runner(app):
    """CLI test runner."""
    return app.test_cli_runner()


@pytest.fixture(scope='function')
def engine(app):
    """The BillingEngine bound to the test app."""
    return app.extensions['billing_engine']


# =============================================================================
# Profile Fixtures
# =============================================================================

def make_profile(email, plan=SubscriptionPlan.FREE, full_name=None, customer_id=None):
    profile = UserProfile(
        email=email,
        full_name=full_name,
        plan=plan,
        stripe_customer_id=customer_id,
    )
    db.session.add(profile)
    db.session.commit()
    return profile


@pytest.fixture
def free_user(app):
    """Free-plan user with no billing account."""
    return make_profile('free@test.com', full_name='Free User')


@pytest.fixture
def premium_user(app):
    """Premium user with an active subscription record."""
    profile = make_profile(
        'premium@test.com',
        plan=SubscriptionPlan.PREMIUM,
        full_name='Premium User',
        customer_id='cus_premium',
    )
    db.session.add(Subscription(
        stripe_subscription_id='sub_premium',
        user_id=profile.id,
        plan=SubscriptionPlan.PREMIUM,
        status=SubscriptionStatus.ACTIVE,
        stripe_price_id=PREMIUM_PRICE,
        current_period_start=from_epoch(PERIOD_START),
        current_period_end=from_epoch(PERIOD_START + MONTH),
        last_event_at=from_epoch(PERIOD_START),
    ))
    db.session.commit()
    return profile


def auth_headers(profile, **extra):
    """Authorization header with a fresh access token for the profile."""
    headers = {'Authorization': f'Bearer {create_access_token(profile.id)}'}
    headers.update(extra)
    return headers


# =============================================================================
# Stripe Webhook Helpers
# =============================================================================

def subscription_object(sub_id='sub_123', status='active', plan='premium',
                        price_id=PREMIUM_PRICE, customer='cus_123',
                        period_start=PERIOD_START, period_end=PERIOD_START + MONTH,
                        cancel_at_period_end=False, user_id=None):
    """Minimal Stripe subscription object."""
    metadata = {'plan': plan} if plan else {}
    if user_id:
        metadata['user_id'] = user_id
    return {
        'id': sub_id,
        'object': 'subscription',
        'customer': customer,
        'status': status,
        'cancel_at_period_end': cancel_at_period_end,
        'current_period_start': period_start,
        'current_period_end': period_end,
        'items': {'object': 'list', 'data': [
            {'id': f'si_{sub_id}', 'price': {'id': price_id, 'object': 'price'}},
        ]},
        'metadata': metadata,
    }


def checkout_session_object(user_id, plan='premium', subscription=None,
                            customer='cus_123', amount_total=999):
    """Checkout session carrying the engine's metadata."""
    return {
        'id': f'cs_{uuid.uuid4().hex[:12]}',
        'object': 'checkout.session',
        'mode': 'subscription',
        'customer': customer,
        'subscription': subscription if subscription is not None else subscription_object(
            plan=plan, user_id=user_id,
            price_id=PREMIUM_PRICE if plan == 'premium' else PRO_PRICE,
        ),
        'metadata': {'user_id': user_id, 'plan': plan},
        'amount_total': amount_total,
    }


def make_event(event_type, obj, event_id=None, created=None):
    """Stripe event envelope."""
    return {
        'id': event_id or f'evt_{uuid.uuid4().hex[:16]}',
        'object': 'event',
        'type': event_type,
        'created': created if created is not None else PERIOD_START + 60,
        'data': {'object': obj},
    }


def sign_payload(payload, secret=WEBHOOK_SECRET, timestamp=None):
    """Stripe-Signature header for a payload: t=<ts>,v1=<hmac>."""
    if isinstance(payload, bytes):
        payload = payload.decode('utf-8')
    timestamp = int(time.time()) if timestamp is None else timestamp
    signature = hmac.new(
        secret.encode('utf-8'),
        f'{timestamp}.{payload}'.encode('utf-8'),
        hashlib.sha256,
    ).hexdigest()
    return f't={timestamp},v1={signature}'


def post_webhook(client, event, secret=WEBHOOK_SECRET):
    """POST a correctly signed event to the webhook endpoint."""
    payload = json.dumps(event)
    return client.post(
        '/webhooks/stripe',
        data=payload,
        content_type='application/json',
        headers={'Stripe-Signature': sign_payload(payload, secret)},
    )
