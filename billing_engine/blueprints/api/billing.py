"""
API v1 billing endpoints: Stripe Checkout and Billing Portal sessions.
Both are rate limited per user; the resulting state arrives via webhook.
"""
import stripe
from flask import request, jsonify, current_app
from marshmallow import ValidationError

from billing_engine.blueprints.api import api_bp
from billing_engine.blueprints.api.decorators import jwt_required
from billing_engine.blueprints.api.helpers import api_error
from billing_engine.blueprints.api.schemas import CheckoutRequestSchema
from billing_engine.decorators import rate_limited
from billing_engine.errors import BillingRequestError
from billing_engine.services.subscription_service import SubscriptionService


@api_bp.route('/billing/checkout', methods=['POST'])
@jwt_required
@rate_limited('checkout', 'CHECKOUT_RATE_LIMIT')
def api_create_checkout():
    """Start a Stripe Checkout for a paid plan.

    Body:
        plan (str): 'premium' or 'pro'
    """
    try:
        data = CheckoutRequestSchema().load(request.get_json(silent=True) or {})
    except ValidationError as e:
        return api_error('validation_error', 'Invalid checkout request.', 400, e.messages)

    profile = request.api_user
    plan = data['plan']
    if profile.plan.value == plan:
        return api_error('already_subscribed', f'You are already on the {plan} plan.', 409)

    try:
        session = SubscriptionService.create_checkout_session(profile, plan)
    except BillingRequestError as e:
        return api_error(e.code, e.message, e.status, e.details)
    except stripe.StripeError as e:
        current_app.logger.error(f'Stripe checkout error for user {profile.id}: {e}')
        return api_error('payment_provider_error', 'Payment provider unavailable. Please try again.', 502)

    current_app.logger.info(f'Checkout session {session.id} created for user {profile.id} ({plan})')
    return jsonify({'session_id': session.id, 'url': session.url, 'plan': plan}), 200


@api_bp.route('/billing/portal', methods=['POST'])
@jwt_required
@rate_limited('portal', 'PORTAL_RATE_LIMIT')
def api_create_portal():
    """Open the Stripe Billing Portal for the current subscriber."""
    profile = request.api_user
    try:
        url = SubscriptionService.create_portal_session(profile)
    except BillingRequestError as e:
        return api_error(e.code, e.message, e.status, e.details)
    except stripe.StripeError as e:
        current_app.logger.error(f'Stripe portal error for user {profile.id}: {e}')
        return api_error('payment_provider_error', 'Payment provider unavailable. Please try again.', 502)

    return jsonify({'url': url}), 200
