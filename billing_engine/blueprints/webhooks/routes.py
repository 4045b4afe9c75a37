"""
Stripe webhook endpoint.

200 acknowledges (processed, duplicate, stale or ignored), 400 rejects a
delivery that will never verify, 500 asks Stripe to redeliver.
"""
from flask import request, jsonify, current_app

from billing_engine.blueprints.api.helpers import api_error
from billing_engine.blueprints.webhooks import webhooks_bp
from billing_engine.engine import current_engine
from billing_engine.errors import ReconciliationFailure, VerificationError
from billing_engine.extensions import limiter


@webhooks_bp.route('/stripe', methods=['POST'])
@limiter.limit('100 per minute')
def stripe_webhook():
    """Handle Stripe webhook events (verified via Stripe signature)."""
    if not current_app.config.get('STRIPE_WEBHOOK_SECRET'):
        current_app.logger.error('Webhook received but STRIPE_WEBHOOK_SECRET is not configured')
        return api_error('webhook_not_configured', 'Webhook secret not configured.', 500)

    payload = request.get_data()
    sig_header = request.headers.get('Stripe-Signature')

    try:
        outcome = current_engine().webhooks.handle(payload, sig_header)
    except VerificationError as e:
        current_app.logger.warning(f'Webhook rejected ({e.reason}): {e}')
        return api_error(e.reason, 'Webhook verification failed.', 400)
    except ReconciliationFailure as e:
        current_app.logger.error(f'Webhook processing failed, awaiting redelivery: {e}')
        return api_error('processing_failed', 'Webhook processing failed.', 500)

    current_app.logger.info(f'Webhook {outcome.event_type} {outcome.event_id}: {outcome.status}')
    return jsonify(outcome.to_dict()), 200
