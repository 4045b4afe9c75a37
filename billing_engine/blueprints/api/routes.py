"""
API v1 Routes: quota and account endpoints.
"""
from flask import request, jsonify
from marshmallow import ValidationError

from billing_engine.blueprints.api import api_bp
from billing_engine.blueprints.api.decorators import jwt_required
from billing_engine.blueprints.api.helpers import api_error, api_success
from billing_engine.blueprints.api.schemas import (
    EmailPreferencesSchema, ProfileSchema, SubscriptionSchema,
)
from billing_engine.decorators import limit_exceeded
from billing_engine.engine import current_engine
from billing_engine.errors import QuotaStoreUnavailable
from billing_engine.extensions import db
from billing_engine.models.notification import NotificationKind, NotificationOutcome
from billing_engine.models.profile import EmailPreferences
from billing_engine.models.subscription import Subscription
from billing_engine.services.quota_ledger import QuotaDenied
from billing_engine.utils.timeutil import next_utc_midnight, to_epoch, utctoday


# ── Quota ───────────────────────────────────────────────────

@api_bp.route('/quota', methods=['GET'])
@jwt_required
def api_get_quota():
    """Today's quota status for the current user (does not consume)."""
    profile = request.api_user
    try:
        status = current_engine().quota.usage(profile.id, profile.plan.value)
    except QuotaStoreUnavailable:
        return api_error('quota_unavailable', 'Quota service temporarily unavailable.', 503)
    return jsonify(status.to_dict()), 200


@api_bp.route('/quota/consume', methods=['POST'])
@jwt_required
def api_consume_quota():
    """Meter one operation against today's quota."""
    profile = request.api_user
    result = current_engine().consume_quota(profile)

    if isinstance(result, QuotaDenied):
        if result.unavailable:
            return api_error('quota_unavailable', 'Quota service temporarily unavailable.', 503)
        return limit_exceeded(
            'quota_exceeded', f'Daily limit of {result.limit} operations reached.',
            403, result.limit, to_epoch(next_utc_midnight(utctoday())),
        )

    return jsonify({
        'current_usage': result.count,
        'daily_limit': result.limit,
        'remaining': result.remaining,
    }), 200


# ── Account ─────────────────────────────────────────────────

@api_bp.route('/me', methods=['GET'])
@jwt_required
def api_me():
    """Profile, current subscription and today's quota."""
    profile = request.api_user

    subscription = profile.subscriptions.order_by(
        Subscription.current_period_end.desc().nullslast(),
        Subscription.id.desc(),
    ).first()

    try:
        quota = current_engine().quota.usage(profile.id, profile.plan.value).to_dict()
    except QuotaStoreUnavailable:
        quota = None

    return api_success({
        'profile': ProfileSchema().dump(profile),
        'subscription': SubscriptionSchema().dump(subscription) if subscription else None,
        'quota': quota,
    })


@api_bp.route('/me/email-preferences', methods=['GET'])
@jwt_required
def api_get_email_preferences():
    prefs = EmailPreferences.get_or_create(request.api_user.id)
    db.session.commit()
    return api_success(EmailPreferencesSchema().dump(prefs))


@api_bp.route('/me/email-preferences', methods=['PUT'])
@jwt_required
def api_update_email_preferences():
    """Update any subset of the email opt-outs."""
    try:
        data = EmailPreferencesSchema().load(request.get_json(silent=True) or {}, partial=True)
    except ValidationError as e:
        return api_error('validation_error', 'Invalid email preferences.', 400, e.messages)

    prefs = EmailPreferences.get_or_create(request.api_user.id)
    for key, value in data.items():
        setattr(prefs, key, value)
    db.session.commit()
    return api_success(EmailPreferencesSchema().dump(prefs))


@api_bp.route('/me/welcome', methods=['POST'])
@jwt_required
def api_send_welcome():
    """Send the welcome email (at most once per day)."""
    outcome = current_engine().notifications.notify(request.api_user, NotificationKind.WELCOME)

    if outcome is None:
        return api_success({'status': 'already_sent'})
    if outcome == NotificationOutcome.FAILED:
        return api_error('email_failed', 'Welcome email could not be sent.', 502)
    return api_success({'status': 'queued' if outcome == NotificationOutcome.PENDING else 'sent'})
