"""
Scheduled job endpoints, authenticated with `Authorization: Bearer <CRON_SECRET>`.
"""
import hmac
from functools import wraps

from flask import request, jsonify, current_app

from billing_engine.blueprints.api.helpers import api_error
from billing_engine.blueprints.cron import cron_bp
from billing_engine.engine import current_engine


def cron_secret_required(f):
    """Decorator: 503 when CRON_SECRET is unset, 401 when the bearer token differs."""
    @wraps(f)
    def decorated(*args, **kwargs):
        secret = current_app.config.get('CRON_SECRET')
        if not secret:
            current_app.logger.warning('CRON_SECRET not configured, skipping cron job')
            return api_error('cron_not_configured', 'Cron not configured.', 503)

        supplied = request.headers.get('Authorization', '')
        if not hmac.compare_digest(supplied.encode(), f'Bearer {secret}'.encode()):
            return api_error('unauthorized', 'Unauthorized.', 401)
        return f(*args, **kwargs)
    return decorated


@cron_bp.route('/quota-warnings', methods=['POST'])
@cron_secret_required
def quota_warnings():
    """Send the quota warnings due today to every user with usage."""
    stats = current_engine().notifications.sweep_quota_warnings()
    return jsonify(stats), 200


@cron_bp.route('/quota-warnings', methods=['GET'])
def quota_warnings_status():
    """Report whether the sweep can run (no secret needed)."""
    return jsonify({
        'status': 'ready',
        'cron_configured': bool(current_app.config.get('CRON_SECRET')),
        'endpoint': '/internal/cron/quota-warnings',
        'method': 'POST',
        'auth_header': 'Bearer <CRON_SECRET>',
    }), 200
