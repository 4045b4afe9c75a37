"""
Billing Engine Application Factory.
Creates and configures the Flask application instance.
"""
import os
import json
import logging
import uuid
from datetime import datetime, timezone

import click
from flask import Flask, g, has_request_context, jsonify, request

from billing_engine.config import config
from billing_engine.engine import BillingEngine
from billing_engine.extensions import init_extensions, db


def _init_sentry(app):
    """Initialize Sentry error tracking for production."""
    dsn = app.config.get('SENTRY_DSN') or os.environ.get('SENTRY_DSN')
    if not dsn:
        app.logger.info('SENTRY_DSN not set, error tracking disabled.')
        return

    try:
        import sentry_sdk
        from sentry_sdk.integrations.flask import FlaskIntegration
        from sentry_sdk.integrations.sqlalchemy import SqlalchemyIntegration

        sentry_sdk.init(
            dsn=dsn,
            integrations=[FlaskIntegration(), SqlalchemyIntegration()],
            traces_sample_rate=float(os.environ.get('SENTRY_TRACES_RATE', '0.1')),
            environment=os.environ.get('FLASK_ENV', 'production'),
            send_default_pii=False,
        )
        app.logger.info('Sentry error tracking initialized.')
    except ImportError:
        app.logger.warning('sentry-sdk not installed, error tracking disabled.')


def create_app(config_name=None):
    """
    Build the billing engine app.

    Args:
        config_name: 'development', 'testing' or 'production'
            (defaults to FLASK_ENV)

    Returns:
        Flask app with the BillingEngine registered under
        app.extensions['billing_engine']
    """
    config_name = config_name or os.environ.get('FLASK_ENV', 'development')
    config_class = config[config_name]

    app = Flask(__name__)
    app.config.from_object(config_class)

    if config_name == 'production':
        _init_sentry(app)
        config_class.init_app(app)

    init_extensions(app)

    if app.config.get('STRIPE_SECRET_KEY'):
        import stripe
        stripe.api_key = app.config['STRIPE_SECRET_KEY']

    BillingEngine(app)

    register_blueprints(app)
    register_error_handlers(app)
    register_cli_commands(app)
    configure_logging(app)

    # Deployed databases are managed by `flask db upgrade`
    if config_name == 'development':
        with app.app_context():
            db.create_all()

    return app


def register_blueprints(app):
    """Register all application blueprints."""
    from billing_engine.blueprints.api import api_bp
    from billing_engine.blueprints.webhooks import webhooks_bp
    from billing_engine.blueprints.cron import cron_bp

    # REST API v1, JWT auth
    app.register_blueprint(api_bp, url_prefix='/api/v1')
    # Stripe webhooks, signature auth
    app.register_blueprint(webhooks_bp, url_prefix='/webhooks')
    # Scheduled jobs, CRON_SECRET bearer auth
    app.register_blueprint(cron_bp, url_prefix='/internal/cron')


HTTP_ERRORS = {
    400: ('bad_request', 'Bad request.'),
    401: ('unauthorized', 'Authentication required.'),
    403: ('forbidden', 'Access denied.'),
    404: ('not_found', 'Resource not found.'),
    405: ('method_not_allowed', 'Method not allowed.'),
    413: ('payload_too_large', 'Request body too large.'),
    429: ('rate_limit_exceeded', 'Too many requests. Try again later.'),
}


def register_error_handlers(app):
    """Every error leaves the app as {"error": {"code", "message"}}."""

    def make_handler(status, code, message):
        def handler(error):
            return jsonify({'error': {'code': code, 'message': message}}), status
        return handler

    for status, (code, message) in HTTP_ERRORS.items():
        app.register_error_handler(status, make_handler(status, code, message))

    @app.errorhandler(500)
    def internal_error(error):
        db.session.rollback()
        request_id = g.get('request_id', '-')
        app.logger.error('Unhandled %s (request_id=%s)', type(error).__name__, request_id, exc_info=True)
        return jsonify({'error': {
            'code': 'internal_error',
            'message': 'Internal server error.',
            'request_id': request_id,
        }}), 500


def register_cli_commands(app):
    """Register custom CLI commands."""

    @app.cli.command('init-db')
    def init_db():
        """Create all database tables."""
        db.create_all()
        print("Database tables created.")

    @app.cli.command('sweep-quota-warnings')
    @click.option('--date', 'day', type=click.DateTime(formats=['%Y-%m-%d']), default=None,
                  help='UTC day to sweep (default: today)')
    def sweep_quota_warnings(day):
        """Send the 80% / 100% quota warnings due for a day."""
        from billing_engine.engine import current_engine

        print("=" * 50)
        print("QUOTA WARNING SWEEP")
        print("=" * 50)

        stats = current_engine().notifications.sweep_quota_warnings(day.date() if day else None)

        print(f"Users checked: {stats['users_checked']}")
        print(f"Warnings sent: {stats['warnings_sent']}")
        print(f"Errors: {len(stats['errors'])}")
        for message in stats['errors']:
            print(f"  [ERROR] {message}")

    @app.cli.command('reproject-plans')
    def reproject_plans():
        """Recompute every profile's plan from its subscription records."""
        from billing_engine.engine import current_engine
        from billing_engine.models.profile import UserProfile

        reconciler = current_engine().reconciler
        changed = 0
        for profile in UserProfile.query.order_by(UserProfile.id).all():
            before = profile.plan
            if reconciler.project_plan(profile) != before:
                changed += 1
                print(f"  [FIX] {profile.email}: {before.value} -> {profile.plan.value}")
        db.session.commit()
        print(f"Profiles corrected: {changed}")


class JSONFormatter(logging.Formatter):
    """One JSON object per line for the log aggregator."""

    def format(self, record):
        entry = {
            'ts': datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            'level': record.levelname,
            'logger': record.name,
            'msg': record.getMessage(),
        }
        # Webhook deliveries and background sends log outside a request
        if has_request_context():
            entry['request_id'] = g.get('request_id', '-')
        if record.exc_info and record.exc_info[0]:
            entry['exception'] = self.formatException(record.exc_info)
        return json.dumps(entry, ensure_ascii=False)


def configure_logging(app):
    """Configure application logging.

    app.logger is the `billing_engine` logger, so module loggers
    (billing_engine.services.*) share its handlers.

    Production: JSON to stdout.
    Development: plain text.
    """
    if app.testing:
        return

    # Request ID middleware
    @app.before_request
    def assign_request_id():
        g.request_id = request.headers.get('X-Request-ID', str(uuid.uuid4())[:8])

    @app.after_request
    def log_request(response):
        response.headers['X-Request-ID'] = g.get('request_id', '-')
        app.logger.info('%s %s %s', request.method, request.path, response.status_code)
        return response

    if not app.debug:
        # Production: JSON to stdout
        stream_handler = logging.StreamHandler()
        stream_handler.setFormatter(JSONFormatter())
        stream_handler.setLevel(logging.INFO)

        # Clear existing handlers to avoid duplicates
        app.logger.handlers.clear()
        app.logger.addHandler(stream_handler)
        app.logger.setLevel(logging.INFO)

        app.logger.info('Billing engine startup (JSON logging)')
    else:
        # Development: plain text
        logging.basicConfig(level=logging.DEBUG, format='%(asctime)s %(levelname)s %(name)s: %(message)s')
        app.logger.setLevel(logging.DEBUG)
        app.logger.info('Billing engine startup (development)')
