"""Webhooks blueprint - inbound Stripe events."""
from flask import Blueprint

webhooks_bp = Blueprint('webhooks', __name__)

from billing_engine.blueprints.webhooks import routes  # noqa: F401, E402
