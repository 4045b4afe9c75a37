"""Cron blueprint - endpoints driven by an external scheduler."""
from flask import Blueprint

cron_bp = Blueprint('cron', __name__)

from billing_engine.blueprints.cron import routes  # noqa: F401, E402
