"""
API v1 Blueprint: JSON API with JWT authentication.
Billing, quota and account endpoints for the web app.
"""
from flask import Blueprint

api_bp = Blueprint('api', __name__)

from billing_engine.blueprints.api import billing, routes  # noqa: E402, F401
