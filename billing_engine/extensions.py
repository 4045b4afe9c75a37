"""
Flask extensions initialization.
Extensions are initialized here and bound to the app in the factory.
"""
from flask_sqlalchemy import SQLAlchemy
from flask_migrate import Migrate
from flask_limiter import Limiter
from flask_limiter.util import get_remote_address
from flask_mailman import Mail
from flask_cors import CORS

# Database
db = SQLAlchemy()

# Database migrations
migrate = Migrate()

# Global request throttling (webhook endpoint, default limits)
limiter = Limiter(
    key_func=get_remote_address,
    default_limits=['100 per minute']
)

# Email
mail = Mail()

# Cross-origin access for the JSON API
cors = CORS()


def init_extensions(app):
    """Initialize all extensions with the Flask app."""
    db.init_app(app)
    migrate.init_app(app, db)
    limiter.init_app(app)
    mail.init_app(app)

    origins = [o.strip() for o in app.config.get('CORS_ORIGINS', '').split(',') if o.strip()]
    cors.init_app(app, resources={r"/api/*": {
        "origins": origins,
        "methods": ["GET", "POST", "PUT", "OPTIONS"],
        "allow_headers": ["Authorization", "Content-Type"],
        "expose_headers": ["X-RateLimit-Limit", "X-RateLimit-Remaining", "X-RateLimit-Reset"],
        "max_age": 600,
    }})
