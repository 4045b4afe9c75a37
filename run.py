#!/usr/bin/env python
"""
Billing Engine development server.

Stripe webhooks can be forwarded locally with:
    stripe listen --forward-to localhost:5000/webhooks/stripe
"""
import os
from dotenv import load_dotenv

load_dotenv()

from billing_engine import create_app

app = create_app(os.environ.get('FLASK_ENV', 'development'))

if __name__ == '__main__':
    host = os.environ.get('FLASK_HOST', '127.0.0.1')
    port = int(os.environ.get('FLASK_PORT', 5000))
    debug = os.environ.get('FLASK_DEBUG', 'false').lower() == 'true'

    missing = [key for key in ('STRIPE_SECRET_KEY', 'STRIPE_WEBHOOK_SECRET', 'CRON_SECRET')
               if not app.config.get(key)]

    print(f"Billing engine on http://{host}:{port} ({os.environ.get('FLASK_ENV', 'development')})")
    print("  webhooks: POST /webhooks/stripe")
    print("  sweep:    POST /internal/cron/quota-warnings")
    if missing:
        print(f"  not configured: {', '.join(missing)}")

    try:
        app.run(host=host, port=port, debug=debug)
    finally:
        app.extensions['billing_engine'].shutdown()
