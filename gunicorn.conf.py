# =============================================================================
# Billing Engine - Gunicorn Production Configuration
# =============================================================================
# Run with: gunicorn -c gunicorn.conf.py run:app
import os
import multiprocessing

# Bind
bind = f"0.0.0.0:{os.environ.get('PORT', '8080')}"

# Workers: 2 * CPU + 1 (capped at 4 for small instances)
workers = min(multiprocessing.cpu_count() * 2 + 1, 4)
threads = int(os.environ.get('GUNICORN_THREADS', 4))

# Each request runs on its own worker thread; no state shared between them
worker_class = "gthread"

# Timeouts (Stripe waits up to ~10s for a webhook response)
timeout = 30
graceful_timeout = 30
keepalive = 5

# Logging
accesslog = "-"
errorlog = "-"
loglevel = os.environ.get("LOG_LEVEL", "info")
access_log_format = '%(h)s %(l)s %(u)s %(t)s "%(r)s" %(s)s %(b)s "%(f)s" "%(a)s" %(L)s'

# Worker lifecycle
max_requests = 1000
max_requests_jitter = 50

# Security: limit request sizes
limit_request_line = 8190
limit_request_fields = 100
limit_request_field_size = 8190

# Server mechanics
forwarded_allow_ips = "*"
proxy_protocol = False


def worker_exit(server, worker):
    """Drain in-flight email deliveries before the worker goes away."""
    app = getattr(worker, 'wsgi', None)
    engine = getattr(app, 'extensions', {}).get('billing_engine') if app else None
    if engine is not None:
        engine.shutdown(timeout=graceful_timeout)
