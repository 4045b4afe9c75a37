"""
Rate-limit decorator for mutation endpoints.
Apply inside @jwt_required so the limit is keyed by user.
"""
from functools import wraps

from flask import current_app, jsonify, make_response, request

from billing_engine.engine import current_engine
from billing_engine.services.rate_limiter import RateDenied


def client_identity():
    """User id when authenticated, else the client address."""
    user = getattr(request, 'api_user', None)
    if user is not None:
        return f'user:{user.id}'
    forwarded = request.headers.get('X-Forwarded-For', '')
    if forwarded:
        return f"ip:{forwarded.split(',')[0].strip()}"
    return f'ip:{request.remote_addr or "unknown"}'


def limit_exceeded(code, message, status, limit, reset):
    """Error body for a spent allowance, with the epoch it refills at."""
    response = jsonify({
        'error': {'code': code, 'message': message},
        'limit': limit,
        'remaining': 0,
        'reset': reset,
    })
    response.status_code = status
    response.headers['X-RateLimit-Limit'] = str(limit)
    response.headers['X-RateLimit-Remaining'] = '0'
    response.headers['X-RateLimit-Reset'] = str(reset)
    return response


def rate_limited(bucket, limit_key):
    """Decorator: throttle a route per identity.

    Args:
        bucket: Counter namespace (e.g. 'checkout')
        limit_key: Config key holding the number of requests per window

    Usage:
        @rate_limited('checkout', 'CHECKOUT_RATE_LIMIT')
        def checkout():
            ...
    """
    def decorator(f):
        @wraps(f)
        def decorated(*args, **kwargs):
            limit = current_app.config[limit_key]
            window = current_app.config['RATE_LIMIT_WINDOW_SECONDS']
            result = current_engine().rate_limiter.allow(client_identity(), bucket, limit, window)

            if isinstance(result, RateDenied):
                response = limit_exceeded(
                    'rate_limit_exceeded', 'Too many requests. Please try again later.',
                    429, result.limit, result.reset_at,
                )
                response.headers['Retry-After'] = str(result.retry_after)
                return response

            response = make_response(f(*args, **kwargs))
            response.headers['X-RateLimit-Limit'] = str(limit)
            response.headers['X-RateLimit-Remaining'] = str(result.remaining)
            response.headers['X-RateLimit-Reset'] = str(result.reset_at)
            return response
        return decorated
    return decorator
