"""
Decorators package.
"""
from billing_engine.decorators.rate_limit import client_identity, limit_exceeded, rate_limited

__all__ = [
    'rate_limited',
    'client_identity',
    'limit_exceeded',
]
