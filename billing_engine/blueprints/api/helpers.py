"""
API response builders shared by every blueprint.
"""
from flask import jsonify


def api_error(code, message, status=400, details=None):
    """{"error": {"code", "message"[, "details"]}} with the given status."""
    body = {'error': {'code': code, 'message': message}}
    if details:
        body['error']['details'] = details
    return jsonify(body), status


def api_success(data, status=200):
    return jsonify({'data': data}), status
