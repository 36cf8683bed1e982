"""
Maps ScoringError subclasses to HTTP responses for the JSON routes.
"""
import logging

from flask import jsonify

from lead_insights.errors import (
    ScoringError, ValidationError, NotFoundError, TenantMismatchError,
)

logger = logging.getLogger('routes.errors')

STATUS_BY_ERROR = [
    (ValidationError, 400),
    (TenantMismatchError, 403),
    (NotFoundError, 404),
]


def error_response(error):
    for error_cls, status in STATUS_BY_ERROR:
        if isinstance(error, error_cls):
            return jsonify({'error': str(error)}), status
    if isinstance(error, ScoringError) and error.retryable:
        return jsonify({'error': str(error), 'retryable': True}), 503
    logger.error("Unhandled error: %s", error, exc_info=error)
    return jsonify({'error': 'Internal error'}), 500
