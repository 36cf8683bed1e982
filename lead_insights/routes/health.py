"""
Health routes — liveness and dependency status.
"""
import logging

from flask import Blueprint, jsonify
from sqlalchemy import text

from lead_insights import extensions
from lead_insights.services.circuit_breaker import get_all_breakers

logger = logging.getLogger('routes.health')

bp = Blueprint('health', __name__)


@bp.route('/health')
def health_check():
    return jsonify({"status": "healthy"}), 200


@bp.route('/api/health')
def service_health():
    """Redis, database and circuit-breaker status. 503 if Redis or the database is down."""
    checks = {}

    try:
        extensions.redis_client.ping()
        checks['redis'] = 'ok'
    except Exception as e:
        logger.warning("Redis health check failed: %s", e)
        checks['redis'] = 'down'

    from lead_insights import database
    session = database.get_session()
    try:
        session.execute(text('SELECT 1'))
        checks['database'] = 'ok'
    except Exception as e:
        logger.warning("Database health check failed: %s", e)
        checks['database'] = 'down'
    finally:
        session.close()

    breakers = {name: cb.get_health() for name, cb in sorted(get_all_breakers().items())}
    healthy = all(v == 'ok' for v in checks.values())
    return jsonify({
        'status': 'healthy' if healthy else 'degraded',
        'checks': checks,
        'circuit_breakers': breakers,
    }), 200 if healthy else 503
