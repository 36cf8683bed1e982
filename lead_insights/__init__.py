"""
Flask application factory.

Creates and configures the Flask app, registers all blueprints.
"""
from flask import Flask


def create_app():
    """Create and configure the Flask application."""
    from lead_insights.logging_config import configure_logging

    app = Flask(__name__)

    configure_logging(app)

    # Register blueprints
    from lead_insights.routes.triggers import bp as triggers_bp
    from lead_insights.routes.scores import bp as scores_bp
    from lead_insights.routes.admin import bp as admin_bp
    from lead_insights.routes.health import bp as health_bp

    app.register_blueprint(triggers_bp)
    app.register_blueprint(scores_bp)
    app.register_blueprint(admin_bp)
    app.register_blueprint(health_bp)

    # Circuit breakers for the outbound webhook and Slack
    from lead_insights.extensions import redis_client
    from lead_insights.services.circuit_breaker import init_breakers
    init_breakers(redis_client)

    # Import models so Base.metadata knows about them (required for SQLAlchemy).
    # Schema is managed by Alembic; there is no init_db() call.
    import importlib
    importlib.import_module('lead_insights.models.lead')
    importlib.import_module('lead_insights.models.activity')
    importlib.import_module('lead_insights.models.lead_score')
    importlib.import_module('lead_insights.models.scoring_config')
    importlib.import_module('lead_insights.models.dead_letter')

    return app
