"""
Flask application factory.

Creates and configures the Flask app, registers all blueprints and the
error handlers that render engine exceptions as JSON.
"""
import logging
import os

from flask import Flask, jsonify

logger = logging.getLogger('scout')


def create_app():
    """Create and configure the Flask application."""
    from scout.logging_config import configure_logging
    from scout.errors import ScoutError
    from scout.services.exa import ExaAPIError

    app = Flask(__name__)

    configure_logging(app)

    app.secret_key = os.getenv('SECRET_KEY', 'dev-secret-change-me')

    from scout.routes.health import bp as health_bp
    from scout.routes.leadsets import bp as leadsets_bp
    from scout.routes.webhook import bp as webhook_bp

    app.register_blueprint(health_bp)
    app.register_blueprint(leadsets_bp)
    app.register_blueprint(webhook_bp)

    @app.errorhandler(ScoutError)
    def handle_scout_error(e):
        return jsonify(e.to_dict()), e.status_code

    @app.errorhandler(ExaAPIError)
    def handle_provider_error(e):
        logger.error("Exa API error: %s", e)
        return jsonify({'error': str(e), 'code': 'PROVIDER_ERROR'}), 502

    # Import models so Base.metadata knows about them.
    # Schema is managed by Alembic; no create_all() call.
    import importlib
    importlib.import_module('scout.models.document')

    return app
