"""
Flask Application Factory.

Creates and configures the control-plane API app with its blueprints.
"""

import sys
import uuid
import time
import logging
from pathlib import Path

from flask import Flask, jsonify, request, g

# Ensure project root is on the path
sys.path.insert(0, str(Path(__file__).parent.parent))  # Project root

from dotenv import load_dotenv

load_dotenv()

logger = logging.getLogger(__name__)


def create_app(config=None):
    """Create and configure the Flask application.

    Args:
        config: Optional dict of config overrides (e.g. {'TESTING': True}).

    Returns:
        Configured Flask app instance.
    """
    app = Flask(__name__)

    if config:
        app.config.update(config)

    # Configure logging
    from dashboard.logging_config import configure_logging
    configure_logging(app)

    # Register custom error handlers for APIError hierarchy
    from core.errors import register_error_handlers
    register_error_handlers(app)

    # Register blueprints
    _register_blueprints(app)

    # Register middleware
    _register_middleware(app)

    # Register global error handlers
    _register_error_handlers(app)

    return app


def _register_blueprints(app):
    """Register all route blueprints."""
    from dashboard.routes.health import health_bp
    app.register_blueprint(health_bp)

    from dashboard.routes.tenants import tenants_bp
    app.register_blueprint(tenants_bp)


def _register_middleware(app):
    """Register request tracking and security middleware."""

    @app.before_request
    def before_request_tracking():
        """Assign request ID and start the request timer."""
        g.request_id = request.headers.get('X-Request-ID', str(uuid.uuid4())[:8])
        g.start_time = time.time()

    @app.after_request
    def after_request_tracking(response):
        """Log request completion with timing and add security headers."""
        duration_ms = 0
        if hasattr(g, 'start_time'):
            duration_ms = (time.time() - g.start_time) * 1000

        if hasattr(g, 'request_id'):
            response.headers['X-Request-ID'] = g.request_id

        log_level = logging.WARNING if response.status_code >= 400 else logging.INFO
        if request.path in ['/healthz', '/readyz']:
            log_level = logging.DEBUG

        logger.log(
            log_level,
            f"{request.method} {request.path} -> {response.status_code} ({duration_ms:.1f}ms)",
            extra={
                'request_id': getattr(g, 'request_id', 'unknown'),
                'method': request.method,
                'endpoint': request.path,
                'status_code': response.status_code,
                'duration_ms': round(duration_ms, 2),
                'remote_addr': request.remote_addr,
                'user': getattr(g, 'current_user', None),
            }
        )

        # Security headers
        response.headers['X-Content-Type-Options'] = 'nosniff'
        response.headers['X-Frame-Options'] = 'DENY'
        response.headers['Referrer-Policy'] = 'strict-origin-when-cross-origin'
        response.headers['Content-Security-Policy'] = "default-src 'none'"
        response.headers['Cache-Control'] = 'no-store'

        return response


def _register_error_handlers(app):
    """Register global exception handler."""

    @app.errorhandler(Exception)
    def handle_exception(e):
        from werkzeug.exceptions import HTTPException
        if isinstance(e, HTTPException):
            return jsonify({'error': e.description or e.name}), e.code

        logger.exception(
            f"Unhandled exception: {str(e)}",
            extra={
                'request_id': getattr(g, 'request_id', 'unknown'),
                'method': request.method,
                'endpoint': request.path,
                'remote_addr': request.remote_addr,
            }
        )
        return jsonify({
            'error': 'Internal server error',
            'request_id': getattr(g, 'request_id', 'unknown'),
        }), 500
