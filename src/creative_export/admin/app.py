"""Flask application factory for the integrations API."""

import logging
import os

from flask import Flask, jsonify
from werkzeug.exceptions import HTTPException
from werkzeug.middleware.proxy_fix import ProxyFix as WerkzeugProxyFix

from creative_export.admin.blueprints.integrations import integrations_bp
from creative_export.core.errors import IntegrationError, error_status_code
from creative_export.core.logging_config import setup_structured_logging
from creative_export.core.metrics import get_metrics_text
from creative_export.services.pipeline import Pipeline, build_pipeline

logger = logging.getLogger(__name__)


def create_app(pipeline: Pipeline | None = None, config=None):
    """Create and configure the Flask application."""
    app = Flask(__name__)
    app.logger.setLevel(logging.INFO)

    if config:
        app.config.update(config)

    # Trust proxy headers in production
    if os.environ.get("PRODUCTION") == "true":
        app.config["PREFERRED_URL_SCHEME"] = "https"
        app.wsgi_app = WerkzeugProxyFix(app.wsgi_app, x_for=1, x_proto=1, x_host=1, x_prefix=0)

    app.pipeline = pipeline or build_pipeline()

    app.register_blueprint(integrations_bp, url_prefix="/api")

    @app.errorhandler(IntegrationError)
    def handle_integration_error(error: IntegrationError):
        status = error_status_code(error)
        if status >= 500:
            logger.warning(f"Integration error {error.code}: {error.message}")
        return jsonify(error.to_dict()), status

    @app.errorhandler(HTTPException)
    def handle_http_error(error: HTTPException):
        return jsonify({"error": error.description, "code": f"http/{error.code}", "details": {}}), error.code

    @app.route("/health")
    def health():
        return jsonify({"status": "healthy"})

    @app.route("/metrics")
    def metrics():
        """Prometheus metrics endpoint."""
        return get_metrics_text(), 200, {"Content-Type": "text/plain; charset=utf-8"}

    return app


def main():
    setup_structured_logging()
    app = create_app()
    port = int(os.environ.get("ADMIN_UI_PORT", 8001))
    app.run(host="0.0.0.0", port=port, debug=app.pipeline.config.debug)


if __name__ == "__main__":
    main()
