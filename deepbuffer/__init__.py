"""
DeepBuffer – Slack / link buffering and batch digests

This package houses the backend that buffers incoming Slack messages and saved
links and turns them into scheduled digests.  This module only exposes the
Flask application factory; the pipeline itself lives in
:mod:`deepbuffer.pipeline` and its components.
"""

from typing import Any, Dict, Optional

from flask import Flask, jsonify, request
from flask_limiter import Limiter
from flask_limiter.util import get_remote_address

from deepbuffer import logs as logging

# ---------------------------------------------------------------------------
# Rate limiter – instantiated at module level to avoid circular imports
# ---------------------------------------------------------------------------

limiter = Limiter(
    key_func=get_remote_address,
    default_limits=["200 per day", "50 per hour"],
    storage_uri="memory://",
)

# ---------------------------------------------------------------------------
# Application factory
# ---------------------------------------------------------------------------


def create_app(settings: Any = None, pipeline: Any = None, config: Optional[Dict[str, Any]] = None) -> Flask:
    """Create and configure the Flask application instance.

    ``settings`` defaults to :pyfunc:`deepbuffer.config.get_settings`;
    ``pipeline`` defaults to one built from those settings.  ``config`` is
    merged into ``app.config`` before the extensions are initialised.
    """
    from deepbuffer.api import api_bp
    from deepbuffer.config import get_settings
    from deepbuffer.pipeline import build_pipeline

    settings = settings or get_settings()
    if pipeline is None:
        pipeline = build_pipeline(settings)

    # ---------------------------------------------------------------------
    # Initialise base Flask app
    # ---------------------------------------------------------------------
    app = Flask(__name__)
    app.config["CRON_SECRET"] = settings.cron_secret
    app.config["API_SECRET"] = settings.api_secret
    app.config["SLACK_SIGNING_SECRET"] = settings.slack_signing_secret
    app.config["SLACK_USER_TOKEN"] = settings.slack_user_token
    if config:
        app.config.update(config)

    # Attach the rate limiter after app creation
    limiter.init_app(app)

    app.extensions["deepbuffer"] = pipeline
    app.register_blueprint(api_bp)

    # ---------------------------------------------------------------------
    # Rate-limit error handler – converts 429 into JSON response & structured log
    # ---------------------------------------------------------------------
    @app.errorhandler(429)  # type: ignore[arg-type]
    def _ratelimit_handler(error):  # noqa: D401 – internal handler
        client_ip = request.remote_addr or "unknown"
        user_agent = request.headers.get("User-Agent", "Unknown")
        logging.log_text(
            f"Rate limit exceeded: {error} – IP: {client_ip}, User-Agent: {user_agent}",
            severity="WARNING",
        )
        return (
            jsonify({
                "status": "error",
                "message": "Rate limit exceeded. Please try again later.",
            }),
            429,
        )

    logging.log_text("Flask application initialised", severity="INFO")
    return app
