import atexit
import os
import sys

from deepbuffer import create_app
from deepbuffer import logs as logging
from deepbuffer.config import get_settings
from deepbuffer.pipeline import build_pipeline

LOCAL_CREDS = os.getenv("LOCAL_CREDS")

if LOCAL_CREDS is not None:
    os.environ["GOOGLE_APPLICATION_CREDENTIALS"] = LOCAL_CREDS

settings = get_settings()

# Set up logging
logging.configure_logging(settings)

# Log application startup
logging.log_text("Application starting up", severity="INFO")
logging.log_text(f"Server starting in {settings.flask_env} mode", severity="INFO")

PORT = settings.port

pipeline = build_pipeline(settings)
app = create_app(settings, pipeline)

scheduler = None


def start_scheduler():
    """Start the in-process scheduler once for this process, if enabled."""
    global scheduler
    if not settings.scheduler_enabled:
        logging.log_text("Scheduler disabled; relying on the cron HTTP trigger.", severity="INFO")
        return None
    if scheduler is None:
        scheduler = pipeline.scheduler(timezone=settings.scheduler_timezone)
        scheduler.start()
        atexit.register(scheduler.stop)
    return scheduler


def run_server() -> None:
    """
    Run the appropriate web server based on the environment configuration.

    For production, Gunicorn is configured and started programmatically with
    a single worker, so the in-process scheduler exists exactly once.  For
    development, the Flask development server is started with debug enabled.

    Environment Variables
    --------------------
    FLASK_ENV : str
        Environment setting that determines which server to run.
        Values can be "production" or anything else (treated as development)

    Notes
    -----
    The 120-second timeout accommodates a slow batch run triggered through
    the cron endpoint.
    """

    if settings.flask_env == "production":
        # -----------------------------
        # Start Gunicorn programmatically
        # -----------------------------
        from gunicorn.app.wsgiapp import run

        sys.argv = [
            "gunicorn",
            "main_driver:app",  # The WSGI entrypoint (module:variable)
            "--bind",
            f"0.0.0.0:{PORT}",
            "--workers",
            "1",
            "--timeout",
            "120",
        ]
        run()  # This will block until Gunicorn exits
    else:
        # -----------------------------
        # Start the Flask development server
        # -----------------------------
        # With the reloader on, only the child process serves requests.
        if os.environ.get("WERKZEUG_RUN_MAIN") == "true":
            start_scheduler()
        app.run(host="0.0.0.0", port=PORT, debug=True)


if __name__ == "__main__":
    run_server()
else:
    # Imported as "main_driver:app" by a Gunicorn worker.
    start_scheduler()
