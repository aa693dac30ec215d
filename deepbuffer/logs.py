"""logs.py – Logging facade

Every module in the package logs through :pyfunc:`log_text`, which mirrors
the ``log_text(message, severity=...)`` call shape of a Google Cloud Logging
logger but routes records through the stdlib ``deepbuffer`` logger.  The
process entry point calls :pyfunc:`configure_logging` once; when cloud
logging is enabled the root logger gets a :class:`CloudLoggingHandler` so the
records end up in Google Cloud Logging, otherwise they go to stderr.
"""

from __future__ import annotations

import logging as pylogging
from typing import Any, Optional

__all__ = [
    "CloudLoggingHandler",
    "configure_logging",
    "log_text",
]

_LOGGER = pylogging.getLogger("deepbuffer")
_FORMAT = "%(asctime)s %(levelname)s %(name)s – %(message)s"


class CloudLoggingHandler(pylogging.Handler):
    """Stdlib logging handler that forwards records to Google Cloud Logging."""

    def __init__(self, gcp_logger: Any):  # noqa: D401 – simple pass-through
        super().__init__()
        self._gcp_logger = gcp_logger

    def emit(self, record: pylogging.LogRecord) -> None:  # noqa: D401
        try:
            msg = self.format(record)
            severity = record.levelname.upper()
            self._gcp_logger.log_text(msg, severity=severity)
        except Exception:  # pragma: no cover – never let logging crash the app
            super().handleError(record)


def log_text(message: str, *, severity: str = "INFO") -> None:
    """Log *message* at the Cloud Logging *severity* (DEBUG … CRITICAL)."""
    level = pylogging.getLevelName(severity.upper())
    if not isinstance(level, int):
        level = pylogging.INFO
    _LOGGER.log(level, message)


def configure_logging(settings: Any, gcp_client: Optional[Any] = None) -> pylogging.Handler:
    """Attach a single handler to the root logger and return it.

    ``gcp_client`` lets callers hand in an already constructed
    ``google.cloud.logging.Client``; one is created when cloud logging is
    enabled and none was supplied.
    """
    if settings.cloud_logging:
        if gcp_client is None:
            from google.cloud import logging as gcp_logging

            gcp_client = gcp_logging.Client()
        gcp_logger = gcp_client.logger(f"{settings.env_name}_deepbuffer")
        handler: pylogging.Handler = CloudLoggingHandler(gcp_logger)
    else:
        handler = pylogging.StreamHandler()
    handler.setFormatter(pylogging.Formatter(_FORMAT))

    root_logger = pylogging.getLogger()
    root_logger.setLevel(pylogging.INFO)
    root_logger.addHandler(handler)

    log_text(
        f"Logging configured ({'cloud' if settings.cloud_logging else 'stream'}) for env '{settings.env_name}'",
        severity="INFO",
    )
    return handler
