from __future__ import annotations

from typing import Any, Optional

from google.cloud import secretmanager
from sqlalchemy import create_engine
from sqlalchemy.engine import Engine

from deepbuffer import logs as logging

DB_CONNECTION_STRING = "postgresql+pg8000://"


def get_secret_value(project_id, secret_id, version_id="latest"):
    """
    Retrieve a secret value from Google Cloud Secret Manager.

    This function accesses a secret stored in Google Cloud Secret Manager
    and returns its value as a string. It uses Application Default Credentials (ADC)
    from the environment for authentication.

    Parameters
    ----------
    project_id : str
        The Google Cloud project ID where the secret is stored
    secret_id : str
        The ID of the secret to retrieve
    version_id : str, optional
        The version of the secret to retrieve, defaults to "latest"

    Returns
    -------
    str
        The secret payload as a UTF-8 decoded string

    Notes
    -----
    Requires appropriate GCP permissions to access Secret Manager resources.
    """
    # Never include the secret payload itself in the log.
    logging.log_text(
        f"Fetching secret '{secret_id}' from project '{project_id}' (version '{version_id}').",
        severity="DEBUG",
    )
    client = secretmanager.SecretManagerServiceClient()

    name = f"projects/{project_id}/secrets/{secret_id}/versions/{version_id}"
    response = client.access_secret_version(request={"name": name})
    payload = response.payload.data.decode("UTF-8")

    logging.log_text(f"Successfully fetched secret '{secret_id}'.", severity="INFO")
    return payload


def create_db_engine(settings: Any) -> Optional[Engine]:
    """
    Build the SQLAlchemy engine backing the item store.

    Two deployment shapes are supported:

    * **Cloud SQL** – when ``settings.instance_connection_name`` is set the
      engine connects through the Google Cloud SQL Connector using the
      ``pg8000`` driver and the configured service-account credentials.
    * **Plain URL** – otherwise ``settings.database_url`` is handed to
      :pyfunc:`sqlalchemy.create_engine` verbatim (local Postgres, SQLite, …).

    Returns
    -------
    sqlalchemy.engine.Engine or None
        ``None`` when neither option is configured; callers treat that as a
        missing persistence backend.
    """
    if settings.instance_connection_name:
        from google.cloud.sql.connector import Connector

        connector = Connector()
        engine = create_engine(
            DB_CONNECTION_STRING,
            creator=lambda: connector.connect(
                settings.instance_connection_name,
                "pg8000",
                user=settings.db_user,
                password=settings.db_password,
                db=settings.db_name,
            ),
            pool_pre_ping=True,
        )
        logging.log_text("Database engine created via Connector.", severity="DEBUG")
        return engine

    if settings.database_url:
        engine = create_engine(settings.database_url, pool_pre_ping=True)
        logging.log_text("Database engine created from DATABASE_URL.", severity="DEBUG")
        return engine

    logging.log_text(
        "No database configured (set INSTANCE_CONNECTION_NAME or DATABASE_URL).",
        severity="ERROR",
    )
    return None
