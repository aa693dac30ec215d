"""config.py – Process configuration

All environment lookups happen here, once, at process start.  The rest of the
code base receives a :class:`Settings` instance (or reads the cached one via
:pyfunc:`get_settings`) instead of calling :pyfunc:`os.getenv` itself.

Secrets resolution order is *environment variable > Secret Manager > None*.
Secret Manager is consulted only when both ``GOOGLE_CLOUD_PROJECT`` and the
matching ``*_SECRET_ID`` variable are present.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from functools import lru_cache
from typing import Mapping, Optional

from deepbuffer import logs as logging
from deepbuffer.helper_functions import get_secret_value

__all__ = [
    "Settings",
    "get_settings",
]

_TRUTHY = {"1", "true", "yes", "on"}


def _flag(value: Optional[str], default: bool) -> bool:
    if value is None or value.strip() == "":
        return default
    return value.strip().lower() in _TRUTHY


def _secret(env: Mapping[str, str], env_key: str, secret_key: str) -> Optional[str]:
    """Return ``env[env_key]`` or fall back to Secret Manager."""
    value = env.get(env_key)
    if value:
        return value

    project_id = env.get("GOOGLE_CLOUD_PROJECT")
    secret_id = env.get(secret_key)
    if not project_id or not secret_id:
        return None

    try:
        return get_secret_value(project_id, secret_id)
    except Exception as exc:  # pragma: no cover – network / IAM failures
        logging.log_text(
            f"Failed to retrieve {env_key} from Secret Manager: {exc}",
            severity="ERROR",
        )
        return None


@dataclass(frozen=True)
class Settings:
    env_name: str = "dev"
    database_url: Optional[str] = None
    instance_connection_name: Optional[str] = None
    db_user: Optional[str] = None
    db_password: Optional[str] = None
    db_name: str = "postgres"
    openai_api_key: Optional[str] = None
    openai_model: str = "gpt-4o-mini"
    cron_secret: Optional[str] = None
    api_secret: Optional[str] = None
    slack_user_token: Optional[str] = None
    slack_signing_secret: Optional[str] = None
    scheduler_enabled: bool = True
    scheduler_timezone: Optional[str] = None
    cloud_logging: bool = False
    port: int = 8080
    flask_env: str = "development"

    @classmethod
    def from_env(cls, env: Optional[Mapping[str, str]] = None) -> "Settings":
        """Resolve every setting from *env* (defaults to ``os.environ``)."""
        env = os.environ if env is None else env

        # A serverless deployment never keeps the process alive between
        # invocations, so the in-process timer is pointless there.
        serverless = _flag(env.get("SERVERLESS"), False)

        return cls(
            env_name=env.get("ENV_NAME", "dev"),
            database_url=env.get("DATABASE_URL") or None,
            instance_connection_name=env.get("INSTANCE_CONNECTION_NAME") or None,
            db_user=env.get("API_DB_USER") or None,
            db_password=_secret(env, "DB_PASSWORD", "DB_PASSWORD_SECRET_ID"),
            db_name=env.get("DB_NAME", "postgres"),
            openai_api_key=_secret(env, "OPENAI_API_KEY", "OPENAI_SECRET_ID"),
            openai_model=env.get("OPENAI_MODEL", "gpt-4o-mini"),
            cron_secret=env.get("CRON_SECRET") or None,
            api_secret=_secret(env, "API_SECRET", "API_SECRET_ID"),
            slack_user_token=env.get("SLACK_USER_TOKEN") or None,
            slack_signing_secret=_secret(env, "SLACK_SIGNING_SECRET", "SLACK_SIGNING_SECRET_ID"),
            scheduler_enabled=_flag(env.get("SCHEDULER_ENABLED"), not serverless),
            scheduler_timezone=env.get("SCHEDULER_TIMEZONE") or None,
            cloud_logging=_flag(env.get("CLOUD_LOGGING"), bool(env.get("GOOGLE_CLOUD_PROJECT"))),
            port=int(env.get("PORT", 8080)),
            flask_env=env.get("FLASK_ENV", "development").lower(),
        )


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return the process-wide settings, resolving them on first use."""
    return Settings.from_env()
