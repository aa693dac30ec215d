import sys
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest

# Ensure the repository root (parent directory of this file) is on the import path.
# This allows test modules to do `import deepbuffer...` even when pytest is executed
# from a sub-directory or when the working directory is not the project root.
ROOT_DIR = Path(__file__).resolve().parents[1]
if str(ROOT_DIR) not in sys.path:
    sys.path.insert(0, str(ROOT_DIR))

from slack_sdk.errors import SlackApiError  # noqa: E402
from sqlalchemy import create_engine  # noqa: E402
from sqlalchemy.pool import StaticPool  # noqa: E402

from deepbuffer.config import get_settings  # noqa: E402
from deepbuffer.database.models import SOURCE_SLACK, STATUS_PENDING  # noqa: E402
from deepbuffer.database.store import ItemStore  # noqa: E402

NOW = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)

_ENV_KEYS = (
    "OPENAI_API_KEY",
    "OPENAI_SECRET_ID",
    "OPENAI_MODEL",
    "GOOGLE_CLOUD_PROJECT",
    "DB_PASSWORD",
    "DB_PASSWORD_SECRET_ID",
    "DATABASE_URL",
    "INSTANCE_CONNECTION_NAME",
    "CRON_SECRET",
    "API_SECRET",
    "API_SECRET_ID",
    "SLACK_SIGNING_SECRET",
    "SLACK_SIGNING_SECRET_ID",
    "SLACK_USER_TOKEN",
    "SCHEDULER_ENABLED",
    "SERVERLESS",
    "CLOUD_LOGGING",
)


@pytest.fixture(autouse=True)
def clean_settings(monkeypatch):
    """Every test starts from an empty environment and a fresh settings cache."""
    for key in _ENV_KEYS:
        monkeypatch.delenv(key, raising=False)
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest.fixture
def store():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    item_store = ItemStore.from_engine(engine)
    item_store.create_all()
    yield item_store
    engine.dispose()


@pytest.fixture
def make_item(store):
    """Insert an item; ``age`` is measured back from :data:`NOW`."""

    def _make(
        user_id="user-1",
        content="hello",
        *,
        status=STATUS_PENDING,
        source_type=SOURCE_SLACK,
        age=timedelta(0),
        meta_data=None,
    ):
        return store.insert_item(
            source_type=source_type,
            content=content,
            meta_data=meta_data or {},
            user_id=user_id,
            status=status,
            created_at=NOW - age,
        )

    return _make


# ---------------------------------------------------------------------------
# Slack fakes
# ---------------------------------------------------------------------------


class FakeSlackResponse:
    """Just enough of ``SlackResponse`` for error handling."""

    def __init__(self, data=None, status_code=200, headers=None):
        self.data = data or {}
        self.status_code = status_code
        self.headers = headers or {}

    def __getitem__(self, key):
        return self.data[key]

    def get(self, key, default=None):
        return self.data.get(key, default)

    def __str__(self):
        return str(self.data)


def slack_error(error="internal_error", status_code=500, headers=None):
    response = FakeSlackResponse({"ok": False, "error": error}, status_code=status_code, headers=headers)
    return SlackApiError(f"The request failed: {error}", response)


def rate_limited(retry_after="7"):
    return slack_error("ratelimited", status_code=429, headers={"Retry-After": retry_after})


class FakeSlackClient:
    """Scripted stand-in for ``slack_sdk.WebClient``.

    ``users_pages`` / ``channel_pages`` are lists of pages (each a list of
    entries, or an exception to raise); ``histories`` maps channel id to a
    message list or an exception; ``profiles`` maps user id to the
    ``users.info`` user object or an exception.
    """

    def __init__(self, token, *, users_pages=None, channel_pages=None, histories=None, profiles=None, post_error=None):
        self.token = token
        self.users_pages = list(users_pages if users_pages is not None else [[]])
        self.channel_pages = list(channel_pages if channel_pages is not None else [[]])
        self.histories = dict(histories or {})
        self.profiles = dict(profiles or {})
        self.post_error = post_error
        self.calls = []
        self.posted = []

    def _page(self, pages, key, cursor):
        index = int(cursor) if cursor else 0
        page = pages[index]
        if isinstance(page, Exception):
            raise page
        next_cursor = str(index + 1) if index + 1 < len(pages) else ""
        return {key: page, "response_metadata": {"next_cursor": next_cursor}}

    def users_list(self, **kwargs):
        self.calls.append(("users_list", kwargs))
        return self._page(self.users_pages, "members", kwargs.get("cursor"))

    def conversations_list(self, **kwargs):
        self.calls.append(("conversations_list", kwargs))
        return self._page(self.channel_pages, "channels", kwargs.get("cursor"))

    def conversations_history(self, **kwargs):
        self.calls.append(("conversations_history", kwargs))
        history = self.histories.get(kwargs["channel"], [])
        if isinstance(history, Exception):
            raise history
        return {"messages": history}

    def users_info(self, **kwargs):
        self.calls.append(("users_info", kwargs))
        profile = self.profiles.get(kwargs["user"], {"id": kwargs["user"]})
        if isinstance(profile, Exception):
            raise profile
        return {"ok": True, "user": profile}

    def chat_postMessage(self, **kwargs):
        self.calls.append(("chat_postMessage", kwargs))
        if self.post_error is not None:
            raise self.post_error
        self.posted.append(kwargs)
        return {"ok": True}


class FakeSlackFactory:
    """Callable used in place of ``WebClient``; one scripted client per token."""

    def __init__(self, scripts=None):
        self.scripts = scripts or {}
        self.clients = {}

    def __call__(self, token):
        script = self.scripts.get(token, {})
        if isinstance(script, Exception):
            raise script
        client = FakeSlackClient(token, **script)
        self.clients[token] = client
        return client


def member(user_id, name, *, is_bot=False, deleted=False, avatar="https://img/avatar.png"):
    return {
        "id": user_id,
        "name": name.lower(),
        "is_bot": is_bot,
        "deleted": deleted,
        "profile": {"real_name": name, "image_48": avatar},
    }


class SleepRecorder(list):
    """Injected as ``sleep``; remembers every requested delay."""

    def __call__(self, seconds):
        self.append(seconds)


@pytest.fixture
def sleeps():
    return SleepRecorder()
