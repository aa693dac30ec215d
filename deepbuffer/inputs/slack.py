"""slack.py – Slack Input Adapter

Purpose
-------
Pulls recent conversation history from every connected Slack workspace and
stores each new human message as a ``pending`` item for the batch
summarizer.  Also hosts the other Slack touch points of the system:
ingesting Events API message callbacks, sending a reply and listing a
workspace's human members (used to pick VIPs).

Polling cycle (:pyfunc:`SourcePoller.poll`)
-------------------------------------------
For each workspace that has an access token:

1. **Directory** – ``users.list`` → id → (display name, avatar, bot flag).
   Built per workspace per cycle, never shared.
2. **Channels** – ``conversations.list`` over public, private, DM and
   multi-party DM conversations, following ``next_cursor``.
3. **History** – ``conversations.history`` for every non-archived channel,
   limited to the last :data:`LOOKBACK` window.
4. **Filter** – drop subtype events (joins, edits …), author-less messages
   and anything written by a bot.
5. **Dedup** – skip messages whose (channel, ts) pair is already stored for
   the workspace.  The check-then-insert is best effort, not atomic.

Rate-limiting
-------------
Slack answers ``429`` with a ``Retry-After`` header.  While paginating the
poller sleeps for that long (or :data:`RATE_LIMIT_FALLBACK_S`) and stops
paginating for the cycle; during history fetches it sleeps and skips the
channel.  Nothing is retried in a loop.

Failure handling
----------------
Any error while polling one workspace is logged and the poller moves on to
the next one.  Without a store the poll aborts immediately.
"""

from __future__ import annotations

import time
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, Iterator, List, Optional

from slack_sdk import WebClient
from slack_sdk.errors import SlackApiError
from sqlalchemy.exc import SQLAlchemyError

from deepbuffer import logs as logging
from deepbuffer.database.models import SOURCE_SLACK, STATUS_PENDING

__all__ = [
    "DirectoryEntry",
    "SourcePoller",
    "fetch_user_directory",
    "ingest_event",
    "list_channels",
    "list_workspace_users",
    "send_message",
]

LOOKBACK = timedelta(hours=4)
CHANNEL_TYPES = "public_channel,private_channel,im,mpim"
PAGE_LIMIT = 200
HISTORY_LIMIT = 50
PAGE_DELAY_S = 0.1
CHANNEL_DELAY_S = 0.05
RATE_LIMIT_FALLBACK_S = 2.0
SLACKBOT_ID = "USLACKBOT"

ClientFactory = Callable[..., Any]
Sleep = Callable[[float], None]


@dataclass(frozen=True)
class DirectoryEntry:
    name: str
    avatar: str = ""
    is_bot: bool = False
    deleted: bool = False


# ---------------------------------------------------------------------------
# Private helpers
# ---------------------------------------------------------------------------


def _is_rate_limited(exc: SlackApiError) -> bool:
    return getattr(exc.response, "status_code", None) == 429


def _retry_after(exc: SlackApiError) -> float:
    """Seconds to wait as requested by Slack, or the fixed fallback."""
    headers = getattr(exc.response, "headers", None) or {}
    for key, value in headers.items():
        if key.lower() == "retry-after":
            try:
                return max(float(value), 0.0)
            except (TypeError, ValueError):
                break
    return RATE_LIMIT_FALLBACK_S


def _paginate(method: Callable[..., Any], key: str, *, sleep: Sleep, **kwargs: Any) -> Iterator[dict]:
    """Yield ``response[key]`` entries across all cursor pages.

    A ``429`` ends the iteration after backing off; any other Slack error
    propagates to the caller.
    """
    cursor: Optional[str] = None
    while True:
        if cursor:
            kwargs["cursor"] = cursor
        try:
            response = method(**kwargs)
        except SlackApiError as exc:
            if not _is_rate_limited(exc):
                raise
            wait = _retry_after(exc)
            logging.log_text(
                f"Rate limited on {getattr(method, '__name__', key)}; waiting {wait:.1f}s and stopping pagination for this cycle.",
                severity="WARNING",
            )
            sleep(wait)
            return

        yield from response.get(key) or []

        cursor = (response.get("response_metadata") or {}).get("next_cursor")
        if not cursor:
            return
        sleep(PAGE_DELAY_S)


def _slack_error(exc: SlackApiError) -> str:
    try:
        return exc.response["error"]
    except (KeyError, TypeError):
        return str(exc)


def _client_for(client_factory: ClientFactory, token: str) -> Any:
    return client_factory(token=token)


# ---------------------------------------------------------------------------
# Directory & channel listing
# ---------------------------------------------------------------------------


def fetch_user_directory(client: Any, *, sleep: Sleep = time.sleep) -> Dict[str, DirectoryEntry]:
    """Map every member id of the workspace to its display attributes."""
    directory: Dict[str, DirectoryEntry] = {}
    for member in _paginate(client.users_list, "members", sleep=sleep, limit=PAGE_LIMIT):
        member_id = member.get("id")
        if not member_id:
            continue
        profile = member.get("profile") or {}
        directory[member_id] = DirectoryEntry(
            name=profile.get("real_name") or member.get("name") or member_id,
            avatar=profile.get("image_48") or "",
            is_bot=bool(member.get("is_bot")),
            deleted=bool(member.get("deleted")),
        )
    return directory


def list_channels(client: Any, *, sleep: Sleep = time.sleep) -> List[dict]:
    """Every conversation the token can see, across all four kinds."""
    return list(
        _paginate(
            client.conversations_list,
            "channels",
            sleep=sleep,
            types=CHANNEL_TYPES,
            limit=PAGE_LIMIT,
        )
    )


def _is_human_message(message: dict, directory: Dict[str, DirectoryEntry]) -> bool:
    if message.get("subtype") or not message.get("user") or message.get("bot_id"):
        return False
    author = directory.get(message["user"])
    return not (author and author.is_bot)


# ---------------------------------------------------------------------------
# Poller
# ---------------------------------------------------------------------------


class SourcePoller:
    """Copies recent human Slack messages of every workspace into the store."""

    def __init__(
        self,
        store,
        client_factory: ClientFactory = WebClient,
        *,
        sleep: Sleep = time.sleep,
        clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
        lookback: timedelta = LOOKBACK,
    ):
        self._store = store
        self._client_factory = client_factory
        self._sleep = sleep
        self._clock = clock
        self._lookback = lookback

    def poll(self) -> None:
        if self._store is None:
            logging.log_text("Item store missing – aborting Slack poll.", severity="ERROR")
            return

        try:
            workspaces = self._store.list_polling_workspaces()
        except SQLAlchemyError as exc:
            logging.log_text(f"Failed to load workspaces: {exc}", severity="ERROR")
            return

        if not workspaces:
            logging.log_text("No workspaces with an access token; nothing to poll.", severity="WARNING")
            return

        logging.log_text(f"Polling {len(workspaces)} workspaces...", severity="INFO")
        total_saved = 0
        for workspace in workspaces:
            try:
                total_saved += self._poll_workspace(workspace)
            except Exception as exc:
                logging.log_text(
                    f"Error polling workspace {workspace.team_id}: {exc}",
                    severity="ERROR",
                )

        logging.log_text(
            f"Fetched and saved {total_saved} new messages from all workspaces.",
            severity="INFO",
        )

    def _poll_workspace(self, workspace) -> int:
        client = _client_for(self._client_factory, workspace.access_token)

        directory = fetch_user_directory(client, sleep=self._sleep)
        channels = list_channels(client, sleep=self._sleep)
        logging.log_text(
            f"Found {len(channels)} channels for team {workspace.team_id}.",
            severity="INFO",
        )

        oldest = (self._clock() - self._lookback).timestamp()
        saved = 0
        for channel in channels:
            if channel.get("is_archived"):
                continue
            self._sleep(CHANNEL_DELAY_S)
            for message in self._fetch_history(client, channel["id"], oldest):
                if self._store_message(workspace, channel, message, directory):
                    saved += 1
        return saved

    def _fetch_history(self, client: Any, channel_id: str, oldest: float) -> List[dict]:
        try:
            response = client.conversations_history(
                channel=channel_id,
                oldest=f"{oldest:.6f}",
                limit=HISTORY_LIMIT,
            )
        except SlackApiError as exc:
            if _is_rate_limited(exc):
                wait = _retry_after(exc)
                logging.log_text(
                    f"Rate limited on history fetch for {channel_id}. Sleeping {wait:.1f}s and skipping.",
                    severity="WARNING",
                )
                self._sleep(wait)
            else:
                logging.log_text(
                    f"History fetch failed for {channel_id}: {_slack_error(exc)}",
                    severity="WARNING",
                )
            return []
        return response.get("messages") or []

    def _store_message(self, workspace, channel: dict, message: dict, directory: Dict[str, DirectoryEntry]) -> bool:
        if not _is_human_message(message, directory):
            return False

        channel_id = channel["id"]
        ts = message.get("ts")
        if not ts:
            return False
        if self._store.item_exists(team_id=workspace.team_id, channel=channel_id, ts=ts):
            return False

        author_id = message["user"]
        author = directory.get(author_id)
        self._store.insert_item(
            source_type=SOURCE_SLACK,
            content=message.get("text") or "",
            meta_data={
                "user": author_id,
                "user_name": author.name if author else author_id,
                "user_avatar": author.avatar if author else "",
                "channel": channel_id,
                "channel_name": channel.get("name") or "DM",
                "ts": ts,
                "team": workspace.team_id,
            },
            status=STATUS_PENDING,
            user_id=workspace.user_id,
        )
        return True


# ---------------------------------------------------------------------------
# Events API
# ---------------------------------------------------------------------------


def _lookup_author(client_factory: ClientFactory, token: str, author_id: str) -> DirectoryEntry:
    try:
        response = _client_for(client_factory, token).users_info(user=author_id)
        user = response.get("user") or {}
    except (SlackApiError, OSError) as exc:
        logging.log_text(f"Failed to fetch user info for {author_id}: {exc}", severity="WARNING")
        return DirectoryEntry(name=author_id)
    profile = user.get("profile") or {}
    return DirectoryEntry(
        name=profile.get("real_name") or user.get("name") or author_id,
        avatar=profile.get("image_48") or "",
        is_bot=bool(user.get("is_bot")),
    )


def ingest_event(store, payload: Dict[str, Any], *, client_factory: ClientFactory = WebClient) -> bool:
    """Store the message of one Events API callback as a ``pending`` item.

    Only plain human ``message`` events of a connected workspace are kept;
    the item goes to the workspace owner.  Returns ``True`` when a row was
    inserted.
    """
    event = payload.get("event") or {}
    if event.get("type") != "message" or not _is_human_message(event, {}):
        return False
    if store is None:
        logging.log_text("Item store missing – dropping Slack event.", severity="ERROR")
        return False

    team_id = payload.get("team_id") or event.get("team")
    ts = event.get("ts")
    channel_id = event.get("channel")
    if not team_id or not ts or not channel_id:
        return False

    workspace = store.get_workspace(team_id)
    if workspace is None:
        logging.log_text(f"Event for unknown team {team_id}; ignoring.", severity="WARNING")
        return False
    if store.item_exists(team_id=team_id, channel=channel_id, ts=ts):
        return False

    author_id = event["user"]
    author = DirectoryEntry(name=author_id)
    if workspace.access_token:
        author = _lookup_author(client_factory, workspace.access_token, author_id)
    if author.is_bot:
        return False

    store.insert_item(
        source_type=SOURCE_SLACK,
        content=event.get("text") or "",
        meta_data={
            "user": author_id,
            "user_name": author.name,
            "user_avatar": author.avatar,
            "channel": channel_id,
            "ts": ts,
            "team": team_id,
        },
        status=STATUS_PENDING,
        user_id=workspace.user_id,
    )
    return True


# ---------------------------------------------------------------------------
# Replies & workspace members
# ---------------------------------------------------------------------------


def send_message(
    store,
    channel_id: str,
    text: str,
    *,
    thread_ts: Optional[str] = None,
    team_id: Optional[str] = None,
    fallback_token: Optional[str] = None,
    client_factory: ClientFactory = WebClient,
) -> bool:
    """Post *text* to *channel_id*; ``True`` only when Slack accepted it.

    The workspace token is looked up by *team_id*; *fallback_token* is used
    when no team is given or the team has no stored token.
    """
    token = fallback_token
    if team_id and store is not None:
        try:
            stored_token = store.get_workspace_token(team_id)
        except SQLAlchemyError as exc:
            logging.log_text(f"Workspace token lookup failed for {team_id}: {exc}", severity="ERROR")
            return False
        if stored_token:
            token = stored_token
        else:
            logging.log_text(
                f"No token found for team {team_id}, trying default token.",
                severity="WARNING",
            )

    if not token:
        logging.log_text("Slack token is missing – cannot send message.", severity="ERROR")
        return False

    client = _client_for(client_factory, token)
    try:
        client.chat_postMessage(channel=channel_id, text=text, thread_ts=thread_ts)
    except SlackApiError as exc:
        logging.log_text(f"Slack send error: {_slack_error(exc)}", severity="ERROR")
        return False
    except OSError as exc:
        logging.log_text(f"Slack send failed for {channel_id}: {exc}", severity="ERROR")
        return False
    return True


def list_workspace_users(
    store,
    user_id: str,
    *,
    client_factory: ClientFactory = WebClient,
    sleep: Sleep = time.sleep,
) -> List[Dict[str, str]]:
    """Human members of every workspace owned by *user_id*."""
    if store is None:
        return []

    try:
        workspaces = store.workspaces_for_user(user_id)
    except SQLAlchemyError as exc:
        logging.log_text(f"Failed to load workspaces for user {user_id}: {exc}", severity="ERROR")
        return []

    users: List[Dict[str, str]] = []
    for workspace in workspaces:
        try:
            client = _client_for(client_factory, workspace.access_token)
            directory = fetch_user_directory(client, sleep=sleep)
        except Exception as exc:
            logging.log_text(
                f"Error fetching users for team {workspace.team_id}: {exc}",
                severity="ERROR",
            )
            continue
        for member_id, entry in directory.items():
            if entry.is_bot or entry.deleted or member_id == SLACKBOT_ID:
                continue
            users.append(
                {
                    "id": member_id,
                    "name": entry.name,
                    "avatar": entry.avatar,
                    "team_id": workspace.team_id,
                    "team_name": workspace.team_name or "",
                }
            )
    return users
