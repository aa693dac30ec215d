"""web.py – Link pocket input adapter

Saves a URL as a ``web`` item.  Before storing, the page's Open Graph data is
read so the UI can render a card:

* X / Twitter links go through the public oEmbed endpoint (the pages
  themselves are script-only).
* Everything else is fetched and parsed with BeautifulSoup: ``og:title``
  falling back to ``<title>``, ``og:description`` falling back to the
  ``description`` meta tag, ``og:image`` and ``og:site_name``.

A failed metadata fetch never blocks the save; the item is stored with empty
OGP fields.  ``web`` items are exempt from the retention sweep.
"""

from __future__ import annotations

from typing import Dict, Optional
from urllib.parse import urlparse

import requests
from bs4 import BeautifulSoup

from deepbuffer import logs as logging
from deepbuffer.database.models import SOURCE_WEB, STATUS_PENDING

__all__ = [
    "empty_metadata",
    "fetch_link_metadata",
    "save_link",
]

OEMBED_ENDPOINT = "https://publish.twitter.com/oembed"
USER_AGENT = "Mozilla/5.0 (compatible; DeepBuffer/1.0)"
REQUEST_TIMEOUT_S = 10
_TWITTER_HOSTS = ("twitter.com", "x.com")


def empty_metadata() -> Dict[str, str]:
    return {
        "created_via": "api",
        "og_title": "",
        "og_description": "",
        "og_image": "",
        "og_site_name": "",
    }


def _is_twitter(hostname: str) -> bool:
    hostname = (hostname or "").lower()
    return any(hostname == host or hostname.endswith("." + host) for host in _TWITTER_HOSTS)


def _meta_content(soup: BeautifulSoup, **attrs: str) -> str:
    tag = soup.find("meta", attrs=attrs)
    if tag is None:
        return ""
    return (tag.get("content") or "").strip()


def _tweet_metadata(url: str) -> Dict[str, str]:
    response = requests.get(
        OEMBED_ENDPOINT,
        params={"url": url, "omit_script": "true"},
        timeout=REQUEST_TIMEOUT_S,
    )
    response.raise_for_status()
    data = response.json()

    paragraph = BeautifulSoup(data.get("html") or "", "html.parser").find("p")
    tweet_text = ""
    if paragraph is not None:
        for br in paragraph.find_all("br"):
            br.replace_with("\n")
        tweet_text = paragraph.get_text()

    return {
        "og_title": f"Tweet by {data.get('author_name', '')}",
        "og_description": tweet_text,
        "og_image": "",
        "og_site_name": "X (Twitter)",
    }


def _page_metadata(url: str) -> Dict[str, str]:
    response = requests.get(url, headers={"User-Agent": USER_AGENT}, timeout=REQUEST_TIMEOUT_S)
    response.raise_for_status()
    soup = BeautifulSoup(response.text, "html.parser")

    title = _meta_content(soup, property="og:title")
    if not title and soup.title and soup.title.string:
        title = soup.title.string.strip()

    return {
        "og_title": title,
        "og_description": _meta_content(soup, property="og:description")
        or _meta_content(soup, name="description"),
        "og_image": _meta_content(soup, property="og:image"),
        "og_site_name": _meta_content(soup, property="og:site_name"),
    }


def fetch_link_metadata(url: str) -> Dict[str, str]:
    """Return the OGP fields for *url*; empty strings when anything fails."""
    metadata = empty_metadata()
    try:
        hostname = urlparse(url).hostname or ""
        if _is_twitter(hostname):
            metadata.update(_tweet_metadata(url))
        else:
            metadata.update(_page_metadata(url))
    except (requests.RequestException, ValueError) as exc:
        logging.log_text(f"Failed to fetch OGP/oEmbed for {url}: {exc}", severity="WARNING")
    return metadata


def save_link(store, user_id: str, url: str) -> Optional[str]:
    """Store *url* as a pending ``web`` item for *user_id* and return its id.

    Raises ``ValueError`` on an empty *url*; returns ``None`` without a store.
    """
    url = (url or "").strip()
    if not url:
        raise ValueError("Missing content")
    if store is None:
        logging.log_text("DB not configured – cannot save link.", severity="ERROR")
        return None

    meta_data = fetch_link_metadata(url)
    item_id = store.insert_item(
        source_type=SOURCE_WEB,
        content=url,
        meta_data=meta_data,
        status=STATUS_PENDING,
        user_id=user_id,
    )
    logging.log_text(f"Saved link {url} for user {user_id}.", severity="INFO")
    return item_id
