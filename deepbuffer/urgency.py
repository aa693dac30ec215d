"""urgency.py – Keyword / VIP urgency check

Pure functions; nothing here touches the store.  A message is urgent when its
text contains one of the user's alert keywords (case-insensitive) or when its
author is one of the user's VIPs.
"""

from __future__ import annotations

from typing import Iterable, List, Optional

DEFAULT_ALERT_KEYWORDS = ["緊急", "至急", "落ちた", "本番", "障害"]


def matched_keywords(content: str, alert_keywords: Optional[Iterable[str]] = None) -> List[str]:
    """Return the keywords of *alert_keywords* found in *content*, in order."""
    keywords = DEFAULT_ALERT_KEYWORDS if alert_keywords is None else alert_keywords
    haystack = (content or "").casefold()
    hits: List[str] = []
    for keyword in keywords:
        keyword = (keyword or "").strip()
        if keyword and keyword.casefold() in haystack and keyword not in hits:
            hits.append(keyword)
    return hits


def is_urgent(
    content: str,
    author_id: Optional[str] = None,
    alert_keywords: Optional[Iterable[str]] = None,
    vip_user_ids: Optional[Iterable[str]] = None,
) -> bool:
    if author_id and vip_user_ids and author_id in set(vip_user_ids):
        return True
    return bool(matched_keywords(content, alert_keywords))
