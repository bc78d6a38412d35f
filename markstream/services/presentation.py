from __future__ import annotations

from datetime import datetime
from urllib.parse import urlencode, urlparse

from markstream.models import Bookmark, utcnow
from markstream.services.common import domain_of

SEARCH_VISIBLE_AFTER = 3
EMPTY_LIST_MESSAGE = "No bookmarks yet. Add your first one above."
NO_MATCHES_MESSAGE = "No matches found"


def filter_bookmarks(items: list[Bookmark], query: str | None) -> list[Bookmark]:
    q = (query or "").strip().lower()
    if not q:
        return list(items)
    return [
        item for item in items if q in item.title.lower() or q in item.url.lower()
    ]


def favicon_url(url: str) -> str | None:
    try:
        hostname = urlparse(url).hostname
    except ValueError:
        return None
    if not hostname:
        return None
    query = urlencode({"domain": hostname, "sz": 32})
    return f"https://www.google.com/s2/favicons?{query}"


def time_ago(created_at: datetime, now: datetime | None = None) -> str:
    now = now or utcnow()
    minutes = int((now - created_at).total_seconds() // 60)
    if minutes < 1:
        return "just now"
    if minutes < 60:
        return f"{minutes}m ago"
    hours = minutes // 60
    if hours < 24:
        return f"{hours}h ago"
    return f"{hours // 24}d ago"


def count_label(total: int) -> str:
    noun = "link" if total == 1 else "links"
    return f"{total} saved {noun}"


def serialize_bookmark_card(item: Bookmark, now: datetime | None = None) -> dict:
    return {
        "id": item.id,
        "title": item.title,
        "url": item.url,
        "domain": domain_of(item.url),
        "favicon": favicon_url(item.url),
        "age": time_ago(item.created_at, now),
        "created_at": item.created_at.isoformat(),
    }


def build_snapshot(
    items: list[Bookmark],
    loaded: bool,
    query: str = "",
    error: str | None = None,
    now: datetime | None = None,
) -> dict:
    now = now or utcnow()
    visible = filter_bookmarks(items, query)
    empty_message = None
    if loaded and not visible and not error:
        empty_message = NO_MATCHES_MESSAGE if query else EMPTY_LIST_MESSAGE
    return {
        "loaded": loaded,
        "total": len(items),
        "count_label": count_label(len(items)),
        "query": query,
        "show_search": len(items) > SEARCH_VISIBLE_AFTER,
        "empty_message": empty_message,
        "error": error,
        "items": [serialize_bookmark_card(item, now) for item in visible],
    }
