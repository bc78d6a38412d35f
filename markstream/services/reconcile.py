"""Reconciliation of one tab's bookmark list.

Three sources feed the list: the bulk load from the store, mutations made in
this tab, and change events the backend fans out to every tab of the owner,
this one included. Every method runs on the owning tab's loop, one call at a
time, so the state below needs no locking. Store requests are handed to
``dispatch`` and their completions come back through callbacks on the same
loop.
"""
from __future__ import annotations

import bisect
import logging
import time

from markstream.errors import StoreError
from markstream.models import Bookmark
from markstream.services.realtime import EVENT_DELETE, EVENT_INSERT, ChangeEvent

DEFAULT_GRACE_SECONDS = 2.0


class ExpiringSet:
    """Set whose entries disappear ``ttl_seconds`` after they were added."""

    def __init__(self, ttl_seconds: float, clock=time.monotonic):
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._deadlines: dict[str, float] = {}

    def add(self, key: str) -> None:
        self._deadlines[key] = self._clock() + self.ttl_seconds

    def discard(self, key: str) -> None:
        self._deadlines.pop(key, None)

    def pop(self, key: str) -> bool:
        deadline = self._deadlines.pop(key, None)
        return deadline is not None and deadline > self._clock()

    def sweep(self) -> int:
        now = self._clock()
        expired = [key for key, deadline in self._deadlines.items() if deadline <= now]
        for key in expired:
            del self._deadlines[key]
        return len(expired)

    def clear(self) -> None:
        self._deadlines.clear()

    def __contains__(self, key: str) -> bool:
        deadline = self._deadlines.get(key)
        if deadline is None:
            return False
        if deadline <= self._clock():
            del self._deadlines[key]
            return False
        return True

    def __len__(self) -> int:
        self.sweep()
        return len(self._deadlines)


def run_inline(request, callback) -> None:
    try:
        result = request()
    except StoreError as exc:
        callback(None, exc)
    else:
        callback(result, None)


def _newest_first(bookmark: Bookmark) -> float:
    return -bookmark.created_at.timestamp()


class Reconciler:
    def __init__(
        self,
        store,
        owner_id: str,
        clock=time.monotonic,
        grace_seconds: float = DEFAULT_GRACE_SECONDS,
        dispatch=run_inline,
        logger=None,
    ):
        self.store = store
        self.owner_id = owner_id
        self.items: list[Bookmark] = []
        self.pending_deletes = ExpiringSet(grace_seconds, clock)
        self.loaded = False
        self.error: str | None = None
        self.closed = False
        # bumped on every visible change
        self.version = 0
        self._dispatch = dispatch
        self._logger = logger or logging.getLogger(__name__)
        self._load_generation = 0
        self._loading = False
        # changes seen while a load is in flight, replayed onto its rows
        self._inserted_during_load: dict[str, Bookmark] = {}
        self._deleted_during_load: set[str] = set()

    def ids(self) -> list[str]:
        return [item.id for item in self.items]

    def initialize(self) -> list[Bookmark]:
        """Replace the list with a fresh fetch of the owner's bookmarks.

        Also used as the full resync after a failed delete. Only the most
        recently requested load is applied when several are in flight.
        """
        if self.closed:
            return self.items
        if not self._loading:
            self._inserted_during_load.clear()
            self._deleted_during_load.clear()
        self._loading = True
        self._load_generation += 1
        generation = self._load_generation
        self._dispatch(
            lambda: self.store.list(self.owner_id),
            lambda rows, error: self._finish_load(generation, rows, error),
        )
        return self.items

    def _finish_load(self, generation: int, rows, error) -> None:
        if self.closed or generation != self._load_generation:
            return
        self._loading = False
        inserted = list(self._inserted_during_load.values())
        deleted = set(self._deleted_during_load)
        self._inserted_during_load.clear()
        self._deleted_during_load.clear()

        if error is not None:
            self._logger.error(
                "Failed to load bookmarks for %s: %s", self.owner_id, error
            )
            self.error = str(error)
            self.loaded = True
            self.version += 1
            return

        kept: dict[str, Bookmark] = {}
        for row in rows:
            if row.owner_id != self.owner_id or row.id in self.pending_deletes:
                continue
            if row.id in deleted:
                continue
            kept.setdefault(row.id, row)
        self.items = sorted(kept.values(), key=_newest_first)
        for bookmark in inserted:
            if bookmark.id not in deleted:
                self._insert(bookmark)
        self.loaded = True
        self.error = None
        self.version += 1
        self._logger.info("Loaded %d bookmarks for %s", len(self.items), self.owner_id)

    def apply_local_add(self, bookmark: Bookmark) -> bool:
        """Merge the row the store returned for this tab's own create.

        Goes through the same idempotent path as the realtime echo, so the
        outcome is the same whether the echo arrives first, later, or never.
        """
        return self._insert(bookmark)

    def apply_local_delete(self, bookmark_id: str) -> bool:
        if self.closed:
            return False
        self._remove(bookmark_id)
        self._note_delete(bookmark_id)
        self.pending_deletes.add(bookmark_id)
        self._logger.info("Deleting bookmark %s", bookmark_id)
        self._dispatch(
            lambda: self.store.delete(bookmark_id),
            lambda _result, error: self.complete_delete(bookmark_id, error),
        )
        return True

    def complete_delete(self, bookmark_id: str, error=None) -> None:
        if self.closed or error is None:
            return
        self._logger.error("Delete of %s failed, reloading: %s", bookmark_id, error)
        self.pending_deletes.discard(bookmark_id)
        self._deleted_during_load.discard(bookmark_id)
        self.initialize()

    def on_remote_insert(self, bookmark: Bookmark) -> bool:
        return self._insert(bookmark)

    def on_remote_delete(self, bookmark_id: str) -> bool:
        if self.closed:
            return False
        self._note_delete(bookmark_id)
        if self.pending_deletes.pop(bookmark_id):
            return False
        return self._remove(bookmark_id)

    def apply_change(self, event: ChangeEvent) -> bool:
        if event.owner_id is not None and event.owner_id != self.owner_id:
            return False
        if event.kind == EVENT_INSERT and event.new is not None:
            return self.on_remote_insert(event.new)
        if event.kind == EVENT_DELETE and event.old_id is not None:
            return self.on_remote_delete(event.old_id)
        return False

    def sweep(self) -> int:
        return self.pending_deletes.sweep()

    def close(self) -> None:
        self.closed = True
        self.pending_deletes.clear()

    def _insert(self, bookmark: Bookmark) -> bool:
        if self.closed or bookmark.owner_id != self.owner_id:
            return False
        # a late insert echo must not resurrect a row this tab just deleted
        if bookmark.id in self.pending_deletes:
            return False
        if self._loading:
            self._inserted_during_load.setdefault(bookmark.id, bookmark)
        if any(item.id == bookmark.id for item in self.items):
            return False
        bisect.insort(self.items, bookmark, key=_newest_first)
        self.version += 1
        return True

    def _note_delete(self, bookmark_id: str) -> None:
        if self._loading:
            self._deleted_during_load.add(bookmark_id)
            self._inserted_during_load.pop(bookmark_id, None)

    def _remove(self, bookmark_id: str) -> bool:
        remaining = [item for item in self.items if item.id != bookmark_id]
        if len(remaining) == len(self.items):
            return False
        self.items = remaining
        self.version += 1
        return True
