"""Open browser tabs and the loop that owns each tab's bookmark list.

A tab is opened when the browser connects to the event stream and closed
when that stream ends or the user signs out. Listener threads, request
threads and store completions never touch a tab's ``Reconciler`` directly:
they ``post`` commands to the tab's inbox, and the stream loop applies them
one at a time in arrival order.
"""
from __future__ import annotations

import json
import logging
import queue
import secrets
import threading
import time

from markstream.errors import StoreError
from markstream.services.presentation import build_snapshot
from markstream.services.reconcile import DEFAULT_GRACE_SECONDS, Reconciler, run_inline

_CLOSE = object()


def format_event(name: str, payload: dict) -> str:
    return f"event: {name}\ndata: {json.dumps(payload)}\n\n"


class TabSession:
    def __init__(
        self,
        tab_id: str,
        user,
        store,
        subscribe=None,
        executor=None,
        clock=time.monotonic,
        grace_seconds: float = DEFAULT_GRACE_SECONDS,
        keepalive_seconds: float = 15.0,
        logger=None,
    ):
        self.tab_id = tab_id
        self.user = user
        self.owner_id = user.id
        self.store = store
        self.query = ""
        self.closed = False
        self.streaming = False
        self.reconciler: Reconciler | None = None
        self._subscribe = subscribe
        self._subscription = None
        self._executor = executor
        self._clock = clock
        self._grace_seconds = grace_seconds
        self._keepalive_seconds = keepalive_seconds
        self._logger = logger or logging.getLogger(__name__)
        self._inbox: queue.Queue = queue.Queue()
        self._query_version = 0
        self.last_seen = clock()

    def open(self) -> "TabSession":
        self.reconciler = Reconciler(
            self.store,
            self.owner_id,
            clock=self._clock,
            grace_seconds=self._grace_seconds,
            dispatch=self._dispatch,
            logger=self._logger,
        )
        if self._subscribe is not None:
            self._subscription = self._subscribe(self._on_change)
        self.post(self.reconciler.initialize)
        return self

    def close(self) -> None:
        if self.closed:
            return
        self.closed = True
        if self._subscription is not None:
            self._subscription.close()
            self._subscription = None
        if self.reconciler is not None:
            self.reconciler.close()
        self._inbox.put(_CLOSE)

    def post(self, command, *args) -> bool:
        if self.closed:
            return False
        self._inbox.put((command, args))
        return True

    def update_token(self, store, access_token: str) -> bool:
        """Switch the tab to a refreshed session.

        The store swap happens on the tab loop; the listener is told
        right away so its channel stays authorized.
        """
        if self.closed:
            return False
        self.store = store
        subscription = self._subscription
        if subscription is not None:
            subscription.update_token(access_token)
        return self.post(self._use_store, store)

    def add_confirmed(self, bookmark) -> bool:
        return self.post(self.reconciler.apply_local_add, bookmark)

    def delete(self, bookmark_id: str) -> bool:
        return self.post(self.reconciler.apply_local_delete, bookmark_id)

    def search(self, query: str | None) -> bool:
        return self.post(self._set_query, query)

    def sweep(self) -> bool:
        return self.post(self.reconciler.sweep)

    def idle_seconds(self) -> float:
        if self.streaming:
            return 0.0
        return self._clock() - self.last_seen

    def snapshot(self) -> dict:
        payload = build_snapshot(
            self.reconciler.items,
            loaded=self.reconciler.loaded,
            query=self.query,
            error=self.reconciler.error,
        )
        payload["tab_id"] = self.tab_id
        return payload

    def drain(self, wait: float = 0) -> bool:
        """Apply queued commands in order; report whether the view changed.

        Blocks up to ``wait`` seconds for the first command.
        """
        before = self._view_state()
        try:
            if wait > 0:
                item = self._inbox.get(timeout=wait)
            else:
                item = self._inbox.get_nowait()
        except queue.Empty:
            return False

        while item is not _CLOSE:
            command, args = item
            if not self.closed:
                command(*args)
            try:
                item = self._inbox.get_nowait()
            except queue.Empty:
                break
        return self._view_state() != before

    def stream(self):
        self.streaming = True
        try:
            yield format_event("hello", {"tab_id": self.tab_id})
            self.drain()
            yield format_event("snapshot", self.snapshot())
            while not self.closed:
                changed = self.drain(wait=self._keepalive_seconds)
                if self.closed:
                    break
                if changed:
                    yield format_event("snapshot", self.snapshot())
                else:
                    yield ": keepalive\n\n"
        finally:
            self.streaming = False
            self.last_seen = self._clock()

    def _view_state(self) -> tuple[int, int]:
        version = self.reconciler.version if self.reconciler else 0
        return version, self._query_version

    def _set_query(self, query: str | None) -> None:
        clean = (query or "").strip()
        if clean != self.query:
            self.query = clean
            self._query_version += 1

    def _use_store(self, store) -> None:
        self.reconciler.store = store

    def _on_change(self, event) -> None:
        self.post(self.reconciler.apply_change, event)

    def _dispatch(self, request, callback) -> None:
        if self._executor is None:
            run_inline(request, callback)
            return
        future = self._executor.submit(request)
        future.add_done_callback(lambda done: self._complete(done, callback))

    def _complete(self, future, callback) -> None:
        error = future.exception()
        if error is not None and not isinstance(error, StoreError):
            self._logger.error("Store request for tab %s crashed: %r", self.tab_id, error)
            error = StoreError(str(error) or error.__class__.__name__)
        result = None if error is not None else future.result()
        self.post(callback, result, error)


class TabRegistry:
    def __init__(
        self,
        executor=None,
        clock=time.monotonic,
        grace_seconds: float = DEFAULT_GRACE_SECONDS,
        keepalive_seconds: float = 15.0,
        idle_seconds: float = 120.0,
        logger=None,
    ):
        self.executor = executor
        self.grace_seconds = grace_seconds
        self.keepalive_seconds = keepalive_seconds
        self.idle_seconds = idle_seconds
        self._clock = clock
        self._logger = logger or logging.getLogger(__name__)
        self._lock = threading.Lock()
        self._tabs: dict[str, TabSession] = {}

    @classmethod
    def from_config(cls, config, executor=None, logger=None) -> "TabRegistry":
        return cls(
            executor=executor,
            grace_seconds=config["DELETE_SUPPRESSION_SECONDS"],
            keepalive_seconds=config["STREAM_KEEPALIVE_SECONDS"],
            idle_seconds=config["TAB_IDLE_SECONDS"],
            logger=logger,
        )

    def open_tab(self, user, store, subscribe=None) -> TabSession:
        tab = TabSession(
            secrets.token_urlsafe(12),
            user,
            store,
            subscribe=subscribe,
            executor=self.executor,
            clock=self._clock,
            grace_seconds=self.grace_seconds,
            keepalive_seconds=self.keepalive_seconds,
            logger=self._logger,
        )
        with self._lock:
            self._tabs[tab.tab_id] = tab
        tab.open()
        self._logger.info("Opened tab %s for %s", tab.tab_id, user.id)
        return tab

    def get(self, tab_id: str, owner_id: str) -> TabSession | None:
        with self._lock:
            tab = self._tabs.get(tab_id)
        if tab is None or tab.closed or tab.owner_id != owner_id:
            return None
        return tab

    def close(self, tab_id: str) -> bool:
        with self._lock:
            tab = self._tabs.pop(tab_id, None)
        if tab is None:
            return False
        tab.close()
        self._logger.info("Closed tab %s", tab_id)
        return True

    def close_owner(self, owner_id: str) -> int:
        with self._lock:
            tab_ids = [
                tab_id for tab_id, tab in self._tabs.items() if tab.owner_id == owner_id
            ]
        return sum(1 for tab_id in tab_ids if self.close(tab_id))

    def update_token(self, owner_id: str, store, access_token: str) -> int:
        with self._lock:
            tabs = [tab for tab in self._tabs.values() if tab.owner_id == owner_id]
        updated = sum(1 for tab in tabs if tab.update_token(store, access_token))
        if updated:
            self._logger.info("Refreshed session on %d tabs for %s", updated, owner_id)
        return updated

    def close_all(self) -> None:
        with self._lock:
            tab_ids = list(self._tabs)
        for tab_id in tab_ids:
            self.close(tab_id)

    def sweep(self) -> int:
        with self._lock:
            tabs = list(self._tabs.values())
        closed = 0
        for tab in tabs:
            if tab.idle_seconds() > self.idle_seconds:
                closed += int(self.close(tab.tab_id))
            else:
                tab.sweep()
        return closed

    def __len__(self) -> int:
        with self._lock:
            return len(self._tabs)
