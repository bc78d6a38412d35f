"""Per-tab subscription to the backend's bookmark change feed.

The feed speaks the Phoenix channel protocol over a websocket: the listener
joins one topic with ``postgres_changes`` filters for inserts and deletes on
the owner's rows, keeps the socket alive with heartbeats, and hands every
parsed change to ``on_event`` from its own thread.
"""
from __future__ import annotations

import itertools
import json
import threading
import time
from dataclasses import dataclass
from urllib.parse import urlencode

from websockets.exceptions import WebSocketException
from websockets.sync.client import connect as ws_connect

from markstream.models import Bookmark

EVENT_INSERT = "INSERT"
EVENT_DELETE = "DELETE"


@dataclass(frozen=True)
class ChangeEvent:
    kind: str
    owner_id: str | None
    new: Bookmark | None = None
    old_id: str | None = None


def websocket_url(base_url: str, api_key: str) -> str:
    root = base_url.rstrip("/")
    if root.startswith("https://"):
        root = "wss://" + root.removeprefix("https://")
    elif root.startswith("http://"):
        root = "ws://" + root.removeprefix("http://")
    query = urlencode({"apikey": api_key, "vsn": "1.0.0"})
    return f"{root}/realtime/v1/websocket?{query}"


def owner_filter(owner_id: str) -> str:
    return f"owner_id=eq.{owner_id}"


def join_message(
    topic: str, table: str, owner_id: str, access_token: str, ref: str
) -> dict:
    changes = [
        {
            "event": kind,
            "schema": "public",
            "table": table,
            "filter": owner_filter(owner_id),
        }
        for kind in (EVENT_INSERT, EVENT_DELETE)
    ]
    return {
        "topic": topic,
        "event": "phx_join",
        "ref": ref,
        "join_ref": ref,
        "payload": {
            "config": {
                "broadcast": {"self": False},
                "presence": {"key": ""},
                "postgres_changes": changes,
            },
            "access_token": access_token,
        },
    }


def parse_change_message(raw, table: str = "bookmarks") -> ChangeEvent | None:
    try:
        message = json.loads(raw)
    except (TypeError, ValueError):
        return None
    if not isinstance(message, dict) or message.get("event") != "postgres_changes":
        return None

    data = (message.get("payload") or {}).get("data") or {}
    if data.get("table") and data["table"] != table:
        return None

    kind = (data.get("type") or "").upper()
    if kind == EVENT_INSERT:
        try:
            bookmark = Bookmark.from_row(data.get("record") or {})
        except (KeyError, TypeError, ValueError):
            return None
        return ChangeEvent(kind=EVENT_INSERT, owner_id=bookmark.owner_id, new=bookmark)

    if kind == EVENT_DELETE:
        old = data.get("old_record") or {}
        if not old.get("id"):
            return None
        owner_id = old.get("owner_id")
        return ChangeEvent(
            kind=EVENT_DELETE,
            owner_id=str(owner_id) if owner_id is not None else None,
            old_id=str(old["id"]),
        )

    return None


class RealtimeListener:
    def __init__(
        self,
        base_url: str,
        api_key: str,
        access_token: str,
        owner_id: str,
        on_event,
        table: str = "bookmarks",
        heartbeat_seconds: float = 25.0,
        reconnect_seconds: float = 5.0,
        logger=None,
        connect=ws_connect,
    ):
        self.url = websocket_url(base_url, api_key)
        self.access_token = access_token
        self.owner_id = owner_id
        self.on_event = on_event
        self.table = table
        self.heartbeat_seconds = heartbeat_seconds
        self.reconnect_seconds = reconnect_seconds
        self.logger = logger
        self.topic = f"realtime:{table}:{owner_id}"
        self._connect = connect
        self._refs = itertools.count(1)
        self._stopped = threading.Event()
        self._socket = None
        self._thread: threading.Thread | None = None

    @property
    def closed(self) -> bool:
        return self._stopped.is_set()

    def start(self) -> None:
        self._thread = threading.Thread(
            target=self.run,
            daemon=True,
            name=f"realtime-{self.owner_id}",
        )
        self._thread.start()

    def close(self) -> None:
        self._stopped.set()
        socket = self._socket
        if socket is not None:
            try:
                socket.close()
            except (WebSocketException, OSError) as exc:
                if self.logger:
                    self.logger.debug("Realtime socket close for %s: %s", self.owner_id, exc)

    def update_token(self, access_token: str) -> None:
        """Use ``access_token`` for the live channel and every later rejoin."""
        self.access_token = access_token
        socket = self._socket
        if socket is None or self._stopped.is_set():
            return
        try:
            socket.send(json.dumps(self._access_token_message()))
        except (WebSocketException, OSError) as exc:
            if self.logger:
                self.logger.warning(
                    "Could not push refreshed token for %s: %s", self.owner_id, exc
                )

    def run(self) -> None:
        while not self._stopped.is_set():
            try:
                self._listen()
            except (WebSocketException, OSError) as exc:
                if self._stopped.is_set():
                    break
                if self.logger:
                    self.logger.warning(
                        "Realtime connection for %s lost: %s", self.owner_id, exc
                    )
            finally:
                self._socket = None
            if self._stopped.wait(self.reconnect_seconds):
                break

    def _listen(self) -> None:
        with self._connect(self.url, open_timeout=10) as socket:
            self._socket = socket
            if self._stopped.is_set():
                return
            ref = str(next(self._refs))
            socket.send(
                json.dumps(
                    join_message(
                        self.topic, self.table, self.owner_id, self.access_token, ref
                    )
                )
            )
            next_heartbeat = time.monotonic() + self.heartbeat_seconds
            while not self._stopped.is_set():
                wait = max(0.0, next_heartbeat - time.monotonic())
                try:
                    raw = socket.recv(timeout=wait)
                except TimeoutError:
                    socket.send(json.dumps(self._heartbeat()))
                    next_heartbeat = time.monotonic() + self.heartbeat_seconds
                    continue
                self._handle(raw)

    def _heartbeat(self) -> dict:
        return {
            "topic": "phoenix",
            "event": "heartbeat",
            "payload": {},
            "ref": str(next(self._refs)),
        }

    def _access_token_message(self) -> dict:
        return {
            "topic": self.topic,
            "event": "access_token",
            "payload": {"access_token": self.access_token},
            "ref": str(next(self._refs)),
        }

    def _handle(self, raw) -> None:
        event = parse_change_message(raw, table=self.table)
        if event is not None:
            self.on_event(event)
            return

        try:
            message = json.loads(raw)
        except (TypeError, ValueError):
            return
        if not isinstance(message, dict) or message.get("topic") != self.topic:
            return
        if message.get("event") == "phx_reply":
            status = (message.get("payload") or {}).get("status")
            if status != "ok" and self.logger:
                self.logger.warning(
                    "Realtime join for %s rejected: %s", self.owner_id, message
                )
        elif message.get("event") in {"phx_error", "system"} and self.logger:
            self.logger.info("Realtime notice for %s: %s", self.owner_id, message)
