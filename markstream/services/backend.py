"""HTTP clients for the managed backend: auth sessions and bookmark rows."""
from __future__ import annotations

import base64
import hashlib
import secrets
from urllib.parse import urlencode

import httpx

from markstream.errors import AuthError, StoreError
from markstream.models import Bookmark
from markstream.services.realtime import RealtimeListener


def new_pkce_pair() -> tuple[str, str]:
    verifier = secrets.token_urlsafe(48)
    digest = hashlib.sha256(verifier.encode("ascii")).digest()
    challenge = base64.urlsafe_b64encode(digest).rstrip(b"=").decode("ascii")
    return verifier, challenge


def _error_message(response: httpx.Response) -> str:
    try:
        payload = response.json()
    except ValueError:
        return response.text or f"HTTP {response.status_code}"
    if isinstance(payload, dict):
        for key in ("msg", "message", "error_description", "error"):
            if payload.get(key):
                return str(payload[key])
    return f"HTTP {response.status_code}"


class AuthClient:
    """Session issuance, validation and revocation against the auth endpoints."""

    def __init__(self, base_url: str, api_key: str, timeout: float = 10.0):
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self.timeout = timeout

    def _request(
        self, method: str, path: str, access_token: str | None = None, **kwargs
    ) -> httpx.Response:
        headers = {"apikey": self.api_key}
        if access_token:
            headers["Authorization"] = f"Bearer {access_token}"
        try:
            with httpx.Client(
                base_url=f"{self.base_url}/auth/v1",
                timeout=self.timeout,
                headers=headers,
            ) as client:
                response = client.request(method, path, **kwargs)
        except httpx.HTTPError as exc:
            raise AuthError(f"auth request failed: {exc}") from exc
        if response.status_code >= 400:
            raise AuthError(_error_message(response))
        return response

    def authorize_url(self, provider: str, redirect_to: str, code_challenge: str) -> str:
        query = urlencode(
            {
                "provider": provider,
                "redirect_to": redirect_to,
                "code_challenge": code_challenge,
                "code_challenge_method": "s256",
            }
        )
        return f"{self.base_url}/auth/v1/authorize?{query}"

    def exchange_code(self, code: str, code_verifier: str) -> dict:
        response = self._request(
            "POST",
            "/token",
            params={"grant_type": "pkce"},
            json={"auth_code": code, "code_verifier": code_verifier},
        )
        return response.json()

    def refresh(self, refresh_token: str) -> dict:
        response = self._request(
            "POST",
            "/token",
            params={"grant_type": "refresh_token"},
            json={"refresh_token": refresh_token},
        )
        return response.json()

    def get_user(self, access_token: str) -> dict:
        if not access_token:
            raise AuthError("no session")
        response = self._request("GET", "/user", access_token=access_token)
        return response.json()

    def sign_out(self, access_token: str) -> None:
        self._request("POST", "/logout", access_token=access_token)


class BookmarkStore:
    """Row access for one signed-in user.

    Every call carries the user's access token, so the backend's row-level
    policies decide what the caller may read or delete.
    """

    def __init__(
        self,
        base_url: str,
        api_key: str,
        access_token: str,
        table: str = "bookmarks",
        timeout: float = 10.0,
    ):
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self.access_token = access_token
        self.table = table
        self.timeout = timeout

    def _request(self, method: str, **kwargs) -> httpx.Response:
        headers = {
            "apikey": self.api_key,
            "Authorization": f"Bearer {self.access_token}",
        }
        headers.update(kwargs.pop("headers", {}))
        try:
            with httpx.Client(
                base_url=f"{self.base_url}/rest/v1",
                timeout=self.timeout,
                headers=headers,
            ) as client:
                response = client.request(method, f"/{self.table}", **kwargs)
        except httpx.HTTPError as exc:
            raise StoreError(f"store request failed: {exc}") from exc
        if response.status_code >= 400:
            raise StoreError(_error_message(response), status_code=response.status_code)
        return response

    def _rows(self, response: httpx.Response) -> list:
        try:
            rows = response.json()
        except ValueError as exc:
            raise StoreError(f"store returned malformed JSON: {exc}") from exc
        if not isinstance(rows, list):
            raise StoreError("store returned an unexpected payload")
        return rows

    def _bookmark(self, row) -> Bookmark:
        try:
            return Bookmark.from_row(row)
        except (KeyError, TypeError, ValueError) as exc:
            raise StoreError(f"store returned a malformed row: {exc!r}") from exc

    def list(self, owner_id: str) -> list[Bookmark]:
        response = self._request(
            "GET",
            params={
                "select": "*",
                "owner_id": f"eq.{owner_id}",
                "order": "created_at.desc",
            },
        )
        return [self._bookmark(row) for row in self._rows(response)]

    def create(self, url: str, title: str, owner_id: str) -> Bookmark:
        response = self._request(
            "POST",
            json={"url": url, "title": title, "owner_id": owner_id},
            headers={"Prefer": "return=representation"},
        )
        rows = self._rows(response)
        if not rows:
            raise StoreError("store returned no row for the new bookmark")
        return self._bookmark(rows[0])

    def delete(self, bookmark_id: str) -> None:
        self._request("DELETE", params={"id": f"eq.{bookmark_id}"})


class SupabaseBackend:
    def __init__(
        self,
        base_url: str,
        api_key: str,
        table: str = "bookmarks",
        timeout: float = 10.0,
        realtime_enabled: bool = True,
        heartbeat_seconds: float = 25.0,
        reconnect_seconds: float = 5.0,
    ):
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self.table = table
        self.timeout = timeout
        self.realtime_enabled = realtime_enabled
        self.heartbeat_seconds = heartbeat_seconds
        self.reconnect_seconds = reconnect_seconds
        self.auth = AuthClient(self.base_url, api_key, timeout=timeout)

    @classmethod
    def from_config(cls, config) -> "SupabaseBackend":
        return cls(
            base_url=config["SUPABASE_URL"],
            api_key=config["SUPABASE_ANON_KEY"],
            table=config["BOOKMARKS_TABLE"],
            timeout=config["BACKEND_TIMEOUT"],
            realtime_enabled=config["REALTIME_ENABLED"],
            heartbeat_seconds=config["REALTIME_HEARTBEAT_SECONDS"],
            reconnect_seconds=config["REALTIME_RECONNECT_SECONDS"],
        )

    def store_for(self, access_token: str) -> BookmarkStore:
        return BookmarkStore(
            self.base_url,
            self.api_key,
            access_token,
            table=self.table,
            timeout=self.timeout,
        )

    def subscribe(self, access_token: str, owner_id: str, on_event, logger):
        if not self.realtime_enabled:
            return None
        listener = RealtimeListener(
            base_url=self.base_url,
            api_key=self.api_key,
            access_token=access_token,
            owner_id=owner_id,
            on_event=on_event,
            table=self.table,
            heartbeat_seconds=self.heartbeat_seconds,
            reconnect_seconds=self.reconnect_seconds,
            logger=logger,
        )
        listener.start()
        return listener
