import itertools
from datetime import datetime, timedelta, timezone

import pytest

from markstream import create_app
from markstream.config import TestConfig
from markstream.errors import AuthError, StoreError
from markstream.models import Bookmark

USER_A = {
    "id": "user-a",
    "email": "a@example.com",
    "user_metadata": {"full_name": "User A", "avatar_url": "https://img.test/a.png"},
}
USER_B = {"id": "user-b", "email": "b@example.com", "user_metadata": {}}


class FakeAuth:
    def __init__(self):
        self.users = {"token-a": USER_A, "token-b": USER_B}
        self.refresh_tokens = {}
        self.signed_out = []

    def authorize_url(self, provider, redirect_to, code_challenge):
        return (
            f"https://auth.test/authorize?provider={provider}"
            f"&redirect_to={redirect_to}&code_challenge={code_challenge}"
        )

    def exchange_code(self, code, code_verifier):
        if code != "good-code" or not code_verifier:
            raise AuthError("invalid grant")
        return {"access_token": "token-a", "refresh_token": "refresh-a", "user": USER_A}

    def refresh(self, refresh_token):
        if refresh_token not in self.refresh_tokens:
            raise AuthError("invalid refresh token")
        access_token = self.refresh_tokens[refresh_token]
        return {"access_token": access_token, "refresh_token": f"{refresh_token}-next"}

    def get_user(self, access_token):
        if access_token not in self.users:
            raise AuthError("invalid JWT")
        return self.users[access_token]

    def sign_out(self, access_token):
        self.signed_out.append(access_token)


class FakeStore:
    def __init__(self):
        self.rows = []
        self.fail_create = False
        self.fail_delete = False
        self.created = []
        self.deleted = []
        self._ids = itertools.count(1)
        self._clock = datetime(2026, 1, 1, 10, 0, tzinfo=timezone.utc)

    def seed(self, owner_id, title, url=None):
        self._clock += timedelta(minutes=1)
        row = Bookmark(
            id=str(next(self._ids)),
            url=url or f"https://{title.lower()}.example",
            title=title,
            created_at=self._clock,
            owner_id=owner_id,
        )
        self.rows.append(row)
        return row

    def list(self, owner_id):
        rows = [row for row in self.rows if row.owner_id == owner_id]
        return sorted(rows, key=lambda row: row.created_at, reverse=True)

    def create(self, url, title, owner_id):
        if self.fail_create:
            raise StoreError("insert failed", status_code=500)
        row = self.seed(owner_id, title, url=url)
        self.created.append(row)
        return row

    def delete(self, bookmark_id):
        if self.fail_delete:
            raise StoreError("delete failed", status_code=500)
        self.deleted.append(bookmark_id)
        self.rows = [row for row in self.rows if row.id != bookmark_id]


class FakeSubscription:
    def __init__(self, access_token, owner_id, on_event):
        self.access_token = access_token
        self.owner_id = owner_id
        self.on_event = on_event
        self.closed = False
        self.tokens = []

    def update_token(self, access_token):
        self.tokens.append(access_token)

    def close(self):
        self.closed = True


class FakeBackend:
    def __init__(self):
        self.auth = FakeAuth()
        self.store = FakeStore()
        self.store_tokens = []
        self.subscriptions = []

    def store_for(self, access_token):
        self.store_tokens.append(access_token)
        return self.store

    def subscribe(self, access_token, owner_id, on_event, logger=None):
        subscription = FakeSubscription(access_token, owner_id, on_event)
        self.subscriptions.append(subscription)
        return subscription


@pytest.fixture
def backend():
    return FakeBackend()


@pytest.fixture
def app(backend):
    app = create_app(TestConfig)
    app.extensions["supabase"] = backend
    yield app
    app.extensions["tabs"].close_all()


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def signed_in(client):
    with client.session_transaction() as sess:
        sess["sb_access_token"] = "token-a"
        sess["sb_refresh_token"] = "refresh-a"
        sess["_user_id"] = "user-a"
        sess["_fresh"] = True
    return client
