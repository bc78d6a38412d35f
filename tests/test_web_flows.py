from functools import partial

from markstream.jobs.scheduler import run_tab_sweep
from markstream.models import SessionUser


def _open_tab(app, backend, user_id="user-a"):
    return app.extensions["tabs"].open_tab(SessionUser(user_id), backend.store)


def test_entry_page_is_public(client):
    response = client.get("/")

    assert response.status_code == 200
    assert b"Continue with Google" in response.data


def test_gate_redirects_anonymous_visitors(client):
    for path in ["/bookmarks", "/bookmarks/stream"]:
        response = client.get(path, follow_redirects=False)
        assert response.status_code == 302
        assert response.headers["Location"].endswith("/")

    response = client.post("/bookmarks/tabs/x/search", json={"q": "x"})
    assert response.status_code == 302


def test_gate_redirects_when_provider_rejects_token(client, backend):
    backend.auth.users.pop("token-a")
    with client.session_transaction() as sess:
        sess["sb_access_token"] = "token-a"
        sess["_user_id"] = "user-a"

    response = client.get("/bookmarks", follow_redirects=False)

    assert response.status_code == 302
    with client.session_transaction() as sess:
        assert "sb_access_token" not in sess


def test_gate_refreshes_expired_session(client, backend):
    backend.auth.refresh_tokens["refresh-old"] = "token-a"
    with client.session_transaction() as sess:
        sess["sb_access_token"] = "expired"
        sess["sb_refresh_token"] = "refresh-old"
        sess["_user_id"] = "user-a"

    response = client.get("/bookmarks")

    assert response.status_code == 200
    with client.session_transaction() as sess:
        assert sess["sb_access_token"] == "token-a"
        assert sess["sb_refresh_token"] == "refresh-old-next"


def test_signed_in_visitor_skips_entry_page(signed_in):
    response = signed_in.get("/", follow_redirects=False)

    assert response.status_code == 302
    assert response.headers["Location"].endswith("/bookmarks")


def test_list_page_renders_for_signed_in_user(signed_in):
    response = signed_in.get("/bookmarks")

    assert response.status_code == 200
    assert b"Your Bookmarks" in response.data
    assert b"https://img.test/a.png" in response.data


def test_login_starts_oauth_with_pkce(client):
    response = client.post("/auth/login", follow_redirects=False)

    assert response.status_code == 302
    location = response.headers["Location"]
    assert location.startswith("https://auth.test/authorize?provider=google")
    assert "redirect_to=http://localhost/auth/callback" in location
    with client.session_transaction() as sess:
        assert sess["sb_code_verifier"]


def test_callback_exchanges_code_and_lands_on_list(client):
    client.post("/auth/login")

    response = client.get("/auth/callback?code=good-code", follow_redirects=False)

    assert response.status_code == 302
    assert response.headers["Location"].endswith("/bookmarks")
    with client.session_transaction() as sess:
        assert sess["sb_access_token"] == "token-a"
        assert sess["_user_id"] == "user-a"
        assert "sb_code_verifier" not in sess
    assert client.get("/bookmarks").status_code == 200


def test_callback_with_bad_code_ends_on_entry_page(client):
    client.post("/auth/login")

    response = client.get("/auth/callback?code=bad-code", follow_redirects=True)

    assert response.status_code == 200
    assert b"Continue with Google" in response.data


def test_add_with_blank_url_is_rejected_before_store(app, backend, signed_in):
    tab = _open_tab(app, backend)

    response = signed_in.post(
        f"/bookmarks/tabs/{tab.tab_id}/bookmarks", json={"url": "  ", "title": ""}
    )

    assert response.status_code == 400
    assert backend.store.created == []


def test_add_normalizes_url_and_defaults_title(app, backend, signed_in):
    tab = _open_tab(app, backend)
    tab.drain()

    response = signed_in.post(
        f"/bookmarks/tabs/{tab.tab_id}/bookmarks", json={"url": "x.com", "title": ""}
    )

    assert response.status_code == 201
    payload = response.get_json()["bookmark"]
    assert payload["url"] == "https://x.com"
    assert payload["title"] == "x.com"
    assert payload["owner_id"] == "user-a"

    tab.drain()
    assert tab.reconciler.ids() == [payload["id"]]


def test_add_store_failure_returns_error(app, backend, signed_in):
    tab = _open_tab(app, backend)
    backend.store.fail_create = True

    response = signed_in.post(
        f"/bookmarks/tabs/{tab.tab_id}/bookmarks",
        data={"url": "https://x.com", "title": "X"},
    )

    assert response.status_code == 502
    assert response.get_json()["ok"] is False


def test_delete_is_accepted_and_applied_on_tab(app, backend, signed_in):
    row = backend.store.seed("user-a", "Doomed")
    tab = _open_tab(app, backend)
    tab.drain()

    response = signed_in.post(f"/bookmarks/tabs/{tab.tab_id}/bookmarks/{row.id}/delete")

    assert response.status_code == 202
    tab.drain()
    assert tab.reconciler.ids() == []
    assert backend.store.deleted == [row.id]


def test_search_sets_tab_query(app, backend, signed_in):
    tab = _open_tab(app, backend)

    response = signed_in.post(f"/bookmarks/tabs/{tab.tab_id}/search", json={"q": "py"})

    assert response.get_json() == {"ok": True, "q": "py"}
    tab.drain()
    assert tab.query == "py"


def test_intents_for_unknown_or_foreign_tabs_are_not_found(app, backend, signed_in):
    foreign = _open_tab(app, backend, user_id="user-b")

    assert signed_in.post("/bookmarks/tabs/nope/search", json={"q": "x"}).status_code == 404
    response = signed_in.post(f"/bookmarks/tabs/{foreign.tab_id}/bookmarks/1/delete")
    assert response.status_code == 404


def test_stream_opens_tab_and_closes_it_on_disconnect(app, backend, signed_in):
    backend.store.seed("user-a", "Streamed")
    tabs = app.extensions["tabs"]

    response = signed_in.get("/bookmarks/stream", buffered=False)
    chunks = iter(response.response)

    assert response.mimetype == "text/event-stream"
    assert next(chunks).startswith(b"event: hello")
    assert b"Streamed" in next(chunks)
    assert len(tabs) == 1
    assert backend.store_tokens == ["token-a"]
    assert backend.subscriptions[0].owner_id == "user-a"

    response.close()

    assert len(tabs) == 0
    assert backend.subscriptions[0].closed is True


def test_logout_closes_tabs_and_revokes_session(app, backend, signed_in):
    tab = _open_tab(app, backend)

    response = signed_in.post("/auth/logout", follow_redirects=False)

    assert response.status_code == 302
    assert tab.closed is True
    assert backend.auth.signed_out == ["token-a"]
    assert signed_in.get("/bookmarks", follow_redirects=False).status_code == 302


def test_scheduled_sweep_closes_idle_tabs(app, backend):
    tabs = app.extensions["tabs"]
    tabs.idle_seconds = -1
    tab = _open_tab(app, backend)

    run_tab_sweep(app)

    assert tab.closed is True
    assert len(tabs) == 0


def test_refreshed_session_reaches_open_tabs(app, backend, client):
    backend.auth.users["token-new"] = backend.auth.users.pop("token-a")
    backend.auth.refresh_tokens["refresh-a"] = "token-new"
    tab = app.extensions["tabs"].open_tab(
        SessionUser("user-a"),
        backend.store_for("token-a"),
        subscribe=partial(backend.subscribe, "token-a", "user-a"),
    )
    with client.session_transaction() as sess:
        sess["sb_access_token"] = "token-a"
        sess["sb_refresh_token"] = "refresh-a"
        sess["_user_id"] = "user-a"

    response = client.post(
        f"/bookmarks/tabs/{tab.tab_id}/bookmarks", json={"url": "x.com"}
    )

    assert response.status_code == 201
    assert backend.store_tokens == ["token-a", "token-new", "token-new"]
    assert backend.subscriptions[0].tokens == ["token-new"]
    with client.session_transaction() as sess:
        assert sess["sb_access_token"] == "token-new"
