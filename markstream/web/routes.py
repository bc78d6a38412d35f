from __future__ import annotations

from functools import partial

from flask import (
    Response,
    current_app,
    jsonify,
    redirect,
    render_template,
    request,
    stream_with_context,
    url_for,
)
from flask_login import current_user

from markstream.errors import StoreError, ValidationError
from markstream.extensions import current_backend, current_tabs
from markstream.services.common import default_title, normalize_url
from markstream.services.security import current_access_token
from markstream.web import web_bp


def _json_error(message: str, status_code: int = 400):
    return jsonify({"ok": False, "error": message}), status_code


def _request_value(field_name: str) -> str:
    raw = request.form.get(field_name)
    if raw is None:
        payload = request.get_json(silent=True) or {}
        raw = payload.get(field_name)
    return str(raw) if raw is not None else ""


def _current_tab(tab_id: str):
    return current_tabs().get(tab_id, current_user.id)


@web_bp.before_request
def session_gate():
    if not current_user.is_authenticated:
        current_app.logger.info("No session for %s, redirecting", request.path)
        return redirect(url_for("auth.index"))


@web_bp.route("")
def bookmarks():
    return render_template("bookmarks.html", user=current_user)


@web_bp.route("/stream")
def stream():
    backend = current_backend()
    tabs = current_tabs()
    access_token = current_access_token()
    user = current_user._get_current_object()

    tab = tabs.open_tab(
        user,
        backend.store_for(access_token),
        subscribe=partial(
            backend.subscribe, access_token, user.id, logger=current_app.logger
        ),
    )

    def generate():
        try:
            yield from tab.stream()
        finally:
            tabs.close(tab.tab_id)

    return Response(
        stream_with_context(generate()),
        mimetype="text/event-stream",
        headers={"Cache-Control": "no-cache", "X-Accel-Buffering": "no"},
    )


@web_bp.route("/tabs/<tab_id>/bookmarks", methods=["POST"])
def add_bookmark(tab_id: str):
    tab = _current_tab(tab_id)
    if tab is None:
        return _json_error("tab not found", 404)

    try:
        url = normalize_url(_request_value("url"))
    except ValidationError as exc:
        return _json_error(str(exc), 400)
    title = default_title(url, _request_value("title"))

    current_app.logger.info("Saving bookmark %s", url)
    store = current_backend().store_for(current_access_token())
    try:
        bookmark = store.create(url, title, current_user.id)
    except StoreError as exc:
        current_app.logger.error("Error saving bookmark %s: %s", url, exc)
        return _json_error("Could not save the bookmark. Please try again.", 502)

    tab.add_confirmed(bookmark)
    return jsonify({"ok": True, "bookmark": bookmark.as_dict()}), 201


@web_bp.route("/tabs/<tab_id>/bookmarks/<bookmark_id>/delete", methods=["POST"])
def delete_bookmark(tab_id: str, bookmark_id: str):
    tab = _current_tab(tab_id)
    if tab is None:
        return _json_error("tab not found", 404)
    tab.delete(bookmark_id)
    return jsonify({"ok": True, "id": bookmark_id}), 202


@web_bp.route("/tabs/<tab_id>/search", methods=["POST"])
def search(tab_id: str):
    tab = _current_tab(tab_id)
    if tab is None:
        return _json_error("tab not found", 404)
    query = _request_value("q").strip()
    tab.search(query)
    return jsonify({"ok": True, "q": query})
