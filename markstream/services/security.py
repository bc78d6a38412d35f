from __future__ import annotations

from flask import current_app, session

from markstream.errors import AuthError
from markstream.extensions import current_backend, current_tabs, login_manager
from markstream.models import SessionUser

ACCESS_TOKEN_KEY = "sb_access_token"
REFRESH_TOKEN_KEY = "sb_refresh_token"
PKCE_VERIFIER_KEY = "sb_code_verifier"


def store_session_tokens(payload: dict) -> None:
    session[ACCESS_TOKEN_KEY] = payload.get("access_token")
    session[REFRESH_TOKEN_KEY] = payload.get("refresh_token")


def current_access_token() -> str | None:
    return session.get(ACCESS_TOKEN_KEY)


def clear_session_tokens() -> None:
    session.pop(ACCESS_TOKEN_KEY, None)
    session.pop(REFRESH_TOKEN_KEY, None)


def resolve_session_user() -> SessionUser | None:
    access_token = session.get(ACCESS_TOKEN_KEY)
    if not access_token:
        return None

    auth = current_backend().auth
    try:
        return SessionUser.from_payload(auth.get_user(access_token))
    except AuthError as exc:
        refresh_token = session.get(REFRESH_TOKEN_KEY)
        if not refresh_token:
            current_app.logger.info("Session rejected by provider: %s", exc)
            clear_session_tokens()
            return None

    try:
        refreshed = auth.refresh(refresh_token)
        store_session_tokens(refreshed)
        access_token = refreshed["access_token"]
        user = SessionUser.from_payload(auth.get_user(access_token))
    except (AuthError, KeyError) as exc:
        current_app.logger.info("Session refresh failed: %s", exc)
        clear_session_tokens()
        return None

    current_tabs().update_token(
        user.id, current_backend().store_for(access_token), access_token
    )
    return user


@login_manager.user_loader
def load_user(user_id: str):
    user = resolve_session_user()
    if user is None or user.id != user_id:
        return None
    return user
