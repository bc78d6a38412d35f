from flask import current_app, redirect, render_template, request, session, url_for
from flask_login import current_user, login_user, logout_user

from markstream.auth import auth_bp
from markstream.errors import AuthError
from markstream.extensions import current_backend, current_tabs
from markstream.models import SessionUser
from markstream.services.backend import new_pkce_pair
from markstream.services.security import (
    PKCE_VERIFIER_KEY,
    clear_session_tokens,
    current_access_token,
    store_session_tokens,
)


@auth_bp.route("/")
def index():
    if current_user.is_authenticated:
        return redirect(url_for("web.bookmarks"))
    return render_template("index.html")


@auth_bp.route("/auth/login", methods=["POST"])
def login():
    verifier, challenge = new_pkce_pair()
    session[PKCE_VERIFIER_KEY] = verifier
    provider = current_app.config["OAUTH_PROVIDER"]
    redirect_to = url_for("auth.callback", _external=True)
    current_app.logger.info("Starting %s OAuth flow", provider)
    return redirect(
        current_backend().auth.authorize_url(provider, redirect_to, challenge)
    )


@auth_bp.route("/auth/callback")
def callback():
    code = request.args.get("code")
    verifier = session.pop(PKCE_VERIFIER_KEY, None)

    if code and verifier:
        auth = current_backend().auth
        try:
            payload = auth.exchange_code(code, verifier)
            store_session_tokens(payload)
            user_payload = payload.get("user") or auth.get_user(payload["access_token"])
            user = SessionUser.from_payload(user_payload)
            login_user(user)
            current_app.logger.info("Signed in as %s", user.email or user.id)
        except (AuthError, KeyError) as exc:
            current_app.logger.warning("OAuth code exchange failed: %s", exc)
            clear_session_tokens()
    elif code:
        current_app.logger.warning("OAuth callback without a pending login")
    else:
        current_app.logger.info(
            "OAuth callback without a code: %s", request.args.get("error") or "none"
        )

    return redirect(url_for("web.bookmarks"))


@auth_bp.route("/auth/logout", methods=["POST"])
def logout():
    access_token = current_access_token()
    if current_user.is_authenticated:
        closed = current_tabs().close_owner(current_user.id)
        current_app.logger.info(
            "Signing out %s, closed %d tabs", current_user.id, closed
        )
    if access_token:
        try:
            current_backend().auth.sign_out(access_token)
        except AuthError as exc:
            current_app.logger.warning("Provider sign-out failed: %s", exc)

    logout_user()
    session.clear()
    return redirect(url_for("auth.index"))
