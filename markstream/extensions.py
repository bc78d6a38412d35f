from flask import current_app
from flask_login import LoginManager

login_manager = LoginManager()
login_manager.login_view = "auth.index"
login_manager.login_message = None


def current_backend():
    return current_app.extensions["supabase"]


def current_tabs():
    return current_app.extensions["tabs"]
