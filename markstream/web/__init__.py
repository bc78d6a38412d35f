from flask import Blueprint

web_bp = Blueprint("web", __name__, url_prefix="/bookmarks")

from markstream.web import routes  # noqa: E402,F401
