from concurrent.futures import ThreadPoolExecutor

from flask import Flask

from markstream.auth import auth_bp
from markstream.config import Config
from markstream.extensions import login_manager
from markstream.jobs.scheduler import start_scheduler
from markstream.services.backend import SupabaseBackend
from markstream.services.live import TabRegistry
from markstream.web import web_bp


def create_app(config_object=Config):
    app = Flask(__name__, template_folder="../templates", static_folder="../static")
    app.config.from_object(config_object)
    app.logger.setLevel(app.config["LOG_LEVEL"])

    login_manager.init_app(app)

    workers = app.config["TAB_WORKERS"]
    executor = None
    if workers > 0:
        executor = ThreadPoolExecutor(
            max_workers=workers, thread_name_prefix="markstream-store"
        )
    app.extensions["supabase"] = SupabaseBackend.from_config(app.config)
    app.extensions["tabs"] = TabRegistry.from_config(
        app.config, executor=executor, logger=app.logger
    )

    app.register_blueprint(auth_bp)
    app.register_blueprint(web_bp)

    @app.context_processor
    def inject_globals():
        return {"app_name": "MarkStream"}

    start_scheduler(app)
    return app
