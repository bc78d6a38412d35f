import os

from apscheduler.schedulers.background import BackgroundScheduler


scheduler = BackgroundScheduler()


def run_tab_sweep(app):
    with app.app_context():
        closed = app.extensions["tabs"].sweep()
        if closed:
            app.logger.info("Closed %d idle tabs", closed)


def start_scheduler(app):
    if not app.config.get("SCHEDULER_ENABLED", True):
        return
    if os.environ.get("WERKZEUG_RUN_MAIN") == "false":
        return

    interval_seconds = app.config["SWEEP_INTERVAL_SECONDS"]
    if not scheduler.get_jobs():
        scheduler.add_job(
            run_tab_sweep,
            "interval",
            seconds=interval_seconds,
            kwargs={"app": app},
            id="tab_sweep",
            replace_existing=True,
        )
        scheduler.start()
