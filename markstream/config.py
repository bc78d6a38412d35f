import os


class Config:
    SECRET_KEY = os.environ.get("SECRET_KEY", "default-secret-key")
    SUPABASE_URL = os.environ.get("SUPABASE_URL", "")
    SUPABASE_ANON_KEY = os.environ.get("SUPABASE_ANON_KEY", "")
    OAUTH_PROVIDER = os.environ.get("OAUTH_PROVIDER", "google")
    BOOKMARKS_TABLE = os.environ.get("BOOKMARKS_TABLE", "bookmarks")
    BACKEND_TIMEOUT = float(os.environ.get("BACKEND_TIMEOUT", "10"))
    DELETE_SUPPRESSION_SECONDS = float(
        os.environ.get("DELETE_SUPPRESSION_SECONDS", "2")
    )
    REALTIME_ENABLED = os.environ.get("REALTIME_ENABLED", "1") == "1"
    REALTIME_HEARTBEAT_SECONDS = float(
        os.environ.get("REALTIME_HEARTBEAT_SECONDS", "25")
    )
    REALTIME_RECONNECT_SECONDS = float(
        os.environ.get("REALTIME_RECONNECT_SECONDS", "5")
    )
    STREAM_KEEPALIVE_SECONDS = float(os.environ.get("STREAM_KEEPALIVE_SECONDS", "15"))
    TAB_IDLE_SECONDS = int(os.environ.get("TAB_IDLE_SECONDS", "120"))
    TAB_WORKERS = int(os.environ.get("TAB_WORKERS", "8"))
    SCHEDULER_ENABLED = os.environ.get("SCHEDULER_ENABLED", "1") == "1"
    SWEEP_INTERVAL_SECONDS = int(os.environ.get("SWEEP_INTERVAL_SECONDS", "5"))
    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")


class TestConfig(Config):
    TESTING = True
    SECRET_KEY = "test-secret-key"
    SUPABASE_URL = "https://project.supabase.test"
    SUPABASE_ANON_KEY = "anon-test-key"
    REALTIME_ENABLED = False
    SCHEDULER_ENABLED = False
    STREAM_KEEPALIVE_SECONDS = 0.05
    TAB_WORKERS = 0
