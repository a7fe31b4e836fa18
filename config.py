"""Environment-aware configuration for the CivicPulse API."""
import os
from datetime import timedelta


def _optional_int(name: str):
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return None
    return int(raw)


class BaseConfig:
    def __init__(self) -> None:
        # Defaults for local dev: SQLite db and a non-empty secret. Override via env for production.
        self.SECRET_KEY = os.getenv("SECRET_KEY", "dev-secret-key-change-me")
        db_url = os.getenv("DATABASE_URL")
        if db_url:
            self.SQLALCHEMY_DATABASE_URI = db_url
        else:
            self.SQLALCHEMY_DATABASE_URI = os.getenv(
                "SQLITE_URL",
                f"sqlite:///{os.path.join(os.getcwd(), 'instance', 'civicpulse.db')}",
            )
        self.SQLALCHEMY_TRACK_MODIFICATIONS = False
        # Pool sizing only applies to server databases; SQLite pools reject these arguments.
        if self.SQLALCHEMY_DATABASE_URI.startswith("sqlite"):
            self.SQLALCHEMY_ENGINE_OPTIONS = {}
        else:
            self.SQLALCHEMY_ENGINE_OPTIONS = {
                "pool_size": int(os.getenv("DB_POOL_SIZE", 10)),
                "max_overflow": int(os.getenv("DB_MAX_OVERFLOW", 20)),
                "pool_timeout": int(os.getenv("DB_POOL_TIMEOUT", 30)),
                "pool_recycle": int(os.getenv("DB_POOL_RECYCLE", 1800)),
                "pool_pre_ping": True,
            }
        self.SESSION_COOKIE_HTTPONLY = True
        self.REMEMBER_COOKIE_HTTPONLY = True
        self.SESSION_COOKIE_SAMESITE = "Lax"
        self.PERMANENT_SESSION_LIFETIME = timedelta(days=30)
        self.REMEMBER_COOKIE_DURATION = timedelta(days=30)
        self.PREFERRED_URL_SCHEME = os.getenv("PREFERRED_URL_SCHEME", "https")
        self.WTF_CSRF_TIME_LIMIT = 3600
        self.WTF_CSRF_ENABLED = True
        self.JSON_SORT_KEYS = False

        self.GEMINI_API_KEY = os.getenv("GEMINI_API_KEY", "")
        self.GEMINI_MODEL = os.getenv("GEMINI_MODEL", "gemini-2.5-flash")
        self.AI_TIMEOUT_SECONDS = float(os.getenv("AI_TIMEOUT_SECONDS", 8))
        self.GOOGLE_MAPS_API_KEY = os.getenv("GOOGLE_MAPS_API_KEY", "")
        self.GOOGLE_GEOCODE_URL = os.getenv(
            "GOOGLE_GEOCODE_URL", "https://maps.googleapis.com/maps/api/geocode/json"
        )
        self.GOOGLE_DIRECTIONS_URL = os.getenv(
            "GOOGLE_DIRECTIONS_URL", "https://maps.googleapis.com/maps/api/directions/json"
        )
        self.MAPS_TIMEOUT_SECONDS = float(os.getenv("MAPS_TIMEOUT_SECONDS", 6))
        self.ROUTE_AVOID_RADIUS_METERS = float(os.getenv("ROUTE_AVOID_RADIUS_METERS", 100))

        self.SIMILAR_ISSUE_LIMIT = int(os.getenv("SIMILAR_ISSUE_LIMIT", 3))
        self.TRIAGE_RANDOM_SEED = _optional_int("TRIAGE_RANDOM_SEED")
        self.ANALYZE_ON_SUBMIT = os.getenv("ANALYZE_ON_SUBMIT", "true").lower() == "true"
        self.ISSUES_PER_PAGE = int(os.getenv("ISSUES_PER_PAGE", 20))
        self.ISSUES_MAX_PER_PAGE = int(os.getenv("ISSUES_MAX_PER_PAGE", 100))
        self.VOTE_RATE_LIMIT = int(os.getenv("VOTE_RATE_LIMIT", 120))
        self.REPORT_RATE_LIMIT = int(os.getenv("REPORT_RATE_LIMIT", 30))
        self.MAX_IMAGE_UPLOAD_BYTES = int(os.getenv("MAX_IMAGE_UPLOAD_BYTES", 8 * 1024 * 1024))
        self.MAX_CONTENT_LENGTH = int(os.getenv("MAX_REQUEST_BYTES", 16 * 1024 * 1024))

        self.LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
        self.LOG_DIR = os.getenv("LOG_DIR", os.path.join(os.getcwd(), "logs"))
        self.DEFAULT_ADMIN_EMAIL = os.getenv("DEFAULT_ADMIN_EMAIL", "admin@civicpulse.local")
        self.DEFAULT_ADMIN_PASSWORD = os.getenv("DEFAULT_ADMIN_PASSWORD", "")


class DevelopmentConfig(BaseConfig):
    def __init__(self) -> None:
        super().__init__()
        self.DEBUG = True
        self.ENV = "development"
        self.SESSION_COOKIE_SECURE = False
        self.REMEMBER_COOKIE_SECURE = False


class ProductionConfig(BaseConfig):
    def __init__(self) -> None:
        super().__init__()
        self.DEBUG = False
        self.ENV = "production"
        self.SESSION_COOKIE_SECURE = True
        self.REMEMBER_COOKIE_SECURE = True


class TestingConfig(BaseConfig):
    def __init__(self) -> None:
        super().__init__()
        self.TESTING = True
        self.DEBUG = False
        self.ENV = "testing"
        self.SQLALCHEMY_DATABASE_URI = os.getenv("TEST_DATABASE_URL", "sqlite:///:memory:")
        self.SQLALCHEMY_ENGINE_OPTIONS = {}
        self.WTF_CSRF_ENABLED = False
        self.SESSION_COOKIE_SECURE = False
        self.REMEMBER_COOKIE_SECURE = False
        self.PREFERRED_URL_SCHEME = "http"
        self.GEMINI_API_KEY = ""
        self.GOOGLE_MAPS_API_KEY = ""
        self.TRIAGE_RANDOM_SEED = 7
        self.DEFAULT_ADMIN_PASSWORD = ""
