import os
from pathlib import Path

from dotenv import load_dotenv

BASE_DIR = os.path.abspath(os.path.dirname(__file__))

# .env next to this file is optional; real env vars win
load_dotenv(Path(BASE_DIR) / ".env")


def _env_bool(name: str, default: str) -> bool:
    return os.getenv(name, default).lower() == "true"


class Config:
    # Secrets
    SECRET_KEY = os.getenv("SECRET_KEY", "dev-only-change-me")

    # SQLite database file stored next to the app as authgate.db
    SQLALCHEMY_DATABASE_URI = os.getenv(
        "DATABASE_URL",
        "sqlite:///" + os.path.join(BASE_DIR, "authgate.db")
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")

    # Session cookie name for our auth token
    AUTH_COOKIE_NAME = "authgate_session"

    # 7 days session lifetime
    SESSION_LIFETIME_SECONDS = 7 * 24 * 60 * 60

    # Idle timeout: 24 hours
    IDLE_TIMEOUT_SECONDS = 24 * 60 * 60

    # Session/cookie security defaults
    SESSION_COOKIE_HTTPONLY = True
    SESSION_COOKIE_SAMESITE = "Lax"
    SESSION_COOKIE_SECURE = _env_bool("SESSION_COOKIE_SECURE", "false")  # set True when using HTTPS

    # Password hashing (bcrypt cost factor)
    BCRYPT_ROUNDS = int(os.getenv("BCRYPT_ROUNDS", "12"))

    # Password policy
    PASSWORD_MIN_LEN = 8
    PASSWORD_MAX_LEN = 72
    PASSWORD_MAX_BYTES = 72  # bcrypt input limit
    PASSWORD_REQUIRE_DIGIT = True

    # Login throttling keyed by network origin (looser limit, longer block)
    IP_RATE_MAX_ATTEMPTS = int(os.getenv("IP_RATE_MAX_ATTEMPTS", "10"))
    IP_RATE_WINDOW_SECONDS = int(os.getenv("IP_RATE_WINDOW_SECONDS", str(15 * 60)))
    IP_RATE_BLOCK_SECONDS = int(os.getenv("IP_RATE_BLOCK_SECONDS", str(60 * 60)))

    # Login throttling keyed by normalized email (tighter limit, shorter block)
    EMAIL_RATE_MAX_ATTEMPTS = int(os.getenv("EMAIL_RATE_MAX_ATTEMPTS", "5"))
    EMAIL_RATE_WINDOW_SECONDS = int(os.getenv("EMAIL_RATE_WINDOW_SECONDS", str(15 * 60)))
    EMAIL_RATE_BLOCK_SECONDS = int(os.getenv("EMAIL_RATE_BLOCK_SECONDS", str(30 * 60)))

    # Email OTP (verification + password reset)
    OTP_TTL_SECONDS = int(os.getenv("OTP_TTL_SECONDS", "600"))  # 10 minutes
    OTP_RETENTION_SECONDS = int(os.getenv("OTP_RETENTION_SECONDS", str(24 * 60 * 60)))

    # Email (SMTP)
    SMTP_HOST = os.getenv("SMTP_HOST")
    SMTP_PORT = int(os.getenv("SMTP_PORT", "587"))
    SMTP_USERNAME = os.getenv("SMTP_USERNAME")
    SMTP_PASSWORD = os.getenv("SMTP_PASSWORD")
    SMTP_FROM_EMAIL = os.getenv("SMTP_FROM_EMAIL")
    SMTP_USE_TLS = _env_bool("SMTP_USE_TLS", "true")
    SMTP_TIMEOUT_SECONDS = int(os.getenv("SMTP_TIMEOUT_SECONDS", "10"))

    # Log emails instead of sending them (local development)
    EMAIL_CONSOLE_ONLY = _env_bool("EMAIL_CONSOLE_ONLY", "false")

    # Google sign-in (OpenID Connect)
    GOOGLE_CLIENT_ID = os.getenv("GOOGLE_CLIENT_ID")
    GOOGLE_CLIENT_SECRET = os.getenv("GOOGLE_CLIENT_SECRET")
    GOOGLE_REDIRECT_URI = os.getenv("GOOGLE_REDIRECT_URI")

    # Reuse an existing account with the same email on first Google sign-in.
    # See DESIGN.md before turning this on in production.
    FEDERATED_MERGE_ON_EMAIL = _env_bool("FEDERATED_MERGE_ON_EMAIL", "true")

    # Shared secret for the scheduler calling /cron/*
    CRON_SECRET = os.getenv("CRON_SECRET")

    # Where the browser lands after Google sign-in
    POST_LOGIN_REDIRECT = os.getenv("POST_LOGIN_REDIRECT", "/dashboard")

    # Number of reverse proxies in front of the app that append to
    # X-Forwarded-For. 0 means the header is ignored and the socket peer is
    # the client address used for throttling and audit.
    PROXY_FIX_X_FOR = int(os.getenv("PROXY_FIX_X_FOR", "0"))

    # Basic app settings
    DEBUG = False


class TestConfig(Config):
    TESTING = True
    SQLALCHEMY_DATABASE_URI = "sqlite://"
    BCRYPT_ROUNDS = 4  # keep the suite fast; production stays at 12
    SMTP_HOST = None
    GOOGLE_CLIENT_ID = "test-client-id"
    GOOGLE_CLIENT_SECRET = "test-client-secret"
    CRON_SECRET = "test-cron-secret"
    LOG_LEVEL = "WARNING"
