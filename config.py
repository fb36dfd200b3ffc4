import os

from dotenv import load_dotenv

# Load environment variables from a .env file if present
load_dotenv()


def _env_bool(name: str, default: str = "false") -> bool:
    return os.getenv(name, default).strip().lower() in ("1", "true", "yes", "on")


class Config:
    # Flask
    SECRET_KEY = os.getenv("SECRET_KEY", "dev-secret-change-me")
    ENVIRONMENT = os.getenv("ENVIRONMENT", os.getenv("FLASK_ENV", "development"))
    LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()

    # Database: default to SQLite in local folder
    SQLALCHEMY_DATABASE_URI = os.getenv(
        "DATABASE_URL",
        f"sqlite:///{os.path.join(os.path.dirname(__file__), 'app.db')}"
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # Bearer tokens for API users and short-lived payment tokens for checkout
    JWT_SECRET = os.getenv("JWT_SECRET", "dev-jwt-secret-change-me")
    JWT_EXPIRES_HOURS = int(os.getenv("JWT_EXPIRES_HOURS", "168"))
    PAYMENT_TOKEN_EXPIRES_MINUTES = int(os.getenv("PAYMENT_TOKEN_EXPIRES_MINUTES", "60"))

    # Razorpay credentials (set Sandbox or Production via env vars)
    RAZORPAY_KEY_ID = os.getenv("RAZORPAY_KEY_ID", "rzp_test_xxxxxxxx")
    RAZORPAY_KEY_SECRET = os.getenv("RAZORPAY_KEY_SECRET", "test_secret")
    RAZORPAY_WEBHOOK_SECRET = os.getenv("RAZORPAY_WEBHOOK_SECRET", "test_webhook_secret")
    GATEWAY_TIMEOUT_SECONDS = float(os.getenv("GATEWAY_TIMEOUT_SECONDS", "10"))

    # Off by default: webhooks are trusted on payload shape unless this is set
    WEBHOOK_SIGNATURE_REQUIRED = _env_bool("WEBHOOK_SIGNATURE_REQUIRED")

    # Checkout pages live on the frontend
    FRONTEND_URL = os.getenv("FRONTEND_URL", "http://localhost:3000").rstrip("/")

    # Flask-Limiter
    RATELIMIT_ENABLED = _env_bool("RATELIMIT_ENABLED", "true")
    RATELIMIT_DEFAULT = os.getenv("RATELIMIT_DEFAULT", "100 per 15 minutes")
    RATELIMIT_AUTH = os.getenv("RATELIMIT_AUTH", "10 per 15 minutes")
    RATELIMIT_STORAGE_URI = os.getenv("RATELIMIT_STORAGE_URI", "memory://")
    RATELIMIT_HEADERS_ENABLED = True


class TestConfig(Config):
    TESTING = True
    ENVIRONMENT = "test"
    LOG_LEVEL = "WARNING"
    SQLALCHEMY_DATABASE_URI = "sqlite://"
    JWT_SECRET = "test-jwt-secret"
    RAZORPAY_KEY_ID = "rzp_test_key"
    RAZORPAY_KEY_SECRET = "test_secret"
    RAZORPAY_WEBHOOK_SECRET = "test_webhook_secret"
    WEBHOOK_SIGNATURE_REQUIRED = False
    FRONTEND_URL = "http://frontend.test"
    RATELIMIT_ENABLED = False
