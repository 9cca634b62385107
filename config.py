import os

BASE_DIR = os.path.abspath(os.path.dirname(__file__))

class Config:
    # Secrets
    SECRET_KEY = os.getenv("SECRET_KEY", "dev-only-change-me")

    # SQLite file for local dev, PostgreSQL (with btree_gist) in production
    SQLALCHEMY_DATABASE_URI = os.getenv(
        "DATABASE_URL",
        "sqlite:///" + os.path.join(BASE_DIR, "slotkeeper.db")
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False
    SQLALCHEMY_ENGINE_OPTIONS = {"pool_pre_ping": True}

    # Session cookie name for our auth token
    AUTH_COOKIE_NAME = "slotkeeper_session"

    # 8 hours session lifetime
    SESSION_LIFETIME_SECONDS = 8 * 60 * 60

    # Idle timeout: 20 minutes
    IDLE_TIMEOUT_SECONDS = 20 * 60

    # Facilities operate on local wall-clock time
    FACILITY_TIMEZONE = os.getenv("FACILITY_TIMEZONE", "Asia/Dhaka")
    CURRENCY = os.getenv("CURRENCY", "BDT")

    # Money policy
    BOOKING_ADVANCE_RATE = os.getenv("BOOKING_ADVANCE_RATE", "0.10")
    PLATFORM_COMMISSION_RATE = os.getenv("PLATFORM_COMMISSION_RATE", "0.05")
    PLATFORM_PROCESSING_FEE = int(os.getenv("PLATFORM_PROCESSING_FEE", "50"))

    # Holds
    BOOKING_HOLD_MINUTES = int(os.getenv("BOOKING_HOLD_MINUTES", "10"))
    AVAILABLE_NOW_HOURS = int(os.getenv("AVAILABLE_NOW_HOURS", "4"))

    # Per-buyer rate limit on hold creation
    BOOKING_RATE_WINDOW_SECONDS = 60
    BOOKING_RATE_MAX_REQUESTS = 10

    # Advisory slot lock (optional)
    REDIS_URL = os.getenv("REDIS_URL")
    SLOT_LOCK_PREFIX = os.getenv("SLOT_LOCK_PREFIX", "lock:slot")

    # Payment gateway: "sslcommerz" or "sandbox"
    PAYMENT_GATEWAY = os.getenv("PAYMENT_GATEWAY", "sandbox")
    SSLCOMMERZ_STORE_ID = os.getenv("SSLCOMMERZ_STORE_ID")
    SSLCOMMERZ_STORE_PASSWORD = os.getenv("SSLCOMMERZ_STORE_PASSWORD", "sandbox-store-pass")
    SSLCOMMERZ_LIVE = os.getenv("SSLCOMMERZ_LIVE", "false").lower() == "true"
    GATEWAY_TIMEOUT_SECONDS = float(os.getenv("GATEWAY_TIMEOUT_SECONDS", "10"))
    PAYMENT_SUCCESS_URL = os.getenv("PAYMENT_SUCCESS_URL", "http://localhost:3000/checkout/success")
    PAYMENT_FAIL_URL = os.getenv("PAYMENT_FAIL_URL", "http://localhost:3000/checkout/failed")
    PAYMENT_CANCEL_URL = os.getenv("PAYMENT_CANCEL_URL")
    PAYMENT_IPN_URL = os.getenv("PAYMENT_IPN_URL", "http://localhost:5002/webhooks/payment")

    # Notifications: "log" or "email"
    NOTIFICATION_PROVIDER = os.getenv("NOTIFICATION_PROVIDER", "log")

    # Email (SMTP)
    SMTP_HOST = os.getenv("SMTP_HOST")
    SMTP_PORT = int(os.getenv("SMTP_PORT", "587"))
    SMTP_USERNAME = os.getenv("SMTP_USERNAME")
    SMTP_PASSWORD = os.getenv("SMTP_PASSWORD")
    SMTP_FROM_EMAIL = os.getenv("SMTP_FROM_EMAIL")
    SMTP_USE_TLS = os.getenv("SMTP_USE_TLS", "true").lower() == "true"

    LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")

    # Basic app settings
    DEBUG = False
