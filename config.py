import os

BASE_DIR = os.path.abspath(os.path.dirname(__file__))

class Config:
    # Secrets
    SECRET_KEY = os.getenv("SECRET_KEY", "dev-only-change-me")

    # SQLite database file stored next to the app as salonbooking.db
    SQLALCHEMY_DATABASE_URI = os.getenv(
        "DATABASE_URL",
        "sqlite:///" + os.path.join(BASE_DIR, "salonbooking.db")
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")

    # Session cookie name for our auth token
    AUTH_COOKIE_NAME = "salon_session"

    # 8 hours session lifetime
    SESSION_LIFETIME_SECONDS = 8 * 60 * 60

    # Idle timeout: 20 minutes
    IDLE_TIMEOUT_SECONDS = 20 * 60

    BCRYPT_ROUNDS = int(os.getenv("BCRYPT_ROUNDS", "12"))

    # Session/cookie security defaults
    SESSION_COOKIE_HTTPONLY = True
    SESSION_COOKIE_SAMESITE = "Lax"
    SESSION_COOKIE_SECURE = os.getenv("SESSION_COOKIE_SECURE", "false").lower() == "true"

    # Business hours and slot rules
    BUSINESS_OPEN = os.getenv("BUSINESS_OPEN", "09:00")
    BUSINESS_CLOSE = os.getenv("BUSINESS_CLOSE", "17:00")
    SLOT_STEP_MINUTES = 15
    BOOKING_BREAK_MINUTES = 15          # gap required between appointments of one practitioner
    MAX_SLOTS_PER_DAY = 12              # cap on slots offered for a single day

    # Booking numbers: 000001, 000002, ...
    BOOKING_NUMBER_WIDTH = 6

    CURRENCY = os.getenv("CURRENCY", "ZAR")

    # PayFast
    PAYFAST_MERCHANT_ID = os.getenv("PAYFAST_MERCHANT_ID")
    PAYFAST_MERCHANT_KEY = os.getenv("PAYFAST_MERCHANT_KEY")
    PAYFAST_PASSPHRASE = os.getenv("PAYFAST_PASSPHRASE")
    PAYFAST_SANDBOX = os.getenv("PAYFAST_SANDBOX", "false").lower() == "true"
    PAYFAST_VALIDATE_ITN = os.getenv("PAYFAST_VALIDATE_ITN", "false").lower() == "true"

    # PayPal (charges in USD, prices are in ZAR)
    PAYPAL_CLIENT_ID = os.getenv("PAYPAL_CLIENT_ID")
    PAYPAL_CLIENT_SECRET = os.getenv("PAYPAL_CLIENT_SECRET")
    PAYPAL_API_BASE = os.getenv("PAYPAL_API_BASE", "https://api-m.sandbox.paypal.com")
    PAYPAL_ZAR_TO_USD = os.getenv("PAYPAL_ZAR_TO_USD", "0.059")
    PAYPAL_BRAND_NAME = os.getenv("PAYPAL_BRAND_NAME", "Beauty on the Rocks")

    GATEWAY_TIMEOUT_SECONDS = int(os.getenv("GATEWAY_TIMEOUT_SECONDS", "15"))

    # Where gateways send the browser back to, and where PayFast posts its ITN
    FRONTEND_BASE_URL = os.getenv("FRONTEND_BASE_URL", "http://localhost:5173")
    BACKEND_BASE_URL = os.getenv("BACKEND_BASE_URL", "http://localhost:5002")

    # Basic app settings
    DEBUG = False


class TestConfig(Config):
    TESTING = True
    BCRYPT_ROUNDS = 4
    SQLALCHEMY_DATABASE_URI = "sqlite:///:memory:"
    PAYFAST_MERCHANT_ID = "10000100"
    PAYFAST_MERCHANT_KEY = "46f0cd694581a"
    PAYFAST_PASSPHRASE = "jt7NOE43FZPn"
    PAYFAST_SANDBOX = True
    PAYFAST_VALIDATE_ITN = False
    PAYPAL_CLIENT_ID = "test-client"
    PAYPAL_CLIENT_SECRET = "test-secret"
