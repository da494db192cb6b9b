"""
Application settings and configuration

Settings are read from the environment once and handed to each service at
construction time. Business logic never reads os.environ directly.
"""
import os
from dotenv import load_dotenv

load_dotenv()


def _env_bool(name: str, default: str) -> bool:
    return os.getenv(name, default).strip().lower() in ("1", "true", "yes", "on")


class Settings:
    """Runtime configuration. Keyword overrides win over the environment."""

    def __init__(self, **overrides):
        # Application
        self.APP_NAME = os.getenv("APP_NAME", "RouteWise")
        self.VERSION = "1.0.0"
        self.DEBUG = _env_bool("DEBUG", "True")

        # CORS
        self.ALLOWED_ORIGINS = [
            origin.strip()
            for origin in os.getenv(
                "ALLOWED_ORIGINS",
                "http://localhost:3000,http://localhost:5173,http://127.0.0.1:3000",
            ).split(",")
            if origin.strip()
        ]

        # Persistence
        self.MONGO_URI = os.getenv("MONGO_URI", "mongodb://localhost:27017/?replicaSet=rs0")
        self.DATABASE_NAME = os.getenv("DATABASE_NAME", "routewise_db")
        self.STORE_BACKEND = os.getenv("STORE_BACKEND", "mongo")  # mongo | memory
        self.BATCH_LIMIT = int(os.getenv("BATCH_LIMIT", "500"))
        self.TRANSACTION_MAX_RETRIES = int(os.getenv("TRANSACTION_MAX_RETRIES", "10"))

        # Security
        self.SECRET_KEY = os.getenv("SECRET_KEY", "your-secret-key-change-in-production")
        self.ALGORITHM = "HS256"
        self.CRON_SECRET = os.getenv("CRON_SECRET", "")

        # Trips
        self.TIMEZONE = os.getenv("TIMEZONE", "Africa/Lagos")
        self.TRIP_RETENTION_DAYS = int(os.getenv("TRIP_RETENTION_DAYS", "7"))
        # Promote Pending bookings too when a trip fills (test/bypass payment path)
        self.CONFIRM_PENDING_BOOKINGS = _env_bool("CONFIRM_PENDING_BOOKINGS", "False")

        # Background scheduler
        self.ENABLE_SCHEDULER = _env_bool("ENABLE_SCHEDULER", "False")
        self.SCHEDULER_INTERVAL_SECONDS = int(os.getenv("SCHEDULER_INTERVAL_SECONDS", str(60 * 60 * 24)))

        # Email (Resend)
        self.RESEND_API_KEY = os.getenv("RESEND_API_KEY", "")
        self.RESEND_API_URL = os.getenv("RESEND_API_URL", "https://api.resend.com/emails")
        self.EMAIL_FROM = os.getenv("EMAIL_FROM", "RouteWise <no-reply@routewise.ng>")
        self.OPERATIONS_EMAIL = os.getenv("OPERATIONS_EMAIL", "operations@routewise.ng")

        # Payment gateways
        self.PAYSTACK_SECRET_KEY = os.getenv("PAYSTACK_SECRET_KEY", "")
        self.PAYSTACK_API_URL = os.getenv("PAYSTACK_API_URL", "https://api.paystack.co")
        self.OPAY_SECRET_KEY = os.getenv("OPAY_SECRET_KEY", "")
        self.OPAY_MERCHANT_ID = os.getenv("OPAY_MERCHANT_ID", "")
        self.OPAY_API_URL = os.getenv("OPAY_API_URL", "https://cashierapi.opayweb.com/api/v3")
        self.PUBLIC_BASE_URL = os.getenv("PUBLIC_BASE_URL", "http://localhost:3000")

        for key, value in overrides.items():
            if not hasattr(self, key):
                raise AttributeError(f"Unknown setting: {key}")
            setattr(self, key, value)


settings = Settings()
