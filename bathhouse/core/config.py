from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import field_validator

class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    ENV: str = "local"
    APP_NAME: str = "Bathhouse Booking API"
    # Comma-separated origins for CORS. If empty, uses localhost defaults.
    CORS_ORIGINS: str = ""
    LOG_LEVEL: str = "INFO"

    DATABASE_URL: str

    @field_validator("DATABASE_URL", mode="after")
    @classmethod
    def normalize_database_url(cls, v: str) -> str:
        """Render and others give postgres://; SQLAlchemy expects postgresql+psycopg2://."""
        if v and v.startswith("postgres://"):
            return "postgresql+psycopg2://" + v[11:]
        return v

    # Studio rules
    STUDIO_TIMEZONE: str = "Europe/London"
    CURRENCY: str = "GBP"
    DEFAULT_SLOT_CAPACITY: int = 5
    MAX_GUESTS: int = 10
    TOKEN_ONE_PER_DAY: bool = False  # block a second token booking on the same session date

    CLIENT_BASE_URL: str = ""  # e.g. https://bathhouse.studio - checkout success/cancel pages

    # Stripe (official SDK, secret key auth)
    STRIPE_SECRET_KEY: str = ""
    STRIPE_WEBHOOK_SECRET: str = ""
    STRIPE_WEBHOOK_TOLERANCE_SECONDS: int = 300
    STRIPE_TIMEOUT_SECONDS: int = 20
    PAYMENT_RETRY_BACKOFF_SECONDS: float = 1.0
    PAYMENT_SANDBOX: bool = False  # If True, skip real Stripe calls and return canned responses (local dev)

    # Gift vouchers and member plans
    CREDIT_EXPIRY_DAYS: int = 365  # credit from a redeemed gift card lasts a year
    UNLIMITED_SESSIONS_PER_WEEK: int = 999


settings = Settings()
