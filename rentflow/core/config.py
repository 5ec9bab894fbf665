from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import field_validator

class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    ENV: str = "local"
    APP_NAME: str = "Rentflow API"
    # Comma-separated origins for CORS. If empty, uses localhost defaults.
    CORS_ORIGINS: str = ""
    LOG_LEVEL: str = "INFO"

    DATABASE_URL: str
    # Postgres only: applied per connection so a stuck transition write fails instead of hanging.
    DB_STATEMENT_TIMEOUT_MS: int = 15000

    @field_validator("DATABASE_URL", mode="after")
    @classmethod
    def normalize_database_url(cls, v: str) -> str:
        """Render and others give postgres://; SQLAlchemy expects postgresql+psycopg2://."""
        if v and v.startswith("postgres://"):
            return "postgresql+psycopg2://" + v[11:]
        return v
    REDIS_URL: str = "redis://localhost:6379/0"
    # ssl_cert_reqs added to rediss:// broker URLs that do not carry one
    REDIS_SSL_CERT_REQS: str = "CERT_NONE"

    # All civil dates (rental windows, "today" for availability) use this zone.
    BUSINESS_TIMEZONE: str = "Europe/Lisbon"
    # Checkout sessions expire with the hold; Stripe needs expires_at >= 30 minutes out.
    HOLD_MINUTES: int = 35
    HOLD_EXPIRY_GRACE_MINUTES: int = 2
    CURRENCY: str = "eur"

    # Flat add-on prices in cents. Empty means "price pending" (selected but not charged yet).
    INSURANCE_CHARGE_CENTS: int | None = None
    OPERATOR_CHARGE_CENTS: int | None = None  # per rental day

    APP_URL: str = "http://localhost:3000"

    # Stripe
    STRIPE_SECRET_KEY: str = ""
    STRIPE_WEBHOOK_SECRET: str = ""
    STRIPE_TIMEOUT_SECONDS: int = 20
    STRIPE_MAX_NETWORK_RETRIES: int = 2
    # txr_... id of the VAT rate applied to rental line items; empty = no tax line
    STRIPE_TAX_RATE_ID: str = ""

    SMTP_HOST: str = "localhost"
    SMTP_PORT: int = 25
    SMTP_USERNAME: str = ""
    SMTP_PASSWORD: str = ""
    SMTP_FROM: str = "bookings@rentflow.local"

    SENDGRID_API_KEY: str = ""
    SENDGRID_FROM_EMAIL: str = ""

    SEND_EMAILS: bool = True
    EMAIL_ADMIN_TO: str = ""  # internal booking notifications

    # Invoicing provider (document issued once per paid booking)
    INVOICING_ENABLED: bool = False
    INVOICING_PROVIDER: str = "vendus"
    INVOICING_API_URL: str = ""
    INVOICING_API_KEY: str = ""

    CALENDAR_WEBHOOK_URL: str = ""

    HTTP_TIMEOUT_SECONDS: int = 20


settings = Settings()
