"""
Application configuration.
All settings are loaded from environment variables.
Use env.example as a reference for required variables.

Components never read `settings` directly: they take the frozen
GatewayConfig / CheckoutConfig values built here.
"""
from pydantic import BaseModel, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class GatewayConfig(BaseModel):
    """Credentials and transport limits for the payment gateway."""

    key_id: str
    key_secret: str
    webhook_secret: str
    api_base: str = "https://api.razorpay.com/v1"
    timeout: float = 10.0

    model_config = {"frozen": True}


class CheckoutConfig(BaseModel):
    """Business rules for order creation and reconciliation."""

    currency: str = "INR"
    default_validity_days: int = 30
    purchase_rate_limit: int = 5
    purchase_rate_window: int = 60
    reconcile_min_age_minutes: int = 15

    model_config = {"frozen": True}


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.

    IMPORTANT: Credentials have no defaults - they MUST be set in .env file.
    """

    # ===========================================
    # APPLICATION
    # ===========================================
    app_env: str = "local"
    cors_origins: str = ""
    # Trusted proxy IPs (comma-separated). Used for X-Forwarded-For in production.
    trusted_proxy_ips: str = ""

    # ===========================================
    # DATABASE (PostgreSQL)
    # ===========================================
    database_url: str  # Required, no default

    # ===========================================
    # REDIS & CELERY
    # ===========================================
    redis_url: str  # Required, no default
    celery_broker_url: str  # Required, no default
    celery_result_backend: str  # Required, no default

    # ===========================================
    # PAYMENT GATEWAY (Razorpay)
    # ===========================================
    razorpay_key_id: str  # Required, no default
    razorpay_key_secret: str  # Required, no default
    razorpay_webhook_secret: str  # Required, no default
    razorpay_api_base: str = "https://api.razorpay.com/v1"
    razorpay_timeout: float = 10.0

    # ===========================================
    # CHECKOUT RULES
    # ===========================================
    currency: str = "INR"
    default_validity_days: int = 30
    purchase_rate_limit: int = 5  # max create-order calls per window
    purchase_rate_window: int = 60  # seconds
    reconcile_min_age_minutes: int = 15

    # ===========================================
    # AUTH (user tokens are issued elsewhere)
    # ===========================================
    jwt_secret_key: str  # Required, no default
    jwt_algorithm: str = "HS256"

    # ===========================================
    # INVOICES
    # ===========================================
    invoice_storage_path: str = "/data/invoices"
    invoice_seller_name: str = "Counselling Desk"

    # ===========================================
    # CIRCUIT BREAKER
    # ===========================================
    cb_failure_threshold: int = 5
    cb_open_seconds: int = 30

    # ===========================================
    # LOGGING
    # ===========================================
    log_file: str | None = None
    log_max_bytes: int = 10_000_000
    log_backup_count: int = 5

    model_config = SettingsConfigDict(
        env_file=".env",
        case_sensitive=False,
        extra="ignore",
        frozen=True,
    )

    @field_validator("currency")
    @classmethod
    def normalize_currency(cls, v: str) -> str:
        return v.strip().upper()

    @field_validator("razorpay_webhook_secret", "razorpay_key_secret")
    @classmethod
    def validate_secret(cls, v: str) -> str:
        """Refuse empty gateway secrets: an empty HMAC key verifies forged bodies."""
        if not v.strip():
            raise ValueError("gateway secrets must not be empty")
        return v

    @property
    def trusted_proxy_ips_set(self) -> set[str]:
        """Get trusted proxy IPs as a set."""
        return {ip.strip() for ip in self.trusted_proxy_ips.split(",") if ip.strip()}

    def gateway_config(self) -> GatewayConfig:
        return GatewayConfig(
            key_id=self.razorpay_key_id,
            key_secret=self.razorpay_key_secret,
            webhook_secret=self.razorpay_webhook_secret,
            api_base=self.razorpay_api_base,
            timeout=self.razorpay_timeout,
        )

    def checkout_config(self) -> CheckoutConfig:
        return CheckoutConfig(
            currency=self.currency,
            default_validity_days=self.default_validity_days,
            purchase_rate_limit=self.purchase_rate_limit,
            purchase_rate_window=self.purchase_rate_window,
            reconcile_min_age_minutes=self.reconcile_min_age_minutes,
        )


settings = Settings()
