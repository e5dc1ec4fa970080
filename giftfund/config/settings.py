# giftfund/config/settings.py

# Centralized application settings management using Pydantic Settings.

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    # --- Database ---
    MONGODB_URI: str = "mongodb://localhost:27017"
    DB_NAME: str = "giftfund"
    # Multi-document transactions need a replica set. When disabled, checkout
    # falls back to compensating writes.
    MONGO_USE_TRANSACTIONS: bool = False

    # --- Environment ---
    APP_ENV: str = "production" # "development" exposes error details in 500 responses

    # --- JWT (tokens are issued by the auth service, we only verify them) ---
    SECRET_KEY: str = "GiftFundSecret"
    ALGORITHM: str = "HS256"
    ACCESS_TOKEN_EXPIRE_MINUTES: int = 30

    # --- Funding / Checkout rules ---
    CHECKOUT_PARTIAL_FUNDING_THRESHOLD: float = 80.0 # Percent of target that counts as "partial" funding
    CHECKOUT_LOCK_TTL_SECONDS: int = 300 # A checkout claim older than this may be taken over

    # --- Invitations ---
    INVITE_PHONE_PATTERN: str = r"^\+254[0-9]{9}$"

    # --- Payments ---
    PAYMENT_SIMULATION_ENABLED: bool = True
    PAYMENT_SIMULATION_DELAY_SECONDS: float = 5.0
    PAYMENT_GATEWAY_TIMEOUT_SECONDS: float = 30.0
    CONTRIBUTION_PENDING_EXPIRY_MINUTES: int = 30
    ENABLE_REAL_MPESA: bool = False
    MPESA_API_URL: str = "https://sandbox.safaricom.co.ke"
    MPESA_CONSUMER_KEY: str = ""
    MPESA_CONSUMER_SECRET: str = ""
    MPESA_PASSKEY: str = ""
    MPESA_SHORTCODE: str = "174379" # Default sandbox shortcode
    MPESA_CALLBACK_URL: str = "https://example.com/api/contributions/mpesa-callback"

    # --- Notifications ---
    NOTIFICATION_TIMEOUT_SECONDS: float = 5.0

    # --- Orders ---
    DEFAULT_COUNTRY: str = "Kenya"
    ORDER_CURRENCY: str = "KES"

    model_config = SettingsConfigDict(
        env_file='.env',
        env_file_encoding='utf-8',
    )

    @property
    def is_development(self) -> bool:
        return self.APP_ENV.lower() == "development"


# Create a settings instance that loads values on import
settings = Settings()
