from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Local store
    DATABASE_URL: str = "sqlite+aiosqlite:///./ledger_sync.db"
    DATABASE_ECHO: bool = False

    # Signing key for OAuth state tokens
    JWT_SECRET: str | None = None

    # QuickBooks Online OAuth + API configuration
    QUICKBOOKS_CLIENT_ID: str | None = None
    QUICKBOOKS_CLIENT_SECRET: str | None = None
    QUICKBOOKS_REDIRECT_URI: str | None = None
    QUICKBOOKS_SCOPES: str = "com.intuit.quickbooks.accounting openid profile email"
    QUICKBOOKS_BASE_URL: str = "https://sandbox-quickbooks.api.intuit.com/v3/company"
    QUICKBOOKS_MINOR_VERSION: int = 75
    QUICKBOOKS_PAGE_SIZE: int = 1000

    # Xero OAuth + API configuration
    XERO_CLIENT_ID: str | None = None
    XERO_CLIENT_SECRET: str | None = None
    XERO_REDIRECT_URI: str | None = None
    XERO_SCOPES: str = (
        "openid profile email accounting.transactions "
        "accounting.contacts accounting.settings offline_access"
    )
    XERO_BASE_URL: str = "https://api.xero.com/api.xro/2.0"

    # Token lifecycle
    TOKEN_REFRESH_SKEW_SECONDS: int = 60
    OAUTH_STATE_TTL_MINUTES: int = 30

    # Remote calls
    REMOTE_TIMEOUT_SECONDS: float = 30.0
    REMOTE_MAX_RETRIES: int = 3

    LOG_LEVEL: str = "INFO"

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
    )


settings = Settings()
