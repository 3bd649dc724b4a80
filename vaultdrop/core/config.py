from pydantic_settings import BaseSettings, SettingsConfigDict
from typing import List, Optional

from vaultdrop.core.errors import ConfigurationError

MB = 1024 * 1024

class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    PROJECT_NAME: str = "VaultDrop Delivery API"
    API_V1_STR: str = "/api/v1"
    BACKEND_CORS_ORIGINS: List[str] = ["*"]

    # Database
    POSTGRES_HOST: str = "localhost"
    POSTGRES_PORT: int = 5432
    POSTGRES_USER: str = "postgres"
    POSTGRES_PASSWORD: str = ""
    POSTGRES_DB: str = "vaultdrop"
    DATABASE_URL: Optional[str] = None
    SQL_ECHO: bool = False

    @property
    def async_database_url(self) -> str:
        if self.DATABASE_URL:
            return self.DATABASE_URL
        return f"postgresql+asyncpg://{self.POSTGRES_USER}:{self.POSTGRES_PASSWORD}@{self.POSTGRES_HOST}:{self.POSTGRES_PORT}/{self.POSTGRES_DB}"

    # JWT
    # Optional at import time so a missing secret surfaces per request as a 500
    SECRET_KEY: Optional[str] = None
    ALGORITHM: str = "HS256"
    ACCESS_TOKEN_EXPIRE_MINUTES: int = 30

    # Blob storage: memory | local | b2
    STORAGE_BACKEND: str = "local"
    LOCAL_STORAGE_DIR: str = "storage/blobs"
    B2_APPLICATION_KEY_ID: Optional[str] = None
    B2_APPLICATION_KEY: Optional[str] = None
    B2_BUCKET_NAME: str = "vaultdrop-products"

    # Payments: mock | stripe
    PAYMENT_PROVIDER: str = "mock"
    CHECKOUT_BASE_URL: str = "https://checkout.vaultdrop.local"
    CHECKOUT_SUCCESS_URL: str = "https://vaultdrop.local/checkout/success"
    CHECKOUT_CANCEL_URL: str = "https://vaultdrop.local/checkout/cancel"
    STRIPE_SECRET_KEY: Optional[str] = None
    PAYMENT_WEBHOOK_SECRET: Optional[str] = None

    # Upload limits
    DEFAULT_CHUNK_SIZE: int = 4 * MB
    MAX_CHUNK_SIZE: int = int(4.5 * MB)
    MAX_FILE_SIZE: int = 200 * MB
    ALLOWED_CONTENT_TYPES: List[str] = [
        "application/pdf",
        "application/zip",
        "application/x-tar",
        "application/gzip",
        "application/json",
        "application/xml",
        "application/octet-stream",
        "image/",
        "audio/",
        "video/",
        "text/",
    ]
    UPLOAD_SESSION_TTL_MINUTES: int = 24 * 60

    # Delivery lifetimes
    KEY_ENVELOPE_TTL_DAYS: int = 7
    CLAIM_TOKEN_TTL_HOURS: int = 24
    DOWNLOAD_TOKEN_TTL_MINUTES: int = 60
    DISPUTE_WINDOW_DAYS: int = 30

    # Grant from "invoiced" without a recorded payment (demo / trial flows)
    ALLOW_UNPAID_GRANT: bool = False

    # Transient store failures
    STORE_RETRY_ATTEMPTS: int = 3
    STORE_RETRY_BASE_DELAY: float = 0.2

    RATE_LIMIT_PER_MINUTE: int = 100
    CLAIM_RATE_LIMIT_PER_MINUTE: int = 30
    HOUSEKEEPING_INTERVAL_SECONDS: int = 900

    def require_secret_key(self) -> str:
        if not self.SECRET_KEY:
            raise ConfigurationError("SECRET_KEY not configured")
        return self.SECRET_KEY

settings = Settings()
