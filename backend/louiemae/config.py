from pydantic_settings import BaseSettings
from typing import Optional
import os
from dotenv import load_dotenv

load_dotenv()


class Settings(BaseSettings):
    SECRET_KEY: str = "your-secret-key-change-in-production"
    DEBUG: bool = False

    # DATABASE_URL must be provided via environment (Postgres in production).
    DATABASE_URL: str = os.getenv("DATABASE_URL", "")

    ALLOWED_ORIGINS: str = "http://localhost:5173,http://localhost:3000"
    FRONTEND_URL: str = "http://localhost:5173"

    # Shared secret for the admin surface, the checkout intake and internal
    # callers. Requests without a matching X-Internal-Api-Key are rejected.
    INTERNAL_API_KEY: Optional[str] = None

    # CJ Dropshipping API.
    #
    # CJ_API_KEY is the long-lived key used to obtain fresh credentials. The
    # getAccessToken endpoint is limited to roughly one call per 300 seconds,
    # so everything goes through the token provider, which caches the pair in
    # the cj_credentials table.
    CJ_API_KEY: Optional[str] = None
    CJ_API_BASE_URL: str = "https://developers.cjdropshipping.com/api2.0/v1"
    CJ_HTTP_TIMEOUT_SECONDS: float = 30.0

    # Externally reachable URL CJ pushes product/stock/order/logistics events to,
    # e.g. "https://api.louiemae.com/cj/webhook".
    CJ_WEBHOOK_CALLBACK_URL: Optional[str] = None

    CJ_DEFAULT_LOGISTIC_NAME: str = "CJ Packet Ordinary"
    CJ_FROM_COUNTRY_CODE: str = "CN"
    # 2 = pay from CJ balance, 3 = create without balance payment
    CJ_PAY_TYPE: int = 3

    # Pause between items in a sweep, to stay under CJ rate limits.
    CJ_SWEEP_DELAY_SECONDS: float = 0.25
    CJ_SOURCING_CHECK_INTERVAL_SECONDS: int = 7200
    CJ_TRACKING_SYNC_INTERVAL_SECONDS: int = 14400
    CJ_WORKERS_ENABLED: bool = True

    # Resend is used for the shipment notification email. When the key is
    # missing notifications are skipped with a warning.
    RESEND_API_KEY: Optional[str] = None
    RESEND_API_URL: str = "https://api.resend.com/emails"
    EMAIL_FROM: str = "Louie Mae <orders@louiemae.com>"

    class Config:
        env_file = None
        env_file_encoding = "utf-8"
        extra = "ignore"

    @property
    def secret_key(self) -> str:
        return self.SECRET_KEY

    @property
    def cj_api_base_url(self) -> str:
        return self.CJ_API_BASE_URL.rstrip("/")


_db_url = os.getenv("DATABASE_URL")
if not _db_url:
    raise RuntimeError("DATABASE_URL is required.")

settings = Settings()
