"""
Application configuration

Values are read from the environment or a local .env file.
"""
import logging
from decimal import Decimal
from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings

logger = logging.getLogger(__name__)


class Settings(BaseSettings):
    APP_NAME: str = "Fleet Reservation API"

    # Auth
    SECRET_KEY: str = "dev-only-secret-key-not-for-production"
    ALGORITHM: str = "HS256"
    ACCESS_TOKEN_EXPIRE_MINUTES: int = 30

    # Every store and catalog call is abandoned after this many seconds
    STORE_TIMEOUT_SECONDS: float = Field(default=5.0, gt=0)

    # Pricing and cancellation defaults
    CURRENCY: str = "USD"
    DEFAULT_REFUND_PERCENTAGE: Decimal = Field(default=Decimal("100"), ge=0, le=100)
    # Hours before the rental start after which cancelling is refused; unset means no deadline
    CANCELLATION_DEADLINE_HOURS: Optional[int] = Field(default=None, ge=0)

    # Logging
    LOG_LEVEL: str = "INFO"
    LOG_FORMAT: str = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    LOG_DATE_FORMAT: str = "%Y-%m-%d %H:%M:%S"

    class Config:
        env_file = ".env"
        case_sensitive = True
        extra = "ignore"


settings = Settings()

if settings.SECRET_KEY.startswith("dev-only"):
    logger.warning("SECRET_KEY is not set; using the development default")
