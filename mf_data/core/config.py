from typing import List, Optional
from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict
from functools import lru_cache

SEBI_DISCLAIMER = (
    "Mutual fund investments are subject to market risks. Read all scheme related "
    "documents carefully. Historical performance is not an indicator of future returns."
)


class Settings(BaseSettings):
    """
    Application configuration settings (Pydantic v2 style)
    """

    # Application settings
    APP_NAME: str = "India MF Data API"
    APP_VERSION: str = "dev"
    DEBUG: bool = False
    ENVIRONMENT: str = "development"

    # Local cache store (empty string disables persistence)
    CACHE_DATABASE_URL: str = "sqlite:///./mf_cache.db"

    # NAV provider
    MFAPI_BASE_URL: str = "https://api.mfapi.in/mf"
    AMFI_NAV_ALL_URL: str = "https://www.amfiindia.com/spages/NAVAll.txt"
    PROVIDER_TIMEOUT_SECONDS: float = 10.0
    PROVIDER_MAX_ATTEMPTS: int = 2
    PROVIDER_RETRY_WAIT_SECONDS: float = 0.5
    DATA_SOURCE_NAME: str = "MFapi.in"
    SEBI_DISCLAIMER: str = SEBI_DISCLAIMER

    # Redis settings (optional response cache for provider JSON)
    REDIS_URL: Optional[str] = None
    REDIS_EXPIRE_TIME: int = 3600

    # CORS
    CORS_ALLOWED_ORIGINS: str = "http://localhost:3000,http://localhost:5173"

    # Logging
    LOG_LEVEL: str = "INFO"
    LOG_FORMAT: str = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

    # ✅ Pydantic v2 config
    model_config = SettingsConfigDict(
        env_file=".env",
        case_sensitive=True,
        extra="ignore"
    )

    @field_validator('CACHE_DATABASE_URL')
    @classmethod
    def validate_cache_database_url(cls, v):
        if v and not v.startswith(('postgresql://', 'sqlite://')):
            raise ValueError('CACHE_DATABASE_URL must be empty or start with postgresql:// or sqlite://')
        return v

    @field_validator('LOG_LEVEL')
    @classmethod
    def validate_log_level(cls, v):
        valid_levels = ['DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL']
        if v.upper() not in valid_levels:
            raise ValueError(f'LOG_LEVEL must be one of: {valid_levels}')
        return v.upper()

    @field_validator('PROVIDER_MAX_ATTEMPTS')
    @classmethod
    def validate_max_attempts(cls, v):
        # one request plus at most one automatic retry
        if v < 1 or v > 2:
            raise ValueError('PROVIDER_MAX_ATTEMPTS must be 1 or 2')
        return v

    @property
    def cors_origins(self) -> List[str]:
        return [origin.strip() for origin in self.CORS_ALLOWED_ORIGINS.split(",") if origin.strip()]


@lru_cache()
def get_settings() -> Settings:
    return Settings()
