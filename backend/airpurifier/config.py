from pydantic_settings import BaseSettings
import secrets


class Settings(BaseSettings):
    # Application
    APP_NAME: str = "Air Purifier Backend"
    APP_VERSION: str = "1.0.0"
    DEBUG: bool = False
    SECRET_KEY: str = secrets.token_urlsafe(64)
    ALLOWED_ORIGINS: str = "https://airpurifier.electronicsideas.com"
    APP_URL: str = "https://airpurifier.electronicsideas.com"

    # Database
    DATABASE_URL: str = "sqlite+aiosqlite:///./airpurifier.db"

    # Redis (optional, only used to keep one worker running each sweep)
    REDIS_URL: str = ""

    # JWT
    JWT_SECRET_KEY: str = secrets.token_urlsafe(64)
    JWT_ALGORITHM: str = "HS256"
    JWT_ACCESS_TOKEN_EXPIRE_MINUTES: int = 60 * 24
    JWT_REFRESH_TOKEN_EXPIRE_DAYS: int = 7

    # Security
    BCRYPT_ROUNDS: int = 12
    PASSWORD_MIN_LENGTH: int = 6
    DEVICE_PASSWORD_MIN_LENGTH: int = 6
    ALLOW_SELF_REGISTRATION: bool = True
    RATE_LIMIT_ENABLED: bool = True
    RATE_LIMIT_LOGIN: str = "5/15minute"
    RATE_LIMIT_INGEST: str = "30/minute"

    # Liveness: live-query window, stored-flag sweep window
    ONLINE_WINDOW_SECONDS: int = 120
    OFFLINE_SWEEP_STALE_SECONDS: int = 300
    OFFLINE_SWEEP_INTERVAL_SECONDS: int = 60

    # Devices
    DEFAULT_DEVICE_ID: str = "esp32_air_purifier_01"
    DEFAULT_THRESHOLD: int = 300
    THRESHOLD_MIN: int = 100
    THRESHOLD_MAX: int = 2000
    AIR_QUALITY_MAX: float = 5000.0

    # HTTPS
    HTTPS_ONLY: bool = True

    class Config:
        env_file = ".env"
        case_sensitive = True


settings = Settings()
