from functools import lru_cache
from pathlib import Path
from typing import List
from urllib.parse import urlparse

from pydantic_settings import BaseSettings, SettingsConfigDict

ENV_FILE = Path(__file__).resolve().parents[2] / ".env"


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=str(ENV_FILE), case_sensitive=False, extra="ignore")

    APP_NAME: str = "Visitdesk"
    ENVIRONMENT: str = "development"
    DEBUG: bool = False
    API_PREFIX: str = "/api"
    BACKEND_HOST: str = "0.0.0.0"
    BACKEND_PORT: int = 3032
    # Comma separated proxy addresses whose X-Forwarded-For uvicorn will trust.
    FORWARDED_ALLOW_IPS: str = "127.0.0.1"

    DATABASE_URL: str = "sqlite:///./visitdesk.db"
    DB_POOL_SIZE: int = 10
    DB_MAX_OVERFLOW: int = 0
    DB_POOL_TIMEOUT: float = 30.0
    DB_POOL_RECYCLE: int = 1800
    DB_CONNECT_TIMEOUT: int = 15
    DB_CONNECT_MAX_RETRIES: int = 5
    DB_CONNECT_INITIAL_DELAY: float = 5.0
    DB_CONNECT_BACKOFF_FACTOR: float = 1.5
    DB_CONNECT_MAX_DELAY: float = 30.0
    DB_AUTO_CREATE: bool = True

    JWT_SECRET_KEY: str = "change-me"
    JWT_ALGORITHM: str = "HS256"
    JWT_ACCESS_TOKEN_EXPIRE_MINUTES: int = 24 * 60
    BCRYPT_ROUNDS: int = 12

    ADMIN_USERNAME: str = "admin"
    ADMIN_EMAIL: str = "admin@visitdesk.local"
    # Empty means a random password is generated on first bootstrap.
    ADMIN_DEFAULT_PASSWORD: str = ""

    SMTP_HOST: str = ""
    SMTP_PORT: int = 587
    SMTP_USERNAME: str = ""
    SMTP_PASSWORD: str = ""
    SMTP_SECURITY: str = "starttls"
    SMTP_FROM_EMAIL: str = ""
    SMTP_FROM_NAME: str = "Visitor Management System"
    SMTP_TIMEOUT: float = 10.0
    MAIL_WORKERS: int = 2
    MAIL_QUEUE_SIZE: int = 100
    SEND_CHECKOUT_EMAILS: bool = False

    PUBLIC_CHECKIN: bool = True
    SCOPE_RECEPTION_TO_OWN_VISITORS: bool = False
    MOBILE_DIGITS: int = 10
    DISPLAY_TIMEZONE: str = "Asia/Kolkata"
    EXPORT_DEFAULT_DAYS: int = 7
    LIST_MAX_LIMIT: int = 100
    AUDIT_LOG_ENABLED: bool = True

    CORS_ORIGINS: str = "*"
    CORS_ALLOW_CREDENTIALS: bool = False
    MAX_BODY_SIZE_MB: int = 50
    RATE_LIMIT_ENABLED: bool = True
    RATE_LIMIT_MAX_REQUESTS: int = 100
    RATE_LIMIT_WINDOW_SECONDS: int = 900

    @property
    def cors_origins(self) -> List[str]:
        origins: list[str] = []
        for raw in self.CORS_ORIGINS.split(","):
            value = raw.strip()
            if not value:
                continue
            if value == "*":
                return ["*"]
            parsed = urlparse(value)
            if parsed.scheme and parsed.netloc:
                value = f"{parsed.scheme}://{parsed.netloc}"
            origins.append(value.rstrip("/"))
        return origins

    @property
    def is_development(self) -> bool:
        return self.ENVIRONMENT.lower() == "development"

    @property
    def is_sqlite(self) -> bool:
        return self.DATABASE_URL.startswith("sqlite")

    @property
    def mail_configured(self) -> bool:
        return bool(self.SMTP_HOST.strip() and (self.SMTP_FROM_EMAIL.strip() or self.SMTP_USERNAME.strip()))


@lru_cache
def get_settings() -> Settings:
    return Settings()
