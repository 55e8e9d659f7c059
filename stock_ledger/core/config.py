from typing import Optional
from pydantic_settings import BaseSettings
from dotenv import load_dotenv

load_dotenv()

class Settings(BaseSettings):
    DATABASE_URL: str = "sqlite:///./stock_ledger.db"
    REPORT_TIMEZONE: str = "UTC"
    REDIS_URL: Optional[str] = None
    LOCK_TTL_SECONDS: int = 30
    WRITE_RATE_LIMIT: str = "10/minute"
    LOG_LEVEL: str = "INFO"
    ADMIN_USERNAME: str = "admin"
    ADMIN_EMAIL: str = "admin@example.com"
    ADMIN_PASSWORD: str = "admin"

    class Config:
        env_file = ".env"
        extra = "allow"  # This allows extra fields


settings = Settings()
