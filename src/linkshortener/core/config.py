from typing import Optional

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    # Application
    app_env: str = "dev"
    log_level: str = "INFO"
    public_base_url: Optional[str] = None

    # Database
    database_url: str = "sqlite:///./linkshortener.db"
    storage_timeout_seconds: float = 5.0

    # Redis
    redis_url: str = "redis://localhost:6379/0"

    # Programmatic API
    api_key: str = ""

    # Visit enrichment
    geoip_database_path: Optional[str] = None
    trust_forwarded_for: bool = False

    # Edge rate limits
    redirect_limit: int = 100
    redirect_window: int = 900
    api_limit: int = 50
    api_window: int = 900

    class Config:
        env_file = ".env"


settings = Settings()
