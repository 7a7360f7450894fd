from pydantic_settings import BaseSettings
from functools import lru_cache


class Settings(BaseSettings):
    """Application settings."""
    
    # App
    APP_NAME: str = "CostKitchen"
    DEBUG: bool = True
    LOG_LEVEL: str = "INFO"
    
    # Remote data service (PostgREST-style API)
    REMOTE_BASE_URL: str = "http://localhost:54321"
    REMOTE_API_KEY: str | None = None
    REMOTE_TIMEOUT_SECONDS: float = 10.0
    
    # Local cache
    CACHE_DB_URL: str = "sqlite:///./costkitchen_cache.db"
    
    # Connectivity probe
    CONNECTIVITY_URL: str | None = None
    CONNECTIVITY_TIMEOUT_SECONDS: float = 3.0
    
    # Session
    LOGIN_TIMEOUT_SECONDS: float = 15.0
    SESSION_TIMEOUT_MINUTES: int = 30
    MAX_LOGIN_ATTEMPTS: int = 5
    LOGIN_LOCKOUT_MINUTES: int = 15
    
    # Sync
    SNAPSHOT_LIMIT: int = 90
    OFFLINE_MAX_RETRIES: int = 3
    
    # Wire in-memory fakes instead of the REST/SQL adapters (local development)
    USE_IN_MEMORY_BACKENDS: bool = False
    
    class Config:
        env_file = ".env"
        extra = "ignore"


@lru_cache()
def get_settings() -> Settings:
    return Settings()


settings = get_settings()
