"""
Application Configuration
Loads settings from environment variables.
"""

from typing import List
from pydantic_settings import BaseSettings
from pydantic import field_validator
from functools import lru_cache


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # App
    APP_NAME: str = "Cadence API"
    DEBUG: bool = False
    LOG_LEVEL: str = "INFO"

    # Database - SQLite for local dev, PostgreSQL for production
    DATABASE_URL: str = "sqlite:///./cadence.db"

    # Redis (RQ sweep queue)
    REDIS_URL: str = "redis://localhost:6379"

    # Credential vault - key is derived from this secret with PBKDF2
    VAULT_SECRET: str = ""
    VAULT_KDF_ITERATIONS: int = 100000
    CREDENTIAL_FINGERPRINT_CHARS: int = 4

    # Mock switches, resolved once at process start
    MOCK_PROVIDERS: bool = False
    MOCK_STORAGE: bool = False

    # Provider endpoints
    REPLICATE_API_URL: str = "https://api.replicate.com/v1"
    MINIMAX_API_URL: str = "https://api.minimax.io/v1"
    MINIMAX_MUSIC_MODEL: str = "music-2.5"
    BUNNY_STORAGE_URL: str = "https://storage.bunnycdn.com"

    # Timeouts (seconds) for every external call
    PROVIDER_SUBMIT_TIMEOUT: float = 30.0
    PROVIDER_STATUS_TIMEOUT: float = 15.0
    SYNC_GENERATION_TIMEOUT: float = 600.0  # MiniMax v2.5 blocks for the whole generation
    STORAGE_UPLOAD_TIMEOUT: float = 120.0
    STORAGE_DELETE_TIMEOUT: float = 30.0

    # Reconciliation sweep
    RECONCILE_TICK_SECONDS: float = 5.0
    RECONCILE_CONCURRENCY: int = 4
    RECONCILE_FAST_INTERVAL: float = 5.0    # generation, clone, conversion
    RECONCILE_SLOW_INTERVAL: float = 30.0   # training (~13 minutes end to end)
    RECONCILE_JITTER: float = 0.2
    RESULT_FETCH_MAX_ATTEMPTS: int = 5

    # RVC training defaults
    RVC_TRAINING_EPOCHS: int = 50
    RVC_TRAINING_BATCH_SIZE: int = 7
    RVC_TRAINING_SAMPLE_RATE: str = "48k"
    RVC_TRAINING_VERSION: str = "v2"
    RVC_TRAINING_F0_METHOD: str = "rmvpe_gpu"

    # CORS
    CORS_ORIGINS: List[str] = ["http://localhost:3000", "http://localhost:5173"]

    @field_validator('VAULT_SECRET', mode='before')
    @classmethod
    def strip_secrets(cls, v):
        """Strip whitespace and newlines from secrets loaded from files."""
        if isinstance(v, str):
            return v.strip()
        return v

    class Config:
        env_file = ".env"
        case_sensitive = True


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()


settings = get_settings()
