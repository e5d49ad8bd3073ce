"""Application configuration."""

from pydantic_settings import BaseSettings
from functools import lru_cache


class Settings(BaseSettings):
    """Engine settings loaded from environment variables."""

    APP_NAME: str = "Workflow Graph Engine"
    APP_VERSION: str = "1.0.0"
    DEBUG: bool = False
    ENVIRONMENT: str = "development"  # development, testing, production

    # Default connection for the Database Query step
    DATABASE_URL: str = "sqlite+aiosqlite:///./workflow.db"

    # HTTP Request step
    HTTP_TIMEOUT: float = 30.0
    HTTP_ALLOW_PRIVATE_NETWORKS: bool = False

    # Condition evaluator
    CONDITION_MAX_LENGTH: int = 2000

    # Loop step
    LOOP_DEFAULT_BATCH_SIZE: int = 1

    # Logging
    LOG_LEVEL: str = "INFO"
    LOG_FORMAT: str = "json"  # json or text

    @property
    def is_development(self) -> bool:
        """Check if running in development mode."""
        return self.ENVIRONMENT == "development"

    @property
    def is_production(self) -> bool:
        """Check if running in production mode."""
        return self.ENVIRONMENT == "production"

    class Config:
        """Pydantic config."""

        env_file = ".env"
        case_sensitive = True
        extra = "ignore"


@lru_cache()
def get_settings() -> Settings:
    """
    Get engine settings.

    Uses caching to ensure settings are loaded only once.

    Returns:
        Settings object with all configuration values
    """
    return Settings()
