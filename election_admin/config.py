"""Configuration management for the Election Admin service."""
from typing import Optional
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Service configuration
    SERVICE_NAME: str = "election-admin"
    API_VERSION: str = "v1"
    DEBUG: bool = False

    # Server configuration
    HOST: str = "0.0.0.0"
    PORT: int = 8000

    # Session configuration
    SECRET_KEY: str = "dev-secret-key-change-in-production"
    SESSION_COOKIE: str = "election_admin_session"
    SESSION_MAX_AGE: int = 60 * 60 * 8

    # Storage backend: "memory" or "postgres"
    STORAGE_BACKEND: str = "memory"

    # PostgreSQL configuration
    POSTGRES_HOST: str = "postgres"
    POSTGRES_PORT: int = 5432
    POSTGRES_DB: str = "election_db"
    POSTGRES_USER: str = "election_user"
    POSTGRES_PASSWORD: str = "election_pass"
    POSTGRES_POOL_MIN_SIZE: int = 2
    POSTGRES_POOL_MAX_SIZE: int = 10
    POSTGRES_COMMAND_TIMEOUT: Optional[float] = 60

    # Rate limiting
    LOGIN_RATE_LIMIT: str = "20/minute"
    BALLOT_RATE_LIMIT: str = "600/minute"

    # Accounts
    MIN_PASSWORD_LENGTH: int = 8

    class Config:
        env_file = ".env"
        case_sensitive = True

    @property
    def postgres_dsn(self) -> str:
        """Generate PostgreSQL connection string."""
        return (
            f"postgresql://{self.POSTGRES_USER}:{self.POSTGRES_PASSWORD}"
            f"@{self.POSTGRES_HOST}:{self.POSTGRES_PORT}/{self.POSTGRES_DB}"
        )


settings = Settings()
