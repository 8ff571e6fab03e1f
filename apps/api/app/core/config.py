"""Application configuration with environment variables."""

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    # Environment
    ENV: str = "dev"
    LOG_LEVEL: str = "INFO"

    # App Version (format: a.bc.de - major.feature.patch)
    VERSION: str = "0.01.00"

    # Database
    DATABASE_URL: str
    DB_AUTO_MIGRATE: bool = True  # run alembic upgrade head on startup

    # Bearer token verification (supports key rotation)
    JWT_SECRET: str = "change-this-in-production"
    JWT_SECRET_PREVIOUS: str = ""  # Set during rotation, clear after
    JWT_EXPIRES_HOURS: int = 4

    # CORS
    CORS_ORIGINS: str = "http://localhost:3000"

    # Integration credential encryption (Fernet key)
    CREDENTIALS_ENCRYPTION_KEY: str = ""  # Generate with: python -c "from cryptography.fernet import Fernet; print(Fernet.generate_key().decode())"

    # Ticket feed paging
    TICKETS_DEFAULT_PAGE_SIZE: int = 50
    TICKETS_MAX_PAGE_SIZE: int = 100
    EXTERNAL_FETCH_MAX_ROUNDS: int = 3

    # Provider HTTP clients
    PROVIDER_HTTP_TIMEOUT: float = 30.0
    PROVIDER_MAX_ATTEMPTS: int = 3
    PROVIDER_RETRY_BASE_DELAY: float = 0.5

    # Sentiment enrichment (empty = neutral score for every ticket)
    SENTIMENT_SERVICE_URL: str = ""
    SENTIMENT_TIMEOUT: float = 10.0

    @property
    def cors_origins_list(self) -> list[str]:
        """Parse CORS_ORIGINS into a list."""
        return [o.strip() for o in self.CORS_ORIGINS.split(",") if o.strip()]

    @property
    def jwt_secrets(self) -> list[str]:
        """Returns list of valid secrets (current first, then previous if set)."""
        secrets = [self.JWT_SECRET]
        if self.JWT_SECRET_PREVIOUS:
            secrets.append(self.JWT_SECRET_PREVIOUS)
        return secrets


settings = Settings()
