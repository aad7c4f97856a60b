from pydantic_settings import BaseSettings
from pydantic import field_validator, model_validator
from functools import lru_cache

DEFAULT_SECRET_KEY = "development-secret-key-change-in-production"

# Known weak secrets rejected outright in production
WEAK_SECRET_KEYS = {
    DEFAULT_SECRET_KEY,
    "changeme",
    "change-me",
    "secret",
    "password",
    "garage",
}


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Database
    DATABASE_URL: str = "postgresql+asyncpg://localhost:5432/garage"

    @field_validator("DATABASE_URL", mode="before")
    @classmethod
    def convert_database_url(cls, v: str) -> str:
        """Convert postgresql:// to postgresql+asyncpg:// for async support."""
        if v and v.startswith("postgresql://"):
            return v.replace("postgresql://", "postgresql+asyncpg://", 1)
        return v

    # Auth (tokens are issued upstream; we only verify them)
    SECRET_KEY: str = DEFAULT_SECRET_KEY
    ALGORITHM: str = "HS256"
    ACCESS_TOKEN_EXPIRE_MINUTES: int = 120

    # Cache
    REDIS_URL: str | None = None
    PARTS_CACHE_TTL_SECONDS: int = 60

    # Job card lifecycle
    STRICT_STATUS_TRANSITIONS: bool = False

    # CORS
    FRONTEND_URL: str = "http://localhost:5173"

    # Environment
    ENVIRONMENT: str = "development"
    DEBUG: bool = True
    DOCS_ENABLED: bool = True

    @model_validator(mode="after")
    def check_production_secret(self) -> "Settings":
        if self.ENVIRONMENT == "production":
            if self.SECRET_KEY in WEAK_SECRET_KEYS or len(self.SECRET_KEY) < 32:
                raise ValueError("SECRET_KEY must be a strong secret of at least 32 characters in production")
        return self

    @property
    def sqlalchemy_echo(self) -> bool:
        """Only echo SQL in development; statements can carry customer data."""
        return self.DEBUG and self.ENVIRONMENT == "development"

    class Config:
        env_file = ".env"
        case_sensitive = True


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()


settings = get_settings()
