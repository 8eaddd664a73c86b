"""
Configuration settings for the Student Leave Service.

Loads configuration from environment variables with sensible defaults.
Includes settings for the database, Redis caching, Kafka messaging,
JWT authentication and the monthly leave quota policy.
"""

from typing import List

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    # Application Settings
    APP_NAME: str = "Student Leave Service"
    APP_VERSION: str = "1.0.0"

    # Logging Settings
    LOG_LEVEL: str = "INFO"
    LOG_FORMAT: str = "text"  # "text" or "json"

    # Database Settings
    DATABASE_URL: str | None = None  # Overrides the MySQL settings below when set
    DB_NAME: str = "student_leaves"
    DB_USER: str = "root"
    DB_PASSWORD: str = "root"
    DB_HOST: str = "localhost"
    DB_PORT: int = 3306
    DB_CHARSET: str = "utf8"
    DB_ECHO: bool = False

    # Redis Settings
    REDIS_HOST: str = "localhost"
    REDIS_PORT: int = 6379
    REDIS_PASSWORD: str = ""
    REDIS_DB: int = 0
    CACHE_ENABLED: bool = True

    # Kafka Settings
    KAFKA_BOOTSTRAP_SERVERS: str = "localhost:9092"
    KAFKA_ENABLED: bool = True

    # CORS Settings
    CORS_ORIGINS: str = "http://localhost:5173,http://localhost:3000"
    CORS_ALLOW_CREDENTIALS: bool = True
    CORS_ALLOW_METHODS: List[str] = ["*"]
    CORS_ALLOW_HEADERS: List[str] = ["*"]

    @property
    def cors_origins_list(self) -> List[str]:
        """Parse CORS_ORIGINS from comma-separated string."""
        if isinstance(self.CORS_ORIGINS, str):
            return [origin.strip() for origin in self.CORS_ORIGINS.split(",")]
        return [self.CORS_ORIGINS]

    # JWT Settings
    JWT_SECRET_KEY: str = "change-me"  # REQUIRED in production: set in .env
    JWT_ALGORITHM: str = "HS256"
    JWT_EXPIRE_MINUTES: int = 60 * 24
    JWT_JWKS_URL: str | None = None  # When set, tokens are verified with RS256 keys
    JWT_AUDIENCE: str | None = None
    JWT_ISSUER: str | None = None

    @property
    def database_url(self) -> str:
        """Database URL, falling back to a MySQL URL built from the DB_* settings."""
        if self.DATABASE_URL:
            return self.DATABASE_URL
        return f"mysql+mysqldb://{self.DB_USER}:{self.DB_PASSWORD}@{self.DB_HOST}:{self.DB_PORT}/{self.DB_NAME}?charset={self.DB_CHARSET}"

    # Leave Business Rules
    MONTHLY_LEAVE_LIMIT: int = 3  # Approved leave-days allowed per calendar month
    QUOTA_CACHE_TTL: int = 300  # Seconds a quota verdict may be served from cache
    USAGE_FETCH_MAX_RETRIES: int = 2
    USAGE_FETCH_RETRY_DELAY: float = 1.0  # Base delay in seconds, doubled per retry
    VALID_STREAMS: str = "BCA,BA,PGDCA,BSC,BCOM"
    ADMIN_CAN_OVERRIDE_LIMIT: bool = True

    @property
    def valid_streams_list(self) -> List[str]:
        """Parse VALID_STREAMS from comma-separated string."""
        return [stream.strip() for stream in self.VALID_STREAMS.split(",") if stream.strip()]

    # Advisory quota client (used by front-end helpers and other services)
    QUOTA_SERVICE_URL: str = "http://localhost:8000"
    QUOTA_SERVICE_TIMEOUT: int = 5

    class Config:
        env_file = ".env"
        case_sensitive = True
        extra = "ignore"


# Create global settings instance
settings = Settings()
