import os
from pathlib import Path

from loguru import logger
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


def get_database_url() -> str:
    """Get database URL, using absolute path for SQLite to avoid path resolution issues.

    ⚠️ WARNING: SQLite is NOT suitable for production deployments!
    - Concurrent uploads rely on the (user_id, sha256) unique constraint
    - Use PostgreSQL by setting DATABASE_URL environment variable
    """
    db_url = os.getenv("DATABASE_URL", "")
    if db_url:
        logger.info(f"Using DATABASE_URL from environment: {db_url}")
        return db_url

    # Use absolute path for SQLite (LOCAL DEVELOPMENT ONLY)
    db_path = Path(__file__).parent.parent.parent / "intake.db"
    abs_path = db_path.resolve()
    db_url = f"sqlite:///{abs_path}"
    logger.warning(
        f"⚠️ Using SQLite database (LOCAL DEV ONLY): {db_url}\n"
        "⚠️ Set DATABASE_URL environment variable to use PostgreSQL in production."
    )
    return db_url


class Settings(BaseSettings):
    database_url: str = Field(
        default_factory=get_database_url,
        validation_alias="DATABASE_URL",
    )
    log_level: str = Field(default="INFO", validation_alias="LOG_LEVEL")
    log_file: str = Field(default="", validation_alias="LOG_FILE")
    auth_secret_key: str = Field(default="", validation_alias="AUTH_SECRET_KEY")
    auth_algorithm: str = Field(default="HS256", validation_alias="AUTH_ALGORITHM")
    auth_issuer: str = Field(
        default="",
        validation_alias="AUTH_ISSUER",
        description="Required 'iss' claim on bearer tokens; empty accepts any issuer",
    )
    auth_token_expire_days: int = Field(default=30, validation_alias="AUTH_TOKEN_EXPIRE_DAYS")

    # Intake
    max_upload_bytes: int = Field(
        default=20 * 1024 * 1024,
        validation_alias="MAX_UPLOAD_BYTES",
        description="Maximum accepted upload size in bytes",
    )

    # Matching
    match_window_hours: int = Field(
        default=6,
        validation_alias="MATCH_WINDOW_HOURS",
        description="Half-width of the candidate window around activity start",
    )
    auto_match_min_confidence: float = Field(
        default=0.85,
        validation_alias="AUTO_MATCH_MIN_CONFIDENCE",
        description="Best candidate must reach this confidence to be auto-linked",
    )
    auto_match_min_margin: float = Field(
        default=0.15,
        validation_alias="AUTO_MATCH_MIN_MARGIN",
        description="Required confidence gap between best and second-best candidate",
    )
    planned_session_default_hour: int = Field(
        default=6,
        validation_alias="PLANNED_SESSION_DEFAULT_HOUR",
        description="UTC hour assumed for planned sessions that only carry a date",
    )

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, value: str) -> str:
        """Validate that log level is one of the standard logging levels."""
        valid_levels = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
        upper_value = value.upper()
        if upper_value not in valid_levels:
            logger.warning(f"Invalid LOG_LEVEL '{value}'. Valid levels are: {', '.join(valid_levels)}. Defaulting to INFO.")
            return "INFO"
        return upper_value

    @field_validator("auto_match_min_confidence", "auto_match_min_margin")
    @classmethod
    def validate_unit_interval(cls, value: float) -> float:
        """Thresholds are confidences, so they must lie in [0, 1]."""
        if not 0.0 <= value <= 1.0:
            raise ValueError(f"must be within [0, 1], got {value}")
        return value

    @field_validator("planned_session_default_hour")
    @classmethod
    def validate_hour(cls, value: int) -> int:
        if not 0 <= value <= 23:
            raise ValueError(f"must be an hour of day (0-23), got {value}")
        return value

    @field_validator("auth_secret_key")
    @classmethod
    def validate_secret(cls, value: str) -> str:
        """Empty secrets are allowed for local development with a warning."""
        if not value:
            logger.warning(
                "⚠️ AUTH_SECRET_KEY is not set. Bearer tokens cannot be verified. "
                "Set it in .env file or environment variables."
            )
        return value

    model_config = SettingsConfigDict(
        env_file=".env",
        extra="ignore",
    )


settings = Settings()
