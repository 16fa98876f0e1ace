import os
from datetime import date
from pathlib import Path

from loguru import logger
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


def get_database_url() -> str:
    """Get database URL, using absolute path for SQLite to avoid path resolution issues.

    SQLite is only meant for local development. Production deployments set
    DATABASE_URL to a PostgreSQL connection string.
    """
    db_url = os.getenv("DATABASE_URL", "")
    if db_url:
        logger.info(f"Using DATABASE_URL from environment: {db_url}")
        return db_url

    db_path = Path(__file__).parent.parent.parent / "enduro_ingest.db"
    abs_path = db_path.resolve()
    db_url = f"sqlite:///{abs_path}"
    logger.warning(
        f"Using SQLite database (LOCAL DEV ONLY): {db_url}\n"
        "Set DATABASE_URL environment variable to use PostgreSQL in production."
    )
    return db_url


class Settings(BaseSettings):
    database_url: str = Field(
        default_factory=get_database_url,
        validation_alias="DATABASE_URL",
    )
    storage_root: Path = Field(
        default=Path("var/workout-uploads"),
        validation_alias="STORAGE_ROOT",
        description="Root directory of the raw upload blob store",
    )
    max_upload_bytes: int = Field(
        default=25 * 1024 * 1024,
        validation_alias="MAX_UPLOAD_BYTES",
        description="Hard cap on accepted upload size",
    )
    default_sport: str = Field(default="run", validation_alias="DEFAULT_SPORT")
    gpx_default_sport: str = Field(
        default="run",
        validation_alias="GPX_DEFAULT_SPORT",
        description="Sport assigned to GPX tracks that carry no type",
    )
    accepted_sports: list[str] = Field(
        default=["run", "bike", "swim", "strength", "mobility"],
        validation_alias="ACCEPTED_SPORTS",
        description="Sports a decoded workout may carry (JSON list)",
    )
    fit_check_crc: bool = Field(default=True, validation_alias="FIT_CHECK_CRC")
    max_duration_minutes: int = Field(default=24 * 60, validation_alias="MAX_DURATION_MINUTES")
    max_distance_meters: float = Field(default=1_000_000.0, validation_alias="MAX_DISTANCE_METERS")
    earliest_workout_date: date = Field(default=date(1990, 1, 1), validation_alias="EARLIEST_WORKOUT_DATE")
    auth_mode: str = Field(default="dev", validation_alias="AUTH_MODE")
    allow_header_override: bool = Field(default=False, validation_alias="ALLOW_HEADER_OVERRIDE")
    auth_secret_key: str = Field(default="", validation_alias="AUTH_SECRET_KEY")
    auth_algorithm: str = Field(default="HS256", validation_alias="AUTH_ALGORITHM")
    auth_token_expire_days: int = Field(default=30, validation_alias="AUTH_TOKEN_EXPIRE_DAYS")
    status_cache_hint: str = Field(default="private, max-age=60", validation_alias="STATUS_CACHE_HINT")
    log_level: str = Field(default="INFO", validation_alias="LOG_LEVEL")
    log_file: str | None = Field(default=None, validation_alias="LOG_FILE", description="Optional rotating log file")

    model_config = SettingsConfigDict(
        env_file=".env",
        extra="ignore",
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

    @field_validator("auth_mode")
    @classmethod
    def validate_auth_mode(cls, value: str) -> str:
        """Only 'dev' and 'prod' are meaningful; anything else is treated as prod."""
        lowered = value.lower()
        if lowered not in {"dev", "prod"}:
            logger.warning(f"Unknown AUTH_MODE '{value}', falling back to 'prod'")
            return "prod"
        return lowered

    @field_validator("accepted_sports")
    @classmethod
    def validate_accepted_sports(cls, value: list[str]) -> list[str]:
        normalized = [sport.strip().lower() for sport in value if sport.strip()]
        if not normalized:
            raise ValueError("ACCEPTED_SPORTS must name at least one sport")
        return normalized

    @field_validator("max_upload_bytes")
    @classmethod
    def validate_max_upload_bytes(cls, value: int) -> int:
        if value <= 0:
            raise ValueError("MAX_UPLOAD_BYTES must be positive")
        return value

    @field_validator("auth_secret_key")
    @classmethod
    def validate_secret_key(cls, value: str) -> str:
        """Bearer tokens cannot be verified without a secret; header override still works in dev."""
        if not value:
            logger.warning("AUTH_SECRET_KEY is not set. Bearer token authentication is disabled until it is configured.")
        return value


settings = Settings()
