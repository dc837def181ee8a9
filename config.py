"""
Configuration module for the Rental Returns service.
Loads settings from environment variables and an optional .env file.
"""

from pydantic_settings import BaseSettings
from pydantic import Field


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Penalty rules
    daily_late_rate: int = Field(
        default=5000,
        alias="DAILY_LATE_RATE",
        description="Late fee per unit per day, in rupiah"
    )
    lost_item_default_days: int = Field(
        default=30,
        alias="LOST_ITEM_DEFAULT_DAYS",
        description="Days of late fee charged for a lost item with no known cost"
    )
    max_penalty_days: int = Field(
        default=365,
        alias="MAX_PENALTY_DAYS",
        description="Cap on late days used in fee computation"
    )
    max_conditions_per_line: int = Field(
        default=10,
        alias="MAX_CONDITIONS_PER_LINE",
        description="Maximum condition splits allowed on one rental line"
    )

    # Submission guard
    submission_cooldown_seconds: float = Field(
        default=30.0,
        alias="SUBMISSION_COOLDOWN_SECONDS",
        description="Window after a successful commit during which an identical commit is rejected"
    )

    # Transaction gateway
    gateway_backend: str = Field(
        default="memory",
        alias="GATEWAY_BACKEND",
        description="Transaction gateway implementation: 'memory' or 'cosmos'"
    )

    # Application Configuration
    app_host: str = Field(
        default="0.0.0.0",
        alias="APP_HOST",
        description="Host to bind the application"
    )
    app_port: int = Field(
        default=8000,
        alias="APP_PORT",
        description="Port to bind the application"
    )

    # Logging
    log_level: str = Field(
        default="INFO",
        alias="LOG_LEVEL",
        description="Logging level"
    )

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        extra = "ignore"


# Global settings instance
settings = Settings()
