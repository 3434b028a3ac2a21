"""
Engine configuration settings
"""
from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Process-wide defaults with environment variable support"""

    # App
    APP_NAME: str = "FSRS6 Engine"
    APP_VERSION: str = "6.1.1"
    ENVIRONMENT: str = "development"  # development, staging, production

    # Monitoring
    LOG_LEVEL: str = "INFO"

    # Scheduling knobs (weights are never configured here)
    FSRS_REQUEST_RETENTION: float = 0.9
    FSRS_MAXIMUM_INTERVAL: int = 365  # 1 year, may be raised up to 5 years
    FSRS_ENABLE_FUZZ: bool = True
    FSRS_SHORT_TERM_MEMORY_ENABLED: bool = True
    FSRS_LONG_TERM_STABILITY_ENABLED: bool = True

    # Personalization (scheduling knobs above are repaired downstream instead)
    PERSONALIZATION_MIN_REVIEWS: int = Field(default=50, ge=1, description="Reviews needed before weights are adjusted")
    PERSONALIZATION_RECENT_WINDOW: int = Field(default=100, ge=1, description="Reviews counted as recent")
    SESSION_GAP_MINUTES: int = Field(default=30, gt=0, description="Idle gap that ends a study session")

    model_config = SettingsConfigDict(
        env_file=".env",
        case_sensitive=True,
        extra="ignore"
    )


settings = Settings()
