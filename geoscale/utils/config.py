"""
Configuration Management

Uses Pydantic Settings for environment-based configuration.
Loads from .env file automatically.
"""

from typing import Optional
from functools import lru_cache
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings loaded from environment."""

    # DataForSEO (required for ranking scans)
    DATAFORSEO_LOGIN: Optional[str] = None
    DATAFORSEO_PASSWORD: Optional[str] = None

    # Google Maps Platform (required for geocoding)
    GOOGLE_MAPS_API_KEY: Optional[str] = None

    # Application Settings
    ENVIRONMENT: str = "development"
    LOG_LEVEL: str = "INFO"

    # Timeouts
    API_TIMEOUT: int = 60

    # Heat map scan defaults
    HEATMAP_WEAK_THRESHOLD: int = 4
    HEATMAP_HIGH_DENSITY_THRESHOLD: int = 20
    HEATMAP_COST_PER_CALL: float = 0.05
    HEATMAP_MS_PER_CALL: int = 250
    HEATMAP_REQUEST_DELAY: float = 0.2
    HEATMAP_CONCURRENCY: int = 1
    HEATMAP_SEARCH_DEPTH: int = 20
    HEATMAP_LANGUAGE_CODE: str = "en"
    HEATMAP_ZOOM: int = 15

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        extra = "ignore"  # Ignore extra fields in .env file
        case_sensitive = False  # Allow both UPPERCASE and lowercase

    @property
    def has_dataforseo(self) -> bool:
        return bool(self.DATAFORSEO_LOGIN and self.DATAFORSEO_PASSWORD)

    @property
    def has_google_maps(self) -> bool:
        return bool(self.GOOGLE_MAPS_API_KEY)


@lru_cache
def get_settings() -> Settings:
    """Get or create cached settings instance."""
    return Settings()
