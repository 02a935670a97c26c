"""Configuration for Favorants."""

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings."""

    # Supabase
    supabase_url: str = ""
    supabase_key: str = ""

    # Remote call resilience
    retry_max_attempts: int = 3  # Extra retries beyond the first try
    retry_base_delay: float = 1.0  # Seconds
    retry_max_jitter: float = 0.2  # Seconds, exclusive upper bound
    request_timeout: float = 10.0  # Seconds per attempt

    # Session lifecycle
    session_refresh_interval: float = 300.0  # Seconds

    # Geocoding
    geocoding_url: str = "https://nominatim.openstreetmap.org/search"
    geocoding_user_agent: str = "Favorants/1.0"
    geocoding_country_code: str = "it"
    geocoding_country_name: str = "Italy"

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"


settings = Settings()
