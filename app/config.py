"""
Application configuration
"""
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings"""

    model_config = SettingsConfigDict(env_file=".env", case_sensitive=True)

    # API
    API_HOST: str = "0.0.0.0"
    API_PORT: int = 8080
    API_TITLE: str = "pprof Insight API"
    API_VERSION: str = "0.1.0"

    # Profiles
    PROFILES_ROOT: str = "/files/profiles"  # profile_path is confined to this tree

    # Discovered services cache
    SERVICES_CACHE_TTL_SECONDS: float = 600.0

    # Analysis defaults
    CORRELATION_NODE_COUNT: int = 20
    LOG_LEVEL: str = "INFO"


settings = Settings()
