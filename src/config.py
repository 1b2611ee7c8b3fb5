"""Application configuration loaded from environment variables."""

from functools import lru_cache

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """All configuration is loaded from environment variables (or .env file)."""

    # --- App ---
    app_name: str = "HealthSync"
    app_version: str = "0.1.0"
    log_level: str = "INFO"
    environment: str = "development"  # development | staging | production

    # --- Engine ---
    health_data_config_path: str | None = None  # overrides the bundled YAML

    # --- CORS ---
    cors_origins: list[str] = ["http://localhost:3000"]

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8"}


@lru_cache
def get_settings() -> Settings:
    return Settings()
