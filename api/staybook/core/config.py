"""Application configuration from environment variables."""

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    # App
    app_name: str = "StayBook"
    debug: bool = True
    secret_key: str = "dev-secret-change-in-production"
    api_prefix: str = "/api/v1"
    log_level: str = "INFO"

    # Database
    database_url: str = "postgresql+asyncpg://staybook:staybook@db:5432/staybook"
    database_echo: bool = False
    create_tables: bool = False

    # Auth (tokens are issued elsewhere; we only verify them)
    access_token_expire_minutes: int = 60
    jwt_algorithm: str = "HS256"

    # Ledger
    reservation_prefix: str = "SB"
    reservation_number_attempts: int = 5

    # Availability
    default_resource_capacity: int = 1

    model_config = {"env_prefix": "SB_", "env_file": ".env", "extra": "ignore"}


settings = Settings()
