from functools import lru_cache
from uuid import UUID

from pydantic import EmailStr
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    app_env: str = "local"
    api_v1_prefix: str = "/api/v1"
    log_level: str = "INFO"

    # Security
    secret_key: str = "changeme"  # override in .env
    access_token_expire_minutes: int = 60

    # Database
    database_url: str = "sqlite:///./clinic_rbac.db"

    # Redis (optional; authorization runs uncached without it)
    redis_url: str | None = None

    # Authorization
    authz_cache_ttl_seconds: int = 30
    authz_resolve_on_leave: bool = True
    platform_clinic_id: UUID = UUID("00000000-0000-0000-0000-000000000000")

    # Platform administrator bootstrap (scripts/setup_platform.py)
    platform_admin_email: EmailStr | None = None
    platform_admin_password: str | None = None
    platform_admin_name: str = "Platform Admin"

    # Pydantic v2 style config
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )


@lru_cache()
def get_settings() -> Settings:
    """
    Cached settings instance so the .env is parsed once.
    """
    return Settings()
