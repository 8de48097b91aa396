from functools import lru_cache

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    app_name: str = "personal-file-store"
    app_env: str = "dev"
    secret_key: str = "change-me-in-production-with-a-long-random-value"
    storage_dir: str = "uploads/private"
    database_path: str = "uploads/metadata.db"
    max_upload_size_bytes: int = 50 * 1024 * 1024
    access_token_ttl_minutes: int = 15
    refresh_token_ttl_days: int = 30
    rotate_refresh_tokens: bool = False
    refresh_cookie_secure: bool = False
    refresh_cookie_samesite: str = "lax"
    username_min_length: int = 3
    username_max_length: int = 50
    password_min_length: int = 6
    bcrypt_rounds: int = 12
    log_level: str = "INFO"

    model_config = SettingsConfigDict(env_file=".env", env_prefix="FS_")


@lru_cache
def get_settings() -> Settings:
    return Settings()
