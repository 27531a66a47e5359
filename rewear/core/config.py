from pydantic_settings import BaseSettings, SettingsConfigDict
from functools import lru_cache
from typing import Optional

class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    app_name: str = "ReWear API"
    debug: bool = False
    environment: str = "production"
    api_v1_prefix: str = "/api/v1"
    frontend_url: str = "http://localhost:3000"
    log_level: str = "INFO"

    # "memory" keeps everything in-process, "supabase" uses the swaps/users/items tables
    storage_backend: str = "memory"
    supabase_url: Optional[str] = None
    supabase_key: Optional[str] = None

    jwt_secret: str = "your-secret-key"
    jwt_algorithm: str = "HS256"
    access_token_expire_minutes: int = 30

    # Swap rules
    allow_method_reselection: bool = True
    speed_bonus_window_hours: float = 48.0
    pending_expiry_hours: Optional[float] = None
    in_transit_expiry_hours: Optional[float] = None
    expiry_sweep_interval_seconds: int = 3600
    max_write_retries: int = 3

@lru_cache()
def get_settings() -> Settings:
    return Settings()
