from typing import Optional

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    # Render / Prod: set DATABASE_URL in the dashboard
    database_url: str = "sqlite+aiosqlite:///./medremind.db"
    database_echo: bool = False
    # Postgres TLS; a CA bundle path for private certificate authorities
    database_ssl_verify: bool = True
    database_ssl_cafile: Optional[str] = None

    jwt_secret_key: str = "change-me"
    jwt_algorithm: str = "HS256"
    access_token_expire_minutes: int = 60 * 24

    # Wall-clock zone used to decide what "today" and "now" mean for doses
    timezone: str = "America/Toronto"

    poll_interval_minutes: int = 5
    due_window_minutes: int = 5
    escalation_delay_minutes: int = 60

    log_level: str = "INFO"

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )


settings = Settings()
