from pydantic_settings import BaseSettings, SettingsConfigDict
from functools import lru_cache
from typing import Optional


class Settings(BaseSettings):
    # App
    app_name: str = "QuorumGate"
    debug: bool = False

    # Database
    database_url: str = "sqlite:///./quorumgate.db"
    database_echo: bool = False

    # Security
    secret_key: str = "dev-secret-key-change-in-production"
    algorithm: str = "HS256"
    access_token_expire_minutes: int = 30

    # Approval engine
    policy_file: Optional[str] = None  # YAML policy definitions loaded at startup
    default_expiry_hours: int = 24

    # Logging
    log_level: str = "INFO"
    log_dir: str = "./logs"
    log_to_file: bool = False

    # Webhooks
    webhook_urls: str = ""
    webhook_timeout: int = 30
    webhook_max_retries: int = 3
    webhook_retry_backoff: float = 1.0  # Seconds, multiplied by the attempt number

    @property
    def webhook_urls_list(self) -> list[str]:
        return [url.strip() for url in self.webhook_urls.split(",") if url.strip()]

    @property
    def default_expiry_seconds(self) -> int:
        return self.default_expiry_hours * 3600

    model_config = SettingsConfigDict(
        env_file=".env",
        env_prefix="QUORUMGATE_",
        case_sensitive=False,
        extra="ignore"  # Allow extra env vars without raising validation errors
    )


@lru_cache
def get_settings() -> Settings:
    return Settings()
