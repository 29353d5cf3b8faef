from functools import lru_cache
from pathlib import Path

from dotenv import load_dotenv
from pydantic_settings import BaseSettings, SettingsConfigDict

# Force-load .env (Windows-safe, reload-safe)
BASE_DIR = Path(__file__).resolve().parent.parent
load_dotenv(dotenv_path=BASE_DIR / ".env")


class Settings(BaseSettings):
    """Runtime configuration, read from the environment once and passed around."""

    database_url: str
    stripe_secret_key: str | None = None
    stripe_connect_webhook_secret: str | None = None
    webhook_tolerance_seconds: int = 300

    jwt_secret: str | None = None
    jwt_algorithm: str = "HS256"

    site_url: str = "http://localhost:3000"
    log_level: str = "INFO"

    smtp_host: str | None = None
    smtp_port: int = 587
    smtp_username: str | None = None
    smtp_password: str | None = None
    smtp_use_tls: bool = True
    email_from_address: str = "Payments <noreply@localhost>"

    model_config = SettingsConfigDict(extra="ignore")

    @property
    def payments_dashboard_url(self) -> str:
        return f"{self.site_url.rstrip('/')}/settings/payments"


@lru_cache
def get_settings() -> Settings:
    return Settings()
