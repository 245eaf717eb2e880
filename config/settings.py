from pathlib import Path

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # ── Storage ────────────────────────────────────────────────
    database_path: Path = Path("output/autopost.db")

    # ── Twitter / X (OAuth 2.0 app credentials) ────────────────
    twitter_client_id: str = ""
    twitter_client_secret: str = ""
    twitter_api_base: str = "https://api.twitter.com"
    twitter_upload_base: str = "https://upload.twitter.com"

    # ── Meta Graph API (Instagram + Facebook Pages) ────────────
    graph_api_base: str = "https://graph.facebook.com/v19.0"
    instagram_poll_interval_seconds: float = 1.0
    instagram_poll_timeout_seconds: float = 10.0

    # ── Scheduler ──────────────────────────────────────────────
    scheduler_interval_seconds: int = 60
    metrics_staleness_minutes: int = 50
    http_timeout_seconds: float = 30.0

    # Shared secret for POST /api/schedule. Empty means the trigger is open.
    cron_secret: str = ""

    # ── App ────────────────────────────────────────────────────
    host: str = "0.0.0.0"
    port: int = 8000
    log_level: str = "INFO"

    def ensure_output_dirs(self) -> None:
        """Create the directory holding the database if it doesn't exist."""
        self.database_path.parent.mkdir(parents=True, exist_ok=True)


settings = Settings()
