from __future__ import annotations

from pathlib import Path

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Central configuration loaded from environment / .env file."""

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8", "extra": "ignore"}

    # Claude Code data (projects/, stats-cache.json, history.jsonl)
    claude_dir: str = "~/.claude"

    # Local state: scan cache, alert state, credential mirror
    data_dir: str = "~/.tokenmeter"

    # Plan + token limits
    # "pro" | "max5x" | "max20x"; zero limits below fall back to the plan's values
    plan: str = "max20x"
    plan_auto_detect: bool = True  # prefer the plan implied by the credential tier
    weekly_token_limit: int = 0  # 0 = use plan default
    session_token_limit: int = 0  # 0 = use plan default
    daily_token_limit: int = 0  # 0 = weekly / 7
    weekly_reset_weekday: int = 6  # 0=Monday .. 6=Sunday
    session_window_hours: int = 5

    # Alert thresholds (ratios 0..1)
    session_warning: float = 0.70
    session_critical: float = 0.90
    weekly_warning: float = 0.70
    weekly_critical: float = 0.90
    alert_hysteresis: float = 0.05

    # Notifications (Slack / Telegram webhooks, both optional)
    notifications_enabled: bool = True
    slack_webhook_url: str = ""
    telegram_bot_token: str = ""
    telegram_chat_id: str = ""

    # Refresh cadence
    refresh_interval_seconds: int = 60
    api_timeout_seconds: float = 10.0
    cache_prune_interval_seconds: int = 1800
    cache_retention_days: int = 8

    # Remote usage API
    usage_api_url: str = "https://api.anthropic.com/api/oauth/usage"
    credentials_service: str = "Claude Code-credentials"

    # API server
    api_host: str = "127.0.0.1"
    api_port: int = 8787

    # Logging
    log_level: str = "INFO"

    @property
    def claude_path(self) -> Path:
        return Path(self.claude_dir).expanduser()

    @property
    def projects_path(self) -> Path:
        return self.claude_path / "projects"

    @property
    def data_path(self) -> Path:
        return Path(self.data_dir).expanduser()

    @property
    def db_path(self) -> Path:
        return self.data_path / "tokenmeter.db"

    @property
    def credentials_mirror_path(self) -> Path:
        return self.data_path / "credentials-mirror.json"


settings = Settings()
