"""Application configuration."""

from os import getenv

from pydantic import BaseModel


def _optional_float(name: str) -> float | None:
    raw = getenv(name, "").strip()
    return float(raw) if raw else None


def _csv(name: str, default: str) -> list[str]:
    return [part.strip() for part in getenv(name, default).split(",") if part.strip()]


class Settings(BaseModel):
    """Runtime settings for the application."""

    app_name: str = "anomaly-sentinel"
    app_env: str = getenv("APP_ENV", "dev")
    debug: bool = getenv("DEBUG", "0") == "1"
    database_url: str = getenv("DATABASE_URL", "sqlite:///./anomaly_sentinel.db")

    anomaly_sweep_enabled: bool = getenv("ANOMALY_SWEEP_ENABLED", "1") == "1"
    anomaly_sweep_interval_seconds: float = float(getenv("ANOMALY_SWEEP_INTERVAL_SECONDS", "900"))
    anomaly_detector_timeout_seconds: float | None = _optional_float("ANOMALY_DETECTOR_TIMEOUT_SECONDS")
    anomaly_skip_overlapping_sweeps: bool = getenv("ANOMALY_SKIP_OVERLAPPING_SWEEPS", "0") == "1"

    notification_channels: list[str] = _csv("NOTIFICATION_CHANNELS", "email,slack,in-app")
    smtp_host: str = getenv("SMTP_HOST", "")
    smtp_port: int = int(getenv("SMTP_PORT", "25"))
    smtp_sender: str = getenv("SMTP_SENDER", "anomaly-sentinel@localhost")
    slack_webhook_url: str = getenv("SLACK_WEBHOOK_URL", "")
    slack_timeout_seconds: float = float(getenv("SLACK_TIMEOUT_SECONDS", "5"))


settings: Settings = Settings()
