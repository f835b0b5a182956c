"""PairHub — configuration loaded from environment."""

from typing import Literal

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application-wide settings, loaded from .env or environment variables.

    Values are read once at process start; there is no hot reload.
    """

    # ── Database / storage ────────────────────────────────
    database_url: str = "sqlite+aiosqlite:///./data/pairhub.db"
    sessions_dir: str = "./sessions"

    # ── Quotas & billing ──────────────────────────────────
    max_active_sessions: int = 40
    coins_per_minute: int = 1
    pairing_cost: int = 5
    signup_coins: int = 100
    pairing_cooldown_seconds: int = 30
    metering_interval_seconds: int = 60
    logout_timeout_seconds: float = 10.0

    # ── Bot ───────────────────────────────────────────────
    command_prefix: str = "."

    # ── Auth ──────────────────────────────────────────────
    jwt_secret: str = "please-change-me-to-a-long-random-secret"
    jwt_algorithm: str = "HS256"
    token_expiry_minutes: int = 7 * 24 * 60

    # ── Protocol backend ──────────────────────────────────
    protocol_backend: Literal["simulated", "bridge"] = "simulated"
    bridge_base_url: str = "http://localhost:3001"
    bridge_token: str = "changeme"

    # ── App ───────────────────────────────────────────────
    app_name: str = "PairHub"
    debug: bool = False

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8"}


# Singleton settings instance
settings = Settings()
