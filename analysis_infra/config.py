"""
Runtime configuration loaded from the environment.

In production the environment is populated by Modal secrets (see app.py).
Tests build Settings directly.
"""

import os
from functools import lru_cache

from pydantic import BaseModel, Field

from .log_config import get_logger

log = get_logger("config")

APP_NAME = "beetle-analysis"
DEFAULT_BOT_ALIASES = ("beetle-ai", "beetles-ai", "beetle")


def resolve_timeout_seconds(name: str, default: float, min_value: float, max_value: float) -> float:
    """Read a timeout from the environment, clamped to [min_value, max_value]."""
    raw = os.environ.get(name)
    if raw is None or raw == "":
        value = default
    else:
        try:
            value = float(raw)
        except ValueError:
            log.warn(
                "config.timeout_invalid",
                timeout_name=name,
                timeout_ms=int(default * 1000),
                detail=f"invalid value '{raw}', using default",
            )
            value = default

    if value < min_value:
        log.warn(
            "config.timeout_clamped",
            timeout_name=name,
            timeout_ms=int(min_value * 1000),
            detail=f"below min ({min_value}s), clamped",
        )
        value = min_value
    elif value > max_value:
        log.warn(
            "config.timeout_clamped",
            timeout_name=name,
            timeout_ms=int(max_value * 1000),
            detail=f"above max ({max_value}s), clamped",
        )
        value = max_value

    return value


class Settings(BaseModel):
    """Service settings. Field names mirror the environment variables."""

    redis_url: str = "redis://localhost:6379/0"
    database_url: str = "sqlite:///analysis.db"

    # Sandbox
    e2b_api_key: str | None = None
    e2b_sandbox_template: str | None = None
    sandbox_timeout_seconds: float = 60 * 60
    command_timeout_seconds: float = 60 * 60
    buffer_ttl_seconds: int = 60 * 60 * 4

    # Model providers
    google_api_key: str | None = None
    google_credentials_json_base64: str | None = None
    google_cloud_project: str | None = None
    aws_access_key_id: str | None = None
    aws_secret_access_key: str | None = None
    aws_region: str = "us-east-1"
    aws_bedrock_api_key: str | None = None

    # GitHub App
    github_app_id: str | None = None
    github_app_private_key: str | None = None
    github_webhook_secret: str | None = None
    bot_login: str | None = None
    bot_aliases: tuple[str, ...] = DEFAULT_BOT_ALIASES

    # Completion service
    completion_model: str = "gemini-2.0-flash"

    # Callback from the sandbox into this API
    api_base_url: str | None = None
    frontend_url: str = "https://beetleai.dev"

    # Notifications
    mail_api_url: str | None = None
    mail_api_key: str | None = None
    mail_from: str = "Beetle <noreply@beetleai.dev>"

    webhook_dedupe_ttl_seconds: int = Field(default=60 * 60 * 24)

    @property
    def bot_logins(self) -> set[str]:
        """Every login the bot may appear under, lower-cased."""
        logins = {alias.lower() for alias in self.bot_aliases}
        logins.update(f"{alias.lower()}[bot]" for alias in self.bot_aliases)
        if self.bot_login:
            logins.add(self.bot_login.lower())
        return logins

    @classmethod
    def from_env(cls) -> "Settings":
        env = os.environ
        aliases = env.get("BOT_ALIASES")
        return cls(
            redis_url=env.get("REDIS_URL", cls.model_fields["redis_url"].default),
            database_url=env.get("DATABASE_URL", cls.model_fields["database_url"].default),
            e2b_api_key=env.get("E2B_API_KEY"),
            e2b_sandbox_template=env.get("E2B_SANDBOX_TEMPLATE"),
            sandbox_timeout_seconds=resolve_timeout_seconds(
                "SANDBOX_TIMEOUT_SECONDS", 60 * 60, 60, 24 * 60 * 60
            ),
            command_timeout_seconds=resolve_timeout_seconds(
                "ANALYSIS_COMMAND_TIMEOUT_SECONDS", 60 * 60, 60, 4 * 60 * 60
            ),
            buffer_ttl_seconds=int(
                resolve_timeout_seconds("ANALYSIS_BUFFER_TTL_SECONDS", 60 * 60 * 4, 60, 7 * 24 * 60 * 60)
            ),
            google_api_key=env.get("GOOGLE_API_KEY"),
            google_credentials_json_base64=env.get("GOOGLE_CREDENTIALS_JSON_BASE64"),
            google_cloud_project=env.get("GOOGLE_CLOUD_PROJECT"),
            aws_access_key_id=env.get("AWS_ACCESS_KEY_ID"),
            aws_secret_access_key=env.get("AWS_SECRET_ACCESS_KEY"),
            aws_region=env.get("AWS_REGION") or env.get("AWS_DEFAULT_REGION") or "us-east-1",
            aws_bedrock_api_key=env.get("AWS_BEDROCK_API_KEY"),
            github_app_id=env.get("GITHUB_APP_ID"),
            github_app_private_key=env.get("GITHUB_APP_PRIVATE_KEY"),
            github_webhook_secret=env.get("GITHUB_WEBHOOK_SECRET"),
            bot_login=env.get("BEETLE_BOT_LOGIN"),
            bot_aliases=tuple(a.strip() for a in aliases.split(",") if a.strip())
            if aliases
            else DEFAULT_BOT_ALIASES,
            completion_model=env.get("COMPLETION_MODEL", "gemini-2.0-flash"),
            api_base_url=env.get("API_BASE_URL"),
            frontend_url=env.get("FRONTEND_URL", "https://beetleai.dev"),
            mail_api_url=env.get("MAIL_API_URL"),
            mail_api_key=env.get("MAIL_API_KEY"),
            mail_from=env.get("MAIL_FROM", "Beetle <noreply@beetleai.dev>"),
        )


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings.from_env()
