# buildnotify/config.py
from __future__ import annotations

from dataclasses import dataclass
from typing import Literal

from pydantic_settings import BaseSettings, SettingsConfigDict

from buildnotify.infra.logging_config import get_logger

logger = get_logger(__name__)


@dataclass(frozen=True)
class HandlerProfile:
    """
    Capability flags for the notification handler.

    - require_admin: caller must hold an active admin grant
    - record_caller_identity: audit rows carry user_id and request metadata
    """
    require_admin: bool = True
    record_caller_identity: bool = True


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore"
    )

    # Application
    app_env: Literal["dev", "staging", "prod"] = "dev"
    log_level: str = "INFO"

    # Backend (auth + PostgREST tables)
    supabase_url: str = ""
    supabase_anon_key: str = ""
    supabase_service_role_key: str | None = None  # Used for audit inserts when set
    roles_table: str = "user_roles"
    admin_role: str = "admin"
    audit_table: str = "notifications_log"

    # Telegram
    telegram_bot_token: str | None = None  # Bot token from @BotFather
    telegram_default_chat_id: str | None = None  # Fallback recipient when the payload names none
    telegram_api_base: str = "https://api.telegram.org"
    telegram_parse_mode: Literal["HTML", "Markdown", "MarkdownV2"] = "HTML"

    # Handler profile
    # require_admin=True, record_caller_identity=True  -> secure notifications
    # require_admin=False, record_caller_identity=False -> plain notifications
    require_admin: bool = True
    record_caller_identity: bool = True

    # Security
    # SECURITY: Only set to true if behind a trusted reverse proxy / gateway
    trust_proxy_headers: bool = False

    # Monitoring
    enable_metrics: bool = True
    metrics_token: str | None = None

    # Feature Flags
    enable_request_logging: bool = True

    @property
    def is_production(self) -> bool:
        return self.app_env == "prod"

    @property
    def is_staging(self) -> bool:
        return self.app_env == "staging"

    @property
    def handler_profile(self) -> HandlerProfile:
        return HandlerProfile(
            require_admin=self.require_admin,
            record_caller_identity=self.record_caller_identity,
        )

    @property
    def backend_url(self) -> str:
        return self.supabase_url.rstrip("/")

    @property
    def audit_key(self) -> str:
        """Key used for audit inserts (service role bypasses row-level policies)"""
        return self.supabase_service_role_key or self.supabase_anon_key

    def validate_required_for_production(self) -> list[str]:
        """Validate that required settings exist for production"""
        if not self.is_production:
            return []

        required_fields = [
            ("supabase_url", self.supabase_url),
            ("supabase_anon_key", self.supabase_anon_key),
            ("telegram_bot_token", self.telegram_bot_token),
        ]

        return [field_name for field_name, value in required_fields if not value]


def warn_on_risky_config(s: Settings) -> list[str]:
    warnings: list[str] = []

    if not s.supabase_url:
        warnings.append("supabase_url is not set (every request will fail credential verification).")

    if not s.telegram_bot_token:
        warnings.append("telegram_bot_token is missing (notifications will fail with 500).")

    if s.is_production and not s.require_admin:
        warnings.append("prod: require_admin=False (any authenticated user can send notifications).")

    if s.require_admin and not s.record_caller_identity:
        warnings.append("require_admin=True but record_caller_identity=False (audit rows lose the sender).")

    if not s.supabase_service_role_key:
        warnings.append(
            "supabase_service_role_key is not set: audit inserts use the anon key "
            "and depend on row-level policies."
        )

    if s.trust_proxy_headers:
        warnings.append(
            "trust_proxy_headers=True: ensure you are behind a trusted gateway, "
            "otherwise X-Forwarded-For spoofing is possible."
        )

    if s.enable_metrics and not s.metrics_token:
        warnings.append("enable_metrics=True but metrics_token is not set: /metrics is public.")

    return warnings


def validate_or_warn(s: Settings) -> None:
    """
    In prod: enforce required settings (hard fail).
    In non-prod: warn only.
    """
    missing = s.validate_required_for_production()

    if missing:
        raise RuntimeError(f"Missing required settings for production: {', '.join(missing)}")

    for msg in warn_on_risky_config(s):
        logger.warning(f"[config] {msg}")


def load_settings() -> Settings:
    """Read settings from the environment. Call once at process start."""
    return Settings()
