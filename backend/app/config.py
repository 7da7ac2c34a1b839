"""
Process-wide configuration.

Settings are read once from the environment (after loading a local .env file)
and handed to the session manager and the delivery adapter at construction.
Nothing else in the app reads host or provider constants directly.
"""

import os
from functools import lru_cache
from typing import List, Optional

from dotenv import load_dotenv
from pydantic import BaseModel

load_dotenv()


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name, "").strip()
    return float(raw) if raw else default


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name, "").strip()
    return int(raw) if raw else default


class Settings(BaseModel):
    """Immutable bridge configuration."""

    model_config = {"frozen": True}

    service_name: str = "Mail Bridge"
    version: str = "1.0.0"

    imap_host: str = "imap.mail.me.com"
    imap_port: int = 993
    imap_verify_tls: bool = True
    imap_connect_timeout: float = 30.0
    imap_command_timeout: float = 60.0

    smtp_host: str = "smtp.mail.me.com"
    smtp_port: int = 465
    smtp_connect_timeout: float = 30.0
    smtp_socket_timeout: float = 60.0

    recent_window_days: int = 30

    mailgun_api_key: Optional[str] = None
    mailgun_domain: Optional[str] = None
    mailgun_base_url: str = "https://api.mailgun.net/v3"
    mailgun_from: Optional[str] = None
    mailgun_timeout: float = 30.0

    cors_origins: List[str] = ["*"]
    port: int = 3000

    @property
    def uses_http_delivery(self) -> bool:
        """True when the HTTP provider is fully configured."""
        return bool(self.mailgun_api_key and self.mailgun_domain)


def load_settings() -> Settings:
    """
    Build Settings from environment variables.

    Unset or empty variables fall back to the defaults declared on Settings.
    CORS_ORIGINS is a comma-separated list, e.g.:
        CORS_ORIGINS=https://agent.example.com,http://localhost:3000
    """
    defaults = Settings()

    cors_env = os.getenv("CORS_ORIGINS", "").strip()
    cors_origins = (
        [o.strip() for o in cors_env.split(",") if o.strip()]
        if cors_env
        else defaults.cors_origins
    )

    return Settings(
        imap_host=os.getenv("IMAP_HOST") or defaults.imap_host,
        imap_port=_env_int("IMAP_PORT", defaults.imap_port),
        imap_verify_tls=_env_bool("IMAP_VERIFY_TLS", defaults.imap_verify_tls),
        imap_connect_timeout=_env_float("IMAP_CONNECT_TIMEOUT", defaults.imap_connect_timeout),
        imap_command_timeout=_env_float("IMAP_COMMAND_TIMEOUT", defaults.imap_command_timeout),
        smtp_host=os.getenv("SMTP_HOST") or defaults.smtp_host,
        smtp_port=_env_int("SMTP_PORT", defaults.smtp_port),
        smtp_connect_timeout=_env_float("SMTP_CONNECT_TIMEOUT", defaults.smtp_connect_timeout),
        smtp_socket_timeout=_env_float("SMTP_SOCKET_TIMEOUT", defaults.smtp_socket_timeout),
        recent_window_days=_env_int("RECENT_WINDOW_DAYS", defaults.recent_window_days),
        mailgun_api_key=os.getenv("MAILGUN_API_KEY") or None,
        mailgun_domain=os.getenv("MAILGUN_DOMAIN") or None,
        mailgun_base_url=os.getenv("MAILGUN_BASE_URL") or defaults.mailgun_base_url,
        mailgun_from=os.getenv("MAILGUN_FROM") or None,
        mailgun_timeout=_env_float("MAILGUN_TIMEOUT", defaults.mailgun_timeout),
        cors_origins=cors_origins,
        port=_env_int("PORT", defaults.port),
    )


@lru_cache
def get_settings() -> Settings:
    """Return the process-wide Settings, loaded on first use."""
    return load_settings()
