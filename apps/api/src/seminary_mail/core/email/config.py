"""
Transport Configuration

Builds an immutable ``TransportConfig`` from the current settings, optionally
overlaid with values stored through the admin email settings.

Resolution order for every value: stored override -> environment -> default.
Missing credentials are NOT an error here; the delivery engine decides what
an unconfigured transport means for the current deployment mode.
"""

import logging
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any

from seminary_mail.core.config import (
    DEFAULT_FROM_ADDRESS,
    DEFAULT_SMTP_HOST,
    DEFAULT_SMTP_PORT,
    Settings,
)

logger = logging.getLogger(__name__)

IMPLICIT_TLS_PORT = 465

PROVIDER_SMTP = "smtp"
PROVIDER_RESEND = "resend"
SUPPORTED_PROVIDERS = (PROVIDER_SMTP, PROVIDER_RESEND)


@dataclass(frozen=True)
class Credentials:
    user: str | None = None
    password: str | None = field(default=None, repr=False)

    @property
    def is_complete(self) -> bool:
        return bool(self.user and self.password)


@dataclass(frozen=True)
class PoolingPolicy:
    max_connections: int = 5
    max_messages: int = 100


@dataclass(frozen=True)
class RateLimitPolicy:
    rate_delta_ms: int = 1000
    rate_limit: int = 5


@dataclass(frozen=True)
class TlsPolicy:
    reject_unauthorized: bool = True


@dataclass(frozen=True)
class TransportConfig:
    """Everything a transport needs to open connections and send mail."""

    host: str
    port: int
    secure: bool
    credentials: Credentials
    pooling: PoolingPolicy = PoolingPolicy()
    rate_limiting: RateLimitPolicy = RateLimitPolicy()
    tls_policy: TlsPolicy = TlsPolicy()
    timeout: float = 30.0
    provider: str = PROVIDER_SMTP
    api_key: str | None = field(default=None, repr=False)

    @property
    def is_configured(self) -> bool:
        """Whether the transport has the credentials it needs to send."""
        if self.provider == PROVIDER_RESEND:
            return bool(self.api_key)
        return self.credentials.is_complete

    def missing_variables(self) -> list[str]:
        """Names of the environment variables that still need a value."""
        if self.provider == PROVIDER_RESEND:
            return [] if self.api_key else ["RESEND_API_KEY"]

        missing = []
        if not self.credentials.user:
            missing.append("SMTP_USER")
        if not self.credentials.password:
            missing.append("SMTP_PASS")
        return missing


def _parse_bool(value: Any) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in ("true", "1", "yes", "on")
    return bool(value)


def _parse_port(value: Any) -> int | None:
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


def _pick(overrides: Mapping[str, Any], key: str, fallback: Any) -> Any:
    value = overrides.get(key)
    if value is None or value == "":
        return fallback
    return value


def build_transport_config(
    settings: Settings,
    overrides: Mapping[str, Any] | None = None,
) -> TransportConfig:
    """
    Resolve the transport configuration for a single send.

    Args:
        settings: Current application settings
        overrides: Stored admin settings (camelCase keys such as ``smtpHost``)
            that take precedence over the environment

    Returns:
        A fresh, immutable TransportConfig
    """
    overrides = overrides or {}

    host = _pick(overrides, "smtpHost", settings.smtp_host) or DEFAULT_SMTP_HOST
    port = _parse_port(_pick(overrides, "smtpPort", settings.smtp_port)) or DEFAULT_SMTP_PORT
    explicit_secure = _parse_bool(_pick(overrides, "smtpSecure", settings.smtp_secure))

    provider = str(settings.email_provider or PROVIDER_SMTP).lower().strip()
    if provider not in SUPPORTED_PROVIDERS:
        logger.warning(f"Unknown email provider '{provider}', falling back to {PROVIDER_SMTP}")
        provider = PROVIDER_SMTP

    config = TransportConfig(
        host=host,
        port=port,
        secure=explicit_secure or port == IMPLICIT_TLS_PORT,
        credentials=Credentials(
            user=_pick(overrides, "smtpUser", settings.smtp_user),
            password=_pick(overrides, "smtpPass", settings.smtp_pass),
        ),
        pooling=PoolingPolicy(
            max_connections=settings.smtp_max_connections,
            max_messages=settings.smtp_max_messages,
        ),
        rate_limiting=RateLimitPolicy(
            rate_delta_ms=settings.smtp_rate_delta_ms,
            rate_limit=settings.smtp_rate_limit,
        ),
        tls_policy=TlsPolicy(reject_unauthorized=settings.is_production),
        timeout=settings.smtp_timeout_seconds,
        provider=provider,
        api_key=settings.resend_api_key,
    )

    return config


@dataclass(frozen=True)
class SenderIdentity:
    """From / Reply-To identity used on every outgoing message."""

    name: str
    address: str
    reply_to: str | None = None


def build_sender_identity(
    settings: Settings,
    overrides: Mapping[str, Any] | None = None,
) -> SenderIdentity:
    overrides = overrides or {}
    smtp_user = _pick(overrides, "smtpUser", settings.smtp_user)
    return SenderIdentity(
        name=_pick(overrides, "emailFromName", settings.email_from_name),
        address=settings.email_from_address or smtp_user or DEFAULT_FROM_ADDRESS,
        reply_to=_pick(overrides, "emailReplyTo", settings.email_reply_to) or smtp_user,
    )


@dataclass(frozen=True)
class ResolvedEmailConfig:
    """Transport and sender identity resolved together for one send."""

    transport: TransportConfig
    sender: SenderIdentity


def resolve_email_config(
    settings: Settings,
    overrides: Mapping[str, Any] | None = None,
) -> ResolvedEmailConfig:
    return ResolvedEmailConfig(
        transport=build_transport_config(settings, overrides),
        sender=build_sender_identity(settings, overrides),
    )


async def environment_email_config(settings: Settings) -> ResolvedEmailConfig:
    """Default config provider: environment variables only."""
    return resolve_email_config(settings)


def describe_transport_config(config: TransportConfig) -> dict[str, Any]:
    """
    Summarize a transport configuration without exposing secrets.

    Returns:
        Dict safe to log or return from a diagnostics endpoint
    """
    return {
        "provider": config.provider,
        "host": config.host,
        "port": config.port,
        "secure": config.secure,
        "user": "set" if config.credentials.user else "missing",
        "pass": "set" if config.credentials.password else "missing",
        "max_connections": config.pooling.max_connections,
        "max_messages": config.pooling.max_messages,
        "rate_limit": f"{config.rate_limiting.rate_limit}/{config.rate_limiting.rate_delta_ms}ms",
        "reject_unauthorized": config.tls_policy.reject_unauthorized,
        "configured": config.is_configured,
    }


def log_transport_config_status(config: TransportConfig) -> None:
    """Log the effective transport configuration, with credentials shown as set/missing."""
    status = describe_transport_config(config)
    logger.info(
        "Email configuration status: "
        f"host={status['host']} port={status['port']} secure={status['secure']} "
        f"user={status['user']} pass={status['pass']}"
    )


__all__ = [
    "Credentials",
    "PoolingPolicy",
    "RateLimitPolicy",
    "TlsPolicy",
    "TransportConfig",
    "SenderIdentity",
    "ResolvedEmailConfig",
    "PROVIDER_SMTP",
    "PROVIDER_RESEND",
    "build_transport_config",
    "build_sender_identity",
    "resolve_email_config",
    "environment_email_config",
    "describe_transport_config",
    "log_transport_config_status",
]
