"""
Email Settings Service Layer

Business logic for the admin-managed email configuration.

1. Viewing settings:
   - Requires VIEW_EMAIL_SETTINGS (Super Admin, Admin)
   - Stored values take precedence over environment variables
   - The password is reported as set/unset, never returned

2. Updating settings:
   - Requires MANAGE_EMAIL_SETTINGS (Super Admin)
   - Lenient validation in development, strict everywhere else
   - Outside development a supplied password is verified against the
     server before anything is saved
   - The password is only overwritten when a new one is supplied
   - Shared transports are invalidated so the next send uses the new values

3. Test email:
   - Requires TEST_EMAIL_SETTINGS (Super Admin)
   - Sends through the delivery engine using the effective settings
"""

import logging
from collections.abc import Awaitable, Callable, Mapping
from dataclasses import replace
from datetime import UTC, datetime
from html import escape
from typing import Any

from pydantic import ValidationError

from seminary_mail.core.config import Settings, get_settings
from seminary_mail.core.email import (
    DeliveryResult,
    EmailMessage,
    ResolvedEmailConfig,
    TransportConfig,
    build_transport_config,
    get_delivery_engine,
    invalidate_transports,
    resolve_email_config,
)
from seminary_mail.core.email.transport import EmailTransport, create_transport
from seminary_mail.core.permissions import Capability, PermissionDeniedError, Principal
from seminary_mail.modules.email_settings.schemas import EmailSettingsUpdate, EmailSettingsView
from seminary_mail.modules.email_settings.store import EmailSettingsStore

logger = logging.getLogger(__name__)

CONNECTION_TEST_TIMEOUT_SECONDS = 10.0
TEST_EMAIL_SUBJECT = "Mopgom Seminary Email Test - Configuration Working!"


class EmailSettingsError(Exception):
    """Base exception for email settings errors."""

    def __init__(self, message: str, error_code: str, status_code: int = 400):
        self.message = message
        self.error_code = error_code
        self.status_code = status_code
        super().__init__(message)


class InvalidEmailSettingsError(EmailSettingsError):
    """Raised when an update fails validation."""

    def __init__(self, details: list[dict[str, str]]):
        self.details = details
        super().__init__(
            message="Validation failed for email settings",
            error_code="INVALID_EMAIL_SETTINGS",
            status_code=400,
        )


class ConnectionTestFailedError(EmailSettingsError):
    """Raised when the mail server rejects the new settings."""

    def __init__(self, reason: str):
        super().__init__(
            message=f"Email configuration test failed: {reason or 'SMTP connection failed'}",
            error_code="EMAIL_CONFIGURATION_TEST_FAILED",
            status_code=400,
        )


def _as_text(value: Any) -> str:
    return "" if value is None else str(value)


def _as_port(value: Any, fallback: int) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        return fallback


def _as_bool(value: Any) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in ("true", "1")
    return bool(value)


def merge_settings(stored: Mapping[str, Any], settings: Settings) -> EmailSettingsView:
    """Overlay stored values on the environment (stored value -> env -> default)."""
    host = stored.get("smtpHost") or settings.smtp_host or ""
    user = stored.get("smtpUser") or settings.smtp_user or ""
    password = stored.get("smtpPass") or settings.smtp_pass or ""
    secure = stored.get("smtpSecure")

    return EmailSettingsView(
        smtp_host=_as_text(host),
        smtp_port=_as_port(stored.get("smtpPort") or settings.smtp_port, 587),
        smtp_user=_as_text(user),
        smtp_pass_set=bool(password),
        smtp_secure=_as_bool(secure) if secure is not None else settings.smtp_secure,
        email_from_name=_as_text(stored.get("emailFromName") or settings.email_from_name),
        email_reply_to=_as_text(stored.get("emailReplyTo") or settings.email_reply_to),
        admin_emails=_as_text(stored.get("adminEmails") or settings.admin_emails),
        is_configured=bool(host and user and password),
    )


async def get_email_settings(
    store: EmailSettingsStore,
    principal: Principal,
    settings: Settings | None = None,
) -> EmailSettingsView:
    """
    Get the effective email settings.

    Raises:
        PermissionDeniedError: If the principal may not view email settings
    """
    principal.require(Capability.VIEW_EMAIL_SETTINGS)
    return merge_settings(await store.get_all(), settings or get_settings())


def parse_update(payload: Mapping[str, Any], settings: Settings) -> EmailSettingsUpdate:
    """
    Validate an update payload for the current deployment mode.

    Raises:
        InvalidEmailSettingsError: With one ``{"field", "message"}`` per problem
    """
    try:
        return EmailSettingsUpdate.model_validate(
            dict(payload),
            context={"strict": not settings.is_development},
        )
    except ValidationError as e:
        details = [
            {
                "field": ".".join(str(part) for part in error["loc"]) or "__root__",
                "message": error["msg"],
            }
            for error in e.errors()
        ]
        logger.warning(f"Email settings validation failed: {details}")
        raise InvalidEmailSettingsError(details) from e


async def verify_connection(
    config: TransportConfig,
    transport_factory: Callable[[TransportConfig], EmailTransport] = create_transport,
) -> None:
    """
    Verify a configuration against the mail server with a throwaway transport.

    Raises:
        ConnectionTestFailedError: If the server cannot be reached or rejects the login
    """
    transport = transport_factory(replace(config, timeout=CONNECTION_TEST_TIMEOUT_SECONDS))
    try:
        await transport.verify()
    except Exception as e:
        logger.warning(f"Email configuration test failed: {e}")
        raise ConnectionTestFailedError(str(e)) from e
    finally:
        await transport.close()


async def update_email_settings(
    store: EmailSettingsStore,
    principal: Principal,
    payload: Mapping[str, Any],
    settings: Settings | None = None,
    connection_tester: Callable[[TransportConfig], Awaitable[None]] = verify_connection,
    on_change: Callable[[], Awaitable[None]] = invalidate_transports,
) -> EmailSettingsView:
    """
    Validate, verify and save new email settings.

    Args:
        store: Settings store to write to
        principal: Capabilities of the requesting user
        payload: Request body (camelCase keys)
        settings: Application settings (defaults to the cached settings)
        connection_tester: Verifies the new transport config before saving
        on_change: Called after saving (invalidates shared transports)

    Returns:
        The effective settings after the update

    Raises:
        PermissionDeniedError: If the principal may not modify email settings
        InvalidEmailSettingsError: If the payload fails validation
        ConnectionTestFailedError: If the new password is rejected by the server
    """
    principal.require(Capability.MANAGE_EMAIL_SETTINGS)
    settings = settings or get_settings()
    update = parse_update(payload, settings)
    values = update.to_store_values()

    logger.info(
        f"Email settings update requested: host={update.smtp_host} port={update.smtp_port}"
    )

    if update.smtp_pass and not settings.is_development:
        await connection_tester(build_transport_config(settings, values))
    elif settings.is_development:
        logger.info("Skipping email configuration test in development mode")

    await store.upsert_many(values)
    await on_change()

    logger.info(f"Email settings updated successfully ({len(values)} values)")
    return merge_settings(await store.get_all(), settings)


async def build_stored_transport_config(
    store: EmailSettingsStore,
    settings: Settings | None = None,
) -> TransportConfig:
    """Transport configuration from stored settings over the environment."""
    return build_transport_config(settings or get_settings(), await store.get_all())


def stored_email_config(
    store: EmailSettingsStore,
) -> Callable[[Settings], Awaitable[ResolvedEmailConfig]]:
    """Config provider for the delivery engine that reads the settings store on every send."""

    async def provider(settings: Settings) -> ResolvedEmailConfig:
        return resolve_email_config(settings, await store.get_all())

    return provider


async def get_admin_recipients(
    store: EmailSettingsStore,
    settings: Settings | None = None,
) -> list[str]:
    """Addresses that receive admin alerts (stored ``adminEmails`` over ADMIN_EMAILS)."""
    settings = settings or get_settings()
    stored = (await store.get_all()).get("adminEmails")
    if not stored:
        return settings.admin_emails_list
    return [email.strip() for email in str(stored).split(",") if email.strip()]


async def send_test_email(
    store: EmailSettingsStore,
    principal: Principal,
    to: str,
    settings: Settings | None = None,
) -> DeliveryResult:
    """
    Send a test email using the effective settings.

    Raises:
        PermissionDeniedError: If the principal may not test email settings
    """
    principal.require(Capability.TEST_EMAIL_SETTINGS)
    settings = settings or get_settings()
    config = await build_stored_transport_config(store, settings)

    html = f"""
    <div style="font-family: Arial, sans-serif; max-width: 600px; margin: 0 auto;">
        <h2 style="color: #4F46E5;">Email Configuration Test Successful!</h2>
        <p>This is a test email from your Mopgom Seminary system to confirm that email sending is working correctly.</p>
        <div style="background: #F3F4F6; padding: 20px; border-radius: 8px; margin: 20px 0;">
            <h3 style="margin-top: 0; color: #374151;">Configuration Details:</h3>
            <ul style="color: #6B7280;">
                <li><strong>SMTP Host:</strong> {escape(config.host)}</li>
                <li><strong>SMTP Port:</strong> {config.port}</li>
                <li><strong>Secure Connection:</strong> {"Yes" if config.secure else "No"}</li>
                <li><strong>Environment:</strong> {escape(settings.python_env.capitalize())}</li>
                <li><strong>Sent At:</strong> {datetime.now(UTC).strftime("%Y-%m-%d %H:%M:%S UTC")}</li>
            </ul>
        </div>
        <p style="color: #6B7280; font-size: 14px;">
            If you received this email, your email configuration is working correctly.
        </p>
    </div>
    """

    result = await get_delivery_engine().send(
        EmailMessage.build(to=to, subject=TEST_EMAIL_SUBJECT, html=html)
    )
    if result.success:
        logger.info(f"Test email sent successfully to {to}")
    else:
        logger.warning(f"Test email to {to} failed: {result.error}")
    return result


__all__ = [
    "EmailSettingsError",
    "InvalidEmailSettingsError",
    "ConnectionTestFailedError",
    "PermissionDeniedError",
    "merge_settings",
    "get_email_settings",
    "parse_update",
    "verify_connection",
    "update_email_settings",
    "build_stored_transport_config",
    "stored_email_config",
    "get_admin_recipients",
    "send_test_email",
]
