"""
Delivery Engine

Sends an EmailMessage through the configured transport with bounded retries.

Flow for a single ``send`` call:
- Configuration gate: no credentials in development -> placeholder success,
  no credentials elsewhere -> configuration error result
- Validation: recipients (1..MAX_RECIPIENTS_PER_EMAIL) and attachments
- Transport: verify on the first attempt only, then dispatch
- Failure: transient errors are retried with linear backoff, anything else
  (or retries exhausted) is logged, pushed to the failed delivery outbox and
  returned as a failed result

``send`` never raises; every outcome is a ``DeliveryResult``.
"""

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable, Iterable, Mapping
from datetime import UTC, datetime
from typing import Any

import aiosmtplib

from seminary_mail.core.config import Settings
from seminary_mail.core.email.config import (
    ResolvedEmailConfig,
    TransportConfig,
    environment_email_config,
)
from seminary_mail.core.email.errors import (
    EmailConfigurationError,
    EmailDeliveryError,
    EmailValidationError,
    PermanentTransportError,
    RecipientLimitError,
    TransientTransportError,
)
from seminary_mail.core.email.message import (
    Attachment,
    DeliveryResult,
    EmailMessage,
    FailureRecord,
)
from seminary_mail.core.email.outbox import FailedDeliveryOutbox, get_outbox
from seminary_mail.core.email.transport import EmailTransport, get_transport

logger = logging.getLogger(__name__)

# Untyped errors whose message contains one of these are treated as transient
TRANSIENT_ERROR_MARKERS = ("timeout", "connection", "network", "econnreset", "etimedout")

TRANSIENT_EXCEPTION_TYPES = (
    asyncio.TimeoutError,
    TimeoutError,
    ConnectionError,
    aiosmtplib.SMTPConnectError,
    aiosmtplib.SMTPServerDisconnected,
    aiosmtplib.SMTPTimeoutError,
)

ConfigProvider = Callable[[Settings], Awaitable[ResolvedEmailConfig]]
TransportFactory = Callable[[TransportConfig], EmailTransport]


def _now_millis() -> int:
    return int(time.time() * 1000)


def classify_error(error: BaseException) -> EmailDeliveryError:
    """
    Map an arbitrary exception to a transient or permanent delivery error.

    Typed transport errors are checked first; the message substring match is
    only a fallback for errors that carry no usable type.
    """
    if isinstance(error, EmailDeliveryError):
        return error

    message = str(error) or error.__class__.__name__

    if isinstance(error, TRANSIENT_EXCEPTION_TYPES):
        return TransientTransportError(message)

    if isinstance(error, aiosmtplib.SMTPResponseException):
        if 400 <= error.code < 500:
            return TransientTransportError(message)
        return PermanentTransportError(message)

    lowered = message.lower()
    if any(marker in lowered for marker in TRANSIENT_ERROR_MARKERS):
        return TransientTransportError(message)

    return PermanentTransportError(message)


class DeliveryEngine:
    """Retrying email sender bound to a settings and config provider."""

    def __init__(
        self,
        settings_provider: Callable[[], Settings] = Settings,
        config_provider: ConfigProvider | None = None,
        transport_factory: TransportFactory = get_transport,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        outbox: FailedDeliveryOutbox | None = None,
    ):
        self.settings_provider = settings_provider
        self.config_provider = config_provider or environment_email_config
        self.transport_factory = transport_factory
        self.sleep = sleep
        self._outbox = outbox

    @property
    def outbox(self) -> FailedDeliveryOutbox:
        if self._outbox is None:
            self._outbox = get_outbox()
        return self._outbox

    async def send(
        self,
        message: EmailMessage,
        attempt: int = 0,
        *,
        record_failure: bool = True,
    ) -> DeliveryResult:
        """
        Deliver a message, retrying transient failures.

        Args:
            message: Message to deliver
            attempt: Zero-based attempt number (callers leave the default)
            record_failure: Push a terminal failure to the failed delivery outbox

        Returns:
            DeliveryResult describing the outcome
        """
        settings = self.settings_provider()

        try:
            resolved = await self.config_provider(settings)
        except Exception as e:
            logger.error(f"Failed to resolve email configuration: {e}", exc_info=True)
            return self._failure_result(message, EmailConfigurationError(str(e)), attempt)

        transport_config = resolved.transport

        if not transport_config.is_configured:
            if settings.is_development:
                logger.info(
                    f"Development mode: email to {len(message.recipients)} recipient(s) "
                    f"not sent, subject={message.subject!r}"
                )
                return DeliveryResult(
                    success=True,
                    message_id=f"dev-{_now_millis()}",
                    note="Email logged to console (development mode)",
                )

            missing = ", ".join(transport_config.missing_variables())
            logger.error(f"Email configuration missing in {settings.python_env}: {missing}")
            error = EmailConfigurationError(
                "Email configuration missing in production environment. "
                f"Required environment variables: {missing}. "
                "Please configure email settings in the admin panel."
            )
            return self._failure_result(message, error, attempt)

        try:
            self._validate(message, settings.max_recipients_per_email)
        except EmailValidationError as e:
            logger.warning(f"Email rejected before sending: {e.message}")
            return self._failure_result(message, e, attempt)

        try:
            transport = self.transport_factory(transport_config)
            if attempt == 0:
                await transport.verify()
            message_id = await transport.send(message, resolved.sender)
        except Exception as e:
            error = classify_error(e)

            if error.retryable and attempt < settings.email_retry_attempts:
                delay_ms = settings.email_retry_delay * (attempt + 1)
                logger.warning(
                    f"Email send attempt {attempt + 1} failed ({error.message}), "
                    f"retrying in {delay_ms}ms"
                )
                await self.sleep(delay_ms / 1000)
                return await self.send(message, attempt + 1, record_failure=record_failure)

            return await self._terminal_failure(message, error, attempt, settings, record_failure)

        logger.info(f"Email sent to {len(message.recipients)} recipient(s): {message_id}")
        return DeliveryResult(
            success=True,
            message_id=message_id,
            note="Email sent successfully",
            retry_count=attempt,
        )

    @staticmethod
    def _validate(message: EmailMessage, max_recipients: int) -> None:
        if not message.recipients or not all(message.recipients):
            raise EmailValidationError("No recipients specified")
        if len(message.recipients) > max_recipients:
            raise RecipientLimitError(len(message.recipients), max_recipients)
        for attachment in message.attachments:
            attachment.validate()

    @staticmethod
    def _failure_result(
        message: EmailMessage,
        error: EmailDeliveryError,
        attempt: int,
    ) -> DeliveryResult:
        return DeliveryResult(
            success=False,
            error=error.message,
            retry_count=attempt,
            fallback_data=FailureRecord(
                to=", ".join(message.recipients),
                subject=message.subject,
                error_type=error.error_code,
            ),
        )

    async def _terminal_failure(
        self,
        message: EmailMessage,
        error: EmailDeliveryError,
        attempt: int,
        settings: Settings,
        record_failure: bool,
    ) -> DeliveryResult:
        logger.error(
            f"Email sending failed after {attempt} retries: "
            f"recipients={len(message.recipients)} subject={message.subject!r} "
            f"timestamp={datetime.now(UTC).isoformat()} error={error.message}"
        )

        if record_failure:
            try:
                await self.outbox.push(
                    FailedDeliveryOutbox.build_record(message, error.message, error.error_code)
                )
            except Exception as e:
                logger.error(f"Failed to record failed email in outbox: {e}", exc_info=True)

        result = self._failure_result(message, error, attempt)

        if settings.email_mask_failures_in_production and not settings.is_development:
            result.success = True
            result.message_id = f"failed-{_now_millis()}"
            result.note = "Email queued for retry (SMTP temporarily unavailable)"

        return result


_engine: DeliveryEngine | None = None


def get_delivery_engine() -> DeliveryEngine:
    """Return the process-wide delivery engine."""
    global _engine
    if _engine is None:
        _engine = DeliveryEngine()
    return _engine


def set_delivery_engine(engine: DeliveryEngine | None) -> None:
    """Replace the process-wide engine (None resets to the default on next use)."""
    global _engine
    _engine = engine


async def send_email(
    to: str | Iterable[str],
    subject: str,
    html: str,
    text: str | None = None,
    attachments: Iterable[Attachment | Mapping[str, Any]] | None = None,
) -> DeliveryResult:
    """
    Send an email through the process-wide delivery engine.

    Args:
        to: Recipient address or list of addresses
        subject: Subject line
        html: HTML body
        text: Optional plain-text body (derived from ``html`` when omitted)
        attachments: Attachment objects or ``{filename, content, contentType}`` dicts

    Returns:
        DeliveryResult; never raises
    """
    message = EmailMessage.build(
        to=to or [],
        subject=subject,
        html=html,
        text=text,
        attachments=attachments,
    )
    return await get_delivery_engine().send(message)


__all__ = [
    "DeliveryEngine",
    "classify_error",
    "get_delivery_engine",
    "set_delivery_engine",
    "send_email",
    "TRANSIENT_ERROR_MARKERS",
]
