"""
Email Transports

Network clients that actually hand messages to a mail server or provider.

- SmtpTransport: aiosmtplib with a bounded connection pool and an advisory
  sliding-window rate limit
- ResendTransport: Resend HTTP API (sync SDK run in a worker thread)

Transports are shared per distinct TransportConfig through ``get_transport``.
Call ``invalidate_transports`` after the email settings change so that new
sends open connections with the new credentials.
"""

import asyncio
import logging
import mimetypes
import ssl
import time
from collections import deque
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from dataclasses import dataclass
from email.message import EmailMessage as MIMEMessage
from email.utils import formataddr, make_msgid
from typing import Protocol, runtime_checkable

import aiosmtplib
import resend

from seminary_mail.core.email.config import PROVIDER_RESEND, SenderIdentity, TransportConfig
from seminary_mail.core.email.message import EmailMessage

logger = logging.getLogger(__name__)

STANDARD_HEADERS = {
    "X-Mailer": "School Management System",
    "X-Priority": "3",
    "X-MSMail-Priority": "Normal",
}


@runtime_checkable
class EmailTransport(Protocol):
    """Contract every transport implements."""

    async def verify(self) -> None:
        """Check connectivity and credentials. Raises on failure."""
        ...

    async def send(self, message: EmailMessage, sender: SenderIdentity) -> str:
        """Send a message and return the provider message id."""
        ...

    async def close(self) -> None:
        """Release any pooled resources."""
        ...


def build_mime_message(message: EmailMessage, sender: SenderIdentity) -> MIMEMessage:
    """
    Convert an EmailMessage into a MIME message ready for SMTP.

    The HTML body is sent with a plain-text alternative. Attachments are
    added verbatim with their filename and content type.
    """
    mime = MIMEMessage()
    mime["From"] = formataddr((sender.name, sender.address))
    mime["To"] = ", ".join(message.recipients)
    if sender.reply_to:
        mime["Reply-To"] = sender.reply_to
    mime["Subject"] = message.subject
    mime["Message-ID"] = make_msgid(domain=sender.address.rpartition("@")[2] or None)
    for name, value in STANDARD_HEADERS.items():
        mime[name] = value

    mime.set_content(message.plain_text)
    mime.add_alternative(message.html_body, subtype="html")

    for attachment in message.attachments:
        content_type = (
            attachment.content_type
            or mimetypes.guess_type(attachment.filename)[0]
            or "application/octet-stream"
        )
        maintype, _, subtype = content_type.partition("/")
        mime.add_attachment(
            bytes(attachment.content),
            maintype=maintype,
            subtype=subtype or "octet-stream",
            filename=attachment.filename,
        )

    return mime


class SlidingWindowRateLimiter:
    """
    Allow at most ``limit`` acquisitions per ``window_seconds``.

    Callers over the limit wait (without blocking the event loop) until the
    oldest acquisition leaves the window.
    """

    def __init__(self, limit: int, window_seconds: float):
        self.limit = limit
        self.window_seconds = window_seconds
        self._timestamps: deque[float] = deque()
        self._lock = asyncio.Lock()

    async def acquire(self) -> None:
        async with self._lock:
            while True:
                now = time.monotonic()
                while self._timestamps and self._timestamps[0] <= now - self.window_seconds:
                    self._timestamps.popleft()

                if len(self._timestamps) < self.limit:
                    self._timestamps.append(now)
                    return

                wait_for = self._timestamps[0] + self.window_seconds - now
                await asyncio.sleep(max(wait_for, 0))


@dataclass
class _PooledConnection:
    client: aiosmtplib.SMTP
    messages_sent: int = 0


class SmtpConnectionPool:
    """
    Bounded pool of logged-in SMTP connections.

    At most ``max_connections`` connections are in use at once; a connection
    is retired after ``max_messages`` messages.
    """

    def __init__(self, config: TransportConfig):
        self.config = config
        self._semaphore = asyncio.Semaphore(config.pooling.max_connections)
        self._idle: list[_PooledConnection] = []

    def _tls_context(self) -> ssl.SSLContext:
        context = ssl.create_default_context()
        if not self.config.tls_policy.reject_unauthorized:
            context.check_hostname = False
            context.verify_mode = ssl.CERT_NONE
        return context

    async def _open(self) -> _PooledConnection:
        config = self.config
        client = aiosmtplib.SMTP(
            hostname=config.host,
            port=config.port,
            use_tls=config.secure,
            start_tls=False if config.secure else None,
            tls_context=self._tls_context(),
            timeout=config.timeout,
        )
        await client.connect()
        if config.credentials.is_complete:
            try:
                await client.login(config.credentials.user, config.credentials.password)
            except BaseException:
                client.close()
                raise
        logger.debug(f"Opened SMTP connection to {config.host}:{config.port}")
        return _PooledConnection(client=client)

    async def _discard(self, connection: _PooledConnection) -> None:
        try:
            if connection.client.is_connected:
                await connection.client.quit()
        except (aiosmtplib.SMTPException, OSError) as e:
            logger.debug(f"Error while closing SMTP connection: {e}")
            connection.client.close()

    @asynccontextmanager
    async def connection(self) -> AsyncIterator[_PooledConnection]:
        async with self._semaphore:
            connection = None
            while self._idle and connection is None:
                candidate = self._idle.pop()
                if candidate.client.is_connected:
                    connection = candidate
            if connection is None:
                connection = await self._open()

            try:
                yield connection
            except BaseException:
                await self._discard(connection)
                raise

            if (
                connection.messages_sent >= self.config.pooling.max_messages
                or not connection.client.is_connected
            ):
                await self._discard(connection)
            else:
                self._idle.append(connection)

    async def close(self) -> None:
        idle, self._idle = self._idle, []
        for connection in idle:
            await self._discard(connection)


class SmtpTransport:
    """SMTP transport backed by a shared connection pool."""

    def __init__(self, config: TransportConfig):
        self.config = config
        self.pool = SmtpConnectionPool(config)
        self.rate_limiter = SlidingWindowRateLimiter(
            limit=config.rate_limiting.rate_limit,
            window_seconds=config.rate_limiting.rate_delta_ms / 1000,
        )

    async def verify(self) -> None:
        async with self.pool.connection() as connection:
            await connection.client.noop()

    async def send(self, message: EmailMessage, sender: SenderIdentity) -> str:
        mime = build_mime_message(message, sender)
        await self.rate_limiter.acquire()

        async with self.pool.connection() as connection:
            await connection.client.send_message(
                mime,
                sender=sender.address,
                recipients=list(message.recipients),
            )
            connection.messages_sent += 1

        return mime["Message-ID"]

    async def close(self) -> None:
        await self.pool.close()


class ResendTransport:
    """Resend API transport, used when EMAIL_PROVIDER=resend."""

    def __init__(self, config: TransportConfig):
        self.config = config

    async def verify(self) -> None:
        if not self.config.api_key:
            raise ValueError("RESEND_API_KEY is not configured")

    async def send(self, message: EmailMessage, sender: SenderIdentity) -> str:
        resend.api_key = self.config.api_key

        params: resend.Emails.SendParams = {
            "from": formataddr((sender.name, sender.address)),
            "to": list(message.recipients),
            "subject": message.subject,
            "html": message.html_body,
            "text": message.plain_text,
            "headers": dict(STANDARD_HEADERS),
        }
        if sender.reply_to:
            params["reply_to"] = sender.reply_to
        if message.attachments:
            params["attachments"] = [
                {
                    "filename": attachment.filename,
                    "content": list(attachment.content),
                    "content_type": attachment.content_type,
                }
                for attachment in message.attachments
            ]

        # Run sync Resend call in thread pool to avoid blocking event loop
        email = await asyncio.to_thread(resend.Emails.send, params)
        return email["id"]

    async def close(self) -> None:
        return None


def create_transport(config: TransportConfig) -> EmailTransport:
    """Build a new, unshared transport for a configuration."""
    if config.provider == PROVIDER_RESEND:
        return ResendTransport(config)
    return SmtpTransport(config)


# Shared transports, one per distinct configuration
_transports: dict[TransportConfig, EmailTransport] = {}


def get_transport(config: TransportConfig) -> EmailTransport:
    """
    Return the shared transport for a configuration, creating it if needed.

    Args:
        config: Resolved transport configuration

    Returns:
        SmtpTransport or ResendTransport depending on ``config.provider``
    """
    transport = _transports.get(config)
    if transport is None:
        transport = create_transport(config)
        _transports[config] = transport
        logger.info(f"Created {config.provider} transport for {config.host}:{config.port}")
    return transport


async def invalidate_transports() -> None:
    """Close every shared transport so the next send uses fresh settings."""
    transports = list(_transports.values())
    _transports.clear()
    for transport in transports:
        try:
            await transport.close()
        except Exception as e:
            logger.warning(f"Failed to close email transport cleanly: {e}")


close_transports = invalidate_transports


__all__ = [
    "EmailTransport",
    "SmtpTransport",
    "ResendTransport",
    "SmtpConnectionPool",
    "SlidingWindowRateLimiter",
    "STANDARD_HEADERS",
    "build_mime_message",
    "create_transport",
    "get_transport",
    "invalidate_transports",
    "close_transports",
]
