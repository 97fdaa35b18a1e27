"""
Tests for the delivery engine.

These tests verify:
- Successful delivery through the transport
- Validation (recipient count, empty recipients, attachments)
- Development mode placeholder sends and production configuration errors
- Retry of transient failures with linear backoff
- Permanent failures are not retried
- Terminal failures are recorded in the failed delivery outbox
- Optional masking of failures outside development
- Error classification
"""

import asyncio
from unittest.mock import AsyncMock

import aiosmtplib
import pytest

from seminary_mail.core.email.config import resolve_email_config
from seminary_mail.core.email.engine import DeliveryEngine, classify_error, send_email
from seminary_mail.core.email.errors import (
    EmailConfigurationError,
    PermanentTransportError,
    TransientTransportError,
)
from seminary_mail.core.email.message import Attachment, EmailMessage

# ============================================
# Successful delivery
# ============================================


class TestSuccessfulDelivery:
    @pytest.mark.asyncio
    async def test_single_recipient_sent(self, build_engine, mock_transport):
        """Test a healthy transport delivers on the first attempt."""
        engine = build_engine()
        message = EmailMessage.build(to="jane@x.com", subject="Hi", html="<p>Hi</p>")

        result = await engine.send(message)

        assert result.success is True
        assert result.message_id == "abc123"
        assert result.retry_count == 0
        assert result.note == "Email sent successfully"
        assert result.fallback_data is None
        mock_transport.verify.assert_awaited_once()
        mock_transport.send.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_sender_identity_passed_to_transport(
        self, build_engine, mock_transport, settings_factory
    ):
        """Test the resolved sender identity reaches the transport."""
        engine = build_engine(
            settings_factory(email_from_name="Seminary", email_reply_to="office@x.com")
        )
        message = EmailMessage.build(to="jane@x.com", subject="Hi", html="<p>Hi</p>")

        await engine.send(message)

        _, sender = mock_transport.send.await_args.args
        assert sender.name == "Seminary"
        assert sender.address == "mailer@example.com"
        assert sender.reply_to == "office@x.com"

    @pytest.mark.asyncio
    async def test_exactly_max_recipients_allowed(self, build_engine, mock_transport):
        """Test a message at the recipient limit is sent."""
        engine = build_engine()
        recipients = [f"user{i}@x.com" for i in range(50)]

        result = await engine.send(EmailMessage.build(to=recipients, subject="S", html="<p>x</p>"))

        assert result.success is True
        mock_transport.send.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_settings_read_on_every_send(
        self, mock_transport, memory_outbox, settings_factory
    ):
        """Test the settings provider is called for each send."""
        provider_calls = []

        def settings_provider():
            provider_calls.append(1)
            return settings_factory()

        async def config_provider(current):
            return resolve_email_config(current)

        engine = DeliveryEngine(
            settings_provider=settings_provider,
            config_provider=config_provider,
            transport_factory=lambda config: mock_transport,
            sleep=AsyncMock(),
            outbox=memory_outbox,
        )
        message = EmailMessage.build(to="jane@x.com", subject="Hi", html="<p>Hi</p>")

        await engine.send(message)
        await engine.send(message)

        assert len(provider_calls) == 2


# ============================================
# Validation
# ============================================


class TestValidation:
    @pytest.mark.asyncio
    async def test_too_many_recipients_rejected_without_transport(self, build_engine):
        """Test 51 recipients fail before any transport is obtained."""
        engine = build_engine()
        recipients = [f"user{i}@x.com" for i in range(51)]

        result = await engine.send(EmailMessage.build(to=recipients, subject="S", html="<p>x</p>"))

        assert result.success is False
        assert result.error == "Too many recipients. Maximum allowed: 50"
        assert result.fallback_data.error_type == "RECIPIENT_LIMIT_EXCEEDED"
        engine.transport_factory.assert_not_called()

    @pytest.mark.asyncio
    async def test_empty_recipients_rejected(self, build_engine, mock_transport):
        """Test an empty recipient list fails with a validation error."""
        engine = build_engine()

        result = await engine.send(EmailMessage.build(to=[], subject="S", html="<p>x</p>"))

        assert result.success is False
        assert result.error == "No recipients specified"
        assert result.fallback_data.to == ""
        assert result.fallback_data.subject == "S"
        mock_transport.send.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_blank_recipient_rejected(self, build_engine):
        """Test an empty address string counts as no recipient."""
        engine = build_engine()

        result = await engine.send(EmailMessage.build(to="", subject="S", html="<p>x</p>"))

        assert result.success is False
        assert result.error == "No recipients specified"

    @pytest.mark.asyncio
    async def test_attachment_without_filename_rejected(self, build_engine, mock_transport):
        """Test attachments are validated before sending."""
        engine = build_engine()
        message = EmailMessage.build(
            to="jane@x.com",
            subject="S",
            html="<p>x</p>",
            attachments=[Attachment(filename="", content=b"data")],
        )

        result = await engine.send(message)

        assert result.success is False
        assert result.fallback_data.error_type == "ATTACHMENT_ERROR"
        mock_transport.send.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_validation_failures_not_recorded(self, build_engine, memory_outbox):
        """Test rejected messages are not pushed to the outbox."""
        engine = build_engine()

        await engine.send(EmailMessage.build(to=[], subject="S", html="<p>x</p>"))

        assert await memory_outbox.size() == 0


# ============================================
# Configuration gate
# ============================================


class TestConfigurationGate:
    @pytest.mark.asyncio
    async def test_development_without_credentials_returns_placeholder(
        self, build_engine, mock_transport, settings_factory
    ):
        """Test development mode without credentials never touches the transport."""
        engine = build_engine(
            settings_factory(python_env="development", smtp_user=None, smtp_pass=None)
        )

        result = await engine.send(
            EmailMessage.build(to="jane@x.com", subject="Hi", html="<p>Hi</p>")
        )

        assert result.success is True
        assert result.message_id.startswith("dev-")
        assert result.message_id[4:].isdigit()
        assert result.note == "Email logged to console (development mode)"
        engine.transport_factory.assert_not_called()
        mock_transport.send.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_production_without_credentials_fails(self, build_engine, settings_factory):
        """Test missing credentials outside development name the missing variables."""
        engine = build_engine(settings_factory(smtp_pass=None))

        result = await engine.send(
            EmailMessage.build(to="jane@x.com", subject="Hi", html="<p>Hi</p>")
        )

        assert result.success is False
        assert "SMTP_PASS" in result.error
        assert "SMTP_USER" not in result.error
        assert result.fallback_data.error_type == "CONFIGURATION_ERROR"
        engine.transport_factory.assert_not_called()

    @pytest.mark.asyncio
    async def test_config_provider_error_returns_failure(
        self, mock_transport, memory_outbox, settings_factory
    ):
        """Test a failing config provider becomes a configuration error result."""

        async def broken_provider(current):
            raise RuntimeError("settings store unreachable")

        engine = DeliveryEngine(
            settings_provider=settings_factory,
            config_provider=broken_provider,
            transport_factory=lambda config: mock_transport,
            sleep=AsyncMock(),
            outbox=memory_outbox,
        )

        result = await engine.send(
            EmailMessage.build(to="jane@x.com", subject="Hi", html="<p>Hi</p>")
        )

        assert result.success is False
        assert result.error == "settings store unreachable"
        assert result.fallback_data.error_type == "CONFIGURATION_ERROR"
        mock_transport.send.assert_not_awaited()


# ============================================
# Retries
# ============================================


class TestRetries:
    @pytest.mark.asyncio
    async def test_transient_failures_retried_until_success(
        self, build_engine, mock_transport, sleep_mock
    ):
        """Test two timeouts followed by success report retry_count 2."""
        mock_transport.send.side_effect = [
            asyncio.TimeoutError("timed out"),
            ConnectionResetError("connection reset"),
            "abc123",
        ]
        engine = build_engine()

        result = await engine.send(
            EmailMessage.build(to="jane@x.com", subject="Hi", html="<p>Hi</p>")
        )

        assert result.success is True
        assert result.message_id == "abc123"
        assert result.retry_count == 2
        assert mock_transport.send.await_count == 3
        assert sleep_mock.await_count == 2

    @pytest.mark.asyncio
    async def test_backoff_is_linear(self, build_engine, mock_transport, sleep_mock):
        """Test the waits between attempts are delay, 2x delay, 3x delay."""
        mock_transport.send.side_effect = Exception("Connection timeout")
        engine = build_engine()

        result = await engine.send(
            EmailMessage.build(to="jane@x.com", subject="Hi", html="<p>Hi</p>")
        )

        assert result.success is False
        assert result.retry_count == 3
        assert [call.args[0] for call in sleep_mock.await_args_list] == [5.0, 10.0, 15.0]
        assert mock_transport.send.await_count == 4

    @pytest.mark.asyncio
    async def test_verify_only_on_first_attempt(self, build_engine, mock_transport):
        """Test retries skip connection verification."""
        mock_transport.verify.side_effect = [aiosmtplib.SMTPServerDisconnected("gone")]
        engine = build_engine()

        result = await engine.send(
            EmailMessage.build(to="jane@x.com", subject="Hi", html="<p>Hi</p>")
        )

        assert result.success is True
        assert result.retry_count == 1
        mock_transport.verify.assert_awaited_once()
        mock_transport.send.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_authentication_error_not_retried(
        self, build_engine, mock_transport, sleep_mock
    ):
        """Test a rejected login is attempted exactly once."""
        mock_transport.send.side_effect = aiosmtplib.SMTPAuthenticationError(
            535, "invalid credentials"
        )
        engine = build_engine()

        result = await engine.send(
            EmailMessage.build(to="jane@x.com", subject="Hi", html="<p>Hi</p>")
        )

        assert result.success is False
        assert result.retry_count == 0
        assert "invalid credentials" in result.error
        assert result.fallback_data.error_type == "SMTP_FAILURE"
        mock_transport.send.assert_awaited_once()
        sleep_mock.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_zero_retry_attempts(
        self, build_engine, mock_transport, sleep_mock, settings_factory
    ):
        """Test EMAIL_RETRY_ATTEMPTS=0 disables retries."""
        mock_transport.send.side_effect = asyncio.TimeoutError()
        engine = build_engine(settings_factory(email_retry_attempts=0))

        result = await engine.send(
            EmailMessage.build(to="jane@x.com", subject="Hi", html="<p>Hi</p>")
        )

        assert result.success is False
        assert result.retry_count == 0
        sleep_mock.assert_not_awaited()


# ============================================
# Terminal failures
# ============================================


class TestTerminalFailure:
    @pytest.mark.asyncio
    async def test_failure_recorded_in_outbox(self, build_engine, mock_transport, memory_outbox):
        """Test a terminal failure is pushed to the failed delivery outbox."""
        mock_transport.send.side_effect = ValueError("mailbox rejected")
        engine = build_engine()

        await engine.send(EmailMessage.build(to="jane@x.com", subject="Hi", html="<p>Hi</p>"))

        records = await memory_outbox.pop_batch(10)
        assert len(records) == 1
        assert records[0]["message"]["to"] == ["jane@x.com"]
        assert records[0]["message"]["subject"] == "Hi"
        assert records[0]["error_type"] == "SMTP_FAILURE"
        assert records[0]["resend_attempts"] == 0

    @pytest.mark.asyncio
    async def test_record_failure_disabled(self, build_engine, mock_transport, memory_outbox):
        """Test record_failure=False leaves the outbox untouched."""
        mock_transport.send.side_effect = ValueError("rejected")
        engine = build_engine()

        result = await engine.send(
            EmailMessage.build(to="jane@x.com", subject="Hi", html="<p>Hi</p>"),
            record_failure=False,
        )

        assert result.success is False
        assert await memory_outbox.size() == 0

    @pytest.mark.asyncio
    async def test_outbox_error_does_not_raise(self, build_engine, mock_transport, memory_outbox):
        """Test an outbox failure still returns the failed result."""
        mock_transport.send.side_effect = ValueError("rejected")
        memory_outbox.push = AsyncMock(side_effect=RuntimeError("outbox down"))
        engine = build_engine()

        result = await engine.send(
            EmailMessage.build(to="jane@x.com", subject="Hi", html="<p>Hi</p>")
        )

        assert result.success is False
        assert result.error == "rejected"

    @pytest.mark.asyncio
    async def test_failures_not_masked_by_default(self, build_engine, mock_transport):
        """Test production failures are reported as failures."""
        mock_transport.send.side_effect = ValueError("rejected")
        engine = build_engine()

        result = await engine.send(
            EmailMessage.build(to="jane@x.com", subject="Hi", html="<p>Hi</p>")
        )

        assert result.success is False
        assert result.message_id is None

    @pytest.mark.asyncio
    async def test_masked_failure_in_production(
        self, build_engine, mock_transport, settings_factory
    ):
        """Test the mask flag reports success with a failed- placeholder id."""
        mock_transport.send.side_effect = ValueError("rejected")
        engine = build_engine(settings_factory(email_mask_failures_in_production=True))

        result = await engine.send(
            EmailMessage.build(to="jane@x.com", subject="Hi", html="<p>Hi</p>")
        )

        assert result.success is True
        assert result.message_id.startswith("failed-")
        assert result.error == "rejected"
        assert result.fallback_data is not None
        assert result.delivered is False

    @pytest.mark.asyncio
    async def test_mask_flag_ignored_in_development(
        self, build_engine, mock_transport, settings_factory
    ):
        """Test development always reports the real outcome."""
        mock_transport.send.side_effect = ValueError("rejected")
        engine = build_engine(
            settings_factory(python_env="development", email_mask_failures_in_production=True)
        )

        result = await engine.send(
            EmailMessage.build(to="jane@x.com", subject="Hi", html="<p>Hi</p>")
        )

        assert result.success is False


# ============================================
# Error classification
# ============================================


class TestClassifyError:
    @pytest.mark.parametrize(
        "error",
        [
            asyncio.TimeoutError(),
            ConnectionRefusedError("refused"),
            aiosmtplib.SMTPConnectError("cannot connect"),
            aiosmtplib.SMTPServerDisconnected("disconnected"),
            aiosmtplib.SMTPResponseException(421, "service not available"),
            Exception("read ECONNRESET"),
            Exception("Network unreachable"),
        ],
    )
    def test_transient(self, error):
        """Test timeout, connection and 4xx class errors are transient."""
        assert isinstance(classify_error(error), TransientTransportError)

    @pytest.mark.parametrize(
        "error",
        [
            aiosmtplib.SMTPAuthenticationError(535, "invalid credentials"),
            aiosmtplib.SMTPResponseException(550, "mailbox unavailable"),
            ValueError("bad address"),
        ],
    )
    def test_permanent(self, error):
        """Test everything else is permanent."""
        assert isinstance(classify_error(error), PermanentTransportError)

    def test_delivery_errors_passed_through(self):
        """Test already classified errors are returned as-is."""
        error = EmailConfigurationError("missing")
        assert classify_error(error) is error


# ============================================
# Module-level send_email
# ============================================


class TestSendEmail:
    @pytest.mark.asyncio
    async def test_uses_installed_engine(self, install_engine, mock_transport):
        """Test send_email delivers through the process-wide engine."""
        install_engine()

        result = await send_email(
            to=["a@x.com", "b@x.com"],
            subject="Notice",
            html="<p>Hello</p>",
            attachments=[{"filename": "a.txt", "content": "hello", "contentType": "text/plain"}],
        )

        assert result.success is True
        message, _ = mock_transport.send.await_args.args
        assert message.recipients == ("a@x.com", "b@x.com")
        assert message.attachments[0].content == b"hello"

    @pytest.mark.asyncio
    async def test_empty_to_fails(self, install_engine):
        """Test an empty recipient fails validation."""
        install_engine()

        result = await send_email(to="", subject="S", html="<p>x</p>")

        assert result.success is False
        assert result.error == "No recipients specified"
