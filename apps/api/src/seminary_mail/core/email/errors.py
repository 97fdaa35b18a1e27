"""
Email delivery exceptions.

These are raised inside the delivery engine and transports. The public
``send`` boundary converts every one of them into a ``DeliveryResult``.
"""


class EmailDeliveryError(Exception):
    """Base exception for email delivery errors."""

    error_code = "EMAIL_DELIVERY_ERROR"
    retryable = False

    def __init__(self, message: str, error_code: str | None = None):
        self.message = message
        if error_code:
            self.error_code = error_code
        super().__init__(message)


class EmailConfigurationError(EmailDeliveryError):
    """Required transport credentials are missing outside development."""

    error_code = "CONFIGURATION_ERROR"


class EmailValidationError(EmailDeliveryError):
    """The message itself cannot be sent (no recipients, bad attachment, ...)."""

    error_code = "VALIDATION_ERROR"


class RecipientLimitError(EmailValidationError):
    """Too many recipients for a single message."""

    error_code = "RECIPIENT_LIMIT_EXCEEDED"

    def __init__(self, count: int, limit: int):
        self.count = count
        self.limit = limit
        super().__init__(f"Too many recipients. Maximum allowed: {limit}")


class AttachmentError(EmailValidationError):
    """An attachment is missing its filename or content."""

    error_code = "ATTACHMENT_ERROR"


class TransientTransportError(EmailDeliveryError):
    """Timeout, connection or network class failure; safe to retry."""

    error_code = "TRANSIENT_TRANSPORT_ERROR"
    retryable = True


class PermanentTransportError(EmailDeliveryError):
    """Any other transport failure (auth rejected, malformed message, ...)."""

    error_code = "SMTP_FAILURE"


__all__ = [
    "EmailDeliveryError",
    "EmailConfigurationError",
    "EmailValidationError",
    "RecipientLimitError",
    "AttachmentError",
    "TransientTransportError",
    "PermanentTransportError",
]
