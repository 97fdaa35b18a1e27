"""
Email delivery - transport configuration, transports, retrying engine and
failed delivery outbox.
"""

from seminary_mail.core.email.config import (
    ResolvedEmailConfig,
    SenderIdentity,
    TransportConfig,
    build_sender_identity,
    build_transport_config,
    describe_transport_config,
    log_transport_config_status,
    resolve_email_config,
)
from seminary_mail.core.email.engine import (
    DeliveryEngine,
    classify_error,
    get_delivery_engine,
    send_email,
    set_delivery_engine,
)
from seminary_mail.core.email.errors import (
    AttachmentError,
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
    html_to_text,
)
from seminary_mail.core.email.outbox import FailedDeliveryOutbox, get_outbox
from seminary_mail.core.email.transport import (
    close_transports,
    get_transport,
    invalidate_transports,
)

__all__ = [
    # Config
    "TransportConfig",
    "SenderIdentity",
    "ResolvedEmailConfig",
    "build_transport_config",
    "build_sender_identity",
    "resolve_email_config",
    "describe_transport_config",
    "log_transport_config_status",
    # Engine
    "DeliveryEngine",
    "classify_error",
    "get_delivery_engine",
    "set_delivery_engine",
    "send_email",
    # Errors
    "EmailDeliveryError",
    "EmailConfigurationError",
    "EmailValidationError",
    "RecipientLimitError",
    "AttachmentError",
    "TransientTransportError",
    "PermanentTransportError",
    # Messages
    "Attachment",
    "EmailMessage",
    "DeliveryResult",
    "FailureRecord",
    "html_to_text",
    # Outbox
    "FailedDeliveryOutbox",
    "get_outbox",
    # Transports
    "get_transport",
    "invalidate_transports",
    "close_transports",
]
