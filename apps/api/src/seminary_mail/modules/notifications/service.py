"""
Registration Notification Service

Composes and sends the registration lifecycle emails:
- Registration confirmed (to the registrant)
- Verification confirmed (to the registrant)
- Room allocated (to the registrant)
- Welcome to the seminary (to the registrant)
- New registration alert (to ADMIN_EMAILS)

Every sender returns the engine's DeliveryResult and never raises, so a mail
outage cannot break the registration flow that triggered it.
"""

import logging
from collections.abc import Callable, Mapping
from typing import Any

from seminary_mail.core.email import DeliveryResult, EmailMessage, get_delivery_engine
from seminary_mail.core.email.message import FailureRecord
from seminary_mail.modules.email_settings.service import get_admin_recipients
from seminary_mail.modules.email_settings.store import get_settings_store
from seminary_mail.modules.notifications import composer
from seminary_mail.modules.notifications.composer import ComposedEmail

logger = logging.getLogger(__name__)


def _recipient(data: Mapping[str, Any]) -> str:
    return str(data.get("emailAddress") or data.get("email_address") or "")


async def _deliver(
    kind: str,
    recipients: list[str],
    compose: Callable[[], ComposedEmail],
) -> DeliveryResult:
    """Compose and send one notification, turning composer bugs into a failed result."""
    try:
        composed = compose()
    except Exception as e:
        logger.error(f"Failed to compose {kind} email: {e}", exc_info=True)
        return DeliveryResult(
            success=False,
            error=str(e),
            fallback_data=FailureRecord(
                to=", ".join(recipients),
                subject=kind,
                error_type="COMPOSE_ERROR",
            ),
        )

    message = EmailMessage.build(to=recipients, subject=composed.subject, html=composed.html)
    result = await get_delivery_engine().send(message)

    if result.success:
        logger.info(f"{kind.capitalize()} email sent to {', '.join(recipients)}: {result.message_id}")
    else:
        logger.error(f"Failed to send {kind} email: {result.error or 'Unknown error'}")

    return result


async def send_registration_confirmation(data: Mapping[str, Any]) -> DeliveryResult:
    return await _deliver(
        "registration confirmation",
        [_recipient(data)],
        lambda: composer.compose_registration_confirmation(data),
    )


async def send_verification_confirmation(data: Mapping[str, Any]) -> DeliveryResult:
    return await _deliver(
        "verification confirmation",
        [_recipient(data)],
        lambda: composer.compose_verification_confirmation(data),
    )


async def send_room_allocation(
    data: Mapping[str, Any],
    room: Mapping[str, Any],
) -> DeliveryResult:
    return await _deliver(
        "room allocation",
        [_recipient(data)],
        lambda: composer.compose_room_allocation(data, room),
    )


async def send_welcome(data: Mapping[str, Any]) -> DeliveryResult:
    return await _deliver(
        "welcome",
        [_recipient(data)],
        lambda: composer.compose_welcome(data),
    )


async def send_registration_notification(data: Mapping[str, Any]) -> DeliveryResult:
    """Alert the configured admin addresses (stored adminEmails, else ADMIN_EMAILS)."""
    return await _deliver(
        "registration notification",
        await get_admin_recipients(get_settings_store()),
        lambda: composer.compose_admin_notification(data),
    )


__all__ = [
    "send_registration_confirmation",
    "send_verification_confirmation",
    "send_room_allocation",
    "send_welcome",
    "send_registration_notification",
]
