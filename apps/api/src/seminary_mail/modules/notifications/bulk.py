"""
Bulk Communications

Sends an administrator-written message to many recipients, one email per
recipient, in small batches. Messages inside a batch are sent concurrently;
batches are separated by a non-blocking delay so the SMTP provider's rate
limits are respected.
"""

import asyncio
import logging
from collections.abc import Awaitable, Callable, Iterable, Mapping
from typing import Any

from pydantic import BaseModel, Field

from seminary_mail.core.email import EmailMessage, get_delivery_engine
from seminary_mail.core.permissions import Capability, Principal
from seminary_mail.modules.notifications.composer import compose_bulk_message

logger = logging.getLogger(__name__)

DEFAULT_BATCH_SIZE = 5
DEFAULT_BATCH_DELAY_MS = 2000

# Checked in order; the first matching keyword decides the category
ERROR_CATEGORIES = (
    ("timeout", "Timeout"),
    ("connection", "Connection"),
    ("authentication", "Authentication"),
    ("rate", "Rate Limit"),
    ("invalid", "Invalid Email"),
)
OTHER_CATEGORY = "Other"


class BulkEmailSent(BaseModel):
    email: str
    message_id: str | None = None


class BulkEmailFailure(BaseModel):
    email: str
    error: str


class BulkEmailReport(BaseModel):
    """Summary of a bulk send."""

    total: int
    successful: int
    failed: int
    sent: list[BulkEmailSent] = Field(default_factory=list)
    errors: list[BulkEmailFailure] = Field(default_factory=list)
    error_breakdown: dict[str, list[str]] = Field(default_factory=dict)


def categorize_error(error: str) -> str:
    lowered = error.lower()
    for keyword, category in ERROR_CATEGORIES:
        if keyword in lowered:
            return category
    return OTHER_CATEGORY


async def _send_one(
    email: str,
    subject: str,
    message: str,
    registration: Mapping[str, Any] | None,
) -> BulkEmailSent | BulkEmailFailure:
    composed = compose_bulk_message(subject, message, registration)
    result = await get_delivery_engine().send(
        EmailMessage.build(to=email, subject=composed.subject, html=composed.html)
    )
    if result.delivered:
        return BulkEmailSent(email=email, message_id=result.message_id)
    return BulkEmailFailure(email=email, error=result.error or "Email sending failed")


async def send_bulk_email(
    principal: Principal,
    recipients: list[str],
    subject: str,
    message: str,
    registrations: Iterable[Mapping[str, Any]] | None = None,
    batch_size: int = DEFAULT_BATCH_SIZE,
    batch_delay_ms: int = DEFAULT_BATCH_DELAY_MS,
    sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
) -> BulkEmailReport:
    """
    Send a message to each recipient individually.

    Args:
        principal: Capabilities of the sending user
        recipients: Email addresses, one email each
        subject: Subject line (``[Name]`` is personalised)
        message: Plain-text message body (see ``composer.personalize``)
        registrations: Registration records used for personalisation, matched
            to recipients by ``emailAddress``
        batch_size: Emails sent concurrently per batch
        batch_delay_ms: Pause between batches
        sleep: Awaitable sleep used for the pause

    Returns:
        BulkEmailReport with per-recipient outcomes and grouped failures

    Raises:
        PermissionDeniedError: If the principal may not send bulk email
        ValueError: If recipients, subject or message is missing
    """
    principal.require(Capability.SEND_BULK_EMAIL)

    if not recipients:
        raise ValueError("Please provide at least one email recipient")
    if not subject or not message:
        raise ValueError("Please provide both subject and message for the email")

    batch_size = max(1, batch_size)
    by_email = {
        str(item.get("emailAddress") or item.get("email_address")): item
        for item in registrations or []
    }
    total_batches = (len(recipients) + batch_size - 1) // batch_size
    report = BulkEmailReport(total=len(recipients), successful=0, failed=0)

    logger.info(f"Sending bulk email to {len(recipients)} recipients in {total_batches} batches")

    for start in range(0, len(recipients), batch_size):
        batch = recipients[start : start + batch_size]
        batch_number = start // batch_size + 1
        logger.info(f"Processing batch {batch_number}/{total_batches} ({len(batch)} emails)")

        outcomes = await asyncio.gather(
            *(_send_one(email, subject, message, by_email.get(email)) for email in batch),
            return_exceptions=True,
        )

        for email, outcome in zip(batch, outcomes, strict=True):
            if isinstance(outcome, BaseException):
                logger.error(f"Bulk email to {email} raised: {outcome}", exc_info=outcome)
                outcome = BulkEmailFailure(email=email, error=str(outcome) or "Unknown error")

            if isinstance(outcome, BulkEmailSent):
                report.sent.append(outcome)
            else:
                report.errors.append(outcome)
                report.error_breakdown.setdefault(categorize_error(outcome.error), []).append(email)

        if start + batch_size < len(recipients):
            await sleep(batch_delay_ms / 1000)

    report.successful = len(report.sent)
    report.failed = len(report.errors)

    logger.info(f"Bulk email completed: {report.successful}/{report.total} sent successfully")
    for category, emails in report.error_breakdown.items():
        logger.warning(f"Bulk email failures ({category}): {len(emails)} emails")

    return report


__all__ = [
    "BulkEmailReport",
    "BulkEmailSent",
    "BulkEmailFailure",
    "categorize_error",
    "send_bulk_email",
]
