"""
Notification Background Jobs

Scheduled tasks for email delivery maintenance:
1. Resend emails recorded in the failed delivery outbox (hourly)

Plus address audit helpers used by the email diagnostics endpoint:
- audit_recipient_addresses: flag addresses that are likely to bounce
- summarize_domains: recipient domain distribution

Design Principles:
- The resend job is idempotent: records are popped before they are resent
  and re-queued only when they fail again
- A record is dropped after EMAIL_RESEND_MAX_ATTEMPTS resends
- Individual failures never stop the job
"""

import logging
import re
from collections import Counter
from collections.abc import Iterable
from datetime import UTC, datetime
from typing import Any

from apscheduler.triggers.interval import IntervalTrigger

from seminary_mail.core.config import settings
from seminary_mail.core.email import EmailMessage, FailedDeliveryOutbox, get_delivery_engine
from seminary_mail.core.email.outbox import get_outbox
from seminary_mail.core.scheduler import register_job

logger = logging.getLogger(__name__)

JOB_ID_RESEND_FAILED_EMAILS = "notifications_resend_failed_emails"

VALID_LOOKING = "Looks valid"

_BASIC_FORMAT = re.compile(r"^[^@]*@.*\..*$")


async def _resend_record(
    record: dict[str, Any],
    outbox: FailedDeliveryOutbox,
    max_attempts: int,
) -> dict[str, Any]:
    """
    Resend a single outbox record.

    Returns:
        Dict with processing result
    """
    message = EmailMessage.from_dict(record["message"])
    attempts = int(record.get("resend_attempts", 0)) + 1

    result = await get_delivery_engine().send(message, record_failure=False)

    if result.delivered:
        logger.info(f"Resent failed email '{message.subject}' on attempt {attempts}")
        return {"subject": message.subject, "status": "sent", "message_id": result.message_id}

    if attempts >= max_attempts:
        logger.error(
            f"Dropping failed email '{message.subject}' to {len(message.recipients)} "
            f"recipient(s) after {attempts} resend attempts: {result.error}"
        )
        return {"subject": message.subject, "status": "dropped", "error": result.error}

    await outbox.push(
        FailedDeliveryOutbox.build_record(
            message,
            result.error or "Email sending failed",
            record.get("error_type", "SMTP_FAILURE"),
            resend_attempts=attempts,
        )
    )
    return {"subject": message.subject, "status": "requeued", "error": result.error}


async def resend_failed_emails(
    outbox: FailedDeliveryOutbox | None = None,
    batch_size: int | None = None,
    max_attempts: int | None = None,
) -> dict[str, Any]:
    """
    Resend up to ``batch_size`` of the oldest failed deliveries.

    Returns:
        Dict with job execution summary including:
        - executed_at: When the job ran
        - results: Per-record outcome
        - total_sent / total_requeued / total_dropped / total_errors
    """
    outbox = outbox or get_outbox()
    batch_size = batch_size or settings.email_resend_batch_size
    max_attempts = max_attempts or settings.email_resend_max_attempts
    executed_at = datetime.now(UTC)

    records = await outbox.pop_batch(batch_size)
    logger.info(f"Starting failed email resend job with {len(records)} record(s)")

    results: dict[str, Any] = {
        "executed_at": executed_at.isoformat(),
        "results": [],
        "total_sent": 0,
        "total_requeued": 0,
        "total_dropped": 0,
        "total_errors": 0,
    }

    for record in records:
        try:
            outcome = await _resend_record(record, outbox, max_attempts)
        except Exception as e:
            logger.error(f"Error resending failed email record: {e}", exc_info=True)
            results["results"].append({"status": "error", "error": str(e)})
            results["total_errors"] += 1
            continue

        results["results"].append(outcome)
        results[f"total_{outcome['status']}"] += 1

    logger.info(
        f"Failed email resend job completed. Sent: {results['total_sent']}, "
        f"Requeued: {results['total_requeued']}, Dropped: {results['total_dropped']}, "
        f"Errors: {results['total_errors']}"
    )
    return results


def classify_address(address: str) -> str:
    """Return the first problem found with an address, or ``Looks valid``."""
    if not _BASIC_FORMAT.match(address):
        return "Invalid format"
    if address.endswith("@gmail.com") and len(address) < 10:
        return "Too short"
    if ".." in address:
        return "Double dots"
    if ".@" in address or "@." in address:
        return "Dot before/after @"
    if address.count("@") > 1:
        return "Multiple @"
    return VALID_LOOKING


def audit_recipient_addresses(addresses: Iterable[str]) -> list[dict[str, str]]:
    """
    Flag recipient addresses that are likely to bounce.

    Returns:
        One ``{"email", "status"}`` dict per problematic address, in input order
    """
    problems = []
    for address in addresses:
        status = classify_address(address.strip())
        if status != VALID_LOOKING:
            problems.append({"email": address, "status": status})
    return problems


def summarize_domains(addresses: Iterable[str], limit: int = 20) -> list[dict[str, Any]]:
    """Domain distribution of the given addresses, most common first."""
    domains = [address.rpartition("@")[2].lower() for address in addresses if "@" in address]
    total = len(domains)
    return [
        {"domain": domain, "count": count, "percentage": round(count * 100 / total, 2)}
        for domain, count in Counter(domains).most_common(limit)
    ]


def register_notification_jobs() -> None:
    """Register notification jobs with the scheduler."""
    register_job(
        job_id=JOB_ID_RESEND_FAILED_EMAILS,
        func=resend_failed_emails,
        trigger=IntervalTrigger(hours=1),
    )
    logger.info("Notification jobs registered")
