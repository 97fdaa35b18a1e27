"""
Notifications Module

Registration lifecycle emails, bulk communications and delivery maintenance:
1. Composer: subject and HTML for each registration event
2. Senders: compose and deliver through the delivery engine
3. Bulk email: batched, personalised sends for administrators
4. Background job that resends failed deliveries

Background Jobs (via APScheduler):
- notifications_resend_failed_emails: Runs hourly, resends the failed delivery outbox
"""

from .bulk import BulkEmailReport, send_bulk_email
from .jobs import register_notification_jobs
from .service import (
    send_registration_confirmation,
    send_registration_notification,
    send_room_allocation,
    send_verification_confirmation,
    send_welcome,
)

__all__ = [
    "BulkEmailReport",
    "send_bulk_email",
    "register_notification_jobs",
    "send_registration_confirmation",
    "send_registration_notification",
    "send_room_allocation",
    "send_verification_confirmation",
    "send_welcome",
]
