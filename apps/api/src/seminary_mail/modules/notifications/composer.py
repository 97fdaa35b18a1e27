"""
Notification Email Composer

Pure functions mapping a registration event plus its data to a subject and
HTML body. Nothing here touches the network.

Registration data arrives as a mapping with the camelCase keys produced by the
registration API (``fullName``, ``emailAddress``, ``createdAt``, ...);
snake_case keys are accepted as well. A missing field renders as an empty
string and is logged as a warning. Every interpolated value is HTML-escaped.
"""

import logging
import re
from collections.abc import Mapping
from dataclasses import dataclass
from datetime import date, datetime
from html import escape
from typing import Any

from seminary_mail.core.config import Settings

logger = logging.getLogger(__name__)

WELCOME_SUBJECT = "📖 Welcome to MOPGOM Theological Seminary! 🙌"

_CAMEL_BOUNDARY = re.compile(r"(?<!^)(?=[A-Z])")


@dataclass(frozen=True)
class ComposedEmail:
    subject: str
    html: str


def _snake_case(key: str) -> str:
    return _CAMEL_BOUNDARY.sub("_", key).lower()


def _lookup(data: Mapping[str, Any], key: str) -> Any:
    """Look a field up by camelCase then snake_case key."""
    value = data.get(key)
    if value is None:
        value = data.get(_snake_case(key))
    return value


def _raw(data: Mapping[str, Any], key: str, context: str) -> Any:
    value = _lookup(data, key)
    if value is None or value == "":
        logger.warning(f"Missing '{key}' while composing {context} email")
        return None
    return value


def _field(data: Mapping[str, Any], key: str, context: str) -> str:
    value = _raw(data, key, context)
    return "" if value is None else escape(str(value))


def _parse_date(value: Any) -> date | None:
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if isinstance(value, str):
        try:
            return datetime.fromisoformat(value.replace("Z", "+00:00")).date()
        except ValueError:
            return None
    return None


def format_short_date(value: Any) -> str:
    """``2024-01-31`` -> ``1/31/2024``."""
    parsed = _parse_date(value)
    return f"{parsed.month}/{parsed.day}/{parsed.year}" if parsed else ""


def format_long_date(value: Any) -> str:
    """``2024-01-31`` -> ``January 31, 2024``."""
    parsed = _parse_date(value)
    return f"{parsed:%B} {parsed.day}, {parsed.year}" if parsed else ""


def calculate_age(date_of_birth: Any, today: date | None = None) -> int | None:
    """Whole years between a date of birth and today (None if unparseable)."""
    born = _parse_date(date_of_birth)
    if born is None:
        return None
    today = today or date.today()
    age = today.year - born.year
    if (today.month, today.day) < (born.month, born.day):
        age -= 1
    return age


_EVENT_STYLES = """
        body { font-family: 'Inter', -apple-system, BlinkMacSystemFont, 'Segoe UI', Roboto, sans-serif; margin: 0; padding: 20px; background-color: #f8fafc; line-height: 1.5; color: #1f2937; }
        .container { max-width: 480px; margin: 0 auto; background-color: #ffffff; border-radius: 12px; overflow: hidden; box-shadow: 0 4px 6px -1px rgba(0, 0, 0, 0.1); }
        .header { background: linear-gradient(135deg, #6366f1 0%, #8b5cf6 100%); color: white; padding: 24px; text-align: center; }
        .content { padding: 24px; }
        .info-item { background: #f9fafb; padding: 12px; border-radius: 6px; margin: 8px 0; border-left: 3px solid #6366f1; }
        .info-label { font-weight: 600; color: #6b7280; font-size: 11px; margin-bottom: 4px; text-transform: uppercase; letter-spacing: 0.5px; }
        .info-value { color: #1f2937; font-size: 13px; }
        .notice { border-radius: 6px; padding: 12px; margin: 16px 0; font-size: 13px; }
        .footer { background: #f9fafb; padding: 16px; text-align: center; color: #6b7280; font-size: 12px; border-top: 1px solid #e5e7eb; }
"""


def _info_item(label: str, value: str) -> str:
    return f"""
            <div class="info-item">
                <div class="info-label">{label}</div>
                <div class="info-value">{value}</div>
            </div>"""


def _event_page(title: str, heading: str, event: str, greeting_name: str, body: str) -> str:
    return f"""<!DOCTYPE html>
<html lang="en">
<head>
    <meta charset="UTF-8">
    <meta name="viewport" content="width=device-width, initial-scale=1.0">
    <title>{title}</title>
    <style>{_EVENT_STYLES}    </style>
</head>
<body>
    <div class="container">
        <div class="header">
            <h1 style="margin: 0; font-size: 20px; font-weight: 600;">{heading}</h1>
            <p style="margin: 8px 0 0 0; font-size: 14px; opacity: 0.9;">{event}</p>
        </div>
        <div class="content">
            <p style="font-size: 16px; margin: 0 0 12px 0;">Hi <strong>{greeting_name}</strong>,</p>
{body}
        </div>
        <div class="footer">
            <p style="margin: 0;">{event} &bull; Questions? Reply to this email</p>
        </div>
    </div>
</body>
</html>"""


def compose_registration_confirmation(
    data: Mapping[str, Any],
    event_name: str | None = None,
) -> ComposedEmail:
    event_name = event_name or Settings().event_name
    event = escape(event_name)
    context = "registration confirmation"

    body = f"""            <p style="color: #6b7280; margin: 0 0 16px 0; font-size: 14px;">
                Your registration is confirmed! We're excited to have you join us.
            </p>
{_info_item("Email", _field(data, "emailAddress", context))}
{_info_item("Phone", _field(data, "phoneNumber", context))}
            <div class="notice" style="background: #f0f9ff; color: #1e40af;">
                <strong>Important:</strong> Please arrive 30 minutes early for registration check-in
            </div>"""

    return ComposedEmail(
        subject=f"✅ Registration Confirmed - {event_name}",
        html=_event_page(
            "Registration Confirmed",
            "✅ Registration Confirmed",
            event,
            _field(data, "fullName", context),
            body,
        ),
    )


def compose_verification_confirmation(
    data: Mapping[str, Any],
    event_name: str | None = None,
) -> ComposedEmail:
    event_name = event_name or Settings().event_name
    event = escape(event_name)

    body = f"""            <p style="color: #6b7280; margin: 0 0 16px 0; font-size: 14px;">
                Your registration has been verified! You're all set for the event.
            </p>
            <div class="notice" style="background: #f0fdf4; color: #059669; text-align: center;">
                <h2 style="margin: 0 0 8px 0; font-size: 18px;">✅ Verification Complete</h2>
                Your registration is now confirmed
            </div>
{_info_item("Status", "Verified ✅")}
            <div class="notice" style="background: #f0f9ff; color: #1e40af;">
                <strong>Next:</strong> Wait for room allocation notification
            </div>"""

    return ComposedEmail(
        subject=f"✅ Verification Confirmed - {event_name}",
        html=_event_page(
            "Verification Confirmed",
            "✅ Verification Confirmed",
            event,
            _field(data, "fullName", "verification confirmation"),
            body,
        ),
    )


def compose_room_allocation(
    data: Mapping[str, Any],
    room: Mapping[str, Any],
    event_name: str | None = None,
) -> ComposedEmail:
    event_name = event_name or Settings().event_name
    event = escape(event_name)
    context = "room allocation"
    room_name = _field(room, "name", context)
    room_gender = _field(room, "gender", context)
    room_capacity = _field(room, "capacity", context)

    body = f"""            <p style="color: #6b7280; margin: 0 0 16px 0; font-size: 14px;">
                Your room has been allocated! Here are your accommodation details:
            </p>
            <div class="notice" style="background: #eff6ff; color: #1e40af; text-align: center;">
                <h2 style="margin: 0 0 8px 0; font-size: 18px;">{room_name}</h2>
                {room_gender} &bull; {room_capacity} capacity
            </div>
{_info_item("Room", room_name)}
{_info_item("Type", room_gender)}
            <div class="notice" style="background: #fef3c7; color: #92400e;">
                <strong>Check-in:</strong> Present your registration details for room access
            </div>"""

    raw_room_name = _raw(room, "name", context) or ""
    return ComposedEmail(
        subject=f"🏠 Room Allocated - {raw_room_name} - {event_name}",
        html=_event_page(
            "Room Allocated",
            "🏠 Room Allocated",
            event,
            _field(data, "fullName", context),
            body,
        ),
    )


def compose_welcome(data: Mapping[str, Any]) -> ComposedEmail:
    context = "welcome"
    full_name = _field(data, "fullName", context)
    registration_id = _field(data, "id", context)
    email_address = _field(data, "emailAddress", context)
    registration_date = escape(format_long_date(_raw(data, "createdAt", context)))

    html = f"""<!DOCTYPE html>
<html>
<head>
    <meta charset="UTF-8">
    <meta name="viewport" content="width=device-width, initial-scale=1.0">
    <title>Welcome to MOPGOM Theological Seminary</title>
    <style>
        body {{ font-family: Georgia, 'Times New Roman', serif; line-height: 1.7; color: #333; background-color: #f4f4f4; margin: 0; padding: 20px; }}
        .container {{ max-width: 600px; margin: 0 auto; background: #ffffff; border-radius: 10px; overflow: hidden; }}
        .header {{ background: linear-gradient(135deg, #1e3a8a 0%, #3b82f6 100%); color: white; padding: 40px 30px; text-align: center; }}
        .content {{ padding: 40px 30px; }}
        .message-text {{ margin-bottom: 20px; font-size: 16px; }}
        .highlight {{ background: #eff6ff; border-left: 4px solid #3b82f6; padding: 20px; margin: 25px 0; border-radius: 0 8px 8px 0; }}
        .student-info {{ background: #f8fafc; border: 1px solid #e2e8f0; border-radius: 8px; padding: 20px; margin: 25px 0; }}
        .info-row {{ display: flex; justify-content: space-between; margin-bottom: 8px; }}
        .footer {{ background: #f8fafc; padding: 30px; text-align: center; color: #666; font-size: 14px; }}
    </style>
</head>
<body>
    <div class="container">
        <div class="header">
            <span style="font-size: 48px;">📖🙌</span>
            <h1>Welcome to MOPGOM Theological Seminary!</h1>
            <p style="margin: 0; font-size: 16px; opacity: 0.9;">Your Journey in Faith Begins Here</p>
        </div>
        <div class="content">
            <div class="message-text" style="font-size: 20px;">Dear {full_name},</div>
            <div class="message-text">
                <strong>Grace and peace to you in the name of our Lord Jesus Christ!</strong>
            </div>
            <div class="message-text">
                We are thrilled to welcome you to the MOPGOM Theological Seminary platform, a sacred
                space for learning, growth and spiritual transformation. You are now part of a vibrant
                community committed to truth, wisdom and service.
            </div>
            <div class="highlight">
                <strong>Here, you will be equipped not only with academic excellence but with the
                spiritual tools to lead, teach and minister with integrity and compassion.</strong>
            </div>
            <div class="student-info">
                <h3>📋 Your Registration Details</h3>
                <div class="info-row"><span>Registration ID:</span><strong>{registration_id}</strong></div>
                <div class="info-row"><span>Email:</span><strong>{email_address}</strong></div>
                <div class="info-row"><span>Registration Date:</span><strong>{registration_date}</strong></div>
            </div>
            <div class="highlight">
                <strong>📧 Important:</strong> Please check your email regularly for updates, course
                information and further instructions regarding your theological journey with us.
            </div>
            <div class="message-text">
                In His service,<br>
                <strong>The MOPGOM Theological Seminary Team</strong>
            </div>
        </div>
        <div class="footer">
            <p style="margin: 0 0 10px 0;"><strong>MOPGOM Theological Seminary</strong></p>
            <p style="margin: 0; font-size: 12px; color: #999;">
                This is an automated welcome message. Please keep this email for your records.
            </p>
        </div>
    </div>
</body>
</html>"""

    return ComposedEmail(subject=WELCOME_SUBJECT, html=html)


def compose_admin_notification(
    data: Mapping[str, Any],
    dashboard_url: str | None = None,
    today: date | None = None,
) -> ComposedEmail:
    """
    Alert administrators about a new registration.

    Args:
        data: Registration data
        dashboard_url: Base URL of the admin frontend (defaults to FRONTEND_URL)
        today: Reference date for the age calculation (defaults to today)
    """
    context = "admin notification"
    age = calculate_age(_raw(data, "dateOfBirth", context), today)
    base_url = (dashboard_url or Settings().frontend_url).rstrip("/")

    rows = "".join(
        f"""
                <div class="info-item"><div class="info-label">{label}</div><div class="info-value">{value}</div></div>"""
        for label, value in (
            ("Participant Name", _field(data, "fullName", context)),
            ("Email Address", _field(data, "emailAddress", context)),
            ("Phone Number", _field(data, "phoneNumber", context)),
            ("Age", f"{age} years old" if age is not None else ""),
            ("Parent/Guardian", _field(data, "parentGuardianName", context)),
            (
                "Registration Date",
                escape(format_short_date(_raw(data, "createdAt", context))),
            ),
        )
    )

    html = f"""<!DOCTYPE html>
<html lang="en">
<head>
    <meta charset="UTF-8">
    <meta name="viewport" content="width=device-width, initial-scale=1.0">
    <title>New Registration Notification</title>
    <style>
        body {{ font-family: 'Inter', -apple-system, BlinkMacSystemFont, 'Segoe UI', Roboto, sans-serif; line-height: 1.6; color: #374151; margin: 0; padding: 0; background-color: #f9fafb; }}
        .container {{ max-width: 600px; margin: 0 auto; padding: 20px; }}
        .header {{ background: linear-gradient(135deg, #667eea 0%, #764ba2 100%); color: white; padding: 32px 24px; border-radius: 12px 12px 0 0; text-align: center; }}
        .content {{ background: #ffffff; padding: 32px 24px; border-radius: 0 0 12px 12px; }}
        .info-grid {{ display: grid; grid-template-columns: 1fr 1fr; gap: 20px; margin: 24px 0; }}
        .info-item {{ background: #f8fafc; padding: 16px; border-radius: 8px; border-left: 3px solid #667eea; }}
        .info-label {{ font-weight: 500; color: #6b7280; margin-bottom: 4px; font-size: 12px; text-transform: uppercase; }}
        .info-value {{ color: #111827; font-weight: 600; }}
        .button {{ display: inline-block; background: #667eea; color: white; padding: 14px 28px; text-decoration: none; border-radius: 8px; font-weight: 600; }}
        .footer {{ text-align: center; margin-top: 32px; color: #9ca3af; font-size: 14px; }}
    </style>
</head>
<body>
    <div class="container">
        <div class="header">
            <h1 style="margin: 0;">🎉 New Registration Received!</h1>
            <p style="margin: 10px 0 0 0; opacity: 0.9;">A new participant has registered for the youth program</p>
        </div>
        <div class="content">
            <div class="info-grid">{rows}
            </div>
            <div style="text-align: center; margin: 30px 0;">
                <a href="{escape(base_url)}/admin/registrations" class="button">View Registration Details</a>
            </div>
            <div style="padding: 15px; border-radius: 6px; margin-top: 20px;">
                <h3 style="margin-top: 0; color: #667eea;">Quick Summary</h3>
                <p><strong>Registration ID:</strong> {_field(data, "id", context)}</p>
                <p><strong>Address:</strong> {_field(data, "address", context)}</p>
            </div>
        </div>
        <div class="footer">
            <p>This is an automated notification from the School Management System</p>
            <p>Please do not reply to this email</p>
        </div>
    </div>
</body>
</html>"""

    full_name = _raw(data, "fullName", context) or ""
    return ComposedEmail(subject=f"New Registration: {full_name}", html=html)


_REGISTRATION_PLACEHOLDERS = (
    "[Registration ID]",
    "[Date of Birth]",
    "[Gender]",
    "[Phone Number]",
    "[Email Address]",
    "[Registration Date]",
)


def personalize(
    subject: str,
    message: str,
    registration: Mapping[str, Any] | None,
) -> tuple[str, str]:
    """
    Fill bulk email placeholders from a registration.

    Messages using any registration placeholder get every placeholder
    replaced; other messages are prefixed with ``Dear <name>,``. The subject
    only supports ``[Name]``. Without a registration both are returned as is.
    """
    if not registration:
        return subject, message

    full_name = str(_lookup(registration, "fullName") or "")

    if any(placeholder in message for placeholder in _REGISTRATION_PLACEHOLDERS):

        def value(key: str, fallback: str) -> str:
            raw = _lookup(registration, key)
            return str(raw) if raw else fallback

        replacements = {
            "[Name]": full_name,
            "[Your Name]": full_name,
            "[Registration ID]": value("id", ""),
            "[Date of Birth]": format_short_date(_lookup(registration, "dateOfBirth")) or "Not provided",
            "[Gender]": value("gender", "Not specified"),
            "[Phone Number]": value("phoneNumber", "Not provided"),
            "[Email Address]": value("emailAddress", ""),
            "[Registration Date]": format_short_date(_lookup(registration, "createdAt")) or "Unknown",
        }
        for placeholder, replacement in replacements.items():
            message = message.replace(placeholder, replacement)
    else:
        message = f"Dear {full_name},\n\n{message}"

    return subject.replace("[Name]", full_name), message


def compose_bulk_message(
    subject: str,
    message: str,
    registration: Mapping[str, Any] | None = None,
    event_name: str | None = None,
) -> ComposedEmail:
    """Wrap an administrator-written message in the standard layout."""
    subject, message = personalize(subject, message, registration)
    safe_subject = escape(subject)
    event_name = event_name or Settings().event_name
    event = escape(event_name)

    html = f"""<!DOCTYPE html>
<html>
<head>
    <meta charset="utf-8">
    <meta name="viewport" content="width=device-width, initial-scale=1.0">
    <title>{safe_subject}</title>
    <style>
        body {{ font-family: 'Inter', -apple-system, BlinkMacSystemFont, 'Segoe UI', Roboto, sans-serif; line-height: 1.6; color: #1f2937; margin: 0; padding: 0; background-color: #f8fafc; }}
        .container {{ max-width: 600px; margin: 0 auto; background-color: #ffffff; padding: 32px; border-radius: 16px; }}
        .header {{ background: linear-gradient(135deg, #6366f1 0%, #8b5cf6 100%); color: white; padding: 32px; border-radius: 12px; text-align: center; margin: -32px -32px 32px -32px; }}
        .message {{ white-space: pre-wrap; margin: 24px 0; font-size: 16px; line-height: 1.7; }}
        .footer {{ margin-top: 32px; padding-top: 24px; border-top: 1px solid #e5e7eb; font-size: 12px; color: #6b7280; text-align: center; }}
    </style>
</head>
<body>
    <div class="container">
        <div class="header">
            <h1 style="margin: 0; font-size: 24px;">{safe_subject}</h1>
        </div>
        <div class="message">{escape(message)}</div>
        <div class="footer">
            <p style="margin: 0;">{event} &bull; Questions? Reply to this email</p>
        </div>
    </div>
</body>
</html>"""

    return ComposedEmail(subject=subject, html=html)


__all__ = [
    "ComposedEmail",
    "WELCOME_SUBJECT",
    "calculate_age",
    "compose_admin_notification",
    "compose_bulk_message",
    "compose_registration_confirmation",
    "compose_room_allocation",
    "compose_verification_confirmation",
    "compose_welcome",
    "format_long_date",
    "format_short_date",
    "personalize",
]
