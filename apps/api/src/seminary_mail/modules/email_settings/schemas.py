"""
Email Settings Schemas

Pydantic schemas for the admin email settings. Field names are snake_case in
Python and camelCase on the wire (``smtpHost``, ``emailFromName``, ...), which
is also how values are keyed in the settings store.
"""

from typing import Any

from pydantic import (
    BaseModel,
    ConfigDict,
    EmailStr,
    Field,
    TypeAdapter,
    ValidationError,
    ValidationInfo,
    field_validator,
    model_validator,
)
from pydantic.alias_generators import to_camel

DEFAULT_PORT = 587

# Fields a production update must supply explicitly
REQUIRED_IN_STRICT_MODE = (
    "smtp_host",
    "smtp_port",
    "smtp_user",
    "smtp_secure",
    "email_from_name",
    "admin_emails",
)

STRICT_MESSAGES = {
    "smtp_host": "SMTP Host is required",
    "smtp_port": "SMTP Port is required",
    "smtp_user": "SMTP Username is required",
    "smtp_secure": "SMTP Secure flag is required",
    "email_from_name": "From Name is required",
    "admin_emails": "Admin Emails are required",
}


_email_address = TypeAdapter(EmailStr)


def _invalid_addresses(value: str) -> list[str]:
    invalid = []
    for address in (item.strip() for item in value.split(",")):
        if not address:
            continue
        try:
            _email_address.validate_python(address)
        except ValidationError:
            invalid.append(address)
    return invalid


def _is_strict(info: ValidationInfo) -> bool:
    return bool(info.context and info.context.get("strict"))


class EmailSettingsUpdate(BaseModel):
    """
    Request body for updating the email settings.

    Validate with ``context={"strict": True}`` outside development: every
    field except the password and reply-to must then be present and
    non-empty, the port must be 1-65535 and the admin emails (comma
    separated) and reply-to must be valid addresses. Without the strict context
    missing fields fall back to local development defaults and an
    unparseable port becomes 587.
    """

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    smtp_host: str = "localhost"
    smtp_port: int = DEFAULT_PORT
    smtp_user: str = "test@localhost"
    smtp_pass: str | None = None
    smtp_secure: bool = False
    email_from_name: str = "School Management System"
    email_reply_to: str | None = None
    admin_emails: str = "admin@localhost"

    @field_validator("smtp_port", mode="before")
    @classmethod
    def parse_port(cls, value: Any, info: ValidationInfo) -> int:
        try:
            port = int(value)
        except (TypeError, ValueError):
            port = None

        if _is_strict(info):
            if port is None or not 1 <= port <= 65535:
                raise ValueError("Invalid SMTP Port")
            return port

        return DEFAULT_PORT if port is None else port

    @field_validator("smtp_secure", mode="before")
    @classmethod
    def parse_secure(cls, value: Any) -> bool:
        if isinstance(value, str):
            return value.strip().lower() in ("true", "1")
        return bool(value)

    @model_validator(mode="after")
    def check_required(self, info: ValidationInfo) -> "EmailSettingsUpdate":
        if not _is_strict(info):
            return self

        problems = []
        for name in REQUIRED_IN_STRICT_MODE:
            value = getattr(self, name)
            if name not in self.model_fields_set or (isinstance(value, str) and not value.strip()):
                problems.append(STRICT_MESSAGES[name])

        if "admin_emails" in self.model_fields_set:
            invalid = _invalid_addresses(self.admin_emails)
            if invalid:
                problems.append(f"Invalid Admin Emails: {', '.join(invalid)}")
        if self.email_reply_to and _invalid_addresses(self.email_reply_to):
            problems.append("Invalid Reply-To address")
        if problems:
            raise ValueError("; ".join(problems))
        return self

    def to_store_values(self) -> dict[str, Any]:
        """Values to persist, keyed by wire name. The password is only included when supplied."""
        values = self.model_dump(by_alias=True, exclude={"smtp_pass"})
        values["emailReplyTo"] = self.email_reply_to or ""
        if self.smtp_pass:
            values["smtpPass"] = self.smtp_pass
        return values


class EmailSettingsView(BaseModel):
    """Effective email settings (stored values over environment). Never includes the password."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    smtp_host: str = ""
    smtp_port: int = DEFAULT_PORT
    smtp_user: str = ""
    smtp_pass_set: bool = False
    smtp_secure: bool = False
    email_from_name: str = ""
    email_reply_to: str = ""
    admin_emails: str = ""
    is_configured: bool = Field(default=False)


__all__ = ["EmailSettingsUpdate", "EmailSettingsView"]
