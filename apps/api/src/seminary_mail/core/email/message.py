"""
Email message and delivery result types.
"""

import base64
import re
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from datetime import UTC, datetime
from html import unescape
from typing import Any

from pydantic import BaseModel, Field

from seminary_mail.core.email.errors import AttachmentError

_HIDDEN_BLOCKS = re.compile(r"<(style|script|head)[^>]*>.*?</\1>", re.IGNORECASE | re.DOTALL)
_TAGS = re.compile(r"<[^>]*>")
_BLANK_LINES = re.compile(r"\n\s*\n+")


def html_to_text(html: str) -> str:
    """Derive a plain-text body by stripping markup from HTML."""
    text = _HIDDEN_BLOCKS.sub("", html)
    text = _TAGS.sub("", text)
    text = unescape(text)
    lines = [line.strip() for line in text.splitlines()]
    return _BLANK_LINES.sub("\n\n", "\n".join(lines)).strip()


@dataclass(frozen=True)
class Attachment:
    filename: str
    content: bytes = field(repr=False)
    content_type: str | None = None

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "Attachment":
        """
        Build an attachment from a ``{filename, content, contentType}`` mapping.

        String content is encoded as UTF-8; bytes are kept verbatim.
        """
        content = data.get("content")
        if isinstance(content, str):
            content = content.encode("utf-8")
        return cls(
            filename=data.get("filename") or "",
            content=content,  # type: ignore[arg-type]
            content_type=data.get("contentType") or data.get("content_type"),
        )

    def validate(self) -> None:
        if not self.filename:
            raise AttachmentError("Attachment is missing a filename")
        if not isinstance(self.content, bytes | bytearray):
            raise AttachmentError(f"Attachment {self.filename} has no binary content")


@dataclass(frozen=True)
class EmailMessage:
    """
    A fully formed outgoing email.

    Recipients keep their original order and are not de-duplicated.
    Recipient limits are enforced by the delivery engine, not here.
    """

    recipients: tuple[str, ...]
    subject: str
    html_body: str
    text_body: str | None = None
    attachments: tuple[Attachment, ...] = ()

    @classmethod
    def build(
        cls,
        to: str | Iterable[str],
        subject: str,
        html: str,
        text: str | None = None,
        attachments: Iterable[Attachment | Mapping[str, Any]] | None = None,
    ) -> "EmailMessage":
        recipients = (to,) if isinstance(to, str) else tuple(to)
        return cls(
            recipients=recipients,
            subject=subject,
            html_body=html,
            text_body=text,
            attachments=tuple(
                item if isinstance(item, Attachment) else Attachment.from_dict(item)
                for item in (attachments or [])
            ),
        )

    @property
    def plain_text(self) -> str:
        """Explicit text alternative, or one derived from the HTML body."""
        if self.text_body:
            return self.text_body
        return html_to_text(self.html_body)

    def to_dict(self) -> dict[str, Any]:
        """JSON-serializable form used by the failed delivery outbox."""
        return {
            "to": list(self.recipients),
            "subject": self.subject,
            "html": self.html_body,
            "text": self.text_body,
            "attachments": [
                {
                    "filename": attachment.filename,
                    "content": base64.b64encode(attachment.content).decode("ascii"),
                    "contentType": attachment.content_type,
                }
                for attachment in self.attachments
            ],
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "EmailMessage":
        return cls.build(
            to=data.get("to") or [],
            subject=data.get("subject", ""),
            html=data.get("html", ""),
            text=data.get("text"),
            attachments=[
                Attachment(
                    filename=item.get("filename", ""),
                    content=base64.b64decode(item.get("content", "")),
                    content_type=item.get("contentType"),
                )
                for item in data.get("attachments") or []
            ],
        )


class FailureRecord(BaseModel):
    """Diagnostic payload attached to a failed delivery."""

    to: str
    subject: str
    timestamp: str = Field(default_factory=lambda: datetime.now(UTC).isoformat())
    error_type: str = "SMTP_FAILURE"


class DeliveryResult(BaseModel):
    """Outcome of a send call. Never persisted by the engine."""

    success: bool
    message_id: str | None = None
    note: str | None = None
    error: str | None = None
    retry_count: int = Field(default=0, ge=0)
    fallback_data: FailureRecord | None = None

    @property
    def delivered(self) -> bool:
        """True only when the server accepted the message; masked failures are excluded."""
        return self.success and self.error is None


__all__ = [
    "Attachment",
    "EmailMessage",
    "FailureRecord",
    "DeliveryResult",
    "html_to_text",
]
