"""
Role Capabilities

Resolves a role name into a fixed set of capabilities once per session.
Callers check capabilities on the resulting ``Principal`` instead of
comparing role names.

Settings write access:
- Super Admin: every section
- Principal: every section except security (``security``, ``security-*``)
- Admin: every section except security and notifications (``notifications*``)
- Any other role: read-only

Email settings may be viewed by Super Admin and Admin, and only Super Admin
may change or test them. Bulk email is open to Super Admin, School
Administrator, Admin, Lecturer and Manager.
"""

import logging
from dataclasses import dataclass, field
from enum import Enum

logger = logging.getLogger(__name__)


class Role(str, Enum):
    SUPER_ADMIN = "Super Admin"
    PRINCIPAL = "Principal"
    ADMIN = "Admin"
    SCHOOL_ADMINISTRATOR = "School Administrator"
    LECTURER = "Lecturer"
    MANAGER = "Manager"
    STAFF = "Staff"


class SettingsSection(str, Enum):
    GENERAL = "general"
    COMMUNICATIONS = "communications"
    SECURITY = "security"
    NOTIFICATIONS = "notifications"
    DATA = "data"
    ROLES = "roles"
    RATELIMITS = "ratelimits"


class Capability(str, Enum):
    VIEW_EMAIL_SETTINGS = "view_email_settings"
    MANAGE_EMAIL_SETTINGS = "manage_email_settings"
    TEST_EMAIL_SETTINGS = "test_email_settings"
    SEND_BULK_EMAIL = "send_bulk_email"


class PermissionDeniedError(Exception):
    """Raised when a principal lacks a required capability."""

    def __init__(self, message: str, error_code: str = "PERMISSION_DENIED"):
        self.message = message
        self.error_code = error_code
        self.status_code = 403
        super().__init__(message)


_ROLE_CAPABILITIES: dict[Role, frozenset[Capability]] = {
    Role.SUPER_ADMIN: frozenset(Capability),
    Role.ADMIN: frozenset({Capability.VIEW_EMAIL_SETTINGS, Capability.SEND_BULK_EMAIL}),
    Role.SCHOOL_ADMINISTRATOR: frozenset({Capability.SEND_BULK_EMAIL}),
    Role.LECTURER: frozenset({Capability.SEND_BULK_EMAIL}),
    Role.MANAGER: frozenset({Capability.SEND_BULK_EMAIL}),
}

# Section families each role may NOT write; None means no write access at all
_DENIED_SECTIONS: dict[Role, frozenset[SettingsSection]] = {
    Role.SUPER_ADMIN: frozenset(),
    Role.PRINCIPAL: frozenset({SettingsSection.SECURITY}),
    Role.ADMIN: frozenset({SettingsSection.SECURITY, SettingsSection.NOTIFICATIONS}),
}

_DENIAL_MESSAGES: dict[Capability, str] = {
    Capability.VIEW_EMAIL_SETTINGS: "Insufficient permissions to view email settings",
    Capability.MANAGE_EMAIL_SETTINGS: "Only Super Admin can modify email settings",
    Capability.TEST_EMAIL_SETTINGS: "Only Super Admin can test email configuration",
    Capability.SEND_BULK_EMAIL: (
        "Only Super Admins, School Administrators, Admins, Lecturers and Managers "
        "can send bulk emails"
    ),
}


def _section_family(section_id: str) -> str:
    """``security-auth`` -> ``security``, ``notifications-email`` -> ``notifications``."""
    return section_id.strip().lower().split("-", 1)[0]


@dataclass(frozen=True)
class Principal:
    """Capabilities of the current user, resolved once from their role."""

    role: Role | None
    capabilities: frozenset[Capability] = field(default_factory=frozenset)
    denied_sections: frozenset[SettingsSection] | None = None

    def has(self, capability: Capability) -> bool:
        return capability in self.capabilities

    def require(self, capability: Capability) -> None:
        if not self.has(capability):
            role_name = self.role.value if self.role else "unknown"
            logger.warning(f"Permission denied: role={role_name} capability={capability.value}")
            raise PermissionDeniedError(_DENIAL_MESSAGES[capability])

    def can_write(self, section_id: str) -> bool:
        """Whether this principal may edit a settings tab (sub-tab ids accepted)."""
        if self.denied_sections is None:
            return False
        family = _section_family(section_id)
        return all(family != section.value for section in self.denied_sections)


def resolve_capabilities(role_name: str | None) -> Principal:
    """
    Build the Principal for a role name.

    Unknown or missing role names resolve to a principal with no capabilities.
    """
    try:
        role = Role(role_name.strip()) if role_name else None
    except ValueError:
        logger.info(f"Unknown role '{role_name}', granting no capabilities")
        role = None

    if role is None:
        return Principal(role=None)

    return Principal(
        role=role,
        capabilities=_ROLE_CAPABILITIES.get(role, frozenset()),
        denied_sections=_DENIED_SECTIONS.get(role),
    )


__all__ = [
    "Role",
    "SettingsSection",
    "Capability",
    "Principal",
    "PermissionDeniedError",
    "resolve_capabilities",
]
