"""
Email Settings Module

Admin-managed SMTP configuration layered over the environment:
1. Viewing the effective settings (stored values over environment)
2. Validated updates with a live connection test outside development
3. Test emails through the delivery engine

Stored settings feed the delivery engine through ``stored_email_config`` so a
saved change applies to the next send without a restart.
"""

from .schemas import EmailSettingsUpdate, EmailSettingsView
from .service import (
    ConnectionTestFailedError,
    EmailSettingsError,
    InvalidEmailSettingsError,
    build_stored_transport_config,
    get_admin_recipients,
    get_email_settings,
    send_test_email,
    stored_email_config,
    update_email_settings,
)
from .store import (
    EmailSettingsStore,
    InMemoryEmailSettingsStore,
    RedisEmailSettingsStore,
    get_settings_store,
)

__all__ = [
    "EmailSettingsUpdate",
    "EmailSettingsView",
    "EmailSettingsError",
    "InvalidEmailSettingsError",
    "ConnectionTestFailedError",
    "EmailSettingsStore",
    "InMemoryEmailSettingsStore",
    "RedisEmailSettingsStore",
    "get_settings_store",
    "get_email_settings",
    "update_email_settings",
    "build_stored_transport_config",
    "stored_email_config",
    "get_admin_recipients",
    "send_test_email",
]
