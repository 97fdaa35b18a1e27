"""
Shared fixtures for the seminary mail tests.
"""

from unittest.mock import AsyncMock, MagicMock

import pytest

from seminary_mail.core.config import Settings
from seminary_mail.core.email import engine as engine_module
from seminary_mail.core.email.config import ResolvedEmailConfig, resolve_email_config
from seminary_mail.core.email.engine import DeliveryEngine
from seminary_mail.core.email.outbox import FailedDeliveryOutbox


def _make_settings(**overrides) -> Settings:
    """Settings isolated from the process environment and any .env file."""
    values = {
        "python_env": "production",
        "smtp_host": "smtp.example.com",
        "smtp_port": 587,
        "smtp_user": "mailer@example.com",
        "smtp_pass": "secret",
        "email_retry_attempts": 3,
        "email_retry_delay": 5000,
        "max_recipients_per_email": 50,
    }
    values.update(overrides)
    return Settings(_env_file=None, **values)


@pytest.fixture
def settings_factory():
    """Build Settings from keyword overrides on a production baseline."""
    return _make_settings


@pytest.fixture
def mock_transport():
    """A transport whose verify/send succeed by default."""
    transport = MagicMock()
    transport.verify = AsyncMock()
    transport.send = AsyncMock(return_value="abc123")
    transport.close = AsyncMock()
    return transport


@pytest.fixture
def memory_outbox():
    return FailedDeliveryOutbox(redis_getter=lambda: None, max_length=100)


@pytest.fixture
def sleep_mock():
    return AsyncMock()


@pytest.fixture
def build_engine(mock_transport, memory_outbox, sleep_mock):
    """Factory for an engine bound to fixed settings and the mock transport."""

    def factory(settings: Settings | None = None, transport=None) -> DeliveryEngine:
        settings = settings or _make_settings()

        async def config_provider(current: Settings) -> ResolvedEmailConfig:
            return resolve_email_config(current)

        return DeliveryEngine(
            settings_provider=lambda: settings,
            config_provider=config_provider,
            transport_factory=MagicMock(return_value=transport or mock_transport),
            sleep=sleep_mock,
            outbox=memory_outbox,
        )

    return factory


@pytest.fixture
def install_engine(build_engine):
    """Install an engine as the process-wide engine for the duration of a test."""
    installed = []

    def install(settings: Settings | None = None, transport=None) -> DeliveryEngine:
        engine = build_engine(settings, transport)
        engine_module.set_delivery_engine(engine)
        installed.append(engine)
        return engine

    yield install
    engine_module.set_delivery_engine(None)


@pytest.fixture
def sample_registration():
    return {
        "id": "REG1",
        "fullName": "Jane Doe",
        "emailAddress": "jane@x.com",
        "phoneNumber": "+233201234567",
        "dateOfBirth": "2000-06-15",
        "gender": "Female",
        "parentGuardianName": "John Doe",
        "address": "12 Church Street, Accra",
        "createdAt": "2024-01-01",
    }
