"""
Email Settings Store

Persists the admin email settings as JSON-encoded values keyed by wire name
(``smtpHost``, ``smtpPort``, ...).

- RedisEmailSettingsStore: one Redis hash, falling back to process memory
  while Redis is not configured
- InMemoryEmailSettingsStore: process memory only (tests, single instance)
"""

import json
import logging
from collections.abc import Callable, Mapping
from typing import Any, Protocol

from redis.asyncio import Redis
from redis.exceptions import RedisError

from seminary_mail.core import redis as redis_core

logger = logging.getLogger(__name__)

SETTINGS_KEY = "settings:email"


class EmailSettingsStorageError(Exception):
    """Raised when stored settings cannot be written."""

    def __init__(self, message: str):
        self.message = message
        self.error_code = "SETTINGS_STORAGE_ERROR"
        self.status_code = 500
        super().__init__(message)


class EmailSettingsStore(Protocol):
    async def get_all(self) -> dict[str, Any]: ...

    async def upsert_many(self, values: Mapping[str, Any]) -> None: ...


def _decode(raw: str) -> Any:
    try:
        return json.loads(raw)
    except (TypeError, json.JSONDecodeError):
        return raw


class InMemoryEmailSettingsStore:
    def __init__(self, initial: Mapping[str, Any] | None = None):
        self._values: dict[str, Any] = dict(initial or {})

    async def get_all(self) -> dict[str, Any]:
        return dict(self._values)

    async def upsert_many(self, values: Mapping[str, Any]) -> None:
        self._values.update(values)


class RedisEmailSettingsStore:
    """Email settings in a Redis hash."""

    def __init__(
        self,
        redis_getter: Callable[[], Redis | None] = redis_core.get_redis,
        key: str = SETTINGS_KEY,
    ):
        self._redis_getter = redis_getter
        self.key = key
        self._fallback = InMemoryEmailSettingsStore()

    async def get_all(self) -> dict[str, Any]:
        client = self._redis_getter()
        if client is None:
            return await self._fallback.get_all()

        try:
            raw = await client.hgetall(self.key)
        except RedisError as e:
            logger.warning(f"Failed to read email settings from Redis, using local copy: {e}")
            return await self._fallback.get_all()

        return {field: _decode(value) for field, value in raw.items()}

    async def upsert_many(self, values: Mapping[str, Any]) -> None:
        client = self._redis_getter()
        if client is None:
            logger.warning("Redis not configured, email settings kept in process memory only")
            await self._fallback.upsert_many(values)
            return

        try:
            await client.hset(
                self.key,
                mapping={field: json.dumps(value) for field, value in values.items()},
            )
        except RedisError as e:
            logger.error(f"Failed to save email settings: {e}")
            raise EmailSettingsStorageError(f"Failed to save email settings: {e}") from e

        # Keep the local copy current for reads during a Redis outage
        await self._fallback.upsert_many(values)


_store: EmailSettingsStore | None = None


def get_settings_store() -> EmailSettingsStore:
    """Return the process-wide settings store."""
    global _store
    if _store is None:
        _store = RedisEmailSettingsStore()
    return _store


def set_settings_store(store: EmailSettingsStore | None) -> None:
    global _store
    _store = store


__all__ = [
    "EmailSettingsStore",
    "EmailSettingsStorageError",
    "InMemoryEmailSettingsStore",
    "RedisEmailSettingsStore",
    "get_settings_store",
    "set_settings_store",
]
