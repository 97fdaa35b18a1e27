"""
Failed Delivery Outbox

Records messages whose delivery failed terminally so that the resend job can
try them again later. Records live in a Redis list (oldest at the tail);
when Redis is unavailable they are kept in a bounded in-process deque.
"""

import json
import logging
from collections import deque
from collections.abc import Callable
from datetime import UTC, datetime
from typing import Any

from redis.asyncio import Redis
from redis.exceptions import RedisError

from seminary_mail.core import redis as redis_core
from seminary_mail.core.config import settings
from seminary_mail.core.email.message import EmailMessage

logger = logging.getLogger(__name__)

OUTBOX_KEY = "email:failed"


class FailedDeliveryOutbox:
    """FIFO store of failed deliveries."""

    def __init__(
        self,
        redis_getter: Callable[[], Redis | None] = redis_core.get_redis,
        max_length: int | None = None,
        key: str = OUTBOX_KEY,
    ):
        self._redis_getter = redis_getter
        self.max_length = max_length or settings.email_outbox_max_length
        self.key = key
        self._memory: deque[str] = deque(maxlen=self.max_length)

    @staticmethod
    def build_record(
        message: EmailMessage,
        error: str,
        error_type: str,
        resend_attempts: int = 0,
    ) -> dict[str, Any]:
        return {
            "message": message.to_dict(),
            "error": error,
            "error_type": error_type,
            "failed_at": datetime.now(UTC).isoformat(),
            "resend_attempts": resend_attempts,
        }

    async def push(self, record: dict[str, Any]) -> None:
        payload = json.dumps(record)
        client = self._redis_getter()

        if client is not None:
            try:
                pipe = client.pipeline()
                pipe.lpush(self.key, payload)
                pipe.ltrim(self.key, 0, self.max_length - 1)
                await pipe.execute()
                return
            except RedisError as e:
                logger.warning(f"Redis unavailable for failed email outbox, using memory: {e}")

        self._memory.appendleft(payload)

    async def pop_batch(self, count: int) -> list[dict[str, Any]]:
        """Remove and return up to ``count`` of the oldest records."""
        payloads: list[str] = []
        client = self._redis_getter()

        if client is not None:
            try:
                payloads = await client.rpop(self.key, count) or []
            except RedisError as e:
                logger.warning(f"Failed to read failed email outbox from Redis: {e}")

        while self._memory and len(payloads) < count:
            payloads.append(self._memory.pop())

        records = []
        for payload in payloads:
            try:
                records.append(json.loads(payload))
            except json.JSONDecodeError:
                logger.error("Dropping unreadable failed email record")
        return records

    async def size(self) -> int:
        total = len(self._memory)
        client = self._redis_getter()
        if client is not None:
            try:
                total += await client.llen(self.key)
            except RedisError as e:
                logger.warning(f"Failed to read failed email outbox size: {e}")
        return total


_outbox: FailedDeliveryOutbox | None = None


def get_outbox() -> FailedDeliveryOutbox:
    """Return the process-wide outbox."""
    global _outbox
    if _outbox is None:
        _outbox = FailedDeliveryOutbox()
    return _outbox


__all__ = ["FailedDeliveryOutbox", "OUTBOX_KEY", "get_outbox"]
