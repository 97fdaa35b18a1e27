"""
Tests for the failed delivery outbox.

These tests verify:
- Records round-trip through the in-memory fallback in FIFO order
- The memory fallback is bounded
- Redis is used when available (lpush + ltrim, rpop with count)
- Redis errors fall back to memory instead of raising
"""

import json
from unittest.mock import AsyncMock, MagicMock

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError

from seminary_mail.core.email.message import Attachment, EmailMessage
from seminary_mail.core.email.outbox import OUTBOX_KEY, FailedDeliveryOutbox


def make_record(subject: str) -> dict:
    message = EmailMessage.build(to="jane@x.com", subject=subject, html="<p>x</p>")
    return FailedDeliveryOutbox.build_record(message, "rejected", "SMTP_FAILURE")


@pytest.fixture
def mock_redis():
    """Create a mock Redis client with a pipeline."""
    client = MagicMock()
    pipe = MagicMock()
    pipe.execute = AsyncMock(return_value=[1, True])
    client.pipeline.return_value = pipe
    client.rpop = AsyncMock(return_value=[])
    client.llen = AsyncMock(return_value=0)
    return client


class TestBuildRecord:
    def test_record_fields(self):
        """Test a record carries the serialized message and error details."""
        message = EmailMessage.build(
            to=["a@x.com", "b@x.com"],
            subject="Notice",
            html="<p>x</p>",
            attachments=[Attachment(filename="a.bin", content=b"\x00\x01")],
        )

        record = FailedDeliveryOutbox.build_record(message, "rejected", "SMTP_FAILURE", 2)

        assert record["message"]["to"] == ["a@x.com", "b@x.com"]
        assert record["message"]["attachments"][0]["content"] == "AAE="
        assert record["error"] == "rejected"
        assert record["error_type"] == "SMTP_FAILURE"
        assert record["resend_attempts"] == 2
        assert "failed_at" in record
        # Must survive JSON encoding for Redis
        assert json.loads(json.dumps(record)) == record

    def test_message_restored_from_record(self):
        """Test the stored message rebuilds into an equal EmailMessage."""
        message = EmailMessage.build(
            to="a@x.com",
            subject="S",
            html="<p>x</p>",
            attachments=[Attachment(filename="a.bin", content=b"\x00\x01", content_type="x/y")],
        )

        record = FailedDeliveryOutbox.build_record(message, "e", "SMTP_FAILURE")

        assert EmailMessage.from_dict(record["message"]) == message


class TestMemoryFallback:
    @pytest.mark.asyncio
    async def test_fifo_order(self, memory_outbox):
        """Test the oldest records are popped first."""
        for subject in ("first", "second", "third"):
            await memory_outbox.push(make_record(subject))

        records = await memory_outbox.pop_batch(2)

        assert [r["message"]["subject"] for r in records] == ["first", "second"]
        assert await memory_outbox.size() == 1

    @pytest.mark.asyncio
    async def test_bounded(self):
        """Test the memory fallback drops the oldest records past max_length."""
        outbox = FailedDeliveryOutbox(redis_getter=lambda: None, max_length=2)
        for subject in ("first", "second", "third"):
            await outbox.push(make_record(subject))

        records = await outbox.pop_batch(10)

        assert [r["message"]["subject"] for r in records] == ["second", "third"]

    @pytest.mark.asyncio
    async def test_pop_empty(self, memory_outbox):
        assert await memory_outbox.pop_batch(5) == []


class TestRedisOutbox:
    @pytest.mark.asyncio
    async def test_push_uses_pipeline(self, mock_redis):
        """Test records are pushed and the list trimmed in one pipeline."""
        outbox = FailedDeliveryOutbox(redis_getter=lambda: mock_redis, max_length=100)

        await outbox.push(make_record("Hi"))

        pipe = mock_redis.pipeline.return_value
        key, payload = pipe.lpush.call_args.args
        assert key == OUTBOX_KEY
        assert json.loads(payload)["message"]["subject"] == "Hi"
        pipe.ltrim.assert_called_once_with(OUTBOX_KEY, 0, 99)
        pipe.execute.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_pop_batch_reads_oldest(self, mock_redis):
        """Test pop_batch pops from the tail of the Redis list."""
        mock_redis.rpop.return_value = [json.dumps(make_record("old"))]
        outbox = FailedDeliveryOutbox(redis_getter=lambda: mock_redis, max_length=100)

        records = await outbox.pop_batch(5)

        mock_redis.rpop.assert_awaited_once_with(OUTBOX_KEY, 5)
        assert records[0]["message"]["subject"] == "old"

    @pytest.mark.asyncio
    async def test_push_falls_back_on_redis_error(self, mock_redis):
        """Test a Redis failure keeps the record in memory."""
        mock_redis.pipeline.return_value.execute.side_effect = RedisConnectionError("down")
        mock_redis.rpop.side_effect = RedisConnectionError("down")
        outbox = FailedDeliveryOutbox(redis_getter=lambda: mock_redis, max_length=100)

        await outbox.push(make_record("kept"))
        records = await outbox.pop_batch(5)

        assert [r["message"]["subject"] for r in records] == ["kept"]

    @pytest.mark.asyncio
    async def test_unreadable_record_dropped(self, mock_redis):
        """Test malformed JSON is logged and skipped."""
        mock_redis.rpop.return_value = ["not json", json.dumps(make_record("ok"))]
        outbox = FailedDeliveryOutbox(redis_getter=lambda: mock_redis, max_length=100)

        records = await outbox.pop_batch(5)

        assert [r["message"]["subject"] for r in records] == ["ok"]

    @pytest.mark.asyncio
    async def test_size_adds_redis_and_memory(self, mock_redis):
        mock_redis.llen.return_value = 3
        outbox = FailedDeliveryOutbox(redis_getter=lambda: mock_redis, max_length=100)

        assert await outbox.size() == 3
        mock_redis.llen.assert_awaited_once_with(OUTBOX_KEY)
