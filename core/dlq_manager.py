"""
Dead Letter Queue (DLQ) Manager using Redis Streams.

Keeps redo statements that could not be parsed so they can be inspected
and replayed by hand. The change stream itself simply omits them. One
stream per source, keyed by {prefix}:{source_name}.
"""

import json
import logging
import time
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from typing import Optional

import redis

logger = logging.getLogger(__name__)

# Retry constants for Redis operations
_MAX_RETRIES = 3
_RETRY_BACKOFF_BASE = 0.5  # seconds


def _utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


@dataclass
class DLQMessage:
    """
    Dead Letter Queue message.

    Stores an unparsable redo statement with the position it was read at.
    """

    source_name: str
    scn: int
    commit_scn: int
    row_id: str
    seg_owner: str
    table_name: str
    sql_redo: str
    error_message: str = ""
    failed_at: str = field(default_factory=_utc_now_iso)

    def to_dict(self) -> dict[str, str]:
        """Serialize message to dict for Redis Stream XADD."""
        # Store as single JSON field for atomicity and simplicity
        return {"data": json.dumps(asdict(self))}

    @classmethod
    def from_stream_entry(cls, entry_data: dict) -> "DLQMessage":
        """
        Deserialize message from Redis Stream entry data.

        Args:
            entry_data: Dict from XRANGE, with 'data' key containing JSON

        Returns:
            Deserialized DLQMessage
        """
        raw = entry_data.get(b"data") or entry_data.get("data")
        if isinstance(raw, bytes):
            raw = raw.decode("utf-8")
        return cls(**json.loads(raw))


class DLQManager:
    """
    Manages the dead letter queue of unparsable redo statements.

    Failures talking to Redis are logged and never propagate: losing a
    diagnostic must not stop the change stream.
    """

    def __init__(
        self,
        redis_url: str = "redis://localhost:6379/0",
        key_prefix: str = "logminer:dlq",
        max_stream_length: int = 100000,
        client: Optional[redis.Redis] = None,
    ):
        """
        Initialize DLQ manager with Redis connection.

        Args:
            redis_url: Redis connection URL
            key_prefix: Prefix for all DLQ stream keys
            max_stream_length: Maximum entries per stream (MAXLEN cap)
            client: Optional pre-built Redis client
        """
        self._redis = client or redis.Redis.from_url(
            redis_url,
            decode_responses=False,
            socket_connect_timeout=5,
            socket_timeout=10,
            retry_on_timeout=True,
        )
        self._key_prefix = key_prefix
        self._max_stream_length = max_stream_length

        self._logger = logging.getLogger(f"{__name__}.DLQManager")
        self._logger.info(f"DLQ Manager initialized with Redis (prefix={key_prefix})")

    def _stream_key(self, source_name: str) -> str:
        """Build Redis stream key for a source."""
        return f"{self._key_prefix}:{source_name}"

    def _retry_operation(self, operation, *args, **kwargs):
        """
        Execute a Redis operation with retry and exponential backoff.

        Retries on ConnectionError and TimeoutError.
        """
        last_error = None
        for attempt in range(_MAX_RETRIES):
            try:
                return operation(*args, **kwargs)
            except (redis.ConnectionError, redis.TimeoutError) as e:
                last_error = e
                wait_time = _RETRY_BACKOFF_BASE * (2**attempt)
                self._logger.warning(
                    f"Redis operation failed (attempt {attempt + 1}/{_MAX_RETRIES}): {e}. "
                    f"Retrying in {wait_time:.1f}s..."
                )
                time.sleep(wait_time)
        raise last_error

    def enqueue(self, message: DLQMessage) -> bool:
        """
        Add an unparsable statement to the queue via XADD.

        Returns:
            True if successfully enqueued
        """
        try:
            self._retry_operation(
                self._redis.xadd,
                self._stream_key(message.source_name),
                message.to_dict(),
                maxlen=self._max_stream_length,
            )
            self._logger.warning(
                f"Enqueued to DLQ: {message.source_name} - scn={message.scn}, "
                f"table={message.seg_owner}.{message.table_name}"
            )
            return True

        except redis.RedisError as e:
            self._logger.error(
                f"Failed to enqueue to DLQ: {message.source_name} scn={message.scn} - {e}",
                exc_info=True,
            )
            return False

    def read(
        self, source_name: str, max_messages: int = 100
    ) -> list[tuple[str, DLQMessage]]:
        """
        Read the oldest messages without removing them.

        Returns:
            List of (message_id, DLQMessage) tuples (empty if queue is empty)
        """
        try:
            entries = self._retry_operation(
                self._redis.xrange,
                self._stream_key(source_name),
                count=max_messages,
            )
        except redis.RedisError as e:
            self._logger.error(f"Failed to read DLQ {source_name}: {e}")
            return []

        messages = []
        for entry_id, entry_data in entries:
            msg_id = entry_id.decode("utf-8") if isinstance(entry_id, bytes) else entry_id
            try:
                messages.append((msg_id, DLQMessage.from_stream_entry(entry_data)))
            except (ValueError, TypeError, KeyError) as parse_err:
                self._logger.error(f"Failed to parse DLQ message {msg_id}: {parse_err}")
        return messages

    def acknowledge(self, source_name: str, message_ids: list[str]) -> int:
        """
        Remove handled messages from the queue (XDEL).

        Returns:
            Number of messages deleted
        """
        if not message_ids:
            return 0
        try:
            return self._retry_operation(
                self._redis.xdel, self._stream_key(source_name), *message_ids
            )
        except redis.RedisError as e:
            self._logger.error(f"Failed to acknowledge DLQ messages for {source_name}: {e}")
            return 0

    def get_queue_size(self, source_name: str) -> int:
        """
        Get the number of messages in a queue via XLEN.

        Returns:
            Number of messages in queue (0 if queue doesn't exist)
        """
        try:
            return self._retry_operation(self._redis.xlen, self._stream_key(source_name))
        except redis.RedisError as e:
            self._logger.error(f"Failed to get queue size: {e}")
            return 0

    def delete_queue(self, source_name: str) -> bool:
        """
        Delete a queue by removing the Redis stream key entirely.

        Returns:
            True if queue was deleted
        """
        try:
            deleted = self._retry_operation(
                self._redis.delete, self._stream_key(source_name)
            )
        except redis.RedisError as e:
            self._logger.error(f"Failed to delete queue {source_name}: {e}")
            return False

        if deleted:
            self._logger.info(f"Deleted DLQ queue: {source_name}")
        return bool(deleted)

    def close(self) -> None:
        """Close Redis connection."""
        try:
            self._redis.close()
            self._logger.info("Closed DLQ Redis connection")
        except redis.RedisError as e:
            self._logger.warning(f"Error closing DLQ Redis connection: {e}")

    def ping(self) -> bool:
        """Check if Redis connection is alive."""
        try:
            return bool(self._redis.ping())
        except redis.RedisError:
            return False
