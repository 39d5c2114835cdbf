"""
Unified Redis utilities for CronRelay
Provides the handoff queue, task locks and the log channel shared by the
scheduler, the dispatcher and the log broadcaster
"""

from __future__ import annotations

import json
import logging
import os
import time
from typing import Any

try:
    import redis
    import redis.asyncio as async_redis
    from redis.asyncio import ConnectionPool as AsyncConnectionPool
except ImportError:
    raise ImportError("Redis is required. Install with: pip install redis")

from .config import CronConfig
from .models import LogEvent, Task

logger = logging.getLogger(__name__)


class RedisConfig:
    """Redis configuration"""

    def __init__(
        self,
        host: str = "localhost",
        port: int = 6379,
        db: int = 0,
        url: str | None = None,
    ):
        self.host = host
        self.port = port
        self.db = db
        self.url = url or f"redis://{host}:{port}/{db}"

    @classmethod
    def from_env(cls) -> RedisConfig:
        return cls(
            host=os.getenv("REDIS_HOST", "localhost"),
            port=int(os.getenv("REDIS_PORT", 6379)),
            db=int(os.getenv("REDIS_DB", 0)),
            url=os.getenv("REDIS_URL"),
        )


class RedisKeys:
    """Redis key patterns"""

    def __init__(self, config: CronConfig):
        self.cron_queue = config.cron_queue
        self.lock_prefix = config.lock_prefix
        self.log_channel = config.log_channel

    def lock(self, task_id: Any) -> str:
        """Get the lock key of a task"""
        return f"{self.lock_prefix}{task_id}"


class SyncRedisClient:
    """Synchronous Redis client for the scheduler, dispatcher and executor"""

    def __init__(
        self,
        config: RedisConfig,
        cron_config: CronConfig | None = None,
        connection: redis.Redis | None = None,
    ):
        self.config = config
        self.keys = RedisKeys(cron_config or CronConfig())
        self.redis = connection or redis.Redis.from_url(
            config.url, decode_responses=True
        )

    def ping(self) -> bool:
        return bool(self.redis.ping())

    def close(self):
        """Release the underlying connection pool"""
        try:
            self.redis.close()
        except Exception as e:
            logger.warning(f"Failed to close Redis connection: {e}")

    # -- handoff queue -------------------------------------------------------

    def push_task(self, task: Task) -> int:
        """Append a due task to the handoff queue"""
        return self.redis.lpush(self.keys.cron_queue, task.model_dump_json())

    def pop_task(self, timeout: int = 1) -> Task | None:
        """Take the oldest task from the handoff queue, waiting up to timeout seconds"""
        result = self.redis.brpop(self.keys.cron_queue, timeout=timeout)
        if not result:
            return None
        _, data = result
        return Task.model_validate_json(data)

    def queue_length(self) -> int:
        return self.redis.llen(self.keys.cron_queue)

    # -- locks ---------------------------------------------------------------

    def acquire_lock(self, task_id: Any, ttl: int) -> bool:
        """Set the task lock if absent; True when this caller now holds it"""
        key = self.keys.lock(task_id)
        return bool(self.redis.set(key, int(time.time()), ex=int(ttl), nx=True))

    def release_lock(self, task_id: Any) -> int:
        return self.redis.delete(self.keys.lock(task_id))

    def is_locked(self, task_id: Any) -> bool:
        return bool(self.redis.exists(self.keys.lock(task_id)))

    # -- log channel ---------------------------------------------------------

    def publish_log(self, event: LogEvent) -> bool:
        """Publish an execution step; failures never reach the caller"""
        try:
            self.redis.publish(self.keys.log_channel, event.model_dump_json())
            return True
        except Exception as e:
            logger.warning(f"Failed to publish log event for task {event.task_id}: {e}")
            return False


class AsyncRedisClient:
    """Asynchronous Redis client for the log broadcaster"""

    def __init__(self, config: RedisConfig):
        self.config = config
        self.pool: AsyncConnectionPool | None = None
        self.redis: async_redis.Redis | None = None

    async def connect(self):
        """Initialize async Redis connection"""
        try:
            self.pool = AsyncConnectionPool.from_url(
                self.config.url, decode_responses=True
            )
            self.redis = async_redis.Redis(connection_pool=self.pool)
            await self.redis.ping()
            logger.info("Async Redis connected successfully")
        except Exception as e:
            logger.error(f"Failed to connect to async Redis: {e}")
            raise

    async def disconnect(self):
        """Close async Redis connection"""
        if self.redis:
            await self.redis.close()
        if self.pool:
            await self.pool.disconnect()
        self.redis = None
        self.pool = None

    async def get_redis(self) -> async_redis.Redis:
        """Get Redis client"""
        if not self.redis:
            raise RuntimeError("Redis not connected")
        return self.redis

    async def pubsub(self):
        r = await self.get_redis()
        return r.pubsub()


def decode_message(raw: Any) -> dict[str, Any] | None:
    """Decode a JSON payload received from Redis, None when it is not an object"""
    if isinstance(raw, bytes):
        raw = raw.decode("utf-8", errors="ignore")
    try:
        data = json.loads(raw)
    except (TypeError, ValueError):
        return None
    return data if isinstance(data, dict) and data else None
