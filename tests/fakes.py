# tests/fakes.py

from __future__ import annotations

import asyncio
import threading
import time
from collections import deque
from typing import Any


class FakeRedis:
    """
    In-memory stand-in for the subset of redis.Redis used by SyncRedisClient.

    - Thread safe, so executor runs on worker threads can share it
    - Honours SET NX/EX and key expiry
    - Records every PUBLISH for assertions
    """

    def __init__(self) -> None:
        self._cond = threading.Condition()
        self._values: dict[str, Any] = {}
        self._expiry: dict[str, float] = {}
        self._lists: dict[str, deque] = {}
        self.published: list[tuple[str, str]] = []
        self.closed = False

    def _alive(self, key: str) -> bool:
        expires = self._expiry.get(key)
        if expires is not None and expires <= time.monotonic():
            self._values.pop(key, None)
            self._expiry.pop(key, None)
        return key in self._values

    def ping(self) -> bool:
        return True

    def close(self) -> None:
        self.closed = True

    def set(self, key: str, value: Any, ex: int | None = None, nx: bool = False):
        with self._cond:
            if nx and self._alive(key):
                return None
            self._values[key] = str(value)
            if ex is not None:
                self._expiry[key] = time.monotonic() + ex
            else:
                self._expiry.pop(key, None)
            return True

    def get(self, key: str):
        with self._cond:
            return self._values.get(key) if self._alive(key) else None

    def delete(self, *keys: str) -> int:
        removed = 0
        with self._cond:
            for key in keys:
                if self._alive(key):
                    removed += 1
                self._values.pop(key, None)
                self._expiry.pop(key, None)
                if self._lists.pop(key, None) is not None:
                    removed += 1
        return removed

    def exists(self, *keys: str) -> int:
        with self._cond:
            return sum(1 for key in keys if self._alive(key) or self._lists.get(key))

    def lpush(self, key: str, *values: Any) -> int:
        with self._cond:
            queue = self._lists.setdefault(key, deque())
            for value in values:
                queue.appendleft(value)
            self._cond.notify_all()
            return len(queue)

    def brpop(self, keys, timeout: float = 0):
        names = [keys] if isinstance(keys, str) else list(keys)
        deadline = time.monotonic() + (timeout or 0)
        with self._cond:
            while True:
                for name in names:
                    queue = self._lists.get(name)
                    if queue:
                        return name, queue.pop()
                remaining = deadline - time.monotonic()
                if remaining <= 0:
                    return None
                self._cond.wait(remaining)

    def llen(self, key: str) -> int:
        with self._cond:
            return len(self._lists.get(key, ()))

    def publish(self, channel: str, message: str) -> int:
        with self._cond:
            self.published.append((channel, message))
        return 0


class FailingRedis(FakeRedis):
    """FakeRedis whose publish and delete always fail"""

    def publish(self, channel: str, message: str) -> int:
        raise ConnectionError("redis is down")

    def delete(self, *keys: str) -> int:
        raise ConnectionError("redis is down")


class FakeListener:
    """Records what the broadcaster sends; optionally fails every send"""

    def __init__(self, fail: bool = False) -> None:
        self.fail = fail
        self.sent: list[dict[str, Any]] = []
        self.closed = False

    async def send_json(self, data: Any) -> None:
        if self.fail:
            raise ConnectionError("listener went away")
        self.sent.append(data)

    async def close(self) -> None:
        self.closed = True

    def of_type(self, message_type: str) -> list[dict[str, Any]]:
        return [message for message in self.sent if message.get("type") == message_type]


class FakePubSub:
    """Async pub/sub double yielding a fixed list of raw messages"""

    def __init__(self, messages: list[dict[str, Any]], fail_subscribe: bool = False) -> None:
        self.messages = messages
        self.fail_subscribe = fail_subscribe
        self.subscribed: list[str] = []
        self.closed = False

    async def subscribe(self, *channels: str) -> None:
        if self.fail_subscribe:
            raise ConnectionError("subscription refused")
        self.subscribed.extend(channels)

    async def listen(self):
        for message in self.messages:
            await asyncio.sleep(0)
            yield message

    async def aclose(self) -> None:
        self.closed = True


class FakeAsyncRedisClient:
    """AsyncRedisClient double handing out prepared FakePubSub objects in order"""

    def __init__(self, pubsubs: list[FakePubSub]) -> None:
        self.pubsubs = list(pubsubs)
        self.redis = object()
        self.handed_out: list[FakePubSub] = []

    async def connect(self) -> None:
        self.redis = object()

    async def disconnect(self) -> None:
        self.redis = None

    async def pubsub(self) -> FakePubSub:
        pubsub = self.pubsubs.pop(0) if self.pubsubs else FakePubSub([])
        self.handed_out.append(pubsub)
        return pubsub
