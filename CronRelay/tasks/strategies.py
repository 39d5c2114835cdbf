"""
Execution strategies for task runs.

A strategy accepts coroutine factories and runs them off the dispatcher's
thread, so the dispatcher can go back to the queue immediately.
"""

from __future__ import annotations

import asyncio
import logging
import threading
from abc import ABC, abstractmethod
from concurrent.futures import Future, ThreadPoolExecutor
from concurrent.futures import wait as futures_wait
from typing import Any, Awaitable, Callable

logger = logging.getLogger(__name__)

CoroutineFactory = Callable[[], Awaitable[Any]]


class ExecutionStrategy(ABC):
    """Runs task coroutines concurrently with the caller"""

    name: str = ""

    def __init__(self):
        self._futures: set[Future] = set()
        self._lock = threading.Lock()

    @abstractmethod
    def start(self):
        """Prepare workers; called once before the first submit"""

    @abstractmethod
    def _schedule(self, coro_factory: CoroutineFactory) -> Future:
        pass

    def submit(self, coro_factory: CoroutineFactory) -> Future:
        future = self._schedule(coro_factory)
        with self._lock:
            self._futures.add(future)
        future.add_done_callback(self._forget)
        return future

    def _forget(self, future: Future):
        with self._lock:
            self._futures.discard(future)
        if not future.cancelled() and future.exception() is not None:
            logger.error(f"Task run failed outside its handler: {future.exception()}")

    @property
    def pending(self) -> int:
        with self._lock:
            return len(self._futures)

    def wait(self, timeout: float | None = None):
        """Block until all submitted runs finish"""
        with self._lock:
            futures = list(self._futures)
        futures_wait(futures, timeout=timeout)

    @abstractmethod
    def shutdown(self, wait: bool = True):
        pass


class EventLoopStrategy(ExecutionStrategy):
    """All runs share one asyncio event loop on a background thread"""

    name = "event_loop"
    stop_timeout = 5.0

    def __init__(self):
        super().__init__()
        self.loop: asyncio.AbstractEventLoop | None = None
        self._thread: threading.Thread | None = None

    def start(self):
        if self.loop is not None:
            return
        self.loop = asyncio.new_event_loop()
        self._thread = threading.Thread(
            target=self._run_loop, name="cronrelay-executor", daemon=True
        )
        self._thread.start()
        logger.info("Event loop execution strategy started")

    def _run_loop(self):
        asyncio.set_event_loop(self.loop)
        self.loop.run_forever()

    def _schedule(self, coro_factory: CoroutineFactory) -> Future:
        if self.loop is None:
            self.start()
        return asyncio.run_coroutine_threadsafe(coro_factory(), self.loop)

    def shutdown(self, wait: bool = True):
        if self.loop is None:
            return
        if wait:
            self.wait()
        self.loop.call_soon_threadsafe(self.loop.stop)
        if self._thread:
            self._thread.join(timeout=self.stop_timeout)
            if self._thread.is_alive():
                logger.warning("Executor loop thread did not stop, leaving its loop open")
                self.loop = None
                self._thread = None
                return
        self.loop.close()
        self.loop = None
        self._thread = None
        logger.info("Event loop execution strategy stopped")


class ThreadPoolStrategy(ExecutionStrategy):
    """Each run gets its own event loop on a pooled thread"""

    name = "thread_pool"

    def __init__(self, max_workers: int = 8):
        super().__init__()
        self.max_workers = max_workers
        self.pool: ThreadPoolExecutor | None = None

    def start(self):
        if self.pool is None:
            self.pool = ThreadPoolExecutor(
                max_workers=self.max_workers, thread_name_prefix="cronrelay-worker"
            )
            logger.info(f"Thread pool execution strategy started with {self.max_workers} workers")

    def _schedule(self, coro_factory: CoroutineFactory) -> Future:
        if self.pool is None:
            self.start()
        return self.pool.submit(lambda: asyncio.run(coro_factory()))

    def shutdown(self, wait: bool = True):
        if self.pool is None:
            return
        self.pool.shutdown(wait=wait)
        self.pool = None
        logger.info("Thread pool execution strategy stopped")


def create_strategy(name: str, max_workers: int = 8) -> ExecutionStrategy:
    """Build a strategy from its configured name"""
    normalized = (name or "").strip().lower()
    if normalized == EventLoopStrategy.name:
        return EventLoopStrategy()
    if normalized in (ThreadPoolStrategy.name, "thread"):
        return ThreadPoolStrategy(max_workers=max_workers)
    raise ValueError(f"Unknown executor strategy: {name}")
