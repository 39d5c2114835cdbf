"""
Task executor: runs one due task and closes its run log.

Every run publishes a start event, then exactly one success or error event,
and calls TaskManager.log_task_end exactly once.
"""

from __future__ import annotations

import asyncio
import codecs
import inspect
import json
import logging
import time
from concurrent.futures import Future
from typing import Any

import requests

from ..shared.config import CronConfig
from ..shared.models import LogEvent, LogLevel, RunStatus, Task, TaskType
from ..shared.redis_utils import SyncRedisClient
from .invoker import ClassExecInvoker
from .manager import TaskManager
from .strategies import ExecutionStrategy, create_strategy

logger = logging.getLogger(__name__)
execution_logger = logging.getLogger("CronRelay.execution")

# Output is read in chunks; a partial line longer than this is published as is
READ_CHUNK = 65536
# Seconds to wait for a killed process, and for its pipes to drain after exit
KILL_GRACE = 5.0


class TaskTypeUnset(ValueError):
    """The task carries no known task type"""


class ExecutionFailed(RuntimeError):
    """A run finished unsuccessfully; output holds whatever was captured"""

    def __init__(self, message: str, output: str | None = None):
        super().__init__(message)
        self.output = output


class ExecutionTimeout(ExecutionFailed):
    """The spawned process outlived the task timeout and was killed"""


class TaskExecutor:
    """Runs tasks handed over by the dispatcher on an execution strategy"""

    def __init__(
        self,
        manager: TaskManager,
        redis_client: SyncRedisClient,
        invoker: ClassExecInvoker,
        config: CronConfig | None = None,
        strategy: ExecutionStrategy | None = None,
    ):
        self.manager = manager
        self.redis_client = redis_client
        self.invoker = invoker
        self.config = config or CronConfig()
        self.strategy = strategy or create_strategy(
            self.config.executor_strategy, self.config.max_workers
        )

    def execute(self, task: Task, log_id: int) -> Future:
        """Hand the run to the strategy and return immediately"""
        return self.strategy.submit(lambda: self.run_task(task, log_id))

    def shutdown(self, wait: bool = True):
        self.strategy.shutdown(wait=wait)

    async def run_task(self, task: Task, log_id: int) -> RunStatus:
        started = time.monotonic()
        self._publish(task, log_id, LogLevel.INFO, f"Task started: {task.name}")

        try:
            output = await self._dispatch(task, log_id)
        except Exception as e:
            duration = time.monotonic() - started
            logger.error(f"Task {task.id} ({task.name}) failed: {e}")
            self._publish(
                task, log_id, LogLevel.ERROR, f"Task failed: {e} (duration: {duration:.2f}s)"
            )
            self._close(log_id, RunStatus.ERROR, getattr(e, "output", None), str(e))
            return RunStatus.ERROR

        duration = time.monotonic() - started
        self._publish(
            task, log_id, LogLevel.SUCCESS, f"Task completed (duration: {duration:.2f}s)"
        )
        self._close(log_id, RunStatus.SUCCESS, output)
        return RunStatus.SUCCESS

    async def _dispatch(self, task: Task, log_id: int) -> Any:
        if task.task_type in (TaskType.COMMAND, TaskType.SHELL):
            return await self._run_process(task, log_id)
        if task.task_type == TaskType.CLASS_METHOD:
            return await self._run_class_method(task)
        if task.task_type == TaskType.URL:
            return await self._run_url(task)
        raise TaskTypeUnset(f"Task type is not set for task {task.id}")

    def timeout_for(self, task: Task) -> int:
        if task.timeout is None or task.timeout <= 0:
            return self.config.default_timeout
        return task.timeout

    # ------------------------------------------------------------------
    # Process runs
    # ------------------------------------------------------------------
    async def _run_process(self, task: Task, log_id: int) -> str:
        args = task.command.split()
        if not args:
            raise ExecutionFailed("Command is empty")

        process = await asyncio.create_subprocess_exec(
            *args,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
        stdout: list[str] = []
        stderr: list[str] = []
        readers = [
            asyncio.create_task(self._pump(process.stdout, stdout, task, log_id, LogLevel.INFO)),
            asyncio.create_task(self._pump(process.stderr, stderr, task, log_id, LogLevel.ERROR)),
        ]

        try:
            self._publish(task, log_id, LogLevel.INFO, f"Process started with pid {process.pid}")
            self.manager.update_pid(log_id, process.pid)
            await self._supervise(process, self.timeout_for(task))
            done, pending = await asyncio.wait(readers, timeout=KILL_GRACE)
            if pending:
                logger.warning(f"Output of task {task.id} still open after exit, truncating")
            for reader in done:
                reader.result()
        except ExecutionFailed:
            raise
        except Exception as e:
            raise ExecutionFailed(f"Monitor failed: {e}", "".join(stdout) or None) from e
        finally:
            if process.returncode is None:
                await _reap(process)
            for reader in readers:
                if not reader.done():
                    reader.cancel()

        output = "".join(stdout)
        if process.returncode != 0:
            message = "".join(stderr).strip() or f"Process exited with code {process.returncode}"
            raise ExecutionFailed(message, output)
        return output

    async def _supervise(self, process: asyncio.subprocess.Process, timeout: int):
        """Await the process exit in poll_interval slices, killing it past the deadline"""
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout
        while True:
            try:
                await asyncio.wait_for(process.wait(), timeout=self.config.poll_interval)
                return
            except asyncio.TimeoutError:
                if loop.time() >= deadline:
                    await _reap(process)
                    raise ExecutionTimeout(f"Process timed out after {timeout}s") from None

    async def _pump(
        self,
        stream: asyncio.StreamReader,
        sink: list[str],
        task: Task,
        log_id: int,
        level: LogLevel,
    ):
        decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")

        def emit(data: bytes, final: bool = False):
            text = decoder.decode(data, final=final)
            if text:
                sink.append(text)
                self._publish(task, log_id, level, text.rstrip("\r\n"))

        buffer = b""
        while True:
            chunk = await stream.read(READ_CHUNK)
            if not chunk:
                break
            *lines, buffer = (buffer + chunk).split(b"\n")
            for line in lines:
                emit(line + b"\n")
            if len(buffer) >= READ_CHUNK:
                emit(buffer)
                buffer = b""
        emit(buffer, final=True)

    # ------------------------------------------------------------------
    # Class method and URL runs
    # ------------------------------------------------------------------
    async def _run_class_method(self, task: Task) -> str:
        result = self.invoker.execute(task.command)
        if inspect.isawaitable(result):
            result = await result
        return json.dumps(result, ensure_ascii=False, default=str)

    async def _run_url(self, task: Task) -> str:
        try:
            response = await asyncio.to_thread(
                requests.get, task.command, timeout=self.timeout_for(task)
            )
        except requests.RequestException as e:
            raise ExecutionFailed(f"Request failed: {e}") from e
        return response.text

    # ------------------------------------------------------------------
    # Reporting
    # ------------------------------------------------------------------
    def _publish(self, task: Task, log_id: int, level: LogLevel, message: str):
        event = LogEvent(task_id=task.id, log_id=log_id, level=level, message=message)
        self.redis_client.publish_log(event)
        if self.config.log_write_file:
            execution_logger.log(
                logging.ERROR if level == LogLevel.ERROR else logging.INFO,
                f"[task {task.id} log {log_id}] {message}",
            )

    def _close(self, log_id: int, status: RunStatus, output: Any = None, error: str | None = None):
        try:
            self.manager.log_task_end(log_id, status, output=output, error=error)
        except Exception as e:
            logger.error(f"Failed to close run log {log_id}: {e}", exc_info=True)


def _kill(process: asyncio.subprocess.Process):
    try:
        process.kill()
    except ProcessLookupError:
        pass


async def _reap(process: asyncio.subprocess.Process):
    """Kill the process and wait a bounded time for it to be collected"""
    _kill(process)
    try:
        await asyncio.wait_for(process.wait(), timeout=KILL_GRACE)
    except asyncio.TimeoutError:
        logger.warning(f"Process {process.pid} not collected {KILL_GRACE}s after kill")
