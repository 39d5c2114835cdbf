"""
Task manager: due-task selection, task locks and the run-log lifecycle.

The manager is the only component that mutates locks and run logs; the
scheduler, the dispatcher, the executor and the admin server all go through
it.
"""

from __future__ import annotations

import json
import logging
import os
from datetime import datetime
from typing import Any

from ..cron import parser as cron_parser
from ..shared.config import CronConfig
from ..shared.models import RunLog, RunStatus, Task, TaskStatus
from ..shared.redis_utils import SyncRedisClient
from .store import TASK_COLUMNS, TaskStore

logger = logging.getLogger(__name__)


class TaskNotFound(LookupError):
    """Raised when an operation names a task id that does not exist"""


class TaskManager:
    """Coordinates the task store and the Redis lock primitive"""

    def __init__(
        self,
        store: TaskStore,
        redis_client: SyncRedisClient,
        config: CronConfig | None = None,
    ):
        self.store = store
        self.redis_client = redis_client
        self.config = config or CronConfig()

    # ------------------------------------------------------------------
    # Scheduling
    # ------------------------------------------------------------------
    def get_due_tasks(self) -> list[Task]:
        """Enabled tasks whose next run time is due or unset (point-in-time snapshot)"""
        return self.store.get_due_tasks(datetime.now())

    def acquire_lock(self, task: Task) -> bool:
        """Take the task lock for lock_time seconds; a non-positive lock_time disables locking"""
        if task.lock_time <= 0:
            return True

        if not self.redis_client.acquire_lock(task.id, task.lock_time):
            logger.info(f"Task {task.id} is locked, skipping execution")
            return False
        return True

    def release_lock(self, task_id: Any):
        try:
            self.redis_client.release_lock(task_id)
        except Exception as e:
            logger.warning(f"Failed to release lock for task {task_id}: {e}")

    def is_locked(self, task_id: Any) -> bool:
        return self.redis_client.is_locked(task_id)

    def calculate_next_run_time(self, task: Task | dict[str, Any]) -> datetime | None:
        """Next matching instant after now, None when the expression is unusable"""
        name = task.get("name") if isinstance(task, dict) else task.name
        expression = (
            task.get("cron_expression") if isinstance(task, dict) else task.cron_expression
        ) or ""
        try:
            return cron_parser.get_next_run_time(
                cron_parser.normalize_expression(expression)
            )
        except (cron_parser.CronExpressionError, cron_parser.NoMatchFound) as e:
            logger.error(f"Invalid cron expression for task {name}: {expression!r} ({e})")
            return None

    # ------------------------------------------------------------------
    # Run-log lifecycle
    # ------------------------------------------------------------------
    def log_task_start(self, task: Task) -> int | None:
        """
        Advance the task's schedule and open a run log.

        The schedule is advanced even when the lock is held so the task is
        not re-enqueued on every scan.  Returns None when the task must not
        be executed.
        """
        now = datetime.now()
        self.store.update_task(
            task.id,
            {
                "last_run_time": now,
                "next_run_time": self.calculate_next_run_time(task),
            },
        )

        if not self.acquire_lock(task):
            return None

        log_id = self.store.insert_run_log(
            {
                "cron_id": task.id,
                "task_name": task.name,
                "status": RunStatus.RUNNING,
                "start_time": now,
                "pid": os.getpid(),
            }
        )
        logger.info(f"Task {task.id} ({task.name}) started, run log {log_id}")
        return log_id

    def log_task_end(
        self,
        log_id: int,
        status: RunStatus | str,
        output: Any = None,
        error: str | None = None,
    ):
        """Release the task lock and close the run log; closing twice overwrites"""
        run_log = self.store.get_run_log(log_id)
        if run_log is None:
            logger.error(f"Run log {log_id} not found, cannot close it")
            return

        self.release_lock(run_log.task_id)

        now = datetime.now()
        values: dict[str, Any] = {
            "status": RunStatus(status),
            "end_time": now,
            "duration": _duration(run_log.start_time, now),
        }
        if output is not None:
            values["output"] = (
                output if isinstance(output, str) else json.dumps(output, ensure_ascii=False, default=str)
            )
        if error is not None:
            values["error"] = str(error)

        self.store.update_run_log(log_id, values)
        logger.info(f"Run log {log_id} of task {run_log.task_id} closed: {values['status'].value}")

    def update_pid(self, log_id: int, pid: int) -> int:
        return self.store.update_run_log(log_id, {"pid": pid})

    # ------------------------------------------------------------------
    # Administration
    # ------------------------------------------------------------------
    def get_task(self, task_id: int) -> Task:
        task = self.store.get_task(int(task_id))
        if task is None:
            raise TaskNotFound(f"Task not found: {task_id}")
        return task

    def create_task(self, data: dict[str, Any]) -> int:
        values = _task_values(data)
        values.pop("id", None)
        values["next_run_time"] = self.calculate_next_run_time(values)
        task_id = self.store.insert_task(values)
        logger.info(f"Task {task_id} created: {values.get('name', '')}")
        return task_id

    def update_task(self, data: dict[str, Any]) -> int:
        task_id = _require_id(data)
        current = self.get_task(task_id)
        values = _task_values(data)
        values.pop("id", None)

        merged = {**current.model_dump(), **values}
        values["next_run_time"] = self.calculate_next_run_time(merged)
        return self.store.update_task(task_id, values)

    def delete_task(self, data: dict[str, Any]) -> int:
        task_id = _require_id(data)
        deleted = self.store.delete_task(task_id)
        if not deleted:
            raise TaskNotFound(f"Task not found: {task_id}")
        self.release_lock(task_id)
        return deleted

    def start_task(self, data: dict[str, Any]) -> int:
        return self.store.update_task(_require_id(data), {"status": TaskStatus.ENABLED})

    def close_task(self, data: dict[str, Any]) -> int:
        """Disable the task and drop its lock; a running process is not interrupted"""
        task_id = _require_id(data)
        updated = self.store.update_task(task_id, {"status": TaskStatus.DISABLED})
        self.release_lock(task_id)
        return updated

    def reload_task(self, data: dict[str, Any]) -> int:
        task = self.get_task(_require_id(data))
        next_run_time = self.calculate_next_run_time(task)
        if next_run_time is None:
            raise ValueError(f"Failed to calculate next run time for task: {task.id}")
        return self.store.update_task(task.id, {"next_run_time": next_run_time})

    def restart_task(self, data: dict[str, Any]) -> bool:
        self.close_task(data)
        self.start_task(data)
        self.reload_task(data)
        return True

    def toggle_task(self, data: dict[str, Any]) -> TaskStatus:
        task = self.get_task(_require_id(data))
        if task.enabled:
            self.close_task({"id": task.id})
            return TaskStatus.DISABLED
        self.start_task({"id": task.id})
        return TaskStatus.ENABLED

    def execute_immediately(self, data: dict[str, Any]) -> bool:
        """Make the task due so the next scan enqueues it"""
        task = self.get_task(_require_id(data))
        self.store.update_task(task.id, {"next_run_time": datetime.now()})
        return True

    def get_task_status(self, data: dict[str, Any]) -> dict[str, Any]:
        task = self.get_task(_require_id(data))
        latest = self.store.latest_run_log(task.id)
        return {
            "task": task,
            "locked": self.is_locked(task.id),
            "last_log": latest,
        }

    def list_tasks(self, data: dict[str, Any] | None = None) -> dict[str, Any]:
        data = data or {}
        return self.store.list_tasks(
            where=data.get("where"),
            page=data.get("page", 1),
            per_page=data.get("per_page", 10),
        )

    def get_task_logs(self, data: dict[str, Any] | None = None) -> dict[str, Any]:
        data = data or {}
        return self.store.list_run_logs(
            where=data.get("where"),
            page=data.get("page", 1),
            per_page=data.get("per_page", 10),
        )

    def get_run_log(self, log_id: int) -> RunLog | None:
        return self.store.get_run_log(log_id)


def _require_id(data: dict[str, Any]) -> int:
    try:
        return int(data["id"])
    except (KeyError, TypeError, ValueError):
        raise ValueError("A numeric task id is required") from None


def _task_values(data: dict[str, Any]) -> dict[str, Any]:
    """Keep task columns only, normalising enum fields through the Task model"""
    values = {key: value for key, value in data.items() if key in TASK_COLUMNS}
    if "task_type" in values:
        values["task_type"] = Task(task_type=values["task_type"]).task_type
    if "status" in values:
        values["status"] = Task(status=values["status"]).status
    return values


def _duration(start: datetime | None, end: datetime) -> int | None:
    if start is None:
        return None
    return max(0, int((end - start).total_seconds()))
