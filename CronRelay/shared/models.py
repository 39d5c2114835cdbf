from pydantic import BaseModel, Field, field_validator
from typing import Optional, Any
from datetime import datetime
from enum import Enum
import os
import time


class TaskType(str, Enum):
    COMMAND = "command"
    CLASS_METHOD = "class_method"
    URL = "url"
    SHELL = "shell"

    @classmethod
    def _missing_(cls, value: object):
        if isinstance(value, int) and not isinstance(value, bool):
            value = str(value)
        if isinstance(value, str):
            # Normalize to lowercase before lookup
            value = value.strip().lower()
            # Legacy numeric codes stored by older installations
            legacy = {"1": "command", "2": "class_method", "3": "url", "4": "shell"}
            value = legacy.get(value, value)
            for member in cls:
                if member.value == value:
                    return member
        return None


class TaskStatus(str, Enum):
    ENABLED = "enabled"
    DISABLED = "disabled"

    @classmethod
    def _missing_(cls, value: object):
        if isinstance(value, int) and not isinstance(value, bool):
            value = str(value)
        if isinstance(value, str):
            value = value.strip().lower()
            legacy = {"0": "enabled", "1": "disabled"}
            value = legacy.get(value, value)
            for member in cls:
                if member.value == value:
                    return member
        return None


class RunStatus(str, Enum):
    RUNNING = "running"
    SUCCESS = "success"
    ERROR = "error"


class LogLevel(str, Enum):
    INFO = "info"
    SUCCESS = "success"
    ERROR = "error"


class Task(BaseModel):
    """A recurring task definition as stored in the task table and carried on the queue"""

    id: Optional[int] = None
    name: str = ""
    command: str = ""
    task_type: Optional[TaskType] = None
    cron_expression: str = ""
    timeout: Optional[int] = 300
    lock_time: int = 0
    status: TaskStatus = TaskStatus.ENABLED
    last_run_time: Optional[datetime] = None
    next_run_time: Optional[datetime] = None

    @field_validator("task_type", mode="before")
    @classmethod
    def _coerce_task_type(cls, value: Any):
        # Unknown kinds are kept as "unset" so the executor can reject them
        if value is None or isinstance(value, TaskType):
            return value
        try:
            return TaskType(value)
        except ValueError:
            return None

    @field_validator("status", mode="before")
    @classmethod
    def _coerce_status(cls, value: Any):
        if value is None:
            return TaskStatus.ENABLED
        return value if isinstance(value, TaskStatus) else TaskStatus(value)

    @field_validator("lock_time", mode="before")
    @classmethod
    def _coerce_lock_time(cls, value: Any):
        return 0 if value is None else value

    @property
    def enabled(self) -> bool:
        return self.status == TaskStatus.ENABLED


class RunLog(BaseModel):
    """One execution attempt of a task"""

    id: Optional[int] = None
    task_id: int
    task_name: str = ""
    status: RunStatus = RunStatus.RUNNING
    start_time: Optional[datetime] = None
    end_time: Optional[datetime] = None
    duration: Optional[int] = None
    pid: Optional[int] = None
    output: Optional[str] = None
    error: Optional[str] = None


class LogEvent(BaseModel):
    """Transient execution step published on the log channel"""

    task_id: Optional[int] = None
    log_id: Optional[int] = None
    level: LogLevel = LogLevel.INFO
    message: str
    timestamp: int = Field(default_factory=lambda: int(time.time()))
    pid: int = Field(default_factory=os.getpid)
