"""Task persistence, locking, invocation and execution"""

from .executor import ExecutionFailed, ExecutionTimeout, TaskExecutor, TaskTypeUnset
from .invoker import (
    CapabilityRegistry,
    ClassExecInvoker,
    CommandInvalid,
    InvocationError,
    MethodNotAccessible,
    MethodNotFound,
)
from .manager import TaskManager, TaskNotFound
from .store import TaskStore
from .strategies import EventLoopStrategy, ExecutionStrategy, ThreadPoolStrategy, create_strategy

__all__ = [
    "CapabilityRegistry",
    "ClassExecInvoker",
    "CommandInvalid",
    "EventLoopStrategy",
    "ExecutionFailed",
    "ExecutionStrategy",
    "ExecutionTimeout",
    "InvocationError",
    "MethodNotAccessible",
    "MethodNotFound",
    "TaskExecutor",
    "TaskManager",
    "TaskNotFound",
    "TaskStore",
    "TaskTypeUnset",
    "ThreadPoolStrategy",
    "create_strategy",
]
