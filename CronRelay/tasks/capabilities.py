"""
Built-in capabilities available to class_method tasks.

Applications add their own types to the registry returned by
build_registry() before the dispatcher starts.
"""

import asyncio
import os
import platform
import socket
import time
from typing import Any

from .invoker import CapabilityRegistry


class System:
    """Diagnostics that are safe to schedule on any worker"""

    @staticmethod
    def ping() -> str:
        return "pong"

    @staticmethod
    def echo(*args: Any) -> list[Any]:
        return list(args)

    @staticmethod
    async def sleep(seconds: float = 1.0) -> float:
        await asyncio.sleep(float(seconds))
        return float(seconds)

    @classmethod
    def info(cls) -> dict[str, Any]:
        return {
            "host": socket.gethostname(),
            "pid": os.getpid(),
            "python": platform.python_version(),
            "time": int(time.time()),
        }


def build_registry() -> CapabilityRegistry:
    """Registry with the built-in types and constants"""
    registry = CapabilityRegistry()
    registry.register(System)
    registry.register_constant("EOL", os.linesep)
    registry.register_constant("HOSTNAME", socket.gethostname())
    return registry
