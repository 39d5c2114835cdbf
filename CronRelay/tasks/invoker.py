"""
Invocation of registered type-level capabilities from command strings.

Supported forms::

    Type::capability
    Type@capability
    Type::capability()
    Type::capability(1, "two", true, null, [3], {"four": 4})
    Type::capability({"json": "payload"})

Only types registered in a CapabilityRegistry can be invoked, and only their
public static or class methods.
"""

from __future__ import annotations

import inspect
import json
import logging
import re
from typing import Any, Callable

logger = logging.getLogger(__name__)

_COMMAND_RE = re.compile(r"^\s*(\w+)\s*(::|@)\s*(\w+)\s*(?:\((.*)\))?\s*$", re.DOTALL)
_NUMBER_RE = re.compile(r"^[+-]?(\d+(\.\d*)?|\.\d+)([eE][+-]?\d+)?$")


class InvocationError(Exception):
    """Base class for capability invocation failures"""


class CommandInvalid(InvocationError):
    """The command string does not follow the Type::capability(args) grammar"""


class MethodNotFound(InvocationError):
    """The type or the capability is not registered"""


class MethodNotAccessible(InvocationError):
    """The capability exists but is private or needs an instance"""


class CapabilityRegistry:
    """
    Registry of invocable types and named constants.

    Types are registered under their class name (or an explicit alias) and
    expose their public static and class methods as capabilities.  Constants
    are substituted for bare identifiers in argument lists.
    """

    def __init__(self):
        self._types: dict[str, type] = {}
        self._constants: dict[str, Any] = {}

    def register(self, cls: type | None = None, *, name: str | None = None):
        """
        Register a type; usable as a plain call or as a class decorator.

        Example:
            ```python
            @registry.register
            class Reports:
                @staticmethod
                def build(day: str) -> dict: ...
            ```
        """

        def decorator(target: type) -> type:
            if not inspect.isclass(target):
                raise TypeError(f"Only classes can be registered, got {target!r}")
            self._types[name or target.__name__] = target
            return target

        if cls is None:
            return decorator
        return decorator(cls)

    def register_constant(self, name: str, value: Any):
        self._constants[name] = value

    def has_constant(self, name: str) -> bool:
        return name in self._constants

    def constant(self, name: str) -> Any:
        return self._constants[name]

    def get_type(self, name: str) -> type | None:
        return self._types.get(name)

    def list_types(self) -> list[str]:
        return sorted(self._types)

    def resolve(self, type_name: str, capability: str) -> Callable[..., Any]:
        """Return the bound type-level callable or raise a validation error"""
        cls = self._types.get(type_name)
        if cls is None:
            raise MethodNotFound(f"Type not registered: {type_name}")

        raw = inspect.getattr_static(cls, capability, None)
        if raw is None:
            raise MethodNotFound(f"Method does not exist: {type_name}::{capability}")

        if capability.startswith("_"):
            raise MethodNotAccessible(f"Method is not accessible: {type_name}::{capability}")

        if not isinstance(raw, (staticmethod, classmethod)):
            if callable(raw):
                raise MethodNotAccessible(
                    f"Method is not static: {type_name}::{capability}"
                )
            raise MethodNotAccessible(f"Not a method: {type_name}::{capability}")

        return getattr(cls, capability)


class ClassExecInvoker:
    """Parse command strings and invoke the matching registered capability"""

    def __init__(self, registry: CapabilityRegistry):
        self.registry = registry

    def parse(self, command: str) -> tuple[str, str, list[Any]]:
        """Split a command into (type name, capability, positional arguments)"""
        match = _COMMAND_RE.match(command or "")
        if not match:
            raise CommandInvalid(f"Invalid command format: {command}")
        type_name, _, capability, params = match.groups()
        return type_name, capability, self.parse_arguments(params or "")

    def execute(self, command: str, additional_args: list[Any] | None = None) -> Any:
        """Validate and invoke; the return value is passed through unchanged"""
        type_name, capability, args = self.parse(command)
        if additional_args:
            args = args + list(additional_args)

        target = self.registry.resolve(type_name, capability)
        logger.debug(f"Invoking {type_name}::{capability} with {len(args)} argument(s)")
        return target(*args)

    def parse_arguments(self, params: str) -> list[Any]:
        if not params.strip():
            return []

        try:
            decoded = json.loads(params)
        except ValueError:
            return [self._convert(token) for token in _split_arguments(params)]

        if isinstance(decoded, list):
            return decoded
        return [decoded]

    def _convert(self, token: str) -> Any:
        value = token.strip()
        if value == "":
            return ""

        lowered = value.lower()
        if lowered == "null":
            return None
        if lowered == "true":
            return True
        if lowered == "false":
            return False

        if _NUMBER_RE.match(value):
            if "." in value:
                return float(value)
            # Exponent notation without a decimal point still yields an int
            return int(float(value)) if "e" in lowered else int(value)

        if len(value) >= 2 and value[0] == value[-1] and value[0] in ("'", '"'):
            return _unescape(value[1:-1])

        if (value[0], value[-1]) in (("[", "]"), ("{", "}")):
            try:
                return json.loads(value)
            except ValueError:
                return value

        if self.registry.has_constant(value):
            return self.registry.constant(value)

        return value


def _split_arguments(params: str) -> list[str]:
    """Split on commas outside quotes, honouring backslash escapes and brackets"""
    tokens: list[str] = []
    current: list[str] = []
    quote = ""
    escaped = False
    depth = 0

    for char in params:
        if escaped:
            current.append(char)
            escaped = False
            continue

        if char == "\\" and quote:
            current.append(char)
            escaped = True
            continue

        if quote:
            if char == quote:
                quote = ""
        elif char in ("'", '"'):
            quote = char
        elif char in "[{":
            depth += 1
        elif char in "]}":
            depth = max(0, depth - 1)
        elif char == "," and depth == 0:
            tokens.append("".join(current).strip())
            current = []
            continue

        current.append(char)

    if current:
        tokens.append("".join(current).strip())
    return tokens


def _unescape(value: str) -> str:
    """Drop backslashes the way stripslashes does: a backslash keeps the next character"""
    result = []
    chars = iter(value)
    for char in chars:
        if char == "\\":
            result.append(next(chars, ""))
        else:
            result.append(char)
    return "".join(result)
