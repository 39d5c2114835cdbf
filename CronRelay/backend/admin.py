"""
Administrative protocol server.

Newline-delimited JSON over TCP: one request object per line, one response
object per line, and the connection stays open between requests.

Request:  {"action": "create_task", "name": "...", ...}
          {"method": "create_task", "args": {...}}   (also accepted)
Response: {"code": 200 | 404 | 500, "msg": "...", "data": ...}
"""

from __future__ import annotations

import asyncio
import json
import logging
from typing import Any, Awaitable, Callable

from pydantic import TypeAdapter

from CronRelay.tasks.manager import TaskManager

logger = logging.getLogger(__name__)

_json = TypeAdapter(Any)

Handler = Callable[[dict[str, Any]], Awaitable[Any]]


class AdminServer:
    """Serves task administration requests against a TaskManager"""

    def __init__(self, manager: TaskManager, host: str = "0.0.0.0", port: int = 12346):
        self.manager = manager
        self.host = host
        self.port = port
        self.server: asyncio.Server | None = None
        self.actions: dict[str, Handler] = {
            "ping": self._ping,
            "create_task": self._create_task,
            "update_task": self._update_task,
            "delete_task": self._delete_task,
            "execute_task": self._call("execute_immediately"),
            "get_task_status": self._call("get_task_status"),
            "list_tasks": self._call("list_tasks"),
            "toggle_task": self._toggle_task,
            "start_task": self._call("start_task"),
            "close_task": self._call("close_task"),
            "restart_task": self._call("restart_task"),
            "reload_task": self._call("reload_task"),
            "get_task_logs": self._call("get_task_logs"),
        }

    # ------------------------------------------------------------------
    # Request handling
    # ------------------------------------------------------------------
    async def handle_line(self, line: bytes | str) -> dict[str, Any]:
        try:
            request = json.loads(line)
        except ValueError as e:
            return _response(500, f"Invalid JSON: {e}")
        return await self.handle_request(request)

    async def handle_request(self, request: Any) -> dict[str, Any]:
        if not isinstance(request, dict):
            return _response(500, "Invalid request format")

        action = request.get("action") or request.get("method") or ""
        if not isinstance(action, str):
            return _response(404, "Method not found")
        handler = self.actions.get(action)
        if handler is None:
            return _response(404, "Method not found")

        if isinstance(request.get("args"), dict):
            params = dict(request["args"])
        else:
            params = {k: v for k, v in request.items() if k not in ("action", "method")}

        try:
            result = await handler(params)
        except Exception as e:
            logger.error(f"Admin action {action} failed: {e}")
            return _response(500, str(e))
        return _response(200, "Success", result)

    def _call(self, method: str) -> Handler:
        async def handler(params: dict[str, Any]) -> Any:
            return await asyncio.to_thread(getattr(self.manager, method), params)

        return handler

    async def _ping(self, params: dict[str, Any]) -> str:
        return "pong"

    async def _create_task(self, params: dict[str, Any]) -> dict[str, Any]:
        task_id = await asyncio.to_thread(self.manager.create_task, params)
        return {"id": task_id}

    async def _update_task(self, params: dict[str, Any]) -> dict[str, Any]:
        updated = await asyncio.to_thread(self.manager.update_task, params)
        return {"updated": updated}

    async def _delete_task(self, params: dict[str, Any]) -> dict[str, Any]:
        deleted = await asyncio.to_thread(self.manager.delete_task, params)
        return {"deleted": deleted}

    async def _toggle_task(self, params: dict[str, Any]) -> dict[str, Any]:
        status = await asyncio.to_thread(self.manager.toggle_task, params)
        return {"status": status.value}

    # ------------------------------------------------------------------
    # Transport
    # ------------------------------------------------------------------
    async def _handle_client(self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter):
        peer = writer.get_extra_info("peername")
        logger.info(f"Admin client connected: {peer}")
        try:
            while True:
                line = await reader.readline()
                if not line:
                    break
                if not line.strip():
                    continue
                response = await self.handle_line(line)
                writer.write(_encode(response))
                await writer.drain()
        except (ConnectionError, asyncio.IncompleteReadError) as e:
            logger.info(f"Admin client {peer} dropped: {e}")
        finally:
            writer.close()
            try:
                await writer.wait_closed()
            except ConnectionError:
                pass
            logger.info(f"Admin client disconnected: {peer}")

    async def start(self) -> asyncio.Server:
        self.server = await asyncio.start_server(self._handle_client, self.host, self.port)
        sockets = self.server.sockets or []
        if sockets:
            self.port = sockets[0].getsockname()[1]
        logger.info(f"Admin server listening on {self.host}:{self.port}")
        return self.server

    async def serve_forever(self):
        if self.server is None:
            await self.start()
        async with self.server:
            await self.server.serve_forever()

    async def stop(self):
        if self.server is not None:
            self.server.close()
            await self.server.wait_closed()
            self.server = None


def _response(code: int, msg: str, data: Any = None) -> dict[str, Any]:
    return {"code": code, "msg": msg, "data": [] if data is None else data}


def _encode(response: dict[str, Any]) -> bytes:
    payload = _json.dump_python(response, mode="json")
    return (json.dumps(payload, ensure_ascii=False) + "\n").encode("utf-8")
