"""
Blocking client for the CronRelay administrative protocol
"""

import json
import logging
import socket
from typing import Any

logger = logging.getLogger(__name__)


class AdminError(RuntimeError):
    """The server answered with a non-200 code"""

    def __init__(self, code: int, message: str):
        super().__init__(f"{code}: {message}")
        self.code = code
        self.message = message


class AdminClient:
    """One TCP connection, one request line and one response line at a time"""

    def __init__(self, host: str = "127.0.0.1", port: int = 12346, timeout: float = 30.0):
        self.host = host
        self.port = port
        try:
            self.sock = socket.create_connection((host, port), timeout=timeout)
        except OSError as e:
            raise ConnectionError(f"Failed to connect to server {host}:{port}: {e}") from e
        self._reader = self.sock.makefile("rb")

    def request(self, payload: dict[str, Any]) -> dict[str, Any]:
        """Send one request and return the raw response object"""
        if self.sock is None:
            raise ConnectionError("TCP connection not established")

        line = json.dumps(payload, ensure_ascii=False) + "\n"
        self.sock.sendall(line.encode("utf-8"))
        response = self._reader.readline()
        if not response:
            raise ConnectionError("Failed to receive response from server")
        return json.loads(response)

    def call(self, action: str, **params: Any) -> Any:
        """Run an action and return its data, raising AdminError on failure"""
        response = self.request({"action": action, **params})
        if response.get("code") != 200:
            raise AdminError(response.get("code", 500), response.get("msg", ""))
        return response.get("data")

    def close(self):
        if self.sock is not None:
            self._reader.close()
            self.sock.close()
            self.sock = None

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()
