"""
Fan-out of execution log events from the Redis log channel to WebSocket listeners.
"""

from __future__ import annotations

import asyncio
import json
import logging
import time
import uuid
from typing import Any, Protocol

from CronRelay.shared.redis_utils import AsyncRedisClient, decode_message

logger = logging.getLogger(__name__)


class Listener(Protocol):
    async def send_json(self, data: Any) -> None: ...


class LogBroadcaster:
    """
    Bridges a Redis pub/sub subscription to many listeners.

    Listeners subscribe to channels by name with small JSON control messages
    and receive every log message published on those channels.  A listener
    whose send fails is dropped without affecting the others.
    """

    def __init__(
        self,
        redis_client: AsyncRedisClient | None,
        channels: list[str],
        retry_delay: float = 5.0,
    ):
        self.redis_client = redis_client
        self.channels = list(channels)
        self.retry_delay = retry_delay
        self.connections: dict[str, Listener] = {}
        self.subscriptions: dict[str, set[str]] = {}
        self.connected_at: dict[str, int] = {}
        self._running = False

    # ------------------------------------------------------------------
    # Listener lifecycle
    # ------------------------------------------------------------------
    async def connect(self, listener: Listener) -> str:
        """Register an accepted listener and greet it"""
        connection_id = uuid.uuid4().hex
        self.connections[connection_id] = listener
        self.connected_at[connection_id] = int(time.time())
        logger.info(f"Log listener connected: {connection_id}")

        await self._send(
            connection_id,
            {
                "type": "connected",
                "message": "Connected successfully",
                "timestamp": int(time.time()),
            },
        )
        return connection_id

    def disconnect(self, connection_id: str):
        """Forget a listener and all of its subscriptions"""
        if self.connections.pop(connection_id, None) is None:
            return
        self.connected_at.pop(connection_id, None)
        for channel in list(self.subscriptions):
            subscribers = self.subscriptions[channel]
            subscribers.discard(connection_id)
            if not subscribers:
                del self.subscriptions[channel]
        logger.info(f"Log listener disconnected: {connection_id}")

    async def handle_message(self, connection_id: str, raw: Any):
        """Process one control message from a listener"""
        try:
            message = json.loads(raw) if isinstance(raw, (str, bytes)) else raw
        except ValueError:
            message = None

        if not isinstance(message, dict) or "type" not in message:
            await self._error(connection_id, "Invalid message format")
            return

        message_type = message["type"]
        if message_type == "subscribe":
            await self._subscribe(connection_id, message.get("channel"))
        elif message_type == "unsubscribe":
            await self._unsubscribe(connection_id, message.get("channel"))
        elif message_type == "ping":
            await self._send(connection_id, {"type": "pong", "timestamp": int(time.time())})
        else:
            await self._error(connection_id, "Unknown message type")

    async def _subscribe(self, connection_id: str, channel: str | None):
        if not channel:
            await self._error(connection_id, "Channel not specified")
            return

        self.subscriptions.setdefault(channel, set()).add(connection_id)
        await self._send(
            connection_id,
            {
                "type": "subscribed",
                "channel": channel,
                "message": "Successfully subscribed to channel",
            },
        )
        logger.info(f"Listener {connection_id} subscribed to {channel}")

    async def _unsubscribe(self, connection_id: str, channel: str | None):
        if not channel:
            await self._error(connection_id, "Channel not specified")
            return

        subscribers = self.subscriptions.get(channel)
        if not subscribers or connection_id not in subscribers:
            await self._error(connection_id, "Not subscribed to channel")
            return

        subscribers.discard(connection_id)
        if not subscribers:
            del self.subscriptions[channel]
        await self._send(
            connection_id,
            {
                "type": "unsubscribed",
                "channel": channel,
                "message": "Successfully unsubscribed from channel",
            },
        )

    # ------------------------------------------------------------------
    # Fan-out
    # ------------------------------------------------------------------
    async def broadcast(self, channel: str, data: dict[str, Any]) -> int:
        """Send a log message to every subscriber of channel; returns deliveries"""
        payload = {
            "type": "log",
            "channel": channel,
            "data": data,
            "timestamp": int(time.time()),
        }
        delivered = 0
        for connection_id in list(self.subscriptions.get(channel, ())):
            if await self._send(connection_id, payload):
                delivered += 1
        return delivered

    async def dispatch(self, message: dict[str, Any]) -> int:
        """Handle one raw pub/sub message"""
        if message.get("type") != "message":
            return 0

        channel = message.get("channel")
        if isinstance(channel, bytes):
            channel = channel.decode("utf-8", errors="ignore")

        data = decode_message(message.get("data"))
        if data is None:
            logger.warning(f"Dropping undecodable log message on {channel}")
            return 0
        return await self.broadcast(channel, data)

    # ------------------------------------------------------------------
    # Redis subscription
    # ------------------------------------------------------------------
    async def run(self):
        """Keep the Redis subscription alive until stop() is called"""
        self._running = True
        while self._running:
            try:
                await self._listen()
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.error(f"Log subscription failed: {e}")

            if self._running:
                logger.info(f"Resubscribing to log channels in {self.retry_delay}s")
                await asyncio.sleep(self.retry_delay)

    async def _listen(self):
        if self.redis_client.redis is None:
            await self.redis_client.connect()
        pubsub = await self.redis_client.pubsub()
        try:
            await pubsub.subscribe(*self.channels)
            logger.info(f"Subscribed to log channels: {', '.join(self.channels)}")
            async for message in pubsub.listen():
                if not self._running:
                    break
                await self.dispatch(message)
        finally:
            await pubsub.aclose()

    async def stop(self):
        """Stop the subscription loop and close every listener"""
        self._running = False
        for connection_id, listener in list(self.connections.items()):
            close = getattr(listener, "close", None)
            if close is not None:
                try:
                    await close()
                except Exception as e:
                    logger.debug(f"Error closing listener {connection_id}: {e}")
            self.disconnect(connection_id)

    def get_stats(self) -> dict[str, Any]:
        return {
            "connections": len(self.connections),
            "channels": len(self.subscriptions),
            "subscribers": {
                channel: len(subscribers)
                for channel, subscribers in self.subscriptions.items()
            },
        }

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------
    async def _send(self, connection_id: str, payload: dict[str, Any]) -> bool:
        listener = self.connections.get(connection_id)
        if listener is None:
            return False
        try:
            await listener.send_json(payload)
            return True
        except Exception as e:
            logger.warning(f"Failed to send to listener {connection_id}: {e}")
            self.disconnect(connection_id)
            return False

    async def _error(self, connection_id: str, message: str):
        await self._send(connection_id, {"type": "error", "message": message})
