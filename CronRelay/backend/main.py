"""
CronRelay log broadcaster API
Streams task execution logs from Redis to WebSocket listeners
"""

import asyncio
import logging

from fastapi import FastAPI, WebSocket, WebSocketDisconnect
from fastapi.middleware.cors import CORSMiddleware

from CronRelay import __version__
from CronRelay.backend.services.log_broadcaster import LogBroadcaster
from CronRelay.shared.config import CronConfig, get_cron_config
from CronRelay.shared.redis_utils import AsyncRedisClient, RedisConfig

logger = logging.getLogger(__name__)


def create_app(
    config: CronConfig | None = None,
    redis_config: RedisConfig | None = None,
    broadcaster: LogBroadcaster | None = None,
    start_subscriber: bool = True,
) -> FastAPI:
    """Build the broadcaster app; tests pass their own broadcaster and skip the subscriber"""
    config = config or get_cron_config()
    if broadcaster is None:
        redis_client = AsyncRedisClient(redis_config or RedisConfig.from_env())
        broadcaster = LogBroadcaster(redis_client, [config.log_channel])

    app = FastAPI(
        title="CronRelay Log API",
        description="Real-time execution logs for CronRelay tasks",
        version=__version__,
    )
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["GET"],
        allow_headers=["*"],
    )
    app.state.broadcaster = broadcaster
    app.state.subscriber = None

    @app.get("/")
    async def root():
        """Health check endpoint"""
        redis_client = broadcaster.redis_client
        redis_status = (
            "connected" if redis_client is not None and redis_client.redis is not None else "disconnected"
        )
        return {
            "status": "healthy",
            "service": "CronRelay log broadcaster",
            "version": __version__,
            "redis": redis_status,
            "stats": broadcaster.get_stats(),
        }

    @app.websocket("/ws")
    async def websocket_endpoint(websocket: WebSocket):
        """WebSocket endpoint for real-time execution logs"""
        await websocket.accept()
        connection_id = await broadcaster.connect(websocket)

        try:
            while True:
                raw = await websocket.receive_text()
                await broadcaster.handle_message(connection_id, raw)
        except WebSocketDisconnect:
            pass
        finally:
            broadcaster.disconnect(connection_id)

    @app.on_event("startup")
    async def startup_event():
        """Start the Redis subscription in the background"""
        if start_subscriber:
            app.state.subscriber = asyncio.create_task(broadcaster.run())
        logger.info("CronRelay log broadcaster started")

    @app.on_event("shutdown")
    async def shutdown_event():
        """Clean up resources"""
        await broadcaster.stop()
        subscriber = app.state.subscriber
        if subscriber is not None:
            subscriber.cancel()
            try:
                await subscriber
            except asyncio.CancelledError:
                pass
        if broadcaster.redis_client is not None:
            await broadcaster.redis_client.disconnect()
        logger.info("CronRelay log broadcaster shutdown complete")

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    logging.basicConfig(level=logging.INFO)
    cfg = get_cron_config()
    uvicorn.run(app, host=cfg.log_host, port=cfg.log_port)
