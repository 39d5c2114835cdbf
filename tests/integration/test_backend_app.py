# Integration tests for the log broadcaster API
import asyncio

import pytest
from fastapi.testclient import TestClient

from CronRelay.backend.main import create_app
from CronRelay.backend.services.log_broadcaster import LogBroadcaster

CHANNEL = "test:logs"


@pytest.fixture
def broadcaster():
    return LogBroadcaster(None, [CHANNEL], retry_delay=0.01)


@pytest.fixture
def client(cron_config, broadcaster):
    app = create_app(cron_config, broadcaster=broadcaster, start_subscriber=False)
    with TestClient(app) as test_client:
        yield test_client


@pytest.mark.integration
class TestLogApi:
    def test_health(self, client):
        response = client.get("/")
        assert response.status_code == 200
        body = response.json()
        assert body["status"] == "healthy"
        assert body["redis"] == "disconnected"
        assert body["stats"] == {"connections": 0, "channels": 0, "subscribers": {}}

    def test_websocket_control_messages(self, client, broadcaster):
        with client.websocket_connect("/ws") as websocket:
            assert websocket.receive_json()["type"] == "connected"

            websocket.send_json({"type": "subscribe", "channel": CHANNEL})
            assert websocket.receive_json() == {
                "type": "subscribed",
                "channel": CHANNEL,
                "message": "Successfully subscribed to channel",
            }
            assert client.get("/").json()["stats"]["connections"] == 1

            websocket.send_json({"type": "ping"})
            assert websocket.receive_json()["type"] == "pong"

            websocket.send_text("nonsense")
            assert websocket.receive_json() == {"type": "error", "message": "Invalid message format"}

    def test_websocket_receives_broadcast(self, client, broadcaster):
        with client.websocket_connect("/ws") as websocket:
            websocket.receive_json()
            websocket.send_json({"type": "subscribe", "channel": CHANNEL})
            websocket.receive_json()

            client.portal.call(broadcaster.broadcast, CHANNEL, {"task_id": 1, "message": "hi"})

            message = websocket.receive_json()
            assert message["type"] == "log"
            assert message["channel"] == CHANNEL
            assert message["data"] == {"task_id": 1, "message": "hi"}

    def test_disconnect_is_forgotten(self, client, broadcaster):
        with client.websocket_connect("/ws") as websocket:
            websocket.receive_json()
            websocket.send_json({"type": "subscribe", "channel": CHANNEL})
            websocket.receive_json()

        for _ in range(50):
            if broadcaster.get_stats()["connections"] == 0:
                break
            client.portal.call(asyncio.sleep, 0.01)
        assert broadcaster.get_stats() == {"connections": 0, "channels": 0, "subscribers": {}}
