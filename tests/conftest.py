# Test configuration and fixtures
import os
import sys
from pathlib import Path

import pytest

sys.path.insert(0, str(Path(__file__).parent))

from fakes import FakeRedis  # noqa: E402

from CronRelay.shared.config import CronConfig  # noqa: E402
from CronRelay.shared.models import Task, TaskType  # noqa: E402
from CronRelay.shared.redis_utils import RedisConfig, SyncRedisClient  # noqa: E402
from CronRelay.tasks.manager import TaskManager  # noqa: E402
from CronRelay.tasks.store import TaskStore  # noqa: E402

# Set test environment variables
os.environ["REDIS_HOST"] = "localhost"
os.environ["REDIS_PORT"] = "6379"
os.environ["CRONRELAY_DATABASE_URL"] = "sqlite://"
os.environ["TESTING"] = "1"  # Signal that we're in test mode


@pytest.fixture
def cron_config():
    """Configuration with short intervals for fast tests."""
    return CronConfig(
        database_url="sqlite://",
        poll_interval=0.05,
        pop_timeout=1,
        scan_interval=0.05,
        cron_queue="test:cron_queue",
        lock_prefix="test:lock:",
        log_channel="test:logs",
    )


@pytest.fixture
def fake_redis():
    """In-memory Redis double."""
    return FakeRedis()


@pytest.fixture
def redis_client(fake_redis, cron_config):
    """SyncRedisClient bound to the in-memory double."""
    return SyncRedisClient(RedisConfig(), cron_config, connection=fake_redis)


@pytest.fixture
def store(cron_config):
    """Fresh in-memory task store."""
    task_store = TaskStore(cron_config.database_url, cron_config.table_cron, cron_config.table_log)
    task_store.init_schema()
    yield task_store
    task_store.close()


@pytest.fixture
def manager(store, redis_client, cron_config):
    return TaskManager(store, redis_client, cron_config)


@pytest.fixture
def make_task(manager):
    """Create a stored task and return it as a Task model."""

    def _make(**overrides) -> Task:
        data = {
            "name": "echo",
            "command": "echo hi",
            "task_type": TaskType.COMMAND,
            "cron_expression": "0 * * * * *",
            "timeout": 10,
            "lock_time": 60,
        }
        data.update(overrides)
        task_id = manager.create_task(data)
        return manager.get_task(task_id)

    return _make
