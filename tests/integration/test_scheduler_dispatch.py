# Integration tests for the scheduler -> queue -> dispatcher pipeline
import threading
import time
from datetime import datetime, timedelta
from unittest.mock import Mock, patch

import pytest

from CronRelay.dispatch_loop import CronDispatcher
from CronRelay.scheduler_loop import CronScheduler
from CronRelay.shared.models import RunStatus, TaskStatus
from CronRelay.tasks.capabilities import build_registry
from CronRelay.tasks.executor import TaskExecutor
from CronRelay.tasks.invoker import ClassExecInvoker
from CronRelay.tasks.strategies import ThreadPoolStrategy


@pytest.fixture
def scheduler(manager, redis_client, cron_config):
    return CronScheduler(manager, redis_client, cron_config)


@pytest.fixture
def executor(manager, redis_client, cron_config):
    return TaskExecutor(
        manager,
        redis_client,
        ClassExecInvoker(build_registry()),
        cron_config,
        strategy=ThreadPoolStrategy(max_workers=2),
    )


@pytest.fixture
def dispatcher(manager, redis_client, executor, cron_config):
    return CronDispatcher(manager, redis_client, executor, cron_config)


def _make_due(store, task):
    store.update_task(task.id, {"next_run_time": datetime.now() - timedelta(seconds=1)})


@pytest.mark.integration
class TestScheduler:
    """Due task scanning."""

    def test_scan_enqueues_due_tasks_only(self, scheduler, store, redis_client, make_task):
        due = make_task()
        make_task()
        disabled = make_task(status=TaskStatus.DISABLED)
        _make_due(store, due)
        _make_due(store, disabled)

        assert scheduler.scan_tasks() == 1
        assert redis_client.pop_task(timeout=0).id == due.id
        assert redis_client.pop_task(timeout=0) is None

    def test_scans_closer_than_min_gap_are_skipped(self, scheduler, store, make_task):
        _make_due(store, make_task())
        assert scheduler.scan_tasks() == 1
        assert scheduler.scan_tasks() == 0

        scheduler.last_scan -= scheduler.config.min_scan_gap
        assert scheduler.scan_tasks() == 1

    def test_run_survives_errors_and_stops(self, scheduler):
        scheduler.config.min_scan_gap = 0
        scheduler.manager = Mock()
        scheduler.manager.get_due_tasks.side_effect = ConnectionError("db down")

        thread = threading.Thread(target=scheduler.run)
        thread.start()
        time.sleep(0.2)
        scheduler.stop()
        thread.join(timeout=2)

        assert not thread.is_alive()
        assert scheduler.manager.get_due_tasks.call_count >= 2


@pytest.mark.integration
class TestDispatcher:
    """Queue consumption."""

    def test_process_one_on_empty_queue(self, dispatcher):
        with patch.object(dispatcher.redis_client, "pop_task", return_value=None):
            assert dispatcher.process_one() is False

    def test_locked_task_is_dropped(self, dispatcher, manager, redis_client, make_task):
        task = make_task(lock_time=60)
        manager.acquire_lock(task)
        redis_client.push_task(task)

        with patch.object(dispatcher.executor, "execute") as execute:
            assert dispatcher.process_one() is False
            execute.assert_not_called()

    def test_malformed_queue_item_is_dropped(self, dispatcher, fake_redis, cron_config):
        fake_redis.lpush(cron_config.cron_queue, '{"id": "not-a-number"}')
        assert dispatcher.process_one() is False

    def test_run_backs_off_after_errors(self, dispatcher):
        dispatcher.error_backoff = 0.01
        dispatcher.redis_client = Mock()
        dispatcher.redis_client.pop_task.side_effect = ConnectionError("redis down")

        thread = threading.Thread(target=dispatcher.run)
        thread.start()
        time.sleep(0.1)
        dispatcher.stop()
        thread.join(timeout=3)

        assert not thread.is_alive()
        assert dispatcher.redis_client.pop_task.call_count >= 2


@pytest.mark.integration
class TestEndToEnd:
    def test_echo_task_runs_once(self, scheduler, dispatcher, manager, store, make_task):
        task = make_task(command="echo hi", lock_time=60)
        _make_due(store, task)

        assert scheduler.scan_tasks() == 1
        assert dispatcher.process_one() is True
        dispatcher.executor.strategy.wait(timeout=10)

        logs = store.list_run_logs(where={"task_id": task.id})
        assert logs["total"] == 1
        run_log = logs["items"][0]
        assert run_log.status == RunStatus.SUCCESS
        assert run_log.output == "hi\n"
        assert not manager.is_locked(task.id)

        # the run advanced the schedule, so the next scan finds nothing
        scheduler.last_scan = 0.0
        assert scheduler.scan_tasks() == 0
        dispatcher.executor.shutdown()

    def test_duplicate_enqueue_runs_once_while_locked(self, scheduler, dispatcher, store, redis_client, make_task):
        task = make_task(command="sleep 1", lock_time=60)
        redis_client.push_task(task)
        redis_client.push_task(task)

        assert dispatcher.process_one() is True
        assert dispatcher.process_one() is False
        dispatcher.executor.shutdown(wait=True)

        assert store.list_run_logs(where={"task_id": task.id})["total"] == 1
