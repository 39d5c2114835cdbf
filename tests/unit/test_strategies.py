# Unit tests for execution strategies
import asyncio
import threading
import time

import pytest

from CronRelay.tasks.strategies import EventLoopStrategy, ThreadPoolStrategy, create_strategy


async def _record(results, value, delay=0.01):
    await asyncio.sleep(delay)
    results.append((value, threading.current_thread().name))
    return value


@pytest.mark.unit
class TestStrategies:
    @pytest.mark.parametrize("strategy_cls", [EventLoopStrategy, ThreadPoolStrategy])
    def test_submitted_runs_complete(self, strategy_cls):
        strategy = strategy_cls()
        strategy.start()
        results = []
        futures = [strategy.submit(lambda i=i: _record(results, i)) for i in range(5)]

        assert sorted(f.result(timeout=5) for f in futures) == [0, 1, 2, 3, 4]
        strategy.shutdown()
        assert sorted(value for value, _ in results) == [0, 1, 2, 3, 4]
        assert all(not name.startswith("MainThread") for _, name in results)

    def test_event_loop_runs_share_one_thread(self):
        strategy = EventLoopStrategy()
        results = []
        futures = [strategy.submit(lambda i=i: _record(results, i)) for i in range(3)]
        for future in futures:
            future.result(timeout=5)
        strategy.shutdown()
        assert {name for _, name in results} == {"cronrelay-executor"}

    @pytest.mark.parametrize("strategy_cls", [EventLoopStrategy, ThreadPoolStrategy])
    def test_shutdown_waits_for_in_flight_runs(self, strategy_cls):
        strategy = strategy_cls()
        results = []
        strategy.submit(lambda: _record(results, "slow", delay=0.2))
        strategy.shutdown(wait=True)
        assert [value for value, _ in results] == ["slow"]
        assert strategy.pending == 0

    def test_shutdown_leaves_blocked_loop_open(self):
        async def block():
            time.sleep(0.5)

        strategy = EventLoopStrategy()
        strategy.stop_timeout = 0.05
        strategy.start()
        loop, thread = strategy.loop, strategy._thread
        strategy.submit(block)

        strategy.shutdown(wait=False)

        assert strategy.loop is None
        assert not loop.is_closed()
        thread.join(timeout=5)
        assert not thread.is_alive()
        loop.close()

    def test_failed_run_is_reported_not_raised(self):
        async def boom():
            raise RuntimeError("escaped")

        strategy = ThreadPoolStrategy(max_workers=1)
        future = strategy.submit(boom)
        with pytest.raises(RuntimeError):
            future.result(timeout=5)
        strategy.shutdown()

    @pytest.mark.parametrize(
        "name,expected",
        [
            ("event_loop", EventLoopStrategy),
            ("thread_pool", ThreadPoolStrategy),
            ("THREAD", ThreadPoolStrategy),
        ],
    )
    def test_create_strategy(self, name, expected):
        assert isinstance(create_strategy(name, max_workers=2), expected)

    def test_unknown_strategy(self):
        with pytest.raises(ValueError):
            create_strategy("fork")
