"""
CronRelay dispatcher worker
Takes due tasks from the handoff queue, opens their run logs and hands them
to the executor
"""

import logging
import threading

from pydantic import ValidationError

from CronRelay.shared.config import CronConfig
from CronRelay.shared.redis_utils import SyncRedisClient
from CronRelay.tasks.executor import TaskExecutor
from CronRelay.tasks.manager import TaskManager

logger = logging.getLogger(__name__)


class CronDispatcher:
    """Consumes the handoff queue; executes at most what log_task_start admits"""

    def __init__(
        self,
        manager: TaskManager,
        redis_client: SyncRedisClient,
        executor: TaskExecutor,
        config: CronConfig | None = None,
    ):
        self.manager = manager
        self.redis_client = redis_client
        self.executor = executor
        self.config = config or CronConfig()
        self.error_backoff = 1.0
        self._stop = threading.Event()

    def process_one(self) -> bool:
        """Handle at most one queued task; True when a run was started"""
        try:
            task = self.redis_client.pop_task(timeout=self.config.pop_timeout)
        except ValidationError as e:
            logger.error(f"Dropping malformed queue item: {e}")
            return False

        if task is None:
            return False

        log_id = self.manager.log_task_start(task)
        if log_id is None:
            return False

        self.executor.execute(task, log_id)
        return True

    def run(self):
        """Main dispatcher loop"""
        logger.info("CronRelay dispatcher started")

        try:
            while not self._stop.is_set():
                try:
                    self.process_one()
                except Exception as e:
                    logger.error(f"Error dispatching task: {e}")
                    self._stop.wait(self.error_backoff)
        finally:
            # Let in-flight runs finish and close their logs
            self.executor.shutdown(wait=True)
            logger.info("CronRelay dispatcher stopped")

    def stop(self):
        self._stop.set()
