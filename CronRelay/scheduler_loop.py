"""
CronRelay scheduler worker
Scans the task store for due tasks and pushes them onto the handoff queue
"""

import logging
import threading
import time

from CronRelay.shared.config import CronConfig
from CronRelay.shared.redis_utils import SyncRedisClient
from CronRelay.tasks.manager import TaskManager

logger = logging.getLogger(__name__)


class CronScheduler:
    """Fixed-interval scanner; never executes tasks itself"""

    def __init__(
        self,
        manager: TaskManager,
        redis_client: SyncRedisClient,
        config: CronConfig | None = None,
    ):
        self.manager = manager
        self.redis_client = redis_client
        self.config = config or CronConfig()
        self.last_scan = 0.0
        self._stop = threading.Event()

    def scan_tasks(self) -> int:
        """Enqueue every due task; returns the number of tasks pushed"""
        now = time.monotonic()
        if self.last_scan and now - self.last_scan < self.config.min_scan_gap:
            return 0
        self.last_scan = now

        pushed = 0
        for task in self.manager.get_due_tasks():
            self.redis_client.push_task(task)
            pushed += 1
            logger.debug(f"Queued task {task.id} ({task.name})")

        if pushed:
            logger.info(f"Queued {pushed} due task(s)")
        return pushed

    def run(self):
        """Main scheduler loop"""
        logger.info("CronRelay scheduler started")

        while not self._stop.is_set():
            try:
                self.scan_tasks()
            except Exception as e:
                logger.error(f"Error scanning tasks: {e}")
            self._stop.wait(self.config.scan_interval)

        logger.info("CronRelay scheduler stopped")

    def stop(self):
        self._stop.set()
