"""
Configuration settings for CronRelay workers
"""

import os
from dataclasses import dataclass


@dataclass
class CronConfig:
    """Configuration shared by the scheduler, dispatcher and log broadcaster"""

    # Scheduler
    scan_interval: float = 1.0
    min_scan_gap: float = 0.5

    # Redis names
    cron_queue: str = "cronrelay:cron_queue"
    lock_prefix: str = "cronrelay:lock:"
    log_channel: str = "cronrelay:logs"
    log_write_file: bool = False

    # Dispatcher / executor
    executor_strategy: str = "event_loop"
    max_workers: int = 8
    default_timeout: int = 300
    poll_interval: float = 1.0
    pop_timeout: int = 1

    # Task store
    database_url: str = "sqlite:///cronrelay.db"
    table_cron: str = "cron_task"
    table_log: str = "cron_log"

    # Network endpoints
    admin_host: str = "0.0.0.0"
    admin_port: int = 12346
    log_host: str = "0.0.0.0"
    log_port: int = 12348


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


def get_cron_config() -> CronConfig:
    """Build configuration from CRONRELAY_* environment variables"""
    defaults = CronConfig()
    return CronConfig(
        scan_interval=float(os.getenv("CRONRELAY_SCAN_INTERVAL", defaults.scan_interval)),
        min_scan_gap=float(os.getenv("CRONRELAY_MIN_SCAN_GAP", defaults.min_scan_gap)),
        cron_queue=os.getenv("CRONRELAY_CRON_QUEUE", defaults.cron_queue),
        lock_prefix=os.getenv("CRONRELAY_LOCK_PREFIX", defaults.lock_prefix),
        log_channel=os.getenv("CRONRELAY_LOG_CHANNEL", defaults.log_channel),
        log_write_file=_env_bool("CRONRELAY_LOG_WRITE_FILE", defaults.log_write_file),
        executor_strategy=os.getenv(
            "CRONRELAY_EXECUTOR_STRATEGY", defaults.executor_strategy
        ),
        max_workers=int(os.getenv("CRONRELAY_MAX_WORKERS", defaults.max_workers)),
        default_timeout=int(
            os.getenv("CRONRELAY_DEFAULT_TIMEOUT", defaults.default_timeout)
        ),
        poll_interval=float(os.getenv("CRONRELAY_POLL_INTERVAL", defaults.poll_interval)),
        pop_timeout=int(os.getenv("CRONRELAY_POP_TIMEOUT", defaults.pop_timeout)),
        database_url=os.getenv("CRONRELAY_DATABASE_URL", defaults.database_url),
        table_cron=os.getenv("CRONRELAY_TABLE_CRON", defaults.table_cron),
        table_log=os.getenv("CRONRELAY_TABLE_LOG", defaults.table_log),
        admin_host=os.getenv("CRONRELAY_ADMIN_HOST", defaults.admin_host),
        admin_port=int(os.getenv("CRONRELAY_ADMIN_PORT", defaults.admin_port)),
        log_host=os.getenv("CRONRELAY_LOG_HOST", defaults.log_host),
        log_port=int(os.getenv("CRONRELAY_LOG_PORT", defaults.log_port)),
    )
