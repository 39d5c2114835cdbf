"""
CronRelay command line entry point

    cronrelay scheduler      scan for due tasks and serve the admin protocol
    cronrelay dispatcher     execute queued tasks
    cronrelay broadcaster    stream execution logs over WebSocket
    cronrelay init-db        create the task and run-log tables
    cronrelay next EXPR      print the next run times of a cron expression
"""

import argparse
import asyncio
import logging
import threading

from CronRelay.cron import parser as cron_parser
from CronRelay.dispatch_loop import CronDispatcher
from CronRelay.scheduler_loop import CronScheduler
from CronRelay.shared.config import CronConfig, get_cron_config
from CronRelay.shared.redis_utils import RedisConfig, SyncRedisClient
from CronRelay.tasks.capabilities import build_registry
from CronRelay.tasks.executor import TaskExecutor
from CronRelay.tasks.invoker import ClassExecInvoker
from CronRelay.tasks.manager import TaskManager
from CronRelay.tasks.store import TaskStore

logger = logging.getLogger(__name__)


def build_store(config: CronConfig) -> TaskStore:
    store = TaskStore(config.database_url, config.table_cron, config.table_log)
    store.init_schema()
    return store


def run_scheduler(config: CronConfig, redis_config: RedisConfig, admin: bool = True):
    from CronRelay.backend.admin import AdminServer

    store = build_store(config)
    redis_client = SyncRedisClient(redis_config, config)
    manager = TaskManager(store, redis_client, config)
    scheduler = CronScheduler(manager, redis_client, config)

    try:
        if not admin:
            scheduler.run()
            return

        scan_thread = threading.Thread(target=scheduler.run, name="cronrelay-scheduler", daemon=True)
        scan_thread.start()
        server = AdminServer(manager, config.admin_host, config.admin_port)
        asyncio.run(server.serve_forever())
    finally:
        scheduler.stop()
        redis_client.close()
        store.close()


def run_dispatcher(config: CronConfig, redis_config: RedisConfig):
    store = build_store(config)
    redis_client = SyncRedisClient(redis_config, config)
    manager = TaskManager(store, redis_client, config)
    executor = TaskExecutor(manager, redis_client, ClassExecInvoker(build_registry()), config)
    dispatcher = CronDispatcher(manager, redis_client, executor, config)

    try:
        dispatcher.run()
    finally:
        redis_client.close()
        store.close()


def run_broadcaster(config: CronConfig, redis_config: RedisConfig):
    import uvicorn

    from CronRelay.backend.main import create_app

    uvicorn.run(create_app(config, redis_config), host=config.log_host, port=config.log_port)


def print_next_runs(expression: str, count: int):
    for run_time in cron_parser.get_next_run_times(
        cron_parser.normalize_expression(expression), count=count
    ):
        print(run_time.strftime("%Y-%m-%d %H:%M:%S"))


def main(argv=None):
    parser = argparse.ArgumentParser(prog="cronrelay", description="Distributed recurring-task scheduler")
    parser.add_argument("--log-level", default="INFO", help="Logging level (default: INFO)")
    subparsers = parser.add_subparsers(dest="command", required=True)

    scheduler_parser = subparsers.add_parser("scheduler", help="Scan for due tasks")
    scheduler_parser.add_argument(
        "--no-admin", action="store_true", help="Do not serve the admin protocol"
    )
    subparsers.add_parser("dispatcher", help="Execute queued tasks")
    subparsers.add_parser("broadcaster", help="Stream execution logs over WebSocket")
    subparsers.add_parser("init-db", help="Create the task and run-log tables")

    next_parser = subparsers.add_parser("next", help="Print upcoming run times")
    next_parser.add_argument("expression", type=str)
    next_parser.add_argument("--count", type=int, default=5)

    args = parser.parse_args(argv)

    logging.basicConfig(level=getattr(logging, args.log_level.upper(), logging.INFO))
    config = get_cron_config()
    redis_config = RedisConfig.from_env()

    try:
        if args.command == "scheduler":
            run_scheduler(config, redis_config, admin=not args.no_admin)
        elif args.command == "dispatcher":
            run_dispatcher(config, redis_config)
        elif args.command == "broadcaster":
            run_broadcaster(config, redis_config)
        elif args.command == "init-db":
            build_store(config).close()
        elif args.command == "next":
            print_next_runs(args.expression, args.count)
    except KeyboardInterrupt:
        logger.info("Interrupted, shutting down")
    except cron_parser.CronExpressionError as e:
        parser.error(str(e))


if __name__ == "__main__":
    main()
