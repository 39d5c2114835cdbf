"""
Task and run-log persistence.

The column names of both tables are a contract shared with whatever
administration front-end owns the data; the table names are configurable.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any

from sqlalchemy import (
    Column,
    DateTime,
    Integer,
    MetaData,
    String,
    Table,
    Text,
    create_engine,
    delete,
    func,
    insert,
    or_,
    select,
    update,
)
from sqlalchemy.pool import StaticPool

from ..shared.models import RunLog, Task, TaskStatus

logger = logging.getLogger(__name__)

TASK_COLUMNS = (
    "id",
    "name",
    "command",
    "task_type",
    "cron_expression",
    "timeout",
    "lock_time",
    "status",
    "last_run_time",
    "next_run_time",
)

LOG_COLUMNS = (
    "id",
    "cron_id",
    "task_name",
    "status",
    "start_time",
    "end_time",
    "duration",
    "pid",
    "output",
    "error",
)


def _build_tables(metadata: MetaData, table_cron: str, table_log: str) -> tuple[Table, Table]:
    tasks = Table(
        table_cron,
        metadata,
        Column("id", Integer, primary_key=True, autoincrement=True),
        Column("name", String(255), nullable=False, default=""),
        Column("command", Text, nullable=False, default=""),
        Column("task_type", String(32)),
        Column("cron_expression", String(255), nullable=False, default=""),
        Column("timeout", Integer, default=300),
        Column("lock_time", Integer, nullable=False, default=0),
        Column("status", String(16), nullable=False, default=TaskStatus.ENABLED.value, index=True),
        Column("last_run_time", DateTime),
        Column("next_run_time", DateTime, index=True),
    )
    logs = Table(
        table_log,
        metadata,
        Column("id", Integer, primary_key=True, autoincrement=True),
        Column("cron_id", Integer, nullable=False, index=True),
        Column("task_name", String(255), nullable=False, default=""),
        Column("status", String(16), nullable=False),
        Column("start_time", DateTime),
        Column("end_time", DateTime),
        Column("duration", Integer),
        Column("pid", Integer),
        Column("output", Text),
        Column("error", Text),
    )
    return tasks, logs


class TaskStore:
    """SQLAlchemy store for task definitions and their run logs"""

    def __init__(
        self,
        database_url: str = "sqlite:///cronrelay.db",
        table_cron: str = "cron_task",
        table_log: str = "cron_log",
    ):
        self.database_url = database_url
        self.engine = create_engine(database_url, **self._engine_options(database_url))
        self.metadata = MetaData()
        self.tasks, self.logs = _build_tables(self.metadata, table_cron, table_log)

    @staticmethod
    def _engine_options(database_url: str) -> dict[str, Any]:
        if not database_url.startswith("sqlite"):
            return {"pool_pre_ping": True}
        options: dict[str, Any] = {"connect_args": {"check_same_thread": False}}
        if database_url in ("sqlite://", "sqlite:///:memory:"):
            # A single shared connection keeps the in-memory database alive
            options["poolclass"] = StaticPool
        return options

    def init_schema(self):
        """Create both tables when missing"""
        self.metadata.create_all(self.engine)
        logger.info(f"Task store ready: {self.engine.url.render_as_string(hide_password=True)}")

    def close(self):
        self.engine.dispose()

    # -- tasks ---------------------------------------------------------------

    def get_due_tasks(self, now: datetime) -> list[Task]:
        """Enabled tasks whose next run time has passed or was never computed"""
        query = (
            select(self.tasks)
            .where(self.tasks.c.status == TaskStatus.ENABLED.value)
            .where(
                or_(
                    self.tasks.c.next_run_time <= now,
                    self.tasks.c.next_run_time.is_(None),
                )
            )
            .order_by(self.tasks.c.id)
        )
        with self.engine.connect() as conn:
            return [self._row_to_task(row) for row in conn.execute(query)]

    def get_task(self, task_id: int) -> Task | None:
        with self.engine.connect() as conn:
            row = conn.execute(
                select(self.tasks).where(self.tasks.c.id == task_id)
            ).first()
        return self._row_to_task(row) if row else None

    def insert_task(self, values: dict[str, Any]) -> int:
        values = self._prepare(values, TASK_COLUMNS, exclude=("id",))
        with self.engine.begin() as conn:
            result = conn.execute(insert(self.tasks).values(**values))
            return int(result.inserted_primary_key[0])

    def update_task(self, task_id: int, values: dict[str, Any]) -> int:
        values = self._prepare(values, TASK_COLUMNS, exclude=("id",))
        if not values:
            return 0
        with self.engine.begin() as conn:
            result = conn.execute(
                update(self.tasks).where(self.tasks.c.id == task_id).values(**values)
            )
            return result.rowcount

    def delete_task(self, task_id: int) -> int:
        with self.engine.begin() as conn:
            return conn.execute(delete(self.tasks).where(self.tasks.c.id == task_id)).rowcount

    def list_tasks(
        self, where: dict[str, Any] | None = None, page: int = 1, per_page: int = 10
    ) -> dict[str, Any]:
        result = self._paginate(self.tasks, TASK_COLUMNS, where, page, per_page)
        result["items"] = [self._row_to_task(row) for row in result["items"]]
        return result

    # -- run logs ------------------------------------------------------------

    def insert_run_log(self, values: dict[str, Any]) -> int:
        values = self._prepare(values, LOG_COLUMNS, exclude=("id",))
        with self.engine.begin() as conn:
            result = conn.execute(insert(self.logs).values(**values))
            return int(result.inserted_primary_key[0])

    def get_run_log(self, log_id: int) -> RunLog | None:
        with self.engine.connect() as conn:
            row = conn.execute(select(self.logs).where(self.logs.c.id == log_id)).first()
        return self._row_to_run_log(row) if row else None

    def update_run_log(self, log_id: int, values: dict[str, Any]) -> int:
        values = self._prepare(values, LOG_COLUMNS, exclude=("id",))
        with self.engine.begin() as conn:
            result = conn.execute(
                update(self.logs).where(self.logs.c.id == log_id).values(**values)
            )
            return result.rowcount

    def latest_run_log(self, task_id: int) -> RunLog | None:
        query = (
            select(self.logs)
            .where(self.logs.c.cron_id == task_id)
            .order_by(self.logs.c.id.desc())
            .limit(1)
        )
        with self.engine.connect() as conn:
            row = conn.execute(query).first()
        return self._row_to_run_log(row) if row else None

    def list_run_logs(
        self, where: dict[str, Any] | None = None, page: int = 1, per_page: int = 10
    ) -> dict[str, Any]:
        where = dict(where or {})
        if "task_id" in where:
            where["cron_id"] = where.pop("task_id")
        result = self._paginate(self.logs, LOG_COLUMNS, where, page, per_page)
        result["items"] = [self._row_to_run_log(row) for row in result["items"]]
        return result

    # -- helpers -------------------------------------------------------------

    @staticmethod
    def _prepare(
        values: dict[str, Any], columns: tuple[str, ...], exclude: tuple[str, ...] = ()
    ) -> dict[str, Any]:
        unknown = set(values) - set(columns)
        if unknown:
            raise ValueError(f"Unknown columns: {', '.join(sorted(unknown))}")
        prepared = {}
        for key, value in values.items():
            if key in exclude:
                continue
            # Enums are stored by value
            prepared[key] = getattr(value, "value", value)
        return prepared

    def _paginate(
        self,
        table: Table,
        columns: tuple[str, ...],
        where: dict[str, Any] | None,
        page: int,
        per_page: int,
    ) -> dict[str, Any]:
        page = max(1, int(page))
        per_page = max(1, int(per_page))
        conditions = [
            table.c[key] == value
            for key, value in self._prepare(where or {}, columns).items()
        ]

        with self.engine.connect() as conn:
            total = conn.execute(
                select(func.count()).select_from(table).where(*conditions)
            ).scalar_one()
            rows = conn.execute(
                select(table)
                .where(*conditions)
                .order_by(table.c.id.desc())
                .offset((page - 1) * per_page)
                .limit(per_page)
            ).all()

        return {"total": total, "page": page, "per_page": per_page, "items": rows}

    @staticmethod
    def _row_to_task(row) -> Task:
        return Task.model_validate(dict(row._mapping))

    @staticmethod
    def _row_to_run_log(row) -> RunLog:
        data = dict(row._mapping)
        data["task_id"] = data.pop("cron_id")
        return RunLog.model_validate(data)
