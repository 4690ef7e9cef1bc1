"""
Durable task queue using Postgres (not in-memory).
Enables: "Multiple workers compete for one backlog without double-executing a task"

Claiming uses row locks instead of a status column: the worker's transaction selects one
ready row with FOR UPDATE SKIP LOCKED, keeps it locked while the task runs, then marks it
Completed and commits. Other workers skip the locked row and take the next one. If the
worker fails or dies before commit the lock is released and the row is still Pending.
"""
import logging
from contextlib import contextmanager
from datetime import datetime
from typing import Callable, Iterator, List, Optional

from psycopg import sql
from psycopg_pool import ConnectionPool

from taskq.queue.errors import TaskExecutionError, translate_errors
from taskq.queue.filters import build_where
from taskq.queue.models import TASK_COLUMNS, Task, TaskFilters, TaskKind, TaskState, to_utc

logger = logging.getLogger(__name__)

TABLE_NAME = "tasks"

_SCHEMA_SQL = """
    CREATE TABLE IF NOT EXISTS tasks (
        id SERIAL PRIMARY KEY,
        -- sized for the longest kind: FizzBuzz
        type VARCHAR(8) NOT NULL,
        -- sized for the longest state: Completed
        state VARCHAR(9) NOT NULL,
        execution_time TIMESTAMPTZ NOT NULL,
        created_at TIMESTAMPTZ NOT NULL,
        updated_at TIMESTAMPTZ NOT NULL
    )
"""

# Drives worker task selection.
_INDEX_SQL = "CREATE INDEX IF NOT EXISTS queue_idx ON tasks (state, execution_time)"

_SELECT_COLUMNS = ", ".join(TASK_COLUMNS)

_INSERT_SQL = """
    INSERT INTO tasks (type, state, execution_time, created_at, updated_at)
    VALUES (%s, %s, %s, now(), now())
    RETURNING id
"""

_READ_SQL = f"SELECT {_SELECT_COLUMNS} FROM tasks WHERE id = %s"

_DELETE_SQL = "DELETE FROM tasks WHERE id = %s"

_BACKLOG_SQL = "SELECT COUNT(id) AS backlog FROM tasks WHERE state = %s AND execution_time <= now()"

# Earliest execution_time first, then lowest id. Rows locked by another
# transaction are skipped, never waited on.
_CLAIM_SQL = f"""
    SELECT {_SELECT_COLUMNS} FROM tasks
    WHERE state = %s AND execution_time <= now()
    ORDER BY execution_time ASC, id ASC
    LIMIT 1
    FOR UPDATE SKIP LOCKED
"""

_COMPLETE_SQL = f"""
    UPDATE tasks
    SET state = %s, updated_at = clock_timestamp()
    WHERE id = %s
    RETURNING {_SELECT_COLUMNS}
"""


class TaskStore:
    """
    Queue store backed by Postgres.
    Takes an open connection pool; the pool is owned by the caller.
    """

    def __init__(self, pool: ConnectionPool):
        self._pool = pool

    def init_schema(self) -> None:
        """Create the tasks table and queue index if they don't exist."""
        with translate_errors("init_schema"):
            with self._pool.connection() as conn:
                with conn.cursor() as cur:
                    cur.execute(_SCHEMA_SQL)
                    cur.execute(_INDEX_SQL)
        logger.info("Task table and queue index created/verified")

    def create(self, kind: TaskKind, execution_time: datetime) -> int:
        """
        Enqueue a task.

        Returns:
            id assigned by the store
        """
        execution_time = to_utc(execution_time)

        with translate_errors("create"):
            with self._pool.connection() as conn:
                with conn.cursor() as cur:
                    cur.execute(_INSERT_SQL, (kind.value, TaskState.PENDING.value, execution_time))
                    row = cur.fetchone()
        task_id = row["id"]
        logger.info(f"Enqueued task {task_id} ({kind.value}) for {execution_time.isoformat()}")
        return task_id

    def read(self, task_id: int) -> Optional[Task]:
        """Return the task, or None if no such id exists."""
        with translate_errors("read"):
            with self._pool.connection() as conn:
                with conn.cursor() as cur:
                    cur.execute(_READ_SQL, (task_id,))
                    row = cur.fetchone()
        return Task.from_row(row) if row is not None else None

    def list(self, filters: Optional[TaskFilters] = None) -> List[Task]:
        """List tasks matching the filters, ordered by id."""
        where = build_where((filters or TaskFilters()).predicates())
        query = sql.SQL("SELECT {columns} FROM {table}{where} ORDER BY id ASC").format(
            columns=sql.SQL(", ").join(sql.Identifier(c) for c in TASK_COLUMNS),
            table=sql.Identifier(TABLE_NAME),
            where=where.clause,
        )
        with translate_errors("list"):
            with self._pool.connection() as conn:
                with conn.cursor() as cur:
                    cur.execute(query, where.params)
                    rows = cur.fetchall()
        return [Task.from_row(row) for row in rows]

    def destroy(self, task_id: int) -> bool:
        """
        Delete a task. Deleting an id that doesn't exist is not an error.

        Returns:
            True if a row was removed
        """
        with translate_errors("destroy"):
            with self._pool.connection() as conn:
                with conn.cursor() as cur:
                    cur.execute(_DELETE_SQL, (task_id,))
                    deleted = cur.rowcount > 0
        if deleted:
            logger.info(f"Deleted task {task_id}")
        return deleted

    def backlog(self) -> int:
        """Number of ready tasks waiting to be claimed."""
        with translate_errors("backlog"):
            with self._pool.connection() as conn:
                with conn.cursor() as cur:
                    cur.execute(_BACKLOG_SQL, (TaskState.PENDING.value,))
                    row = cur.fetchone()
        return row["backlog"]

    @contextmanager
    def claim(self) -> Iterator[Optional[Task]]:
        """
        Hold exclusive ownership of one ready task for the duration of the block.

        Yields the claimed task, or None when no task is ready. If the block exits
        normally the task is marked Completed and committed; if it raises, the
        transaction rolls back and the task stays Pending.
        """
        with translate_errors("claim"):
            with self._pool.connection() as conn:
                with conn.transaction():
                    with conn.cursor() as cur:
                        task = self._select_ready(cur)
                        yield task
                        if task is not None:
                            self._mark_completed(cur, task)

    def claim_and_execute(self, executor: Callable[[Task], None]) -> Optional[Task]:
        """
        Claim the next ready task, run `executor` on it, and commit it as Completed.

        Returns:
            The completed task, or None if no task was ready.

        Raises:
            TaskExecutionError: the executor failed; the claim was rolled back.
            StoreError: the store failed; the claim was rolled back.
        """
        with translate_errors("claim_and_execute"):
            with self._pool.connection() as conn:
                with conn.transaction():
                    with conn.cursor() as cur:
                        task = self._select_ready(cur)
                        if task is None:
                            return None
                        try:
                            executor(task)
                        except Exception as e:
                            logger.warning(f"Task {task.id} failed, rolling back claim: {e}")
                            raise TaskExecutionError(task, e) from e
                        completed = self._mark_completed(cur, task)
        logger.info(f"Task {completed.id} ({completed.kind.value}) completed")
        return completed

    def _select_ready(self, cur) -> Optional[Task]:
        cur.execute(_CLAIM_SQL, (TaskState.PENDING.value,))
        row = cur.fetchone()
        if row is None:
            logger.debug("no pending tasks found")
            return None
        task = Task.from_row(row)
        logger.debug(f"executing task: id={task.id}")
        return task

    def _mark_completed(self, cur, task: Task) -> Task:
        logger.debug(f"marking task completed: id={task.id}")
        cur.execute(_COMPLETE_SQL, (TaskState.COMPLETED.value, task.id))
        return Task.from_row(cur.fetchone())
