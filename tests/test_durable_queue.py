"""Unit tests for TaskStore against a scripted fake pool."""
from datetime import datetime, timedelta, timezone

import psycopg
import pytest
from psycopg_pool import PoolTimeout

from taskq.queue.durable_queue import TaskStore
from taskq.queue.errors import ConnectivityError, ConstraintError, DecodeError, TaskExecutionError
from taskq.queue.models import TaskFilters, TaskKind, TaskState
from tests.fakes import T0, FakePool, make_row


class TestCrud:
    """Tests for create/read/list/destroy/backlog."""

    def test_init_schema_creates_table_and_index(self, fake_pool):
        TaskStore(fake_pool).init_schema()
        assert len(fake_pool.executed) == 2
        assert "CREATE TABLE IF NOT EXISTS tasks" in fake_pool.queries[0]
        assert "queue_idx ON tasks (state, execution_time)" in fake_pool.queries[1]

    def test_create_inserts_pending(self, fake_pool):
        fake_pool.results.append([{"id": 7}])
        task_id = TaskStore(fake_pool).create(TaskKind.BUZZ, T0)
        assert task_id == 7
        _, params = fake_pool.executed[0]
        assert params == ("Buzz", "Pending", T0)

    def test_create_rejects_naive_timestamp(self, fake_pool):
        with pytest.raises(ConstraintError):
            TaskStore(fake_pool).create(TaskKind.FIZZ, datetime(2024, 1, 1))
        assert fake_pool.executed == []

    def test_create_rejects_unrepresentable_instants(self, fake_pool):
        store = TaskStore(fake_pool)
        for value in (
            datetime(1, 1, 1, tzinfo=timezone(timedelta(hours=5))),
            datetime(9999, 12, 31, 23, 0, tzinfo=timezone(timedelta(hours=-5))),
        ):
            with pytest.raises(ConstraintError):
                store.create(TaskKind.FIZZ, value)
        assert fake_pool.executed == []

    def test_create_stores_utc(self, fake_pool):
        fake_pool.results.append([{"id": 1}])
        TaskStore(fake_pool).create(TaskKind.FIZZ, datetime(2024, 1, 1, 14, tzinfo=timezone(timedelta(hours=2))))
        stored = fake_pool.executed[0][1][2]
        assert stored == T0
        assert stored.utcoffset() == timedelta(0)

    def test_create_constraint_violation(self, fake_pool):
        fake_pool.results.append(psycopg.IntegrityError("violates not-null constraint"))
        with pytest.raises(ConstraintError):
            TaskStore(fake_pool).create(TaskKind.FIZZ, T0)

    def test_read_missing_is_none(self, fake_pool):
        fake_pool.results.append([])
        assert TaskStore(fake_pool).read(42) is None
        assert fake_pool.executed[0][1] == (42,)

    def test_read_found(self, fake_pool):
        fake_pool.results.append([make_row(id=3, type="FizzBuzz")])
        task = TaskStore(fake_pool).read(3)
        assert task.id == 3
        assert task.kind is TaskKind.FIZZBUZZ
        assert task.state is TaskState.PENDING

    def test_read_corrupt_row(self, fake_pool):
        fake_pool.results.append([make_row(type="Fozz")])
        with pytest.raises(DecodeError):
            TaskStore(fake_pool).read(1)

    def test_list_unfiltered(self, fake_pool):
        fake_pool.results.append([make_row(id=1), make_row(id=2, type="Buzz")])
        tasks = TaskStore(fake_pool).list()
        assert [t.id for t in tasks] == [1, 2]
        assert fake_pool.executed[0][1] == ()

    def test_list_binds_filter_values(self, fake_pool):
        fake_pool.results.append([make_row(id=5, type="Buzz", state="Completed")])
        tasks = TaskStore(fake_pool).list(TaskFilters(state=TaskState.COMPLETED, kind=TaskKind.BUZZ))
        assert [t.id for t in tasks] == [5]
        assert fake_pool.executed[0][1] == ("Completed", "Buzz")

    def test_destroy_existing(self, fake_pool):
        fake_pool.results.append(1)
        assert TaskStore(fake_pool).destroy(1) is True

    def test_destroy_missing_is_not_an_error(self, fake_pool):
        fake_pool.results.extend([0, 0])
        store = TaskStore(fake_pool)
        assert store.destroy(1) is False
        assert store.destroy(1) is False

    def test_backlog(self, fake_pool):
        fake_pool.results.append([{"backlog": 4}])
        assert TaskStore(fake_pool).backlog() == 4
        assert fake_pool.executed[0][1] == ("Pending",)

    def test_pool_timeout_is_connectivity_error(self):
        pool = FakePool(connect_error=PoolTimeout("couldn't get a connection"))
        with pytest.raises(ConnectivityError):
            TaskStore(pool).read(1)


class TestClaimAndExecute:
    """Tests for the claim-and-execute transaction."""

    def test_no_ready_task(self, fake_pool):
        fake_pool.results.append([])
        calls = []
        assert TaskStore(fake_pool).claim_and_execute(calls.append) is None
        assert calls == []
        assert fake_pool.events == ["begin", "commit"]
        assert len(fake_pool.executed) == 1

    def test_claim_query_skips_locked_rows(self, fake_pool):
        fake_pool.results.append([])
        TaskStore(fake_pool).claim_and_execute(lambda t: None)
        query, params = fake_pool.executed[0]
        assert "FOR UPDATE SKIP LOCKED" in query
        assert "execution_time <= now()" in query
        assert "ORDER BY execution_time ASC, id ASC" in query
        assert "LIMIT 1" in query
        assert params == ("Pending",)

    def test_executes_and_completes(self, fake_pool):
        later = T0 + timedelta(seconds=5)
        fake_pool.results.append([make_row(id=8, type="Fizz")])
        fake_pool.results.append([make_row(id=8, type="Fizz", state="Completed", updated_at=later)])
        seen = []

        completed = TaskStore(fake_pool).claim_and_execute(seen.append)

        assert [t.id for t in seen] == [8]
        assert seen[0].state is TaskState.PENDING
        assert completed.id == 8
        assert completed.state is TaskState.COMPLETED
        assert completed.updated_at > completed.created_at
        update_query, update_params = fake_pool.executed[1]
        assert update_query.strip().startswith("UPDATE tasks")
        assert update_params == ("Completed", 8)
        assert fake_pool.events == ["begin", "commit"]

    def test_executor_failure_rolls_back(self, fake_pool):
        fake_pool.results.append([make_row(id=2)])

        def explode(task):
            raise RuntimeError("boom")

        with pytest.raises(TaskExecutionError) as exc_info:
            TaskStore(fake_pool).claim_and_execute(explode)

        assert exc_info.value.task.id == 2
        assert isinstance(exc_info.value.__cause__, RuntimeError)
        assert fake_pool.events == ["begin", "rollback"]
        # No UPDATE was issued
        assert len(fake_pool.executed) == 1

    def test_update_failure_rolls_back(self, fake_pool):
        fake_pool.results.append([make_row(id=2)])
        fake_pool.results.append(psycopg.OperationalError("connection lost"))
        with pytest.raises(ConnectivityError):
            TaskStore(fake_pool).claim_and_execute(lambda t: None)
        assert fake_pool.events == ["begin", "rollback"]

    def test_corrupt_row_rolls_back(self, fake_pool):
        fake_pool.results.append([make_row(state="Bogus")])
        with pytest.raises(DecodeError):
            TaskStore(fake_pool).claim_and_execute(lambda t: None)
        assert fake_pool.events == ["begin", "rollback"]


class TestClaimContext:
    """Tests for the claim() context manager."""

    def test_block_success_completes(self, fake_pool):
        fake_pool.results.append([make_row(id=6)])
        fake_pool.results.append([make_row(id=6, state="Completed")])
        with TaskStore(fake_pool).claim() as task:
            assert task.id == 6
        assert fake_pool.executed[1][1] == ("Completed", 6)
        assert fake_pool.events == ["begin", "commit"]

    def test_block_failure_rolls_back(self, fake_pool):
        fake_pool.results.append([make_row(id=6)])
        with pytest.raises(RuntimeError):
            with TaskStore(fake_pool).claim() as task:
                assert task.id == 6
                raise RuntimeError("worker crashed")
        assert len(fake_pool.executed) == 1
        assert fake_pool.events == ["begin", "rollback"]

    def test_nothing_ready(self, fake_pool):
        fake_pool.results.append([])
        with TaskStore(fake_pool).claim() as task:
            assert task is None
        assert len(fake_pool.executed) == 1
        assert fake_pool.events == ["begin", "commit"]
