"""
Durable task queue (Postgres-based, not in-memory).
"""
from taskq.queue.durable_queue import TaskStore
from taskq.queue.errors import (
    ConnectivityError,
    ConstraintError,
    DecodeError,
    StoreError,
    TaskExecutionError,
)
from taskq.queue.models import Task, TaskFilters, TaskKind, TaskState

__all__ = [
    "TaskStore",
    "Task",
    "TaskFilters",
    "TaskKind",
    "TaskState",
    "StoreError",
    "ConnectivityError",
    "ConstraintError",
    "DecodeError",
    "TaskExecutionError",
]
