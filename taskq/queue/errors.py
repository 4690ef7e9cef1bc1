"""
Error taxonomy for the queue store.
Driver exceptions are translated here so callers never depend on psycopg directly.
"""
import logging
from contextlib import contextmanager
from typing import Iterator

import psycopg
from psycopg_pool import PoolTimeout

logger = logging.getLogger(__name__)


class StoreError(Exception):
    """Base class for queue store failures."""


class ConnectivityError(StoreError):
    """Backing store unreachable or connection lost. Safe to retry the whole operation."""


class ConstraintError(StoreError):
    """A write violated a schema constraint or the value does not fit the column."""


class DecodeError(StoreError):
    """A persisted enumeration string does not match any known variant."""


class TaskExecutionError(Exception):
    """
    The executor failed while a task was claimed.
    The claiming transaction has already been rolled back; the task is Pending again.
    """

    def __init__(self, task, cause: BaseException):
        self.task = task
        self.cause = cause
        super().__init__(f"task {task.id} ({task.kind.value}) failed: {cause}")


@contextmanager
def translate_errors(operation: str) -> Iterator[None]:
    """Re-raise psycopg / pool exceptions raised by `operation` as StoreError subclasses."""
    try:
        yield
    except StoreError:
        raise
    except PoolTimeout as e:
        logger.error(f"{operation}: timed out waiting for a connection: {e}")
        raise ConnectivityError(f"{operation}: no connection available") from e
    except psycopg.OperationalError as e:
        logger.error(f"{operation}: connectivity failure: {e}")
        raise ConnectivityError(f"{operation}: {e}") from e
    except (psycopg.IntegrityError, psycopg.DataError) as e:
        logger.error(f"{operation}: constraint violation: {e}")
        raise ConstraintError(f"{operation}: {e}") from e
    except psycopg.Error as e:
        logger.error(f"{operation}: store failure: {e}")
        raise StoreError(f"{operation}: {e}") from e

