"""
Example task executors.
Each kind maps to a behavior; the stock behavior sleeps for the kind's duration
as a stand-in for real work, then reports the task.
"""
import logging
import time
from typing import Callable, Dict

from taskq.queue.models import Task, TaskKind

logger = logging.getLogger(__name__)

TaskExecutor = Callable[[Task], None]


def sleep_executor(sleep: Callable[[float], None] = time.sleep) -> TaskExecutor:
    """Executor that works for `task.kind.duration_seconds` then logs "<kind> <id>"."""
    def run(task: Task) -> None:
        sleep(task.kind.duration_seconds)
        logger.info(f"{task.kind.display_name} {task.id}")
    return run


# Kind -> behavior. Replace an entry to plug in real work for that kind.
EXECUTORS: Dict[TaskKind, TaskExecutor] = {kind: sleep_executor() for kind in TaskKind}


def dispatch(task: Task) -> None:
    """Run the registered executor for the task's kind."""
    executor = EXECUTORS.get(task.kind)
    if executor is None:
        raise LookupError(f"no executor registered for {task.kind.value}")
    executor(task)
