"""
Background worker that claims and executes ready tasks from the durable queue.
Runs embedded in the HTTP service (RUN_EMBEDDED_WORKER=true) or as its own process:

    python -m taskq.queue.worker
"""
import asyncio
import logging
from typing import Optional

from taskq.config import configure_logging, get_settings, load_env
from taskq.db import create_pool
from taskq.queue.durable_queue import TaskStore
from taskq.queue.errors import ConnectivityError, StoreError, TaskExecutionError
from taskq.queue.executor import TaskExecutor, dispatch
from taskq.retry import MAX_BACKOFF_SECONDS, backoff_delay, retry_call

logger = logging.getLogger(__name__)

POLL_INTERVAL_SECONDS = 1.0


async def _idle(seconds: float, stop: Optional[asyncio.Event]) -> None:
    """Sleep for `seconds`, waking early if `stop` is set."""
    if stop is None:
        await asyncio.sleep(seconds)
        return
    try:
        await asyncio.wait_for(stop.wait(), timeout=seconds)
    except asyncio.TimeoutError:
        pass


async def run_worker_loop(
    store: TaskStore,
    executor: TaskExecutor = dispatch,
    poll_interval: float = POLL_INTERVAL_SECONDS,
    backoff_base: float = 2.0,
    max_backoff: float = MAX_BACKOFF_SECONDS,
    stop: Optional[asyncio.Event] = None,
) -> None:
    """
    Run the worker loop: claim one ready task, execute it, commit; repeat.

    Each attempt runs in a worker thread and is synchronous end to end. Sleeps
    `poll_interval` when no task is ready or after a task fails (the failed task is
    Pending again). Connectivity failures back off exponentially until the store
    answers again. Exits when cancelled or when `stop` is set.
    """
    logger.info("Worker started (poll_interval=%ss)", poll_interval)
    connectivity_failures = 0

    while stop is None or not stop.is_set():
        try:
            task = await asyncio.to_thread(store.claim_and_execute, executor)
            connectivity_failures = 0
            if task is None:
                await _idle(poll_interval, stop)
        except asyncio.CancelledError:
            logger.info("Worker loop cancelled")
            break
        except TaskExecutionError as e:
            connectivity_failures = 0
            logger.error("Task %s failed and was released for another attempt: %s", e.task.id, e.cause)
            await _idle(poll_interval, stop)
        except ConnectivityError as e:
            connectivity_failures += 1
            delay = backoff_delay(connectivity_failures, backoff_base, max_backoff)
            logger.warning(
                "Store unreachable (attempt %s): %s; retrying in %.1fs",
                connectivity_failures, e, delay,
            )
            await _idle(delay, stop)
        except StoreError as e:
            logger.error("Worker loop error: %s", e, exc_info=True)
            await _idle(poll_interval, stop)

    logger.info("Worker stopped")


def start_worker_background(
    store: TaskStore,
    executor: TaskExecutor = dispatch,
    poll_interval: float = POLL_INTERVAL_SECONDS,
    backoff_base: float = 2.0,
    max_backoff: float = MAX_BACKOFF_SECONDS,
) -> asyncio.Task:
    """
    Start the worker as a background asyncio task.
    Returns the task so it can be cancelled on shutdown.
    """
    return asyncio.create_task(
        run_worker_loop(
            store,
            executor=executor,
            poll_interval=poll_interval,
            backoff_base=backoff_base,
            max_backoff=max_backoff,
        )
    )


def _log_backlog(store: TaskStore) -> None:
    """Log the ready-task count; the store being unreachable here is not fatal."""
    try:
        logger.info("backlog size: %s", store.backlog())
    except StoreError as e:
        logger.warning("Could not read backlog size, polling anyway: %s", e)


def main() -> None:
    """Standalone worker process."""
    load_env()
    settings = get_settings()
    configure_logging(settings.log_level)

    pool = create_pool(settings)
    try:
        store = TaskStore(pool)
        retry_call(
            store.init_schema,
            backoff_base=settings.backoff_base,
            max_backoff=settings.max_backoff,
            operation_name="init_schema",
        )
        _log_backlog(store)
        logger.info("polling...")
        asyncio.run(
            run_worker_loop(
                store,
                poll_interval=settings.poll_interval,
                backoff_base=settings.backoff_base,
                max_backoff=settings.max_backoff,
            )
        )
    except KeyboardInterrupt:
        logger.info("Worker interrupted, shutting down")
    finally:
        pool.close()


if __name__ == "__main__":
    main()
