"""FastAPI service for creating tasks and checking their status."""
import asyncio
import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Optional

import uvicorn
from fastapi import Depends, FastAPI, HTTPException, Query, Request, Response
from fastapi.responses import JSONResponse
from pydantic import AliasChoices, BaseModel, Field, field_validator

from taskq.config import configure_logging, get_settings, load_env
from taskq.db import create_pool
from taskq.queue.durable_queue import TaskStore
from taskq.queue.errors import ConnectivityError, ConstraintError, StoreError
from taskq.queue.models import TaskFilters, TaskKind, TaskState, to_utc
from taskq.retry import retry_call

load_env()
configure_logging()
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Open the pool, bootstrap the schema, and start the embedded worker if enabled."""
    from taskq.queue.worker import start_worker_background

    settings = get_settings()
    pool = create_pool(settings)
    worker_task: Optional[asyncio.Task] = None
    try:
        store = TaskStore(pool)
        await asyncio.to_thread(
            retry_call,
            store.init_schema,
            backoff_base=settings.backoff_base,
            max_backoff=settings.max_backoff,
            operation_name="init_schema",
        )
        app.state.store = store

        if settings.run_embedded_worker:
            worker_task = start_worker_background(
                store,
                poll_interval=settings.poll_interval,
                backoff_base=settings.backoff_base,
                max_backoff=settings.max_backoff,
            )
            logger.info("Embedded queue worker started")
        yield
    finally:
        if worker_task and not worker_task.done():
            worker_task.cancel()
            try:
                await worker_task
            except asyncio.CancelledError:
                pass
            logger.info("Embedded queue worker stopped")
        pool.close()


app = FastAPI(title="taskq", lifespan=lifespan)


def get_store(request: Request) -> TaskStore:
    """Dependency: the store opened in lifespan."""
    return request.app.state.store


@app.exception_handler(ConnectivityError)
async def _connectivity_error(request: Request, exc: ConnectivityError):
    logger.warning("Store unavailable during %s %s: %s", request.method, request.url.path, exc)
    return JSONResponse(status_code=503, content={"detail": "Task store unavailable"})


@app.exception_handler(StoreError)
async def _store_error(request: Request, exc: StoreError):
    logger.error("Store error during %s %s: %s", request.method, request.url.path, exc)
    return JSONResponse(status_code=500, content={"detail": "Task store error"})


class CreateTaskRequest(BaseModel):
    kind: TaskKind = Field(validation_alias=AliasChoices("kind", "type"))
    execution_time: datetime

    @field_validator("execution_time")
    @classmethod
    def _normalise_utc(cls, value: datetime) -> datetime:
        # Timestamps without an offset are taken as UTC.
        if value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        try:
            return to_utc(value)
        except ConstraintError as e:
            raise ValueError(str(e)) from None


@app.get("/health")
async def health():
    """Health check endpoint."""
    return {"status": "healthy"}


@app.post("/tasks", status_code=201)
def create_task(payload: CreateTaskRequest, store: TaskStore = Depends(get_store)):
    task_id = store.create(payload.kind, payload.execution_time)
    return {"id": task_id}


@app.get("/tasks")
def list_tasks(
    state: Optional[TaskState] = Query(default=None),
    kind: Optional[TaskKind] = Query(default=None, alias="type"),
    store: TaskStore = Depends(get_store),
):
    """List tasks, optionally restricted by state and/or type."""
    tasks = store.list(TaskFilters(state=state, kind=kind))
    return {"results": [t.to_dict() for t in tasks]}


@app.get("/tasks/{task_id}")
def read_task(task_id: int, store: TaskStore = Depends(get_store)):
    task = store.read(task_id)
    if task is None:
        raise HTTPException(status_code=404, detail=f"Task {task_id} not found")
    return task.to_dict()


@app.delete("/tasks/{task_id}", status_code=204)
def destroy_task(task_id: int, store: TaskStore = Depends(get_store)):
    """Delete a task. Deleting a task that is already gone is also a 204."""
    store.destroy(task_id)
    return Response(status_code=204)


@app.get("/queue/backlog")
def queue_backlog(store: TaskStore = Depends(get_store)):
    """Number of ready tasks waiting for a worker."""
    return {"backlog": store.backlog()}


def run() -> None:
    settings = get_settings()
    uvicorn.run("taskq.main:app", host=settings.host, port=settings.port)


if __name__ == "__main__":
    run()
