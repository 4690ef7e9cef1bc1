#!/usr/bin/env python3
"""Verify that the setup is correct before deployment: env vars, database reachability, schema."""
import os
import sys

from taskq.config import get_settings, load_env
from taskq.db import create_pool
from taskq.queue.durable_queue import TaskStore
from taskq.queue.errors import StoreError

load_env()


def check_env_var(name: str, required: bool = True) -> bool:
    """Check if an environment variable is set."""
    value = os.getenv(name)
    if required and not value:
        print(f"❌ {name} is not set (required)")
        return False
    elif value:
        print(f"✅ {name} is set")
        return True
    else:
        print(f"⚠️  {name} is not set (optional)")
        return True


def check_database() -> bool:
    """Connect, create the schema if needed, and report the backlog."""
    try:
        settings = get_settings()
    except ValueError as e:
        print(f"❌ Invalid configuration: {e}")
        return False

    pool = create_pool(settings)
    try:
        store = TaskStore(pool)
        store.init_schema()
        print(f"✅ Database reachable, schema ready (backlog: {store.backlog()})")
        return True
    except StoreError as e:
        print(f"❌ Database check failed: {e}")
        return False
    finally:
        pool.close()


def main():
    """Run setup verification."""
    print("🔍 Verifying setup...\n")

    if not check_env_var("DATABASE_URL", required=True):
        print("\n❌ Setup incomplete. Set DATABASE_URL in your .env file or environment.")
        sys.exit(1)

    for name in ("DB_POOL_MAX_SIZE", "WORKER_POLL_INTERVAL", "RUN_EMBEDDED_WORKER", "PORT"):
        check_env_var(name, required=False)

    print()
    if not check_database():
        sys.exit(1)

    print("\nNext steps:")
    print("1. Run the API:    uvicorn taskq.main:app --port 8000")
    print("2. Run a worker:   python -m taskq.queue.worker  (start as many as you like)")


if __name__ == "__main__":
    main()
