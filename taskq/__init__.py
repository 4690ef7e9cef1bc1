"""taskq: durable Postgres-backed task queue with skip-locked claiming."""

__version__ = "0.1.0"
