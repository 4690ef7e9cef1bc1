"""Postgres connection pool construction."""
import logging

from psycopg.rows import dict_row
from psycopg_pool import ConnectionPool

from taskq.config import Settings

logger = logging.getLogger(__name__)


def _url_preview(url: str) -> str:
    # Hide credentials: keep only what follows the last '@'
    return url.rsplit("@", 1)[-1]


def create_pool(settings: Settings) -> ConnectionPool:
    """
    Open a connection pool for the task store.

    Connections run in autocommit mode with dict rows; multi-statement work opens
    an explicit transaction with `conn.transaction()`.
    """
    logger.info(
        f"Opening connection pool to {_url_preview(settings.database_url)} "
        f"(min={settings.pool_min_size}, max={settings.pool_max_size})"
    )
    return ConnectionPool(
        settings.database_url,
        min_size=settings.pool_min_size,
        max_size=settings.pool_max_size,
        kwargs={"autocommit": True, "row_factory": dict_row},
        open=True,
    )
