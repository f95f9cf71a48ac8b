from psycopg.rows import dict_row
from psycopg_pool import AsyncConnectionPool

from .config import settings

# Shared async pool used by the Postgres-backed stores.
pool: AsyncConnectionPool | None = None


async def init_db_pool() -> None:
    global pool

    # Without DATABASE_URL the app falls back to in-memory stores.
    if not settings.database_url:
        return

    pool = AsyncConnectionPool(
        conninfo=settings.database_url,
        open=False,
        min_size=1,
        max_size=10,
        kwargs={"autocommit": True, "row_factory": dict_row},
    )
    await pool.open()


async def close_db_pool() -> None:
    global pool

    if pool is None:
        return

    await pool.close()
    pool = None


def get_pool() -> AsyncConnectionPool | None:
    return pool
