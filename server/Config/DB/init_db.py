import asyncio
import logging

from sqlalchemy import inspect

from Config.settings import get_settings
from Config.logging_config import configure_logging
from Config.DB.db import Base, build_engine

# Import models so they register with Base.metadata
from App.models import Document_model  # noqa: F401
from App.models import Vector_model  # noqa: F401

from Config.DB.migrations.add_pgvector_schema import create_extensions, create_indexes

logger = logging.getLogger(__name__)


# run_sync provides a sync connection for the inspector
def get_tables(sync_conn):
    return inspect(sync_conn).get_table_names()


async def init_models(engine, index_type: str = "hnsw", policy=None) -> list:
    """Extensions, ORM tables, then search indexes. Safe to run multiple times."""
    async with engine.begin() as conn:
        await create_extensions(conn)
        await conn.run_sync(Base.metadata.create_all)
        await create_indexes(conn, index_type, policy)
        live_tables = await conn.run_sync(get_tables)

    logger.info(f"✅ Schema ready, {len(live_tables)} tables: {', '.join(sorted(live_tables))}")
    return live_tables


async def main() -> None:
    settings = get_settings()
    configure_logging(settings.log_level)
    engine = build_engine(settings)
    try:
        await init_models(engine, policy=settings.optimizer)
    except Exception as e:
        msg = str(e)
        if ("extension \"vector\" is not available" in msg) or ("vector.control" in msg):
            logger.error(
                "❌ pgvector is not installed on the database server. Install postgresql-<version>-pgvector "
                "or point DATABASE_URL at an image that ships it (e.g. pgvector/pgvector:pg17)."
            )
        raise
    finally:
        await engine.dispose()


if __name__ == "__main__":
    asyncio.run(main())
